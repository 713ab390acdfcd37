"""SQLite-backed contact store.

``ContactStore`` hands out ``ContactRepository`` objects bound to a single
transaction. Everything the reconciliation engine reads and writes for one
request goes through one repository, so the whole read-decide-write sequence
commits or rolls back together.
"""
import functools
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from db_models import Contact, ContactUpdate, LinkPrecedence
from db_setup import get_db_connection, init_db, transaction
from errors import Conflict, InvalidInput, StoreUnavailable

logger = logging.getLogger(__name__)

ORDER_BY_SENIORITY = "ORDER BY createdAt ASC, id ASC"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _translate(exc: sqlite3.Error, operation: str) -> StoreUnavailable:
    lost_race = isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc)
    return StoreUnavailable(f"Database error in {operation}: {exc}", lost_race=lost_race)


def _store_errors(operation: str):
    """Surface sqlite failures from ``operation`` as StoreUnavailable."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except sqlite3.Error as exc:
                raise _translate(exc, operation) from exc

        return wrapper

    return decorator


def _to_contact(row) -> Contact:
    return Contact.model_validate(dict(row))


class ContactRepository:
    """Contact reads and writes inside one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @_store_errors("find_by_identifiers")
    def find_by_identifiers(self, email: Optional[str] = None, phone: Optional[str] = None) -> List[Contact]:
        clauses = []
        params = []
        if email:
            clauses.append("email = ?")
            params.append(email)
        if phone:
            clauses.append("phoneNumber = ?")
            params.append(phone)
        if not clauses:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({" OR ".join(clauses)})
            {ORDER_BY_SENIORITY}
        """
        return [_to_contact(row) for row in self.conn.execute(query, params)]

    @_store_errors("find_chain")
    def find_chain(self, primary_id: int) -> List[Contact]:
        """Primary first, then its secondaries oldest first."""
        primary = self.conn.execute(
            "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL AND linkPrecedence = 'primary'",
            (primary_id,),
        ).fetchone()
        if not primary:
            return []

        return [_to_contact(primary)] + self.find_secondaries(primary_id)

    @_store_errors("find_secondaries")
    def find_secondaries(self, linked_id: int) -> List[Contact]:
        """Live contacts linked to ``linked_id``, oldest first, even if that contact is deleted."""
        rows = self.conn.execute(
            f"""
            SELECT * FROM Contact
            WHERE linkedId = ? AND deletedAt IS NULL
            {ORDER_BY_SENIORITY}
            """,
            (linked_id,),
        ).fetchall()
        return [_to_contact(row) for row in rows]

    @_store_errors("find_by_id")
    def find_by_id(self, contact_id: int) -> Optional[Contact]:
        row = self.conn.execute(
            "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL", (contact_id,)
        ).fetchone()
        return _to_contact(row) if row else None

    @_store_errors("create")
    def create(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: Optional[int] = None,
    ) -> Contact:
        """Create a new contact"""
        if not email and not phone:
            raise InvalidInput("A contact needs an email or a phone number")

        now = _now()
        cursor = self.conn.execute(
            """
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (phone or None, email or None, linked_id, LinkPrecedence(link_precedence).value, now, now),
        )
        return self._fetch(cursor.lastrowid)

    @_store_errors("update")
    def update(
        self,
        contact_id: int,
        linked_id: Optional[int] = None,
        link_precedence: Optional[LinkPrecedence] = None,
    ) -> Contact:
        if not self._apply(ContactUpdate(id=contact_id, linkedId=linked_id, linkPrecedence=link_precedence)):
            raise Conflict(f"Contact {contact_id} does not exist")
        return self._fetch(contact_id)

    def batch_update(self, updates: List[ContactUpdate]) -> List[Contact]:
        """Apply every update or none of them."""
        if not updates:
            return []

        self.conn.execute("SAVEPOINT batch_update")
        try:
            for item in updates:
                if not self._apply(item):
                    raise Conflict(f"Contact {item.id} vanished during batch update")
        except Conflict:
            self._rollback_savepoint()
            raise
        except sqlite3.IntegrityError as exc:
            self._rollback_savepoint()
            raise Conflict(f"Batch update rejected: {exc}") from exc
        except sqlite3.Error as exc:
            self._rollback_savepoint()
            raise _translate(exc, "batch_update") from exc

        try:
            self.conn.execute("RELEASE SAVEPOINT batch_update")
            return [self._fetch(item.id) for item in updates]
        except sqlite3.Error as exc:
            raise _translate(exc, "batch_update") from exc

    def _apply(self, item: ContactUpdate) -> bool:
        precedence = item.linkPrecedence.value if item.linkPrecedence else None
        cursor = self.conn.execute(
            """
            UPDATE Contact
            SET linkedId = COALESCE(?, linkedId),
                linkPrecedence = COALESCE(?, linkPrecedence),
                updatedAt = ?
            WHERE id = ? AND deletedAt IS NULL
            """,
            (item.linkedId, precedence, _now(), item.id),
        )
        return cursor.rowcount == 1

    def _rollback_savepoint(self):
        self.conn.execute("ROLLBACK TO SAVEPOINT batch_update")
        self.conn.execute("RELEASE SAVEPOINT batch_update")

    def _fetch(self, contact_id: int) -> Contact:
        row = self.conn.execute("SELECT * FROM Contact WHERE id = ?", (contact_id,)).fetchone()
        return _to_contact(row)


class ContactStore:
    """Opens transactional sessions against the contact database."""

    def __init__(self, db_path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    @_store_errors("init_schema")
    def init_schema(self):
        init_db(self.db_path, self.timeout)

    @contextmanager
    def session(self, write: bool = True):
        """Yield a ContactRepository; commit on success, roll back on error."""
        try:
            conn = get_db_connection(self.db_path, self.timeout)
        except sqlite3.Error as exc:
            raise _translate(exc, "connect") from exc

        try:
            with transaction(conn, write=write):
                yield ContactRepository(conn)
        except sqlite3.Error as exc:
            raise _translate(exc, "session") from exc
        finally:
            conn.close()

    def ping(self) -> bool:
        try:
            with self.session(write=False) as repo:
                repo.conn.execute("SELECT 1 FROM Contact LIMIT 1")
            return True
        except StoreUnavailable as exc:
            logger.warning("Store health check failed: %s", exc)
            return False
