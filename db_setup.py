import logging
import sqlite3
from contextlib import contextmanager

logger = logging.getLogger(__name__)

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS Contact (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        phoneNumber TEXT,
        email TEXT,
        linkedId INTEGER,
        linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
        createdAt DATETIME NOT NULL,
        updatedAt DATETIME NOT NULL,
        deletedAt DATETIME,
        FOREIGN KEY (linkedId) REFERENCES Contact (id),
        CHECK (email IS NOT NULL OR phoneNumber IS NOT NULL),
        CHECK (
            (linkPrecedence = 'primary' AND linkedId IS NULL)
            OR (linkPrecedence = 'secondary' AND linkedId IS NOT NULL)
        )
    )
    ''',
    "CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)",
    "CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)",
    "CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)",
    # Two callers racing on the same unseen identifiers cannot both create a primary
    '''
    CREATE UNIQUE INDEX IF NOT EXISTS ux_contact_primary_identity
    ON Contact (COALESCE(email, ''), COALESCE(phoneNumber, ''))
    WHERE linkPrecedence = 'primary' AND deletedAt IS NULL
    ''',
]


def get_db_connection(db_path, timeout: float = 5.0):
    # Autocommit mode: transactions are opened explicitly by transaction()
    conn = sqlite3.connect(
        str(db_path),
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path, timeout: float = 5.0):
    conn = get_db_connection(db_path, timeout)
    try:
        with transaction(conn):
            for statement in SCHEMA:
                conn.execute(statement)
    finally:
        conn.close()
    logger.info("Contact schema ready at %s", db_path)


@contextmanager
def transaction(conn, write: bool = True):
    """Run the block in one transaction.

    Write transactions take the database write lock up front (BEGIN IMMEDIATE)
    so a read-then-write sequence inside the block cannot interleave with
    another writer.
    """
    conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
