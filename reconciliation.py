"""Identity reconciliation over contact chains.

A chain is one primary contact plus the secondaries whose ``linkedId`` points
at it. ``ReconciliationEngine.resolve`` finds every chain touched by an
email/phone pair, merges them under the oldest primary when the pair bridges
more than one, records any new identifier as a secondary, and returns the
consolidated view of the resulting chain.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from contact_store import ContactRepository, ContactStore
from db_models import EMAIL_PATTERN, Contact, ContactResponse, ContactUpdate, LinkPrecedence
from errors import EmptyChain, InvalidInput, NotFound, StoreUnavailable

logger = logging.getLogger(__name__)


def consolidate(members: Sequence[Contact]) -> ContactResponse:
    """Summarise a chain given its members in canonical order.

    The primary's own email and phone lead their lists; everything else keeps
    member order with duplicates dropped.
    """
    if not members:
        raise EmptyChain("Cannot consolidate an empty contact chain")

    primary = next((c for c in members if c.is_primary), None)
    if primary is None:
        raise EmptyChain(f"Chain of contacts {[c.id for c in members]} has no primary")

    return ContactResponse(
        primaryContactId=primary.id,
        emails=_ordered_unique(primary.email, (c.email for c in members)),
        phoneNumbers=_ordered_unique(primary.phoneNumber, (c.phoneNumber for c in members)),
        secondaryContactIds=[c.id for c in members if c.id != primary.id],
    )


def _ordered_unique(first: Optional[str], values: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(v for v in [first, *values] if v))


def select_master(primaries: Iterable[Contact]) -> Contact:
    """Oldest primary wins; equal timestamps fall back to the smaller id."""
    return min(primaries, key=lambda c: c.seniority)


def needs_new_secondary(members: Sequence[Contact], email: Optional[str], phone: Optional[str]) -> bool:
    if not email and not phone:
        return False

    if any(c.email == email and c.phoneNumber == phone for c in members):
        return False

    new_email = bool(email) and all(c.email != email for c in members)
    new_phone = bool(phone) and all(c.phoneNumber != phone for c in members)
    return new_email or new_phone


class ReconciliationEngine:
    def __init__(self, store: ContactStore, retries: int = 1):
        self.store = store
        self.retries = retries

    def resolve(self, email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
        """Consolidate the identity behind ``email``/``phone``, recording anything new."""
        email = email or None
        phone = phone or None
        if not email and not phone:
            raise InvalidInput("Either email or phoneNumber must be provided")
        if email and not EMAIL_PATTERN.match(email):
            raise InvalidInput(f"Malformed email address: {email!r}")

        attempt = 0
        while True:
            try:
                with self.store.session() as repo:
                    return self._resolve(repo, email, phone)
            except StoreUnavailable as exc:
                # Another caller committed the same new identity first; the
                # fresh match read will now see it.
                if not exc.lost_race or attempt >= self.retries:
                    raise
                attempt += 1
                logger.warning("Lost race resolving email=%s phone=%s, retrying (%d)", email, phone, attempt)

    def get_chain(self, contact_id: int) -> ContactResponse:
        if contact_id <= 0:
            raise InvalidInput("Contact id must be a positive integer")

        with self.store.session(write=False) as repo:
            contact = repo.find_by_id(contact_id)
            if contact is None:
                raise NotFound(f"Contact {contact_id} not found")
            primary_id = contact.primary_id
            members = repo.find_chain(primary_id) if primary_id is not None else []

        return consolidate(members)

    def _resolve(self, repo: ContactRepository, email, phone) -> ContactResponse:
        matches = repo.find_by_identifiers(email, phone)
        chains, orphans = self._load_chains(repo, matches)

        if not chains:
            contact = repo.create(email, phone, LinkPrecedence.PRIMARY)
            logger.info("Created primary contact %s", contact.id)
            members = [contact]
        elif len(chains) == 1:
            members = list(chains[0])
        else:
            members = self._merge(repo, chains)

        if orphans:
            members = self._adopt(repo, members, orphans)

        primary = members[0]
        if needs_new_secondary(members, email, phone):
            created = repo.create(email, phone, LinkPrecedence.SECONDARY, linked_id=primary.id)
            logger.info("Created secondary contact %s under primary %s", created.id, primary.id)
            members.append(created)

        return consolidate(members)

    def _load_chains(self, repo: ContactRepository, matches: Iterable[Contact]):
        """Return the live chains touched by ``matches`` and any orphaned secondaries.

        An orphan is a live secondary whose primary is soft-deleted or missing.
        Every live sibling under the same missing primary is an orphan too.
        """
        chains = []
        orphans = {}
        seen = set()
        for contact in matches:
            primary_id = contact.primary_id
            if primary_id is None:
                logger.warning("Secondary contact %s has no linkedId", contact.id)
                orphans[contact.id] = contact
                continue
            if primary_id in seen:
                continue
            seen.add(primary_id)

            chain = repo.find_chain(primary_id)
            if not chain:
                logger.warning("Primary %s of contact %s is missing", primary_id, contact.id)
                orphans.update((c.id, c) for c in repo.find_secondaries(primary_id))
                continue
            chains.append(chain)
        return chains, list(orphans.values())

    def _adopt(self, repo: ContactRepository, members: List[Contact], orphans: List[Contact]) -> List[Contact]:
        """Relink orphaned secondaries to the primary of ``members``."""
        primary = members[0]
        relinked = repo.batch_update([
            ContactUpdate(id=orphan.id, linkedId=primary.id, linkPrecedence=LinkPrecedence.SECONDARY)
            for orphan in orphans
        ])
        logger.info("Adopted orphaned contacts %s into %s", [c.id for c in relinked], primary.id)

        secondaries = sorted(members[1:] + relinked, key=lambda c: c.seniority)
        return [primary] + secondaries

    def _merge(self, repo: ContactRepository, chains: List[List[Contact]]) -> List[Contact]:
        """Fold every chain into the one with the oldest primary.

        Each other chain's primary and all of its secondaries are relinked
        straight to the master in one batch so no secondary is left pointing
        at a demoted primary.
        """
        master = select_master(chain[0] for chain in chains)
        updates = []
        demoted = []
        for chain in chains:
            if chain[0].id == master.id:
                master_chain = chain
                continue
            demoted.append(chain[0].id)
            updates.extend(
                ContactUpdate(id=member.id, linkedId=master.id, linkPrecedence=LinkPrecedence.SECONDARY)
                for member in chain
            )

        relinked = repo.batch_update(updates)
        logger.info("Merged primaries %s into %s (%d contacts relinked)", demoted, master.id, len(relinked))

        secondaries = sorted(master_chain[1:] + relinked, key=lambda c: c.seniority)
        return [master_chain[0]] + secondaries
