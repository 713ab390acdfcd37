"""Error taxonomy for identity reconciliation.

Every failure the engine or the store can surface is one of the subclasses
below. The HTTP layer maps them by class, so adding a subclass means adding
a mapping in ``main.ERROR_STATUS``.
"""


class ReconciliationError(Exception):
    """Base class for all reconciliation failures."""

    code = "reconciliation_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(ReconciliationError):
    """Neither email nor phone supplied, or an identifier is malformed."""

    code = "invalid_input"


class NotFound(ReconciliationError):
    code = "not_found"


class EmptyChain(ReconciliationError):
    """Consolidation attempted over zero members. Indicates a bug."""

    code = "empty_chain"


class StoreUnavailable(ReconciliationError):
    """The store timed out, lost its connection or rejected a write.

    ``lost_race`` is set when the write was rejected by a uniqueness
    constraint, meaning a concurrent caller created the same record first.
    """

    code = "store_unavailable"
    retryable = True

    def __init__(self, message: str, lost_race: bool = False):
        super().__init__(message)
        self.lost_race = lost_race


class Conflict(ReconciliationError):
    """A batch relink could not be applied in full and was rolled back."""

    code = "conflict"
    retryable = True


ALL_ERRORS = (InvalidInput, NotFound, EmptyChain, StoreUnavailable, Conflict)
