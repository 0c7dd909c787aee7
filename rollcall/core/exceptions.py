"""Domain exceptions.

ValidationError blocks a user action outright. The others degrade to a
visible notification for observers.
"""


class RollcallError(Exception):
    """Base class for all rollcall errors."""


class ValidationError(RollcallError, ValueError):
    """Malformed input, rejected before any store write."""


class NotFoundError(RollcallError, LookupError):
    """The targeted session, participant or record no longer exists."""


class StoreUnavailable(RollcallError):
    """Transient failure of the real-time store."""


class QueryError(RollcallError):
    """The store cannot serve a query as written (e.g. a missing index)."""


class ChallengeClosedError(RollcallError):
    """A code was submitted while the verification challenge is not accepting input."""
