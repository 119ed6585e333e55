"""Errors reported to callers of the B-Perks client.

Application errors are final: retrying cannot change the outcome, so they
are raised to the caller and never queued for replay.
"""


class BPerksError(Exception):
    """Base class for client errors."""


class ApplicationError(BPerksError):
    """A request the platform will never accept as-is."""


class InsufficientPointsError(ApplicationError):
    def __init__(self, available: int, required: int):
        super().__init__(f"Insufficient points: have {available}, need {required}")
        self.available = available
        self.required = required


class OutOfStockError(ApplicationError):
    pass


class DuplicateUsernameError(ApplicationError):
    pass


class RecordNotFoundError(ApplicationError):
    pass


class DuplicateRecordError(ApplicationError):
    pass


class NotAuthorizedError(ApplicationError):
    pass


class RequestRejectedError(ApplicationError):
    """The server answered a mutation with a 4xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Request rejected ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class OfflineError(BPerksError):
    """The operation needs the server, and the server can't be reached."""
