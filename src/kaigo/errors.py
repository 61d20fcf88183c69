"""Exception types shared across kaigo."""


class KaigoError(Exception):
    """Base class for all kaigo errors."""


class RecordValidationError(KaigoError):
    """A field value was rejected before reaching the store."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class UnknownRecordError(KaigoError):
    """The record id is not present in the active snapshot."""


class StoreError(KaigoError):
    """The remote record store rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
