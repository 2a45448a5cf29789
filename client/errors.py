from typing import Optional


class TelemedError(Exception):
    """Base class for client-side persistence errors."""


class RemoteError(TelemedError):
    """
    The backend could not satisfy a call: network failure, timeout, non-2xx
    status or a malformed body. The coordinator recovers from it locally.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidRecordError(TelemedError):
    """A payload failed its collection schema; neither store was touched."""


class StorageError(TelemedError):
    """Durable local storage could not be read or written."""
