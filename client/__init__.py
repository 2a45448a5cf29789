from client.coordinator import ImageFile, PersistenceCoordinator
from client.errors import InvalidRecordError, RemoteError, StorageError, TelemedError

__all__ = [
    "ImageFile",
    "PersistenceCoordinator",
    "InvalidRecordError",
    "RemoteError",
    "StorageError",
    "TelemedError",
]
