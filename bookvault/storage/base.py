from abc import ABC, abstractmethod


class BlobStorage(ABC):
    """Content-addressed blob store; read path only."""

    @abstractmethod
    def get_blob(self, blob_id: str) -> bytes:
        """Return raw blob bytes; raises StorageUnavailable on any failure."""
        raise NotImplementedError
