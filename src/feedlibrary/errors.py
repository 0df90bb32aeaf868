from __future__ import annotations


class FeedLibraryError(Exception):
    pass


class FormatError(FeedLibraryError):
    """Raised when a document is neither RSS nor Atom."""


class NetworkError(FeedLibraryError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ClientError(NetworkError):
    """HTTP 4xx or an unusable URL. Never retried."""


class StorageError(FeedLibraryError):
    pass


class ConfigError(ValueError):
    pass
