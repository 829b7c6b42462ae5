"""Exceptions and warnings raised by Bhandara Finder."""


class BhandaraError(Exception):
    """Base class for all Bhandara Finder errors"""
    pass


class StorageError(BhandaraError):
    """Raised when the key-value storage cannot be used"""
    pass


class StorageReadError(StorageError):
    """Raised when a stored value cannot be read"""
    pass


class StorageWriteError(StorageError):
    """Raised when a value cannot be written to storage"""
    pass


class StorageQuotaExceededError(StorageWriteError):
    """Raised when a write would exceed the storage quota"""

    def __init__(self, key: str, required_bytes: int, quota_bytes: int):
        self.key = key
        self.required_bytes = required_bytes
        self.quota_bytes = quota_bytes
        super().__init__(
            f"Writing '{key}' needs {required_bytes} bytes, quota is {quota_bytes} bytes"
        )


class ImageEncodingError(BhandaraError):
    """Raised when an image cannot be turned into (or read from) a data URI"""
    pass


class SubmissionError(BhandaraError):
    """Raised when a new event submission fails validation"""

    def __init__(self, result):
        self.result = result
        super().__init__(str(result))


class PersistenceWarning(UserWarning):
    """Issued when changes were kept in memory but could not be saved"""
    pass
