class StorageError(Exception):
    """An object store call failed."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.message = message
        self.detail = detail


class OrderStoreError(StorageError):
    """Reading or writing the order document failed."""


class UploadRejected(Exception):
    """A presign batch failed validation. The whole batch is refused."""


class AuthConfigError(Exception):
    """ADMIN_PASSWORD or SESSION_SECRET is not configured."""
