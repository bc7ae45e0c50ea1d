class StorageError(Exception):
    """Base class for storage failures callers are expected to handle."""


class DuplicateLoginError(StorageError):
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username already exists: {username}")


class StorageUnavailableError(StorageError):
    """Raised when the durable backend fails and fallback is disabled."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage unavailable during {operation}")


class AnalyzerError(Exception):
    def __init__(self, reason: str, details: dict = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)
