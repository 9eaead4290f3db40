"""Custom exception hierarchy for Threadloom."""

from typing import Optional


class ThreadloomError(Exception):
    """Base exception for all Threadloom errors."""

    def __init__(self, message: str = "An error occurred in Threadloom"):
        self.message = message
        super().__init__(self.message)


class NetworkError(ThreadloomError):
    """Base exception for network-related errors."""

    def __init__(self, message: str = "A network error occurred"):
        super().__init__(message)


class FetchError(NetworkError):
    """Error fetching JSON from a remote host."""

    def __init__(self, message: str = "Failed to fetch data from remote host",
                 status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(FetchError):
    """HTTP 429 - Rate limit exceeded."""

    def __init__(self, message: str = "Remote host rate limit exceeded"):
        super().__init__(message, status_code=429)


class NotFoundError(FetchError):
    """HTTP 404 - Post, context or item does not exist on this host."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ForbiddenError(FetchError):
    """HTTP 401/403 - Host refused the request."""

    def __init__(self, message: str = "Access denied by remote host", status_code: int = 403):
        super().__init__(message, status_code=status_code)


class ThreadError(ThreadloomError):
    """Base exception for thread assembly errors."""

    def __init__(self, message: str = "Could not assemble thread"):
        super().__init__(message)


class ThreadResolutionError(ThreadError):
    """A fetch the assembly cannot do without has failed."""

    def __init__(self, message: str = "Could not resolve thread"):
        super().__init__(message)


class StructuralError(ThreadError):
    """Assembled data contradicts itself (no unique root, missing parent)."""

    def __init__(self, message: str = "Assembled thread is inconsistent"):
        super().__init__(message)


class DataError(ThreadloomError):
    """Base exception for data-related errors."""

    def __init__(self, message: str = "A data error occurred"):
        super().__init__(message)


class PayloadError(DataError):
    """Remote JSON does not have the expected shape."""

    def __init__(self, message: str = "Unexpected payload format"):
        super().__init__(message)


class ConfigError(DataError):
    """Configuration is invalid or missing."""

    def __init__(self, message: str = "Configuration error"):
        super().__init__(message)
