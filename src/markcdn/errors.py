"""Structured error classes for markcdn.

Every failure in the image pipeline is scoped to a single image reference.
The hierarchy tells the caller whether a failure is worth retrying.

Error Hierarchy:
    MarkcdnError (base)
    ├── ConfigurationError (invalid max width / breakpoints, fatal per image)
    │   └── MissingCredentialsError (pubkey/secret key not configured)
    └── UploadError (remote asset store failure, not retried)
        └── TransientNetworkError (retried by the upload coordinator)
            ├── DnsResolutionError
            └── UploadThrottledError (HTTP 429, carries retry_after)

Usage:
    try:
        asset = await client.upload_file(data, file_name="a.png")
    except UploadThrottledError as e:
        await asyncio.sleep(math.ceil(e.retry_after))
    except DnsResolutionError:
        ...
    except UploadError as e:
        logger.warning(f"Upload failed: {e}")
"""

from __future__ import annotations


class MarkcdnError(Exception):
    """Base exception for all markcdn errors."""


class ConfigurationError(MarkcdnError, ValueError):
    """Raised when an option value makes image processing impossible."""


class MissingCredentialsError(ConfigurationError):
    """Raised when the Uploadcare keys required by an operation are absent."""

    def __init__(self, *names: str) -> None:
        self.names = names
        if len(names) == 1:
            message = f"{names[0]} is a required option."
        else:
            message = f"{' and '.join(names)} are required options."
        super().__init__(message)


class UploadError(MarkcdnError):
    """Error raised by the remote asset store.

    Attributes:
        status_code: HTTP status code, if the server answered at all
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(UploadError):
    """A failure that may succeed when the request is repeated."""


class DnsResolutionError(TransientNetworkError):
    """The upload host name could not be resolved."""


class UploadThrottledError(TransientNetworkError):
    """The remote store answered HTTP 429.

    Attributes:
        retry_after: Seconds the server asked us to wait before retrying
    """

    def __init__(self, retry_after: float, message: str | None = None) -> None:
        super().__init__(
            message or f"Upload throttled, retry after {retry_after}s",
            status_code=429,
        )
        self.retry_after = retry_after
