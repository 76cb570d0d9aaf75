"""Exception types shared across the p2 proxy."""

from __future__ import annotations


class P2ProxyError(Exception):
    """Base class for proxy errors."""


class ClassificationError(P2ProxyError):
    """Raised when a request path matches no known p2 asset shape."""

    def __init__(self, path: str, message: str = "unsupported asset path") -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class MalformedMetadataError(P2ProxyError):
    """Raised when XML, manifest or archive content cannot be parsed."""


class UpstreamUnavailable(P2ProxyError):
    """Raised for network failures and server errors from the remote repository.

    `retryable` is False for refusals that a retry will not change, such as 403.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class UpstreamNotFound(P2ProxyError):
    """Raised when the remote repository confirms an asset does not exist."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Not found upstream: {url}")
        self.url = url
