"""Custom exceptions for watchman."""

from __future__ import annotations


class WatchmanError(Exception):
    """Base exception for all watchman errors."""


class InvalidRepositoryReferenceError(WatchmanError, ValueError):
    """Raised when a repository URL is not of the form ``{host}/{owner}/{repo}``."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"invalid repository reference: {url!r}")


class UnsupportedHostError(WatchmanError, ValueError):
    """Raised when a repository URL points at a host the collector cannot query."""

    def __init__(self, url: str, host: str):
        self.url = url
        self.host = host
        super().__init__(f"unsupported repository host {host!r} in {url!r}")


class CollectionFailedError(WatchmanError):
    """Transport, authentication or parse failure while reading from the remote source."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message)


class StoreError(WatchmanError):
    """Raised when the watermark or dedup store cannot be read or written."""


class NotifyError(WatchmanError):
    """Raised when an alert could not be delivered to its sink."""


class BusError(WatchmanError):
    """Raised when a message cannot be published."""


class MessageDecodeError(WatchmanError, ValueError):
    """Raised when a pipeline payload does not decode into the expected message."""
