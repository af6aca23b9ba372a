"""Error taxonomy shared by the fetcher, parser, store and importer."""


class TrackerError(Exception):
    """
    Base class for every error the tracker surfaces to callers.

    `kind` is a stable, display-friendly name for the error class; `str(exc)`
    is the human message. Callers show both and never a traceback.
    """

    kind = "TrackerError"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class FetchError(TrackerError):
    """Non-success response that fits no narrower category."""

    kind = "FetchError"

    def __init__(self, message: str = "", url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class PageNotFound(FetchError):
    """Page is absent (404/410). Ends pagination."""

    kind = "NotFound"


class NetworkTransient(FetchError):
    """Timeout, connection failure or 5xx. Retryable with backoff."""

    kind = "NetworkTransient"


class NetworkBlocked(FetchError):
    """Rate limited, forbidden or soft-blocked. Aborts the run, never retried."""

    kind = "NetworkBlocked"


class MalformedPage(TrackerError):
    """Expected structural anchors are missing from a page or entry."""

    kind = "MalformedPage"


class InvalidUsername(TrackerError):
    kind = "InvalidUsername"


class StorageError(TrackerError):
    """The local store could not complete an operation."""

    kind = "StorageError"


class ImportInProgress(TrackerError):
    """Another import is already running against the same store."""

    kind = "ImportInProgress"
