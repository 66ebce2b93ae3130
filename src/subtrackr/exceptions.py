"""Custom exceptions for SubTrackr."""


class SubTrackrError(Exception):
    """Base exception for all SubTrackr errors."""

    pass


class ConfigurationError(SubTrackrError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidCycleError(SubTrackrError):
    """Raised when a billing cycle cannot produce renewal dates."""

    pass


class NotFoundError(SubTrackrError):
    """Raised when a subscription id is unknown to the local store."""

    def __init__(self, record_id: str, message: str | None = None):
        self.record_id = record_id
        super().__init__(message or f"Subscription {record_id} not found")


class StorageUnavailableError(SubTrackrError):
    """Raised when the local database cannot be read or written.

    Nothing is committed when this is raised; the caller should retry or
    surface the failure to the user.
    """

    pass


class CurrencyConversionError(SubTrackrError):
    """Raised when no exchange rate is known for a currency pair."""

    def __init__(self, source: str, target: str, message: str | None = None):
        self.source = source
        self.target = target
        super().__init__(message or f"No exchange rate from {source} to {target}")


class SyncUnavailableError(SubTrackrError):
    """Raised when the remote store cannot be reached.

    Offline operation is supported, so callers retry on a timer or on
    reconnect instead of reporting this as a hard failure.
    """

    pass


class SyncCancelledError(SubTrackrError):
    """Raised when a sync run is cancelled at a transaction boundary."""

    pass


class APIError(SubTrackrError):
    """Base class for API-related errors."""

    pass


class RemoteStoreError(APIError):
    """Raised when the remote store rejects a request or sends a malformed reply."""

    def __init__(self, status_code: int | None, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"Remote store request failed ({status_code})")
