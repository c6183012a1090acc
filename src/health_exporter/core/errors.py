"""
Exception taxonomy for the export engine.

Only PermissionDeniedError and persistent ProviderUnavailableError are meant
to reach an operator. The others are handled inside a run or by retrying
the whole invocation later.
"""


class ExportError(Exception):
    """Base class for all export engine errors."""

    retryable: bool = False


class PermissionDeniedError(ExportError):
    """
    Required read permissions are missing.

    Fatal for the current run and not retried automatically.
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class ProviderUnavailableError(ExportError):
    """
    The provider could not be reached or refused service.

    The whole invocation should be retried later; no state was mutated.
    """

    retryable = True

    def __init__(self, message: str, endpoint: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class TransientIOError(ProviderUnavailableError):
    """A network or I/O hiccup expected to clear on its own."""


class CursorExpiredError(ExportError):
    """The stored change cursor was rejected as expired or invalid."""


class ReadFailure(ExportError):
    """Reading one record type failed. Recovered locally as an empty result."""

    def __init__(self, record_type: str, cause: BaseException):
        super().__init__(f"Failed to read {record_type}: {cause}")
        self.record_type = record_type
        self.cause = cause


class NormalizationError(ExportError):
    """A provider record could not be mapped to the normalized shape."""


class DeliveryError(ExportError):
    """A delivery sink failed. The cursor is not advanced."""

    retryable = True

    def __init__(self, message: str, sink: str | None = None):
        super().__init__(message)
        self.sink = sink


class ConfigError(ExportError):
    """Invalid or missing configuration."""
