from typing import Any, Dict, List, Optional


class BondDirectoryException(Exception):
    """Base exception for the bond directory ingestion core."""

    error_code_default: str = "BOND_DIRECTORY_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.error_code_default
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logs and run summaries."""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "error_type": type(self).__name__,
            "details": self.details
        }


class UpstreamException(BondDirectoryException):
    """Exception for failures talking to the upstream data source."""
    error_code_default = "UPSTREAM_ERROR"


class NotFoundError(UpstreamException):
    """
    Upstream answered 404.

    Names the non-fatal case of the failure taxonomy. The executor returns an
    empty record list for a 404 and never raises this.
    """
    error_code_default = "NOT_FOUND"


class SessionExpiredError(UpstreamException):
    """Session cookies are expired and could not be refreshed."""
    error_code_default = "SESSION_EXPIRED"


class CircuitOpenError(UpstreamException):
    """Circuit breaker is open; the upstream was not contacted."""
    error_code_default = "CIRCUIT_OPEN"


class TransportError(UpstreamException):
    """Transport or server failure that survived the retry budget."""
    error_code_default = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, error_code=error_code, details=details)


class DecodeError(UpstreamException):
    """Payload could not be decoded into records. Not retryable."""
    error_code_default = "DECODE_ERROR"


class RecordValidationError(BondDirectoryException):
    """A transformed record is missing its required identifier."""
    error_code_default = "VALIDATION_ERROR"


class ConfigurationException(BondDirectoryException):
    """Exception for configuration-related errors."""
    error_code_default = "CONFIGURATION_ERROR"


class SyncCancelledError(BondDirectoryException):
    """A long-running fetch observed the cancellation signal."""
    error_code_default = "SYNC_CANCELLED"

    def __init__(
        self,
        message: str,
        partial_records: Optional[List[Dict[str, Any]]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.partial_records = partial_records or []
        super().__init__(message, details=details)
