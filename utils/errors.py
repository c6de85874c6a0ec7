from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Categories every provider/network failure is converted to."""
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    VENDOR_SERVER_ERROR = "vendor_server_error"
    CANCELED = "canceled"
    PARSE_FAILURE = "parse_failure"
    NO_CONTENT = "no_content"
    GENERIC = "generic"


def kind_for_status(status_code: int) -> ErrorKind:
    """Maps a vendor HTTP status code to an ErrorKind."""
    if status_code == 401:
        return ErrorKind.INVALID_CREDENTIAL
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 413:
        return ErrorKind.PAYLOAD_TOO_LARGE
    if status_code >= 500:
        return ErrorKind.VENDOR_SERVER_ERROR
    return ErrorKind.GENERIC


class ProviderError(Exception):
    """
    Raised by adapters, the router and the stage agents.

    Carries a user-readable message; `kind` tells the orchestrator how to
    report it without looking at vendor status codes again.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.provider = provider
        self.status_code = status_code

    def __repr__(self):
        return f"ProviderError(kind={self.kind.value!r}, provider={self.provider!r}, message={self.message!r})"
