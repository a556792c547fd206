"""
Error taxonomy of the purchase / entitlement flow.
HTTP mapping lives in bookvault.main (exception handlers).
"""


class BookvaultError(Exception):
    """Base error; subclasses carry the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str = "", **detail) -> None:
        super().__init__(message or self.__class__.__name__)
        self.detail = detail


class BookNotFound(BookvaultError):
    status_code = 404


class InvalidInvoiceAmount(BookvaultError):
    status_code = 422


class InvoiceCreationFailed(BookvaultError):
    """Payment rail unreachable or rejected the invoice. Caller may retry."""

    status_code = 502


class PaymentNotConfirmed(BookvaultError):
    """Payment could not be verified as settled for this buyer/book. Fatal for the call."""

    status_code = 402


class NotEntitled(BookvaultError):
    status_code = 403


class ContentCorrupted(BookvaultError):
    """Decryption failed; data-integrity incident, never retried automatically."""

    status_code = 500


class StorageUnavailable(BookvaultError):
    status_code = 503


class ChainUnavailable(BookvaultError):
    """Chain RPC failure. retryable=False for explicit rejections (JSON-RPC error object, 4xx)."""

    status_code = 503

    def __init__(self, message: str = "", *, retryable: bool = True, **detail) -> None:
        super().__init__(message, **detail)
        self.retryable = retryable
