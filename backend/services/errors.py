"""
Document lifecycle error taxonomy.

Every error carries a user-facing message, a free-form `details` dict and the
HTTP status the API layer answers with. Nothing here is swallowed: services
raise, the FastAPI handler in server.py renders.
"""

from typing import Optional


class DocumentError(Exception):
    """Base class for all document lifecycle errors"""
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": type(self).__name__,
            "detail": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(DocumentError):
    """Malformed input: bad line item, non-positive payment, unknown method..."""
    status_code = 422


class InvalidLineItem(ValidationError):
    pass


class NotFoundError(DocumentError):
    """Document missing, or owned by another tenant"""
    status_code = 404


class InvalidStateError(DocumentError):
    """Transition or conversion attempted outside the allowed source status"""
    status_code = 409


class AlreadyConvertedError(DocumentError):
    status_code = 409


class ImmutableDocumentError(DocumentError):
    """Edit or delete attempted on a converted, paid or cancelled document"""
    status_code = 409


class NumberAllocationFailed(DocumentError):
    status_code = 503
    retryable = True


class ConcurrentModificationError(DocumentError):
    """Optimistic write lost against concurrent writers too many times"""
    status_code = 409
    retryable = True
