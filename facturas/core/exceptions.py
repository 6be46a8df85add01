"""
FACTURAS-SV — Error taxonomy
Every error is recoverable at the document level and carries enough
detail to render a user-facing message.
"""

from typing import Optional


class DocumentError(Exception):
    """Base class for lifecycle errors."""
    code = "DOCUMENT_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(self.message)


class ValidationError(DocumentError):
    """Missing items/customer or malformed fields. Never sent to the network."""
    code = "VALIDATION_ERROR"
    status_code = 422


class StateError(DocumentError):
    """Transition not allowed from the current status."""
    code = "INVALID_STATE"
    status_code = 409


class PolicyError(DocumentError):
    """Invalidation refused by the policy. Document state unchanged."""
    code = "POLICY_REJECTED"
    status_code = 422


class CertificateRequired(DocumentError):
    """Company has no credentials or certificate key configured."""
    code = "CERTIFICATE_REQUIRED"
    status_code = 428


class SubmissionError(DocumentError):
    """Network failure, timeout or rejection by the authority."""
    code = "SUBMISSION_FAILED"

    def __init__(self, message: str, status_code: int = 502,
                 cause: Optional[BaseException] = None,
                 observaciones: Optional[list] = None,
                 mh_response: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause
        self.observaciones = observaciones or []
        self.mh_response = mh_response or {}


class IncompleteAcceptanceError(DocumentError):
    """MH reported success but omitted required identifiers."""
    code = "INCOMPLETE_ACCEPTANCE"
    status_code = 502

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class DocumentNotFound(DocumentError):
    code = "NOT_FOUND"
    status_code = 404
