"""
Case service error types.

Repository operations raise only these, never raw database exceptions, so the
API and the view-state layer can tell "missing" from "not yours" from "broken".
"""

from typing import Dict, Optional


class CaseServiceError(Exception):
    """Base exception for the case service."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(CaseServiceError):
    """No signed-in identity."""

    code = "unauthenticated"

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class NotFound(CaseServiceError):
    """Case document does not exist."""

    code = "not_found"

    def __init__(self, message: str = "Case not found"):
        super().__init__(message)


class Forbidden(CaseServiceError):
    """Identity mismatch or missing permission flag."""

    code = "forbidden"

    OWNERSHIP = "ownership"
    WRITE_PERMISSION = "write_permission"
    EXPORT_PERMISSION = "export_permission"

    def __init__(self, message: str, reason: str = OWNERSHIP):
        super().__init__(message)
        self.reason = reason


class ValidationError(CaseServiceError):
    """Input rejected before it reached the store."""

    code = "validation_error"

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}


class BackendError(CaseServiceError):
    """Unclassified store failure; message is the store's own."""

    code = "backend_error"
