"""
Error Taxonomy Module

Classified failures raised by the back-office core. Every error carries a
stable code so callers can report it without inspecting message text.
"""

from typing import Any, Dict, Optional


class BackOfficeError(Exception):
    """Base exception for the back-office core"""

    code = "back_office_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"error_code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(BackOfficeError, ValueError):
    """Input is missing, non-positive, or otherwise malformed"""

    code = "validation_error"


class NotFoundError(BackOfficeError, LookupError):
    """Account, loan, schedule entry or record does not exist"""

    code = "not_found"


class StateError(BackOfficeError):
    """Operation is not valid for the entity's current lifecycle state"""

    code = "invalid_state"


class InsufficientFundsError(BackOfficeError):
    """Withdrawal exceeds the available balance"""

    code = "insufficient_funds"


class ConsistencyError(BackOfficeError):
    """A multi-step persistence sequence failed and was rolled back"""

    code = "consistency_error"


class AuthorizationError(BackOfficeError):
    """Actor lacks the capability required for the operation"""

    code = "not_authorized"
