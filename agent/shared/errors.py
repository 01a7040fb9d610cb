"""
Error taxonomy for the PostCare call scheduling system

User-initiated operations raise these directly so the API layer can map them
to responses. Background jobs catch them per schedule/patient and log them.
"""
from typing import Optional


class PostOpError(Exception):
    """Base class for all scheduling errors"""

    status_code = 400

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_dict(self) -> dict:
        payload = {"success": False, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        return payload


class ValidationError(PostOpError):
    """Missing or malformed required input"""


class ParseError(ValidationError):
    """A time expression could not be resolved to a future instant"""


class ConfigurationError(PostOpError):
    """Provider credentials or IDs are missing"""


class ProviderError(PostOpError):
    """An external voice or LLM provider returned a non-success response"""

    status_code = 502


class InvalidStateError(PostOpError):
    """Operation attempted on a schedule that is not in the required state"""

    status_code = 409


class NotFoundError(PostOpError):
    """Referenced patient, schedule or call log does not exist or is not owned by the caller"""

    status_code = 404
