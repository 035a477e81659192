"""
Error taxonomy for the assistant core.

Every error knows how to render itself as an operation result so the
operation router can convert any raised condition into
``{"success": False, "error": ...}`` without leaking internals to the user.
"""

from typing import Any, Dict, List, Optional


class AssistantError(Exception):
    """Base class for conditions surfaced to the user as a failed operation."""

    error_type = "assistant_error"

    def __init__(self, message: str, **payload: Any):
        super().__init__(message)
        self.message = message
        self.payload = payload

    @property
    def user_message(self) -> str:
        return self.message

    def to_result(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.user_message,
            "error_type": self.error_type,
        }
        result.update(self.payload)
        return result


class ValidationError(AssistantError):
    """Malformed or missing fields. Shown verbatim, never retried."""

    error_type = "validation_error"


class AmbiguousTargetError(AssistantError):
    """A lookup that needed exactly one match found zero or several."""

    error_type = "ambiguous_target"

    def __init__(self, message: str, candidates: Optional[List[Dict[str, Any]]] = None, **payload: Any):
        super().__init__(message, candidates=candidates or [], **payload)
        self.candidates = candidates or []


class PastEventRejected(AssistantError):
    """The temporal guard refused to create an event that starts in the past."""

    error_type = "past_event_rejected"


class NotFoundError(AssistantError):
    """An identifier did not resolve to a record owned by the user."""

    error_type = "not_found"


class StorageError(AssistantError):
    """The storage boundary failed. Details are logged, the user sees a generic message."""

    error_type = "storage_error"

    def __init__(self, message: str, operation: str = "operation", **payload: Any):
        super().__init__(message, **payload)
        self.operation = operation

    @property
    def user_message(self) -> str:
        return f"The {self.operation} could not be completed because the data store is unavailable. Please try again in a moment."


class ExternalServiceError(AssistantError):
    """The language model or a third-party provider failed."""

    error_type = "external_service_error"
