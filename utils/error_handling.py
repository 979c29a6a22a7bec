"""
Error taxonomy for the listing assessment workflow.

Every failure the engine reports is an expected, user-facing outcome:
a malformed payload, a command issued against the wrong state, an
unknown listing or a lost optimistic-concurrency race. Each carries a
category, a structured context and recovery suggestions so the calling
layer can render it as feedback without inspecting message text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time


class ErrorCategory(Enum):
    """
    Categorization of assessment errors.

    VALIDATION: Malformed payload or missing reason, fix the input and resend
    INVALID_TRANSITION: Command not permitted from the listing's current status
    NOT_FOUND: Unknown listing identifier
    CONFLICT: A concurrent writer changed the listing first
    """

    VALIDATION = "validation"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass
class ErrorContext:
    """
    Context information attached to an assessment error.
    """

    operation: str  # The engine command being executed
    listing_id: Optional[str] = None
    seller_id: Optional[str] = None
    current_status: Optional[str] = None
    target_status: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and API responses."""
        return {
            "operation": self.operation,
            "listing_id": self.listing_id,
            "seller_id": self.seller_id,
            "current_status": self.current_status,
            "target_status": self.target_status,
            "timestamp": self.timestamp,
            "additional_data": self.additional_data,
        }


class AssessmentError(Exception):
    """Base class for all errors raised by the assessment workflow."""

    category: ErrorCategory = ErrorCategory.VALIDATION
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        recovery_suggestions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(operation="unknown")
        self.recovery_suggestions = (
            list(recovery_suggestions)
            if recovery_suggestions is not None
            else list(self.default_suggestions)
        )

    def is_recoverable(self) -> bool:
        """None of the workflow errors are process-fatal."""
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and API responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "recoverable": self.is_recoverable(),
            "context": self.context.to_dict(),
            "recovery_suggestions": self.recovery_suggestions,
        }


class ValidationError(AssessmentError):
    """Malformed submission payload or empty rejection/revision reason."""

    category = ErrorCategory.VALIDATION
    default_suggestions = ["Correct the highlighted fields and resend the request"]

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        recovery_suggestions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message, context, recovery_suggestions)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.errors:
            result["errors"] = self.errors
        return result


class InvalidTransitionError(AssessmentError):
    """Command invoked while the listing is not in a state that permits it."""

    category = ErrorCategory.INVALID_TRANSITION
    default_suggestions = [
        "Re-fetch the listing and choose a command valid for its current status"
    ]


class NotFoundError(AssessmentError):
    """Unknown listing identifier."""

    category = ErrorCategory.NOT_FOUND
    default_suggestions = ["Check the listing identifier"]


class ConcurrencyConflictError(AssessmentError):
    """Optimistic check failed because another writer changed the listing first."""

    category = ErrorCategory.CONFLICT
    default_suggestions = [
        "Reload the listing and re-evaluate the command against its new status"
    ]


def pydantic_errors_to_list(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce pydantic error dicts to JSON-safe location/message pairs."""
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": error.get("type", ""),
        }
        for error in errors
    ]
