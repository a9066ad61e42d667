"""
Centralized error code registry with specifications.

Single source of truth for the engine's failure taxonomy: English messages,
error categories, retryability flags and the recommended action shown to
whoever reviews a failed document.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ErrorSpec:
    """Specification for a single error type."""

    code: str
    int_code: int
    message: str
    category: str  # "informational", "client_error" or "server_error"
    retryable: bool
    recommended_action: str


MANUAL_REVIEW_ACTION = "Processing failed - manual review required"


class ErrorCode(Enum):
    """Centralized error code registry.

    Usage:
        spec = ErrorCode.get_spec("ASSISTED_ANALYSIS_TIMEOUT")
        print(spec.message, spec.category, spec.retryable)
    """

    # ========================================
    # INFORMATIONAL (routed, not failures)
    # ========================================
    NO_PATTERN_MATCH = ErrorSpec(
        "NO_PATTERN_MATCH",
        10,
        "No matching local patterns found",
        "informational",
        False,
        "Document will be sent to assisted analysis",
    )
    LOW_CONFIDENCE_MATCH = ErrorSpec(
        "LOW_CONFIDENCE_MATCH",
        11,
        "Local patterns matched with low confidence",
        "informational",
        False,
        "Review the suggested patterns or correct the extracted fields",
    )

    # ========================================
    # CLIENT ERRORS (not retryable)
    # ========================================
    RULE_EVALUATION_FAILED = ErrorSpec(
        "RULE_EVALUATION_FAILED",
        20,
        "A rule condition could not be evaluated",
        "client_error",
        False,
        "Check the rule's condition values and regular expressions",
    )
    RULE_APPLICATION_FAILED = ErrorSpec(
        "RULE_APPLICATION_FAILED",
        21,
        "A mapping rule could not be applied",
        "client_error",
        False,
        "Check that the rule's required source fields are extracted",
    )

    # ========================================
    # SERVER ERRORS
    # ========================================
    ASSISTED_ANALYSIS_FAILED = ErrorSpec(
        "ASSISTED_ANALYSIS_FAILED",
        30,
        "Assisted analysis failed",
        "server_error",
        True,
        MANUAL_REVIEW_ACTION,
    )
    ASSISTED_ANALYSIS_TIMEOUT = ErrorSpec(
        "ASSISTED_ANALYSIS_TIMEOUT",
        31,
        "Assisted analysis timed out",
        "server_error",
        True,
        MANUAL_REVIEW_ACTION,
    )
    PERSISTENCE_FAILED = ErrorSpec(
        "PERSISTENCE_FAILED",
        32,
        "Pattern or rule store operation failed",
        "server_error",
        False,
        "Check the pattern and rule store, then retry",
    )

    # ========================================
    # FALLBACK
    # ========================================
    UNKNOWN_ERROR = ErrorSpec(
        "UNKNOWN_ERROR",
        0,
        "Document processing failed unexpectedly",
        "server_error",
        False,
        MANUAL_REVIEW_ACTION,
    )

    @classmethod
    def get_spec(cls, code: str) -> ErrorSpec:
        """Get error specification by code string.

        Returns:
            ErrorSpec with category, message, and retryability.
            Returns default spec for unknown codes.
        """
        for error in cls:
            if error.value.code == code:
                return error.value
        return ErrorSpec(code, 0, f"Error: {code}", "server_error", False, MANUAL_REVIEW_ACTION)


def make_error(
    code: str, message: str | None = None, details: str | None = None
) -> dict[str, str | int | None]:
    """Create error dict with integer code, message, and details.

    Falls back to the registry message when no message is given.
    """
    spec = ErrorCode.get_spec(code)
    return {
        "code": spec.int_code,
        "message": message or spec.message,
        "details": details,
    }
