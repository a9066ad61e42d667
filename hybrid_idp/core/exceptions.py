"""Custom exception hierarchy for the hybrid extraction engine.

All exceptions inherit from BaseError and carry structured error information
(code, category, status, details, retryability) so callers can report them
uniformly.
"""

from typing import Any, Optional
from enum import Enum


class ErrorCategory(str, Enum):
    """Error categories for classification and monitoring."""

    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    EXTERNAL_SERVICE = "external_service"
    VALIDATION = "validation"
    BUSINESS_LOGIC = "business_logic"


class BaseError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Application-specific error code
        category: Error category for classification
        http_status: HTTP-equivalent status code
        details: Additional context (dict)
        retryable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        http_status: int,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.http_status = http_status
        self.details = details or {}
        self.retryable = retryable


class ClientError(BaseError):
    """Base for errors caused by invalid caller input (4xx).

    These are not retryable.
    """

    def __init__(self, message: str, error_code: str, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            category=kwargs.pop("category", ErrorCategory.CLIENT_ERROR),
            http_status=kwargs.pop("http_status", 400),
            retryable=False,
            **kwargs,
        )


class ValidationError(ClientError):
    """Input validation failed (422).

    Args:
        message: Validation error description
        field: Name of the field that failed validation
        details: Additional validation context
    """

    def __init__(self, message: str, field: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details["field"] = field
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            category=ErrorCategory.VALIDATION,
            http_status=422,
            details=additional_details,
            **kwargs,
        )


class RuleApplicationError(ClientError):
    """A mapping rule action could not be applied.

    Raised while applying a rule's actions (missing required source field,
    unknown transformation). The rule engine catches it, records a failure
    for the rule and moves on to the next rule.

    Args:
        rule_id: Identifier of the rule being applied
        reason: What went wrong
    """

    def __init__(self, rule_id: str, reason: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details.update({"rule_id": rule_id, "detail": reason})
        super().__init__(
            message=f"Rule {rule_id} could not be applied: {reason}",
            error_code="RULE_APPLICATION_FAILED",
            category=ErrorCategory.BUSINESS_LOGIC,
            http_status=422,
            details=additional_details,
            **kwargs,
        )
        self.rule_id = rule_id
        self.reason = reason


class ServerError(BaseError):
    """Base for server errors (5xx).

    Represents internal failures or failures in external dependencies.
    Some server errors may be retryable.
    """

    def __init__(self, message: str, error_code: str, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            category=kwargs.pop("category", ErrorCategory.SERVER_ERROR),
            http_status=kwargs.pop("http_status", 500),
            retryable=kwargs.pop("retryable", False),
            **kwargs,
        )


class PersistenceError(ServerError):
    """Pattern or rule store read/write failed.

    Surfaced to the caller as-is; the engine never retries storage itself.

    Args:
        store: Name of the store ("patterns", "rules")
        operation: Operation that failed ("load", "save", "update", "delete")
    """

    def __init__(self, store: str, operation: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details.update({"store": store, "operation": operation})
        super().__init__(
            message=f"{store} store {operation} failed",
            error_code="PERSISTENCE_FAILED",
            details=additional_details,
            **kwargs,
        )
        self.store = store
        self.operation = operation


class ExternalServiceError(ServerError):
    """External service failure (502 / 503 / 504).

    Raised when the assisted analysis service fails, times out or is
    blocked by an open circuit. These errors are retryable.

    Args:
        service_name: Name of the external service
        error_type: Type of error ("timeout", "unavailable", "error",
            "rate_limit", "circuit_open", "cancelled")
        details: Additional error context
    """

    def __init__(self, service_name: str, error_type: str, **kwargs):
        if error_type == "timeout":
            http_status = 504
        elif error_type == "circuit_open":
            http_status = 503
        else:
            http_status = 502

        additional_details = kwargs.pop("details", {})
        additional_details.update(
            {
                "service": service_name,
                "error_type": error_type,
            }
        )

        super().__init__(
            message=f"{service_name} service {error_type}",
            error_code=f"{service_name.upper()}_{error_type.upper()}",
            category=ErrorCategory.EXTERNAL_SERVICE,
            http_status=http_status,
            retryable=True,
            details=additional_details,
            **kwargs,
        )
        self.service_name = service_name
        self.error_type = error_type
