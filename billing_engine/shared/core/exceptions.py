# 📄 File: billing_engine/shared/core/exceptions.py
# 🧭 Purpose (Layman Explanation):
# This file defines all the special error types the billing engine uses to communicate
# what went wrong in a clear, organized way instead of generic error messages.
# 🧪 Purpose (Technical Summary):
# Custom exception hierarchy providing specific error types with HTTP status codes,
# error details, and proper serialization for API responses and error handling.
# 🔗 Dependencies:
# FastAPI HTTP status constants, typing
# 🔄 Connected Modules / Calls From:
# All modules for error handling, middleware, API endpoints, domain services

from typing import Any, Dict, Optional

from fastapi import status


class BillingEngineException(Exception):
    """
    Base exception class for the billing engine.
    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.error_code = error_code or self.__class__.__name__.upper()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
                "status_code": self.status_code
            }
        }


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================

class ValidationError(BillingEngineException):
    """
    Exception raised for data validation failures.
    Used when input data doesn't meet validation requirements.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if constraint:
            details["constraint"] = constraint

        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            error_code="VALIDATION_ERROR"
        )


class AuthenticationError(BillingEngineException):
    """Raised when an endpoint needs the caller's identity and none was supplied."""

    def __init__(self, message: str = "Caller identity required"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTHENTICATION_REQUIRED"
        )


class InvalidIdempotencyKeyError(BillingEngineException):
    """Raised when an Idempotency-Key header is not a well-formed UUID."""

    def __init__(self, key: str):
        super().__init__(
            message="Invalid Idempotency-Key format. Must be a valid UUID.",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": key},
            error_code="INVALID_IDEMPOTENCY_KEY"
        )


class IdempotencyKeyInProgressError(BillingEngineException):
    """Raised when a request reuses a key whose first request has not finished."""

    def __init__(self, key: str):
        super().__init__(
            message="A request with this Idempotency-Key is already being processed",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": key},
            error_code="IDEMPOTENCY_KEY_IN_PROGRESS"
        )


class NotFoundError(BillingEngineException):
    """
    Exception raised when requested resource is not found.
    Used for unknown users, plans, subscriptions and payments.
    """

    def __init__(
        self,
        message: str = "Resource not found",
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
            error_code="NOT_FOUND"
        )


class ConflictError(BillingEngineException):
    """
    Exception raised for resource conflicts.
    Used for duplicate active subscriptions, plan-name collisions and
    transitions out of a terminal state.
    """

    def __init__(
        self,
        message: str = "Resource conflict",
        resource_type: Optional[str] = None,
        conflict_field: Optional[str] = None,
        existing_value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if resource_type:
            details["resource_type"] = resource_type
        if conflict_field:
            details["conflict_field"] = conflict_field
        if existing_value is not None:
            details["existing_value"] = str(existing_value)

        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            error_code="CONFLICT_ERROR"
        )


# =============================================================================
# BUSINESS LOGIC EXCEPTIONS
# =============================================================================

class BusinessRuleViolationError(BillingEngineException):
    """
    Exception raised when business rules are violated.
    Used for operations the subscription lifecycle does not allow.
    """

    def __init__(
        self,
        message: str = "Business rule violation",
        rule: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if rule:
            details["rule"] = rule
        if context:
            details["context"] = context

        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
            error_code="BUSINESS_RULE_VIOLATION"
        )


class InvalidStateTransitionError(ConflictError):
    """Raised when a subscription is asked to move between incompatible states."""

    def __init__(self, subscription_id: str, from_status: str, to_status: str):
        super().__init__(
            message=f"Subscription cannot transition from {from_status} to {to_status}",
            resource_type="subscription",
            details={
                "subscription_id": subscription_id,
                "from_status": from_status,
                "to_status": to_status,
            }
        )


# =============================================================================
# EXTERNAL SERVICE EXCEPTIONS
# =============================================================================

class ExternalServiceError(BillingEngineException):
    """
    Exception raised when external service calls fail.
    Used for payment processor failures surfaced to foreground callers.
    """

    def __init__(
        self,
        message: str = "External service error",
        service: Optional[str] = None,
        service_response: Optional[str] = None,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if service:
            details["service"] = service
        if service_response:
            details["service_response"] = service_response
        if retry_after:
            details["retry_after"] = retry_after

        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
            error_code="EXTERNAL_SERVICE_ERROR"
        )


class CircuitBreakerError(BillingEngineException):
    """
    Exception raised when circuit breaker is open.
    Used by foreground call sites whose fallback propagates an error.
    """

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        service_name: Optional[str] = None,
        failure_count: Optional[int] = None,
        reset_time: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if service_name:
            details["service_name"] = service_name
        if failure_count:
            details["failure_count"] = failure_count
        if reset_time:
            details["reset_time"] = reset_time

        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            error_code="CIRCUIT_BREAKER_ERROR"
        )


class WebhookSignatureError(BillingEngineException):
    """Raised when a webhook payload cannot be authenticated."""

    def __init__(self, message: str = "Webhook signature verification failed", reason: Optional[str] = None):
        details = {"reason": reason} if reason else {}
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
            error_code="WEBHOOK_SIGNATURE_ERROR"
        )


# =============================================================================
# DATABASE & INFRASTRUCTURE EXCEPTIONS
# =============================================================================

class DatabaseError(BillingEngineException):
    """
    Exception raised for database operation failures.
    Used for connection issues, query failures, etc.
    """

    def __init__(
        self,
        message: str = "Database error",
        operation: Optional[str] = None,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table

        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            error_code="DATABASE_ERROR"
        )


class TransactionError(BillingEngineException):
    """Exception raised when a unit of work cannot be committed."""

    def __init__(self, message: str = "Transaction failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
            error_code="TRANSACTION_ERROR"
        )
