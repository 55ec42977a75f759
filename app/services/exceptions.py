"""Domain-specific exceptions for service layer operations.

Architecture:
- ServiceError: Base exception with correlation ID and context support
- Category Base Classes: AuthError, BusinessError, InfrastructureError
- Specific Exceptions: job admission, quota, storage and model failures

Admission errors (quota, invalid transition, rate limit) are raised back to the
HTTP caller. Pipeline errors never leave the per-job boundary; they end up in
the job's `last_error` instead.
"""

from enum import Enum
from typing import Any, Dict, Optional, Union
from http import HTTPStatus


class ErrorSeverity(Enum):
    """Error severity levels for logging and monitoring."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification and handling."""
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    EXTERNAL_SERVICE = "external_service"
    INFRASTRUCTURE = "infrastructure"
    SYSTEM = "system"


class ServiceError(Exception):
    """Base exception for all service layer errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for client handling
        correlation_id: Request correlation ID for tracing
        details: Additional error context (sanitized for logging)
        user_message: User-friendly message for client display
        severity: Error severity level for logging/monitoring
        category: Error category for classification
        http_status: HTTP status code for API responses
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SERVICE_ERROR",
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR,
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.correlation_id = correlation_id
        self.details = details or {}
        self.user_message = user_message or message
        self.severity = severity
        self.category = category
        self.http_status = http_status
        self.headers = headers or {}

    def to_dict(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """Convert exception to dictionary for logging or client response.

        Args:
            include_sensitive: Whether to include sensitive details

        Returns:
            Dictionary representation of the error
        """
        result = {
            "error_code": self.error_code,
            "message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "http_status": self.http_status.value
        }

        if self.correlation_id:
            result["correlation_id"] = self.correlation_id

        if include_sensitive and self.details:
            result["details"] = self.details
            result["internal_message"] = self.message

        return result

    def __str__(self) -> str:
        """String representation for logging."""
        return f"{self.error_code}: {self.message}"


# =============================================================================
# AUTHENTICATION & AUTHORIZATION ERRORS
# =============================================================================

class AuthError(ServiceError):
    """Base class for authentication and authorization errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        http_status: HTTPStatus = HTTPStatus.UNAUTHORIZED
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            correlation_id=correlation_id,
            details=details,
            user_message=user_message,
            severity=severity,
            category=ErrorCategory.AUTHENTICATION,
            http_status=http_status,
            headers={"WWW-Authenticate": "Bearer"}
        )


class AuthenticationError(AuthError):
    """Bearer token missing, expired or not issued by the identity provider."""

    def __init__(
        self,
        message: str = "Authentication failed",
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="AUTH_FAILED",
            correlation_id=correlation_id,
            details=details,
            user_message="Authentication failed. Please sign in again."
        )


class WorkerAuthError(AuthError):
    """Batch trigger called without the shared worker secret."""

    def __init__(self, message: str = "Unauthorized", correlation_id: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="WORKER_UNAUTHORIZED",
            correlation_id=correlation_id,
            user_message="Unauthorized"
        )


# =============================================================================
# BUSINESS DOMAIN ERRORS
# =============================================================================

class BusinessError(ServiceError):
    """Base class for business domain errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.BUSINESS_RULE,
        http_status: HTTPStatus = HTTPStatus.BAD_REQUEST,
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            correlation_id=correlation_id,
            details=details,
            user_message=user_message,
            severity=severity,
            category=category,
            http_status=http_status,
            headers=headers
        )


class ResourceNotFoundError(BusinessError):
    """Base class for resource not found errors."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Union[int, str],
        user_id: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        details = {"resource_type": resource_type, "resource_id": resource_id}
        if user_id is not None:
            details["user_id"] = user_id

        super().__init__(
            message=f"{resource_type} not found or access denied",
            error_code=f"{resource_type.upper()}_NOT_FOUND",
            correlation_id=correlation_id,
            details=details,
            user_message=f"{resource_type} not found or you don't have permission to access it.",
            category=ErrorCategory.RESOURCE_NOT_FOUND,
            http_status=HTTPStatus.NOT_FOUND
        )


class JobNotFoundError(ResourceNotFoundError):
    """Extraction job not found or owned by someone else."""

    def __init__(self, job_id: str, user_id: Optional[str] = None, correlation_id: Optional[str] = None):
        super().__init__(
            resource_type="Job",
            resource_id=job_id,
            user_id=user_id,
            correlation_id=correlation_id
        )


class InvalidJobStateError(BusinessError):
    """Requested transition is not allowed from the job's current status."""

    def __init__(
        self,
        job_id: str,
        current_status: Optional[str],
        requested: str,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Job {job_id} cannot be {requested} from status {current_status}",
            error_code="INVALID_JOB_STATE",
            correlation_id=correlation_id,
            details={"job_id": job_id, "status": current_status, "requested": requested},
            user_message=f"This job cannot be {requested} while it is {current_status}.",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.CONFLICT,
            http_status=HTTPStatus.CONFLICT
        )


class QuotaExceededError(BusinessError):
    """Monthly AI quota exhausted (including in-flight reservations)."""

    def __init__(
        self,
        limit: int,
        used: int,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=reason or "monthly_quota_exceeded",
            error_code="AI_QUOTA_EXCEEDED",
            correlation_id=correlation_id,
            details={"limit": limit, "used": used, "reason": reason},
            user_message=f"Monthly AI extraction limit reached ({limit}).",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.BUSINESS_RULE,
            http_status=HTTPStatus.TOO_MANY_REQUESTS
        )


class RateLimitExceededError(BusinessError):
    """Too many requests for this key inside the current window."""

    def __init__(self, name: str, retry_after_seconds: int, correlation_id: Optional[str] = None):
        retry_after = max(1, int(retry_after_seconds))
        super().__init__(
            message=f"Rate limit exceeded for {name}",
            error_code="RATE_LIMITED",
            correlation_id=correlation_id,
            details={"name": name, "retry_after": retry_after},
            user_message="Too many requests. Please slow down.",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.RATE_LIMIT,
            http_status=HTTPStatus.TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)}
        )


# =============================================================================
# STORAGE, MODEL & INFRASTRUCTURE ERRORS
# =============================================================================

class InfrastructureError(ServiceError):
    """Base class for infrastructure-related errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            correlation_id=correlation_id,
            details=details,
            user_message=user_message or "A system error occurred. Please try again later.",
            severity=severity,
            category=category,
            http_status=http_status
        )


class DocumentDownloadError(InfrastructureError):
    """Document could not be fetched from object storage (transient or unknown)."""

    def __init__(
        self,
        bucket: str,
        path: str,
        reason: str,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Failed to download document '{bucket}/{path}': {reason}",
            error_code="DOCUMENT_DOWNLOAD_FAILED",
            correlation_id=correlation_id,
            details={"bucket": bucket, "path": path, "reason": reason},
            user_message="The uploaded document could not be read. Please try again."
        )


class DocumentNotFoundError(DocumentDownloadError):
    """Document does not exist in storage."""

    def __init__(self, bucket: str, path: str, correlation_id: Optional[str] = None):
        super().__init__(bucket=bucket, path=path, reason="not found", correlation_id=correlation_id)
        self.error_code = "DOCUMENT_NOT_FOUND"
        self.category = ErrorCategory.RESOURCE_NOT_FOUND
        self.http_status = HTTPStatus.NOT_FOUND


class DocumentTooLargeError(InfrastructureError):
    """Document exceeds the size the extraction model is given."""

    def __init__(self, path: str, size_bytes: int, max_bytes: int, correlation_id: Optional[str] = None):
        size_mb = round(size_bytes / 1024 / 1024)
        max_mb = round(max_bytes / 1024 / 1024)
        super().__init__(
            message=f"file_too_large:{size_mb}MB_exceeds_{max_mb}MB_limit",
            error_code="DOCUMENT_TOO_LARGE",
            correlation_id=correlation_id,
            details={"path": path, "size_bytes": size_bytes, "max_bytes": max_bytes},
            user_message=f"The document is larger than {max_mb}MB.",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            http_status=HTTPStatus.REQUEST_ENTITY_TOO_LARGE
        )


class ExtractionModelError(InfrastructureError):
    """The extraction model could not be reached or kept failing."""

    def __init__(self, model: str, reason: str, correlation_id: Optional[str] = None):
        super().__init__(
            message=f"Extraction model {model} failed: {reason}",
            error_code="EXTRACTION_MODEL_FAILED",
            correlation_id=correlation_id,
            details={"model": model, "reason": reason},
            category=ErrorCategory.EXTERNAL_SERVICE,
            http_status=HTTPStatus.BAD_GATEWAY
        )


class StorageConfigurationError(InfrastructureError):
    """Object storage client is not configured."""

    def __init__(self, reason: str, correlation_id: Optional[str] = None):
        super().__init__(
            message=f"Object storage unavailable: {reason}",
            error_code="STORAGE_UNAVAILABLE",
            correlation_id=correlation_id,
            details={"reason": reason},
            severity=ErrorSeverity.CRITICAL,
            http_status=HTTPStatus.SERVICE_UNAVAILABLE
        )
