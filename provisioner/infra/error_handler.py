"""Error taxonomy for provisioning operations."""

from typing import Optional, Tuple
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    NOT_FOUND = "not_found"  # Tenant, catalog entry or container absent
    RESOURCE_EXHAUSTED = "resource_exhausted"  # No ports left in range
    CIRCUIT_OPEN = "circuit_open"  # Dependency currently short-circuited
    VALIDATION = "validation"  # Dependency explicitly rejected input
    RUNTIME = "runtime"  # Container engine call failed
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    BUSINESS_LOGIC = "business_logic"  # Invalid state transition
    COMPENSATION = "compensation"  # Rollback step failed
    UNKNOWN = "unknown"  # Unknown errors


class RetryableError(Exception):
    """Base exception carrying a category and a retry hint."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = True, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class NotFoundError(RetryableError):
    """Tenant, catalog entry or container does not exist."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.NOT_FOUND, retryable=False)


class PortsExhaustedError(RetryableError):
    """Every port in the configured range is in use."""
    def __init__(self, start_port: int, end_port: int):
        self.start_port = start_port
        self.end_port = end_port
        super().__init__(
            f"no available ports in range {start_port}-{end_port}",
            ErrorCategory.RESOURCE_EXHAUSTED,
            retryable=False,
        )


class CircuitOpenError(RetryableError):
    """Circuit breaker rejected the call without invoking the dependency."""
    def __init__(self, service: str, message: str = "circuit breaker is open", retry_after: Optional[float] = None):
        self.service = service
        super().__init__(f"{service}: {message}", ErrorCategory.CIRCUIT_OPEN, retryable=True, retry_after=retry_after)


class ValidationError(RetryableError):
    """Input rejected by the dependency; retrying the same input will not help."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION, retryable=False)


class ContainerRuntimeError(RetryableError):
    """Container engine command failed or timed out."""
    def __init__(self, message: str, output: Optional[str] = None):
        self.output = output
        if output:
            message = f"{message} (output: {output.strip()})"
        super().__init__(message, ErrorCategory.RUNTIME, retryable=True)


class NetworkError(RetryableError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(RetryableError):
    """API returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class InvalidStateError(RetryableError):
    """Requested transition is not allowed from the tenant's current status."""
    def __init__(self, tenant_id: str, status: str, operation: str):
        self.tenant_id = tenant_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"cannot {operation} tenant {tenant_id} in status {status}",
            ErrorCategory.BUSINESS_LOGIC,
            retryable=False,
        )


class CompensationError(RetryableError):
    """A rollback action failed. Logged only, never raised to callers."""
    def __init__(self, tenant_id: str, action: str, cause: BaseException):
        self.tenant_id = tenant_id
        self.action = action
        self.cause = cause
        super().__init__(
            f"compensation {action} failed for tenant {tenant_id}: {cause}",
            ErrorCategory.COMPENSATION,
            retryable=False,
        )


class ProvisioningStepError(RetryableError):
    """
    A workflow step failed.

    Carries the tenant and step for diagnosis; the category and retry hint
    are copied from the original exception, which stays reachable as
    ``original`` and ``__cause__``.
    """
    def __init__(self, tenant_id: str, step: str, original: BaseException):
        self.tenant_id = tenant_id
        self.step = step
        self.original = original
        category, retryable, retry_after = classify_error(original)
        super().__init__(
            f"tenant {tenant_id}: {step}: {original}",
            category,
            retryable=retryable,
            retry_after=retry_after,
        )


def classify_error(error: BaseException) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.
    
    Args:
        error: The exception to classify
    
    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, ProvisioningStepError):
        return classify_error(error.original)
    
    if isinstance(error, RetryableError):
        return error.category, error.retryable, error.retry_after
    
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK, True, None
    
    return ErrorCategory.UNKNOWN, False, None
