"""Shared helpers for API routers."""

import math

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from provisioner.infra.error_handler import ErrorCategory, RetryableError, classify_error
from provisioner.infra.validation import validate_tenant_id

# Error category -> HTTP status
STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.BUSINESS_LOGIC: 409,
    ErrorCategory.RESOURCE_EXHAUSTED: 507,
    ErrorCategory.CIRCUIT_OPEN: 503,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.RUNTIME: 502,
    ErrorCategory.NETWORK: 502,
    ErrorCategory.API_ERROR: 502,
}


def error_status(error: BaseException) -> int:
    category, _, _ = classify_error(error)
    return STATUS_BY_CATEGORY.get(category, 500)


def error_response(error: RetryableError) -> JSONResponse:
    """Render a domain error with its category, retry hint and failed step."""
    category, retryable, retry_after = classify_error(error)
    headers = {}
    if retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(retry_after)))

    return JSONResponse(
        status_code=STATUS_BY_CATEGORY.get(category, 500),
        content={
            "detail": error.message,
            "category": category.value,
            "retryable": retryable,
            "step": getattr(error, "step", None),
        },
        headers=headers,
    )


def require_valid_tenant_id(tenant_id: str) -> str:
    """Reject malformed tenant IDs with 400 before they reach the filesystem."""
    try:
        validate_tenant_id(tenant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return tenant_id


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


def get_store(request: Request):
    return request.app.state.store
