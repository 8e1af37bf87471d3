"""Admin API authentication."""

import secrets
from typing import Optional
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

# Admin token header
admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


async def verify_admin_token(
    request: Request,
    token: Optional[str] = Security(admin_token_header),
) -> None:
    """
    Require the ``X-Admin-Token`` header to match ``ADMIN_API_TOKEN``.

    Raises:
        HTTPException: 503 if no admin token is configured, 401 if the header
            is missing or wrong
    """
    expected = request.app.state.config.ADMIN_API_TOKEN
    if not expected:
        # SECURITY: never run the admin surface unauthenticated
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API disabled: ADMIN_API_TOKEN is not configured",
        )

    if not token or not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Admin-Token",
            headers={"WWW-Authenticate": "ApiKey"},
        )
