"""Timeout configuration and request timeout middleware."""

import asyncio
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request timeouts."""
    
    def __init__(self, app, timeout: int = 60):
        """
        Initialize timeout middleware.
        
        Args:
            app: FastAPI application
            timeout: Request timeout in seconds (default: 60)
        """
        super().__init__(app)
        self.timeout = timeout
    
    async def dispatch(self, request: Request, call_next):
        """Process request with timeout."""
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            # Cancelling the handler unwinds any in-flight provisioning workflow
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"detail": f"Request timeout after {self.timeout} seconds"},
            )


# Timeout configurations
REQUEST_TIMEOUT = 600  # provisioning pulls images and can be slow
CONTAINER_COMMAND_TIMEOUT = 300  # 5 minutes per docker compose invocation
BOT_VALIDATION_TIMEOUT = 10  # Telegram getMe
PROXY_CALL_TIMEOUT = 10  # Caddy admin API
