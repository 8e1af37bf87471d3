"""FastAPI admin service for tenant agent provisioning."""

import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from provisioner.adapters.caddy_client import CaddyClient
from provisioner.adapters.container_runtime import DockerComposeRuntime
from provisioner.adapters.telegram_adapter import TelegramBotValidator
from provisioner.api.utils import error_response
from provisioner.infra.circuit_breaker import CircuitBreaker
from provisioner.infra.config import Config, config as default_config
from provisioner.infra.database import create_engine
from provisioner.infra.error_handler import APIError, NetworkError, RetryableError
from provisioner.infra.logging import app_logger
from provisioner.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware
from provisioner.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT
from provisioner.services.compose_generator import ComposeGenerator
from provisioner.services.orchestrator import ProvisioningOrchestrator
from provisioner.services.port_allocator import PortAllocator
from provisioner.services.tenant_store import TenantStore
from provisioner.services.workspace_generator import WorkspaceGenerator


def _ensure_sqlite_dir(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if not path or path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def build_bot_validator(settings: Config) -> TelegramBotValidator:
    breaker = CircuitBreaker(
        "telegram",
        max_failures=settings.TELEGRAM_BREAKER_MAX_FAILURES,
        open_timeout=settings.TELEGRAM_BREAKER_OPEN_TIMEOUT,
        half_open_max_probes=settings.TELEGRAM_BREAKER_HALF_OPEN_MAX,
        success_threshold=settings.TELEGRAM_BREAKER_SUCCESS_THRESHOLD,
        # A rejected token means Telegram answered; only transport and API errors trip the circuit
        expected_exception=(NetworkError, APIError),
    )
    return TelegramBotValidator(breaker, timeout=settings.BOT_VALIDATION_TIMEOUT)


def create_app(settings: Config = None, runtime=None, bot_validator=None, proxy=None) -> FastAPI:
    """
    Build the application.

    ``runtime``, ``bot_validator`` and ``proxy`` replace the default adapters
    when given; everything else is built from ``settings`` at startup.
    """
    settings = settings or default_config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        app_logger.info("Application starting up")
        settings.validate()

        _ensure_sqlite_dir(settings.DATABASE_URL)
        engine = create_engine(settings.DATABASE_URL)
        store = TenantStore(engine)
        store.init_schema()

        ports = PortAllocator(settings.PORT_RANGE_START, settings.PORT_RANGE_END)
        ports.load_allocated_ports(store)

        reverse_proxy = proxy
        if reverse_proxy is None and settings.CADDY_ADMIN_URL:
            reverse_proxy = CaddyClient(settings.CADDY_ADMIN_URL, timeout=settings.PROXY_CALL_TIMEOUT)

        validator = bot_validator or build_bot_validator(settings)
        orchestrator = ProvisioningOrchestrator(
            store=store,
            ports=ports,
            workspace=WorkspaceGenerator(settings.TEMPLATES_DIR, settings.CUSTOMERS_DIR),
            compose=ComposeGenerator(settings.CUSTOMERS_DIR),
            runtime=runtime or DockerComposeRuntime(settings.CUSTOMERS_DIR, timeout=settings.CONTAINER_COMMAND_TIMEOUT),
            bot_validator=validator,
            proxy=reverse_proxy,
            base_domain=settings.BASE_DOMAIN,
            platform_llm_keys=settings.platform_llm_keys(),
        )

        app.state.store = store
        app.state.ports = ports
        app.state.bot_validator = validator
        app.state.orchestrator = orchestrator
        app_logger.info(
            "Provisioner ready",
            extra={"port_range": f"{ports.start_port}-{ports.end_port}", "ports_in_use": len(ports.allocated_ports())},
        )

        yield

        app_logger.info("Application shutting down")
        engine.dispose()

    app = FastAPI(
        title="Agent Provisioner API",
        description="""
        Internal admin API that provisions, suspends, resumes and terminates
        per-tenant agent containers.

        ## Authentication

        Every tenant and admin endpoint requires the `X-Admin-Token` header.
        Health and metrics endpoints are open.
        """,
        version="1.0.0",
        lifespan=lifespan,
        tags_metadata=[
            {"name": "Tenants", "description": "Tenant records and lifecycle operations"},
            {"name": "Bot Tokens", "description": "Telegram bot token validation"},
            {"name": "Admin", "description": "Circuit breaker inspection and override"},
            {"name": "Health", "description": "Health check and monitoring endpoints"},
        ],
    )
    app.state.config = settings

    # Setup middleware
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)

    # Register routers
    from provisioner.api.routers import health, tenants

    app.include_router(health.router)
    app.include_router(tenants.router)

    # Error handlers
    @app.exception_handler(RetryableError)
    async def domain_exception_handler(request: Request, exc: RetryableError):
        """Map domain errors to HTTP status by category."""
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions."""
        error_id = str(uuid.uuid4())
        app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
        return JSONResponse(
            status_code=500,
            content={"detail": f"Internal server error. Error ID: {error_id}"},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
