"""Tenant lifecycle API router."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError

from provisioner.api.models import (
    BotInfoResponse,
    CircuitBreakerListResponse,
    CircuitBreakerStats,
    ContainerStatusResponse,
    CreateTenantRequest,
    TenantListResponse,
    TenantResponse,
    ValidateBotTokenRequest,
)
from provisioner.api.utils import get_orchestrator, get_store, require_valid_tenant_id
from provisioner.infra.auth import verify_admin_token
from provisioner.infra.validation import validate_email
from provisioner.models.tenant import TenantStatus

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_admin_token)])


# ============================================================================
# Tenant Records
# ============================================================================

@router.post("/tenants", tags=["Tenants"], response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(body: CreateTenantRequest, request: Request, store=Depends(get_store)):
    """
    Register a tenant in ``pending`` status.

    Rejected with 503 once ``MAX_CUSTOMERS`` tenants are not cancelled, and
    with 409 if the email or tenant ID is already taken.
    """
    try:
        validate_email(body.email)
        if body.tenant_id is not None:
            require_valid_tenant_id(body.tenant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    max_customers = request.app.state.config.MAX_CUSTOMERS
    if store.count_active_tenants() >= max_customers:
        raise HTTPException(status_code=503, detail="Platform is at maximum capacity")

    # Unknown catalog entries surface as 404
    store.get_agent_type(body.agent_type_id)
    store.get_llm_provider(body.llm_provider_id)

    try:
        tenant = store.create_tenant(
            email=body.email,
            assistant_name=body.assistant_name,
            custom_instructions=body.custom_instructions,
            telegram_bot_token=body.telegram_bot_token,
            agent_type_id=body.agent_type_id,
            llm_provider_id=body.llm_provider_id,
            custom_config=body.custom_config,
            tenant_id=body.tenant_id,
        )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A tenant with this email or ID already exists")

    logger.info("Tenant registered", extra={"tenant_id": tenant.id})
    return TenantResponse.from_tenant(tenant)


@router.get("/tenants", tags=["Tenants"], response_model=TenantListResponse)
async def list_tenants(
    status_filter: Optional[TenantStatus] = Query(default=None, alias="status"),
    store=Depends(get_store),
):
    """List tenants, optionally filtered by status."""
    tenants = store.list_tenants(status_filter)
    return TenantListResponse(items=[TenantResponse.from_tenant(t) for t in tenants], count=len(tenants))


@router.get("/tenants/{tenant_id}", tags=["Tenants"], response_model=TenantResponse)
async def get_tenant(tenant_id: str, store=Depends(get_store)):
    require_valid_tenant_id(tenant_id)
    return TenantResponse.from_tenant(store.get_tenant(tenant_id))


# ============================================================================
# Lifecycle
# ============================================================================

@router.post("/tenants/{tenant_id}/provision", tags=["Tenants"], response_model=TenantResponse)
async def provision_tenant(tenant_id: str, orchestrator=Depends(get_orchestrator)):
    """
    Provision a pending tenant: port, workspace, descriptor, container.

    On failure every completed step is rolled back and the tenant is left
    ``pending``; the response names the failed step.
    """
    require_valid_tenant_id(tenant_id)
    tenant = await orchestrator.provision(tenant_id)
    return TenantResponse.from_tenant(tenant)


@router.post("/tenants/{tenant_id}/suspend", tags=["Tenants"], response_model=TenantResponse)
async def suspend_tenant(tenant_id: str, orchestrator=Depends(get_orchestrator)):
    require_valid_tenant_id(tenant_id)
    tenant = await orchestrator.suspend(tenant_id)
    return TenantResponse.from_tenant(tenant)


@router.post("/tenants/{tenant_id}/resume", tags=["Tenants"], response_model=TenantResponse)
async def resume_tenant(tenant_id: str, orchestrator=Depends(get_orchestrator)):
    require_valid_tenant_id(tenant_id)
    tenant = await orchestrator.resume(tenant_id)
    return TenantResponse.from_tenant(tenant)


@router.delete("/tenants/{tenant_id}", tags=["Tenants"], response_model=TenantResponse)
async def terminate_tenant(tenant_id: str, orchestrator=Depends(get_orchestrator)):
    """Release the port, remove the container and mark the tenant cancelled. Safe to repeat."""
    require_valid_tenant_id(tenant_id)
    tenant = await orchestrator.terminate(tenant_id)
    return TenantResponse.from_tenant(tenant)


@router.get("/tenants/{tenant_id}/container", tags=["Tenants"], response_model=ContainerStatusResponse)
async def container_status(tenant_id: str, orchestrator=Depends(get_orchestrator)):
    require_valid_tenant_id(tenant_id)
    state = await orchestrator.container_status(tenant_id)
    return ContainerStatusResponse(tenant_id=tenant_id, state=state)


# ============================================================================
# Bot Tokens
# ============================================================================

@router.post("/bot-tokens/validate", tags=["Bot Tokens"], response_model=BotInfoResponse)
async def validate_bot_token(body: ValidateBotTokenRequest, orchestrator=Depends(get_orchestrator)):
    """
    Validate a Telegram bot token.

    Returns 400 when Telegram rejects the token (do not retry) and 503 with
    ``Retry-After`` while the validation circuit is open (retry later).
    """
    if body.tenant_id is not None:
        require_valid_tenant_id(body.tenant_id)
    info = await orchestrator.validate_bot_token(body.token, tenant_id=body.tenant_id)
    return BotInfoResponse(id=info.id, username=info.username, first_name=info.first_name)


# ============================================================================
# Circuit Breakers
# ============================================================================

@router.get("/admin/circuit-breakers", tags=["Admin"], response_model=CircuitBreakerListResponse)
async def circuit_breaker_stats(request: Request):
    validator = request.app.state.bot_validator
    return CircuitBreakerListResponse(breakers=[CircuitBreakerStats(**validator.stats())])


@router.post("/admin/circuit-breakers/reset", tags=["Admin"], response_model=CircuitBreakerListResponse)
async def reset_circuit_breakers(request: Request):
    """Force every circuit breaker closed."""
    validator = request.app.state.bot_validator
    validator.reset()
    logger.warning("Circuit breakers reset by admin")
    return CircuitBreakerListResponse(breakers=[CircuitBreakerStats(**validator.stats())])
