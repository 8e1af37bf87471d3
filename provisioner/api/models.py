"""API request/response models."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field

from provisioner.models.tenant import Tenant


# ============================================================================
# Tenant Models
# ============================================================================

class CreateTenantRequest(BaseModel):
    """Request model for registering a tenant."""
    email: str = Field(..., description="Owner email; the tenant ID is derived from it unless given")
    assistant_name: str = Field(..., min_length=1, max_length=100)
    custom_instructions: str = Field(default="", max_length=10000)
    telegram_bot_token: str = Field(..., min_length=1)
    agent_type_id: str = Field(default="openclaw")
    llm_provider_id: str = Field(default="openai")
    custom_config: Optional[str] = None
    tenant_id: Optional[str] = Field(default=None, description="Explicit tenant ID (DNS label)")


class TenantResponse(BaseModel):
    """Response model for a tenant. The bot token is never returned."""
    id: str
    email: str
    assistant_name: str
    status: str
    container_port: Optional[int] = None
    telegram_bot_username: Optional[str] = None
    agent_type_id: str
    llm_provider_id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    suspended_at: Optional[str] = None
    cancelled_at: Optional[str] = None

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantResponse":
        def iso(value):
            return value.isoformat() if value else None

        return cls(
            id=tenant.id,
            email=tenant.email,
            assistant_name=tenant.assistant_name,
            status=tenant.status.value,
            container_port=tenant.container_port,
            telegram_bot_username=tenant.telegram_bot_username,
            agent_type_id=tenant.agent_type_id,
            llm_provider_id=tenant.llm_provider_id,
            created_at=iso(tenant.created_at),
            updated_at=iso(tenant.updated_at),
            suspended_at=iso(tenant.suspended_at),
            cancelled_at=iso(tenant.cancelled_at),
        )


class TenantListResponse(BaseModel):
    """Response model for listing tenants."""
    items: List[TenantResponse]
    count: int


class ContainerStatusResponse(BaseModel):
    """Response model for container runtime state."""
    tenant_id: str
    state: str = Field(..., description="Docker state, or not_found")


# ============================================================================
# Bot Token Models
# ============================================================================

class ValidateBotTokenRequest(BaseModel):
    """Request model for bot token validation."""
    token: str = Field(..., min_length=1)
    tenant_id: Optional[str] = Field(default=None, description="Store the bot username on this tenant")


class BotInfoResponse(BaseModel):
    """Response model for a validated bot."""
    valid: bool = True
    id: int
    username: str
    first_name: str = ""


# ============================================================================
# Circuit Breaker Models
# ============================================================================

class CircuitBreakerStats(BaseModel):
    """Snapshot of one circuit breaker."""
    service: str
    state: str
    failures: int
    successes: int
    half_open_in_flight: int
    last_failure_at: Optional[str] = None
    max_failures: int
    open_timeout: float
    half_open_max_probes: int
    success_threshold: int


class CircuitBreakerListResponse(BaseModel):
    """Response model for all circuit breakers."""
    breakers: List[CircuitBreakerStats]


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Error body returned for domain errors."""
    detail: str
    category: str
    retryable: bool
    step: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
