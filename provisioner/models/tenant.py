"""Tenant and catalog models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant workload."""
    PENDING = "pending"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


@dataclass
class Tenant:
    """A customer's provisioned agent workload instance."""
    id: str
    email: str
    assistant_name: str
    custom_instructions: str
    telegram_bot_token: str
    status: TenantStatus = TenantStatus.PENDING
    container_port: Optional[int] = None  # set iff a ledger row exists
    telegram_bot_username: Optional[str] = None
    agent_type_id: str = "openclaw"
    llm_provider_id: str = "openai"
    custom_config: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


@dataclass
class AgentType:
    """Catalog entry describing how to run one kind of agent."""
    id: str
    name: str
    base_image: str
    internal_port: int
    internal_port_bridge: int = 0  # 0 means the agent exposes no bridge port
    health_endpoint: str = "/health"
    min_memory: str = "512M"
    min_cpu: str = "0.25"
    description: str = ""
    env_vars: List[str] = field(default_factory=list)
    is_active: bool = True


@dataclass
class LLMProvider:
    """Catalog entry for an LLM backend the agent can talk to."""
    id: str
    name: str
    env_key: str  # environment variable the agent reads its credential from
    description: str = ""
    base_url: Optional[str] = None
    is_active: bool = True
