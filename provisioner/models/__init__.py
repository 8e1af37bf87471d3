from .tenant import AgentType, LLMProvider, Tenant, TenantStatus

__all__ = [
    "AgentType",
    "LLMProvider",
    "Tenant",
    "TenantStatus",
]
