"""Persisted tenant store: tenants, port ledger, audit log and agent catalog."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from provisioner.infra.database import make_session_factory, session_scope
from provisioner.infra.error_handler import NotFoundError
from provisioner.infra.validation import tenant_id_from_email, validate_tenant_id
from provisioner.models.tenant import AgentType, LLMProvider, Tenant, TenantStatus

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        assistant_name TEXT NOT NULL,
        custom_instructions TEXT NOT NULL,
        telegram_bot_token TEXT NOT NULL,
        telegram_bot_username TEXT,
        container_port INTEGER,
        status TEXT NOT NULL DEFAULT 'pending',
        agent_type_id TEXT NOT NULL DEFAULT 'openclaw',
        llm_provider_id TEXT NOT NULL DEFAULT 'openai',
        custom_config TEXT,
        created_at TIMESTAMP,
        updated_at TIMESTAMP,
        suspended_at TIMESTAMP,
        cancelled_at TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tenants_status ON tenants(status)",
    "CREATE INDEX IF NOT EXISTS idx_tenants_container_port ON tenants(container_port)",
    """
    CREATE TABLE IF NOT EXISTS port_allocations (
        port INTEGER PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        allocated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        action TEXT NOT NULL,
        details TEXT,
        created_at TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_tenant ON audit_log(tenant_id)",
    """
    CREATE TABLE IF NOT EXISTS agent_types (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        base_image TEXT NOT NULL,
        internal_port INTEGER NOT NULL,
        internal_port_bridge INTEGER NOT NULL DEFAULT 0,
        health_endpoint TEXT,
        min_memory TEXT,
        min_cpu TEXT,
        env_vars TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS llm_providers (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        env_key TEXT NOT NULL,
        base_url TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
]

DEFAULT_AGENT_TYPES = [
    AgentType(
        id="openclaw",
        name="OpenClaw",
        description="Multi-channel AI assistant with voice, canvas, and 20+ LLM providers",
        base_image="node:22-bookworm",
        internal_port=18789,
        internal_port_bridge=18790,
        health_endpoint="/health",
        min_memory="512M",
        min_cpu="0.25",
        env_vars=["OPENAI_API_KEY", "ANTHROPIC_API_KEY", "TELEGRAM_BOT_TOKEN"],
    ),
    AgentType(
        id="myrai",
        name="Myrai",
        description="Go-based AI assistant with persona system, memory, and 20+ LLM providers",
        base_image="ghcr.io/gmsas95/myrai:latest",
        internal_port=8080,
        internal_port_bridge=0,
        health_endpoint="/api/health",
        min_memory="512M",
        min_cpu="0.25",
        env_vars=["OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GROQ_API_KEY", "TELEGRAM_BOT_TOKEN", "MYRAI_GATEWAY_TOKEN"],
    ),
]

DEFAULT_LLM_PROVIDERS = [
    LLMProvider(id="openai", name="OpenAI", env_key="OPENAI_API_KEY",
                description="GPT-4, GPT-3.5 - Most popular, reliable"),
    LLMProvider(id="anthropic", name="Anthropic", env_key="ANTHROPIC_API_KEY",
                description="Claude - Great reasoning and long context"),
    LLMProvider(id="groq", name="Groq", env_key="GROQ_API_KEY",
                description="Fast inference at affordable prices"),
    LLMProvider(id="ollama", name="Ollama", env_key="OLLAMA_HOST",
                description="Free local inference - runs on your hardware"),
]

_TENANT_COLUMNS = """
    id, email, assistant_name, custom_instructions, telegram_bot_token,
    telegram_bot_username, container_port, status, agent_type_id,
    llm_provider_id, custom_config, created_at, updated_at, suspended_at,
    cancelled_at
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_datetime(value: Any) -> Optional[datetime]:
    """SQLite hands timestamps back as strings through text() queries."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _row_to_tenant(row) -> Tenant:
    return Tenant(
        id=row.id,
        email=row.email,
        assistant_name=row.assistant_name,
        custom_instructions=row.custom_instructions,
        telegram_bot_token=row.telegram_bot_token,
        telegram_bot_username=row.telegram_bot_username,
        container_port=row.container_port,
        status=TenantStatus(row.status),
        agent_type_id=row.agent_type_id,
        llm_provider_id=row.llm_provider_id,
        custom_config=row.custom_config,
        created_at=_as_datetime(row.created_at),
        updated_at=_as_datetime(row.updated_at),
        suspended_at=_as_datetime(row.suspended_at),
        cancelled_at=_as_datetime(row.cancelled_at),
    )


def _row_to_agent_type(row) -> AgentType:
    return AgentType(
        id=row.id,
        name=row.name,
        description=row.description or "",
        base_image=row.base_image,
        internal_port=row.internal_port,
        internal_port_bridge=row.internal_port_bridge or 0,
        health_endpoint=row.health_endpoint or "/health",
        min_memory=row.min_memory or "512M",
        min_cpu=row.min_cpu or "0.25",
        env_vars=json.loads(row.env_vars) if row.env_vars else [],
        is_active=bool(row.is_active),
    )


def _row_to_llm_provider(row) -> LLMProvider:
    return LLMProvider(
        id=row.id,
        name=row.name,
        description=row.description or "",
        env_key=row.env_key,
        base_url=row.base_url,
        is_active=bool(row.is_active),
    )


class TenantStore:
    """
    Durable source of truth for tenant records and the port ledger.

    All calls are synchronous and run in their own transaction. Releasing a
    port that is not in the ledger is a no-op.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = make_session_factory(engine)

    def init_schema(self) -> None:
        """Create tables if missing and seed the default catalog."""
        with session_scope(self._session_factory) as session:
            for statement in SCHEMA_STATEMENTS:
                sql = statement
                if self.engine.dialect.name == "postgresql":
                    sql = sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
                session.execute(text(sql))
        self._seed_catalog()

    def _seed_catalog(self) -> None:
        with session_scope(self._session_factory) as session:
            existing_agents = {
                row.id for row in session.execute(text("SELECT id FROM agent_types"))
            }
            for agent in DEFAULT_AGENT_TYPES:
                if agent.id in existing_agents:
                    continue
                session.execute(
                    text("""
                        INSERT INTO agent_types (
                            id, name, description, base_image, internal_port,
                            internal_port_bridge, health_endpoint, min_memory,
                            min_cpu, env_vars, is_active
                        ) VALUES (
                            :id, :name, :description, :base_image, :internal_port,
                            :internal_port_bridge, :health_endpoint, :min_memory,
                            :min_cpu, :env_vars, :is_active
                        )
                    """),
                    {
                        "id": agent.id,
                        "name": agent.name,
                        "description": agent.description,
                        "base_image": agent.base_image,
                        "internal_port": agent.internal_port,
                        "internal_port_bridge": agent.internal_port_bridge,
                        "health_endpoint": agent.health_endpoint,
                        "min_memory": agent.min_memory,
                        "min_cpu": agent.min_cpu,
                        "env_vars": json.dumps(agent.env_vars),
                        "is_active": agent.is_active,
                    }
                )

            existing_providers = {
                row.id for row in session.execute(text("SELECT id FROM llm_providers"))
            }
            for provider in DEFAULT_LLM_PROVIDERS:
                if provider.id in existing_providers:
                    continue
                session.execute(
                    text("""
                        INSERT INTO llm_providers (id, name, description, env_key, base_url, is_active)
                        VALUES (:id, :name, :description, :env_key, :base_url, :is_active)
                    """),
                    {
                        "id": provider.id,
                        "name": provider.name,
                        "description": provider.description,
                        "env_key": provider.env_key,
                        "base_url": provider.base_url,
                        "is_active": provider.is_active,
                    }
                )

    def ping(self) -> None:
        """Raise if the database is unreachable."""
        with session_scope(self._session_factory) as session:
            session.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def create_tenant(
        self,
        email: str,
        assistant_name: str,
        custom_instructions: str,
        telegram_bot_token: str,
        agent_type_id: str = "openclaw",
        llm_provider_id: str = "openai",
        custom_config: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Tenant:
        """Insert a new tenant in ``pending`` status."""
        if tenant_id is None:
            tenant_id = tenant_id_from_email(email)
        else:
            validate_tenant_id(tenant_id)

        now = _utcnow()
        tenant = Tenant(
            id=tenant_id,
            email=email,
            assistant_name=assistant_name,
            custom_instructions=custom_instructions,
            telegram_bot_token=telegram_bot_token,
            status=TenantStatus.PENDING,
            agent_type_id=agent_type_id or "openclaw",
            llm_provider_id=llm_provider_id or "openai",
            custom_config=custom_config,
            created_at=now,
            updated_at=now,
        )

        with session_scope(self._session_factory) as session:
            session.execute(
                text("""
                    INSERT INTO tenants (
                        id, email, assistant_name, custom_instructions, telegram_bot_token,
                        status, agent_type_id, llm_provider_id, custom_config,
                        created_at, updated_at
                    ) VALUES (
                        :id, :email, :assistant_name, :custom_instructions, :telegram_bot_token,
                        :status, :agent_type_id, :llm_provider_id, :custom_config,
                        :created_at, :updated_at
                    )
                """),
                {
                    "id": tenant.id,
                    "email": tenant.email,
                    "assistant_name": tenant.assistant_name,
                    "custom_instructions": tenant.custom_instructions,
                    "telegram_bot_token": tenant.telegram_bot_token,
                    "status": tenant.status.value,
                    "agent_type_id": tenant.agent_type_id,
                    "llm_provider_id": tenant.llm_provider_id,
                    "custom_config": tenant.custom_config,
                    "created_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                }
            )

        self.record_audit(tenant.id, "created")
        return tenant

    def get_tenant(self, tenant_id: str) -> Tenant:
        """
        Load a tenant.

        Raises:
            NotFoundError: If no tenant has this ID
        """
        with session_scope(self._session_factory) as session:
            row = session.execute(
                text(f"SELECT {_TENANT_COLUMNS} FROM tenants WHERE id = :id"),
                {"id": tenant_id}
            ).fetchone()

        if row is None:
            raise NotFoundError(f"tenant not found: {tenant_id}")
        return _row_to_tenant(row)

    def list_tenants(self, status: Optional[TenantStatus] = None) -> List[Tenant]:
        with session_scope(self._session_factory) as session:
            if status is None:
                rows = session.execute(
                    text(f"SELECT {_TENANT_COLUMNS} FROM tenants ORDER BY created_at")
                ).fetchall()
            else:
                rows = session.execute(
                    text(f"SELECT {_TENANT_COLUMNS} FROM tenants WHERE status = :status ORDER BY created_at"),
                    {"status": TenantStatus(status).value}
                ).fetchall()
        return [_row_to_tenant(row) for row in rows]

    def count_active_tenants(self) -> int:
        """Tenants that hold or may soon hold a container (anything not cancelled)."""
        with session_scope(self._session_factory) as session:
            return session.execute(
                text("SELECT COUNT(*) FROM tenants WHERE status != :cancelled"),
                {"cancelled": TenantStatus.CANCELLED.value}
            ).scalar()

    def update_status(self, tenant_id: str, status: TenantStatus) -> None:
        """
        Set the tenant status; entering ``suspended`` or ``cancelled`` also
        stamps the matching timestamp.
        """
        status = TenantStatus(status)
        now = _utcnow()
        params = {"id": tenant_id, "status": status.value, "now": now.isoformat()}

        if status == TenantStatus.SUSPENDED:
            sql = "UPDATE tenants SET status = :status, updated_at = :now, suspended_at = :now WHERE id = :id"
        elif status == TenantStatus.CANCELLED:
            sql = "UPDATE tenants SET status = :status, updated_at = :now, cancelled_at = :now WHERE id = :id"
        else:
            sql = "UPDATE tenants SET status = :status, updated_at = :now WHERE id = :id"

        self._update_tenant(tenant_id, sql, params)

    def set_port(self, tenant_id: str, port: int) -> None:
        self._update_tenant(
            tenant_id,
            "UPDATE tenants SET container_port = :port, updated_at = :now WHERE id = :id",
            {"id": tenant_id, "port": port, "now": _utcnow().isoformat()},
        )

    def clear_port(self, tenant_id: str) -> None:
        self._update_tenant(
            tenant_id,
            "UPDATE tenants SET container_port = NULL, updated_at = :now WHERE id = :id",
            {"id": tenant_id, "now": _utcnow().isoformat()},
        )

    def set_telegram_username(self, tenant_id: str, username: str) -> None:
        self._update_tenant(
            tenant_id,
            "UPDATE tenants SET telegram_bot_username = :username, updated_at = :now WHERE id = :id",
            {"id": tenant_id, "username": username, "now": _utcnow().isoformat()},
        )

    def _update_tenant(self, tenant_id: str, sql: str, params: Dict[str, Any]) -> None:
        with session_scope(self._session_factory) as session:
            result = session.execute(text(sql), params)
            if result.rowcount == 0:
                raise NotFoundError(f"tenant not found: {tenant_id}")

    # ------------------------------------------------------------------
    # Port ledger
    # ------------------------------------------------------------------

    def record_port_allocation(self, port: int, tenant_id: str) -> None:
        """Insert a ledger row; fails if the port is already recorded."""
        with session_scope(self._session_factory) as session:
            session.execute(
                text("INSERT INTO port_allocations (port, tenant_id, allocated_at) VALUES (:port, :tenant_id, :now)"),
                {"port": port, "tenant_id": tenant_id, "now": _utcnow().isoformat()}
            )

    def release_port_allocation(self, port: int) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                text("DELETE FROM port_allocations WHERE port = :port"),
                {"port": port}
            )

    def list_allocated_ports(self) -> List[int]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                text("SELECT port FROM port_allocations ORDER BY port")
            ).fetchall()
        return [row.port for row in rows]

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_agent_type(self, agent_type_id: str) -> AgentType:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                text("SELECT * FROM agent_types WHERE id = :id AND is_active = :active"),
                {"id": agent_type_id, "active": True}
            ).fetchone()
        if row is None:
            raise NotFoundError(f"agent type not found: {agent_type_id}")
        return _row_to_agent_type(row)

    def list_agent_types(self) -> List[AgentType]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                text("SELECT * FROM agent_types WHERE is_active = :active ORDER BY name"),
                {"active": True}
            ).fetchall()
        return [_row_to_agent_type(row) for row in rows]

    def get_llm_provider(self, provider_id: str) -> LLMProvider:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                text("SELECT * FROM llm_providers WHERE id = :id AND is_active = :active"),
                {"id": provider_id, "active": True}
            ).fetchone()
        if row is None:
            raise NotFoundError(f"llm provider not found: {provider_id}")
        return _row_to_llm_provider(row)

    def list_llm_providers(self) -> List[LLMProvider]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                text("SELECT * FROM llm_providers WHERE is_active = :active ORDER BY name"),
                {"active": True}
            ).fetchall()
        return [_row_to_llm_provider(row) for row in rows]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_audit(self, tenant_id: str, action: str, details: Optional[Dict[str, Any]] = None) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                text("""
                    INSERT INTO audit_log (tenant_id, action, details, created_at)
                    VALUES (:tenant_id, :action, :details, :now)
                """),
                {
                    "tenant_id": tenant_id,
                    "action": action,
                    "details": json.dumps(details) if details is not None else None,
                    "now": _utcnow().isoformat(),
                }
            )

    def list_audit(self, tenant_id: str) -> List[Dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                text("SELECT action, details, created_at FROM audit_log WHERE tenant_id = :tenant_id ORDER BY id"),
                {"tenant_id": tenant_id}
            ).fetchall()
        return [
            {
                "action": row.action,
                "details": json.loads(row.details) if row.details else None,
                "created_at": _as_datetime(row.created_at),
            }
            for row in rows
        ]
