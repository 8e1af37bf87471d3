"""Pytest configuration and fixtures."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before provisioner.infra.config is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")

from provisioner.adapters.container_runtime import NOT_FOUND  # noqa: E402
from provisioner.adapters.telegram_adapter import BotInfo  # noqa: E402
from provisioner.infra.database import create_engine  # noqa: E402
from provisioner.infra.error_handler import ContainerRuntimeError  # noqa: E402
from provisioner.services.compose_generator import ComposeGenerator  # noqa: E402
from provisioner.services.orchestrator import ProvisioningOrchestrator  # noqa: E402
from provisioner.services.port_allocator import PortAllocator  # noqa: E402
from provisioner.services.tenant_store import TenantStore  # noqa: E402
from provisioner.services.workspace_generator import WorkspaceGenerator  # noqa: E402

TEMPLATES_DIR = str(Path(__file__).parent.parent / "provisioner" / "templates")
VALID_BOT_TOKEN = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"


class FakeContainerRuntime:
    """In-memory container runtime; ``fail_on`` maps a method name to the error it raises."""

    def __init__(self):
        self.containers = {}
        self.calls = []
        self.fail_on = {}

    def _maybe_fail(self, method: str, tenant_id: str):
        self.calls.append((method, tenant_id))
        error = self.fail_on.get(method)
        if error is not None:
            raise error

    async def create(self, tenant_id: str) -> None:
        self._maybe_fail("create", tenant_id)
        self.containers[tenant_id] = "created"

    async def start(self, tenant_id: str) -> None:
        self._maybe_fail("start", tenant_id)
        self.containers[tenant_id] = "running"

    async def stop(self, tenant_id: str) -> None:
        self._maybe_fail("stop", tenant_id)
        self.containers[tenant_id] = "exited"

    async def remove(self, tenant_id: str) -> None:
        self._maybe_fail("remove", tenant_id)
        self.containers.pop(tenant_id, None)

    async def status(self, tenant_id: str) -> str:
        self._maybe_fail("status", tenant_id)
        return self.containers.get(tenant_id, NOT_FOUND)


@pytest.fixture
def store():
    """Tenant store backed by a fresh in-memory SQLite database."""
    engine = create_engine("sqlite://")
    tenant_store = TenantStore(engine)
    tenant_store.init_schema()
    yield tenant_store
    engine.dispose()


@pytest.fixture
def make_tenant(store):
    """Factory for pending tenants."""
    def _make(name: str = "alice", agent_type_id: str = "openclaw", llm_provider_id: str = "openai"):
        return store.create_tenant(
            email=f"{name}@example.com",
            assistant_name=f"{name.capitalize()}Bot",
            custom_instructions="Help me plan my week\n- Track meetings\n- Draft emails",
            telegram_bot_token=VALID_BOT_TOKEN,
            agent_type_id=agent_type_id,
            llm_provider_id=llm_provider_id,
            tenant_id=name,
        )
    return _make


@pytest.fixture
def templates_dir():
    return TEMPLATES_DIR


@pytest.fixture
def runtime():
    return FakeContainerRuntime()


@pytest.fixture
def ports():
    return PortAllocator(30000, 30009)


@pytest.fixture
def bot_validator():
    validator = MagicMock()
    validator.validate = AsyncMock(return_value=BotInfo(id=123456789, username="alice_helper_bot", first_name="Alice"))
    return validator


@pytest.fixture
def proxy():
    client = MagicMock()
    client.add_host = AsyncMock()
    client.remove_host = AsyncMock()
    return client


@pytest.fixture
def orchestrator(store, ports, runtime, bot_validator, proxy, tmp_path):
    """Orchestrator wired to the in-memory store, a fake runtime and files under tmp_path."""
    return ProvisioningOrchestrator(
        store=store,
        ports=ports,
        workspace=WorkspaceGenerator(TEMPLATES_DIR, str(tmp_path)),
        compose=ComposeGenerator(str(tmp_path)),
        runtime=runtime,
        bot_validator=bot_validator,
        proxy=proxy,
        base_domain="agents.example.com",
        platform_llm_keys={"OPENAI_API_KEY": "sk-platform-test"},
    )


@pytest.fixture
def runtime_error():
    return ContainerRuntimeError("docker compose failed")
