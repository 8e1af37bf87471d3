"""Tests for the SQLAlchemy tenant store."""

import pytest
from sqlalchemy.exc import IntegrityError

from provisioner.infra.error_handler import NotFoundError
from provisioner.models.tenant import TenantStatus


class TestTenants:
    """Test tenant records."""

    def test_create_and_get(self, store):
        created = store.create_tenant(
            email="Jane.Doe@Example.com",
            assistant_name="Jarvis",
            custom_instructions="Be brief",
            telegram_bot_token="123:abc",
        )

        assert created.id == "jane-doe-example-com"
        tenant = store.get_tenant(created.id)
        assert tenant.status == TenantStatus.PENDING
        assert tenant.container_port is None
        assert tenant.agent_type_id == "openclaw"
        assert tenant.llm_provider_id == "openai"
        assert tenant.created_at is not None

    def test_get_missing_tenant(self, store):
        with pytest.raises(NotFoundError):
            store.get_tenant("ghost")

    def test_duplicate_email_rejected(self, store, make_tenant):
        make_tenant("alice")
        with pytest.raises(IntegrityError):
            store.create_tenant("alice@example.com", "Other", "", "123:abc", tenant_id="alice-2")

    def test_invalid_explicit_id(self, store):
        with pytest.raises(ValueError):
            store.create_tenant("x@example.com", "Bot", "", "123:abc", tenant_id="Not_A_Label")

    def test_status_timestamps(self, store, make_tenant):
        make_tenant("alice")

        store.update_status("alice", TenantStatus.SUSPENDED)
        assert store.get_tenant("alice").suspended_at is not None

        store.update_status("alice", TenantStatus.CANCELLED)
        tenant = store.get_tenant("alice")
        assert tenant.status == TenantStatus.CANCELLED
        assert tenant.cancelled_at is not None

    def test_update_missing_tenant(self, store):
        with pytest.raises(NotFoundError):
            store.update_status("ghost", TenantStatus.ACTIVE)
        with pytest.raises(NotFoundError):
            store.set_port("ghost", 30000)

    def test_port_and_username(self, store, make_tenant):
        make_tenant("alice")

        store.set_port("alice", 30005)
        store.set_telegram_username("alice", "alice_bot")
        tenant = store.get_tenant("alice")
        assert tenant.container_port == 30005
        assert tenant.telegram_bot_username == "alice_bot"

        store.clear_port("alice")
        assert store.get_tenant("alice").container_port is None

    def test_list_and_count(self, store, make_tenant):
        make_tenant("alice")
        make_tenant("bob")
        make_tenant("carol")
        store.update_status("bob", TenantStatus.ACTIVE)
        store.update_status("carol", TenantStatus.CANCELLED)

        assert [t.id for t in store.list_tenants()] == ["alice", "bob", "carol"]
        assert [t.id for t in store.list_tenants(TenantStatus.ACTIVE)] == ["bob"]
        assert store.count_active_tenants() == 2


class TestPortLedger:
    """Test the persisted port allocation ledger."""

    def test_record_and_release(self, store, make_tenant):
        make_tenant("alice")
        store.record_port_allocation(30001, "alice")
        store.record_port_allocation(30000, "alice")

        assert store.list_allocated_ports() == [30000, 30001]

        store.release_port_allocation(30001)
        assert store.list_allocated_ports() == [30000]

    def test_duplicate_port_rejected(self, store):
        store.record_port_allocation(30000, "alice")
        with pytest.raises(IntegrityError):
            store.record_port_allocation(30000, "bob")
        assert store.list_allocated_ports() == [30000]

    def test_release_is_idempotent(self, store):
        store.release_port_allocation(30000)
        store.record_port_allocation(30000, "alice")
        store.release_port_allocation(30000)
        store.release_port_allocation(30000)
        assert store.list_allocated_ports() == []


class TestCatalogAndAudit:
    """Test the seeded catalog and the audit log."""

    def test_seeded_agent_types(self, store):
        openclaw = store.get_agent_type("openclaw")
        assert openclaw.internal_port == 18789
        assert openclaw.internal_port_bridge == 18790
        assert "TELEGRAM_BOT_TOKEN" in openclaw.env_vars

        myrai = store.get_agent_type("myrai")
        assert myrai.health_endpoint == "/api/health"
        assert myrai.internal_port_bridge == 0

        assert {a.id for a in store.list_agent_types()} == {"openclaw", "myrai"}

    def test_seeded_llm_providers(self, store):
        assert store.get_llm_provider("ollama").env_key == "OLLAMA_HOST"
        assert {p.id for p in store.list_llm_providers()} == {"openai", "anthropic", "groq", "ollama"}

    def test_unknown_catalog_entries(self, store):
        with pytest.raises(NotFoundError):
            store.get_agent_type("nope")
        with pytest.raises(NotFoundError):
            store.get_llm_provider("nope")

    def test_init_schema_is_idempotent(self, store):
        store.init_schema()
        assert len(store.list_agent_types()) == 2

    def test_audit_log(self, store, make_tenant):
        make_tenant("alice")
        store.record_audit("alice", "provisioned", {"port": 30000})

        entries = store.list_audit("alice")
        assert [e["action"] for e in entries] == ["created", "provisioned"]
        assert entries[1]["details"] == {"port": 30000}
        assert entries[1]["created_at"] is not None

    def test_ping(self, store):
        store.ping()
