"""Tests for the admin HTTP API."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from provisioner.adapters.telegram_adapter import BotInfo
from provisioner.infra.config import Config
from provisioner.infra.error_handler import CircuitOpenError, ValidationError
from provisioner.main import build_bot_validator, create_app

ADMIN_HEADERS = {"X-Admin-Token": "api-test-token"}
BOT_TOKEN = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"


@pytest.fixture
def settings(tmp_path):
    settings = Config()
    settings.ADMIN_API_TOKEN = "api-test-token"
    settings.DATABASE_URL = "sqlite://"
    settings.CUSTOMERS_DIR = str(tmp_path / "customers")
    settings.MAX_CUSTOMERS = 2
    settings.PORT_RANGE_START = 30000
    settings.PORT_RANGE_END = 30009
    settings.BASE_DOMAIN = "agents.example.com"
    settings.CADDY_ADMIN_URL = None
    return settings


@pytest.fixture
def validator(settings):
    validator = build_bot_validator(settings)
    validator.validate = AsyncMock(return_value=BotInfo(id=123456789, username="alice_helper_bot", first_name="Alice"))
    return validator


@pytest.fixture
def client(settings, runtime, validator, proxy):
    app = create_app(settings, runtime=runtime, bot_validator=validator, proxy=proxy)
    with TestClient(app) as test_client:
        yield test_client


def register(client, name="alice"):
    return client.post(
        "/tenants",
        headers=ADMIN_HEADERS,
        json={
            "email": f"{name}@example.com",
            "assistant_name": "Jarvis",
            "custom_instructions": "Help me plan my week",
            "telegram_bot_token": BOT_TOKEN,
            "tenant_id": name,
        },
    )


class TestAuth:
    """Test admin token enforcement."""

    def test_missing_token(self, client):
        response = client.get("/tenants")
        assert response.status_code == 401

    def test_wrong_token(self, client):
        response = client.get("/tenants", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 401

    def test_health_is_open(self, client):
        assert client.get("/health").status_code == 200
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert "X-Response-Time-Ms" in response.headers

    def test_unconfigured_token_disables_admin_api(self, settings, runtime, validator, proxy):
        settings.ADMIN_API_TOKEN = None
        app = create_app(settings, runtime=runtime, bot_validator=validator, proxy=proxy)
        with TestClient(app) as client:
            response = client.get("/tenants", headers=ADMIN_HEADERS)
        assert response.status_code == 503


class TestTenantEndpoints:
    """Test tenant registration and lookup."""

    def test_register_tenant(self, client):
        response = register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == "alice"
        assert body["status"] == "pending"
        assert "telegram_bot_token" not in body

    def test_register_duplicate(self, client):
        register(client)
        response = register(client)
        assert response.status_code == 409

    def test_register_invalid_email(self, client):
        response = client.post(
            "/tenants",
            headers=ADMIN_HEADERS,
            json={"email": "not-an-email", "assistant_name": "Jarvis", "telegram_bot_token": BOT_TOKEN},
        )
        assert response.status_code == 400

    def test_register_unknown_agent_type(self, client):
        response = client.post(
            "/tenants",
            headers=ADMIN_HEADERS,
            json={
                "email": "alice@example.com",
                "assistant_name": "Jarvis",
                "telegram_bot_token": BOT_TOKEN,
                "agent_type_id": "hal9000",
            },
        )
        assert response.status_code == 404
        assert response.json()["category"] == "not_found"

    def test_register_at_capacity(self, client):
        register(client, "alice")
        register(client, "bob")

        response = register(client, "carol")
        assert response.status_code == 503

    def test_missing_field(self, client):
        response = client.post("/tenants", headers=ADMIN_HEADERS, json={"email": "alice@example.com"})
        assert response.status_code == 422

    def test_list_and_get(self, client):
        register(client, "alice")
        register(client, "bob")

        listing = client.get("/tenants", headers=ADMIN_HEADERS).json()
        assert listing["count"] == 2
        assert client.get("/tenants?status=active", headers=ADMIN_HEADERS).json()["count"] == 0

        assert client.get("/tenants/bob", headers=ADMIN_HEADERS).json()["email"] == "bob@example.com"

    def test_get_unknown_tenant(self, client):
        response = client.get("/tenants/ghost", headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_malformed_tenant_id(self, client):
        response = client.get("/tenants/Bad_ID", headers=ADMIN_HEADERS)
        assert response.status_code == 400


class TestLifecycleEndpoints:
    """Test provision, suspend, resume and terminate."""

    def test_full_lifecycle(self, client, runtime, proxy):
        register(client)

        response = client.post("/tenants/alice/provision", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["container_port"] == 30000
        proxy.add_host.assert_awaited_once_with("alice.agents.example.com", "localhost:30000")

        container = client.get("/tenants/alice/container", headers=ADMIN_HEADERS).json()
        assert container == {"tenant_id": "alice", "state": "running"}

        assert client.post("/tenants/alice/suspend", headers=ADMIN_HEADERS).json()["status"] == "suspended"
        assert client.post("/tenants/alice/resume", headers=ADMIN_HEADERS).json()["status"] == "active"

        response = client.delete("/tenants/alice", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["container_port"] is None
        assert "alice" not in runtime.containers

    def test_provision_twice_conflicts(self, client):
        register(client)
        client.post("/tenants/alice/provision", headers=ADMIN_HEADERS)

        response = client.post("/tenants/alice/provision", headers=ADMIN_HEADERS)
        assert response.status_code == 409
        assert response.json()["category"] == "business_logic"

    def test_provision_unknown_tenant(self, client):
        response = client.post("/tenants/ghost/provision", headers=ADMIN_HEADERS)
        assert response.status_code == 404
        assert response.json()["step"] == "load_tenant"

    def test_provision_failure_reports_step(self, client, runtime, runtime_error):
        register(client)
        runtime.fail_on["start"] = runtime_error

        response = client.post("/tenants/alice/provision", headers=ADMIN_HEADERS)

        assert response.status_code == 502
        body = response.json()
        assert body["step"] == "start_container"
        assert body["retryable"] is True
        assert client.get("/tenants/alice", headers=ADMIN_HEADERS).json()["status"] == "pending"

    def test_suspend_pending_conflicts(self, client):
        register(client)
        response = client.post("/tenants/alice/suspend", headers=ADMIN_HEADERS)
        assert response.status_code == 409


class TestBotTokenEndpoints:
    """Test bot token validation and circuit breaker admin."""

    def test_validate(self, client):
        response = client.post("/bot-tokens/validate", headers=ADMIN_HEADERS, json={"token": BOT_TOKEN})
        assert response.status_code == 200
        assert response.json() == {"valid": True, "id": 123456789, "username": "alice_helper_bot", "first_name": "Alice"}

    def test_validate_stores_username(self, client):
        register(client)
        client.post("/bot-tokens/validate", headers=ADMIN_HEADERS, json={"token": BOT_TOKEN, "tenant_id": "alice"})

        tenant = client.get("/tenants/alice", headers=ADMIN_HEADERS).json()
        assert tenant["telegram_bot_username"] == "alice_helper_bot"

    def test_rejected_token(self, client, validator):
        validator.validate.side_effect = ValidationError("telegram rejected the bot token")

        response = client.post("/bot-tokens/validate", headers=ADMIN_HEADERS, json={"token": BOT_TOKEN})

        assert response.status_code == 400
        assert response.json()["retryable"] is False

    def test_open_circuit(self, client, validator):
        validator.validate.side_effect = CircuitOpenError("telegram", retry_after=12.3)

        response = client.post("/bot-tokens/validate", headers=ADMIN_HEADERS, json={"token": BOT_TOKEN})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "13"
        assert response.json()["category"] == "circuit_open"

    def test_circuit_breaker_admin(self, client):
        stats = client.get("/admin/circuit-breakers", headers=ADMIN_HEADERS).json()
        assert stats["breakers"][0]["service"] == "telegram"
        assert stats["breakers"][0]["state"] == "closed"

        reset = client.post("/admin/circuit-breakers/reset", headers=ADMIN_HEADERS).json()
        assert reset["breakers"][0]["failures"] == 0


class TestHealthEndpoints:
    """Test readiness and metrics."""

    def test_ready(self, client):
        register(client)
        client.post("/tenants/alice/provision", headers=ADMIN_HEADERS)

        body = client.get("/health/ready").json()
        assert body == {"status": "ready", "ports_available": 9, "ports_capacity": 10}

    def test_metrics(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "provisioning_operations_total" in response.text
