"""Docker compose descriptor and secret env file generation."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

from provisioner.infra.validation import validate_tenant_id

logger = logging.getLogger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"
SECRETS_FILENAME = ".env.secret"


def container_name(tenant_id: str) -> str:
    return f"agent-{tenant_id}"


@dataclass
class AgentConfig:
    """Everything needed to render one tenant's compose descriptor."""
    tenant_id: str
    agent_type: str  # "openclaw", "myrai", ...
    external_port: int
    internal_port: int
    base_image: str
    llm_env_key: str
    gateway_token: str
    health_endpoint: str = "/health"
    min_memory: str = "512M"
    min_cpu: str = "0.25"
    internal_port_bridge: int = 0
    external_port_bridge: Optional[int] = None


def _common_service(config: AgentConfig) -> Dict[str, Any]:
    ports = [f"{config.external_port}:{config.internal_port}"]
    if config.external_port_bridge and config.internal_port_bridge:
        ports.append(f"{config.external_port_bridge}:{config.internal_port_bridge}")

    return {
        "image": config.base_image,
        "container_name": container_name(config.tenant_id),
        "ports": ports,
        "env_file": [SECRETS_FILENAME],
        "deploy": {
            "resources": {
                "limits": {"memory": config.min_memory, "cpus": config.min_cpu},
                "reservations": {"memory": "128M", "cpus": "0.1"},
            },
        },
        "restart": "unless-stopped",
        "logging": {
            "driver": "json-file",
            "options": {"max-size": "10m", "max-file": "3"},
        },
    }


def _openclaw_service(config: AgentConfig) -> Dict[str, Any]:
    service = _common_service(config)
    service.update({
        "working_dir": "/app",
        "user": "1000:1000",
        "command": (
            "sh -c \"npm install -g openclaw@latest && "
            "mkdir -p /home/node/.openclaw && "
            f"openclaw gateway --port {config.internal_port} --bind lan\""
        ),
        "volumes": ["./config:/home/node/.openclaw"],
        "environment": ["HOME=/home/node"],
        "healthcheck": {
            "test": ["CMD", "wget", "-q", "--spider", f"http://localhost:{config.internal_port}{config.health_endpoint}"],
            "interval": "30s",
            "timeout": "10s",
            "retries": 3,
            "start_period": "60s",
        },
    })
    return service


def _myrai_service(config: AgentConfig) -> Dict[str, Any]:
    service = _common_service(config)
    service.update({
        "command": ["myrai", "server", "--port", str(config.internal_port)],
        "volumes": ["./data:/app/data"],
        "environment": [
            f"MYRAI_GATEWAY_TOKEN={config.gateway_token}",
            f"MYRAI_SERVER_PORT={config.internal_port}",
            "MYRAI_SERVER_ADDRESS=0.0.0.0",
        ],
        "healthcheck": {
            "test": ["CMD", "wget", "--no-verbose", "--tries=1", "--spider",
                     f"http://localhost:{config.internal_port}{config.health_endpoint}"],
            "interval": "30s",
            "timeout": "10s",
            "retries": 3,
            "start_period": "10s",
        },
    })
    return service


# Agent type -> service definition builder
AGENT_TEMPLATES: Dict[str, Callable[[AgentConfig], Dict[str, Any]]] = {
    "openclaw": _openclaw_service,
    "myrai": _myrai_service,
}


class ComposeGenerator:
    """Writes ``docker-compose.yml`` and ``.env.secret`` under ``<base_dir>/<tenant_id>``."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def tenant_dir(self, tenant_id: str) -> Path:
        validate_tenant_id(tenant_id)
        return self.base_dir / tenant_id

    def descriptor_path(self, tenant_id: str) -> Path:
        return self.tenant_dir(tenant_id) / COMPOSE_FILENAME

    def generate(self, config: AgentConfig) -> Path:
        """
        Render the compose descriptor for the configured agent type.

        Raises:
            ValueError: If the agent type has no template
        """
        builder = AGENT_TEMPLATES.get(config.agent_type)
        if builder is None:
            raise ValueError(f"unknown agent type: {config.agent_type}")

        document = {"services": {"agent": builder(config)}}

        tenant_dir = self.tenant_dir(config.tenant_id)
        tenant_dir.mkdir(parents=True, exist_ok=True)
        compose_path = tenant_dir / COMPOSE_FILENAME
        compose_path.write_text(
            yaml.safe_dump(document, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
        logger.debug(
            "Compose descriptor generated",
            extra={"tenant_id": config.tenant_id, "agent_type": config.agent_type, "path": str(compose_path)},
        )
        return compose_path

    def generate_env_file(self, tenant_id: str, env_vars: Dict[str, str]) -> Path:
        """
        Write ``KEY=value`` lines to ``.env.secret`` with owner-only permissions.

        Raises:
            ValueError: If a key or value would break the env file format
        """
        lines = []
        for key in sorted(env_vars):
            value = env_vars[key]
            if not key or "=" in key or any(c.isspace() for c in key):
                raise ValueError(f"invalid env var name: {key!r}")
            if "\n" in value or "\r" in value:
                raise ValueError(f"env var {key} contains a newline")
            lines.append(f"{key}={value}\n")

        tenant_dir = self.tenant_dir(tenant_id)
        tenant_dir.mkdir(parents=True, exist_ok=True)
        env_path = tenant_dir / SECRETS_FILENAME

        # Create with restricted permissions before any secret is written
        fd = os.open(env_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.writelines(lines)
        os.chmod(env_path, 0o600)
        return env_path
