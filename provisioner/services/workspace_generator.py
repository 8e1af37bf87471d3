"""Workspace and agent runtime config rendering for tenant containers."""

import json
import logging
import os
from pathlib import Path
from typing import Dict

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from provisioner.infra.validation import validate_tenant_id

logger = logging.getLogger(__name__)

# Template name -> file written into the workspace directory
WORKSPACE_TEMPLATES = {
    "personal-assistant/AGENTS.md.j2": "AGENTS.md",
    "personal-assistant/USER.md.j2": "USER.md",
    "personal-assistant/SOUL.md.j2": "SOUL.md",
}

DEFAULT_USER_DESCRIPTION = "a user seeking AI assistance"
DEFAULT_RESPONSIBILITIES = "- Provide general assistance as needed"


def extract_user_description(instructions: str) -> str:
    """First non-blank line of the instructions."""
    for line in instructions.splitlines():
        if line.strip():
            return line.strip()
    return DEFAULT_USER_DESCRIPTION


def extract_responsibilities(instructions: str) -> str:
    """Bullet lines (``-`` or ``*``) normalised to ``- item``."""
    items = []
    for line in instructions.splitlines():
        line = line.strip()
        if line.startswith(("-", "*")):
            item = line.lstrip("-*").strip()
            if item:
                items.append(f"- {item}")
    return "\n".join(items) if items else DEFAULT_RESPONSIBILITIES


class WorkspaceGenerator:
    """
    Renders per-tenant files under ``<base_dir>/<tenant_id>/config``.

    The ``config`` directory is mounted into the agent container as its home
    configuration directory.
    """

    def __init__(self, templates_dir: str, base_dir: str):
        self.templates_dir = templates_dir
        self.base_dir = Path(base_dir)
        self.jinja_env = Environment(
            loader=FileSystemLoader(templates_dir),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,  # Markdown output
        )

    def config_dir(self, tenant_id: str) -> Path:
        validate_tenant_id(tenant_id)
        return self.base_dir / tenant_id / "config"

    def workspace_dir(self, tenant_id: str) -> Path:
        return self.config_dir(tenant_id) / "workspace"

    def generate(self, tenant_id: str, assistant_name: str, custom_instructions: str) -> None:
        """Render the workspace markdown files from the tenant's description."""
        context = {
            "assistant_name": assistant_name,
            "user_description": extract_user_description(custom_instructions),
            "custom_instructions": custom_instructions,
            "responsibilities_list": extract_responsibilities(custom_instructions),
        }

        workspace_dir = self.workspace_dir(tenant_id)
        workspace_dir.mkdir(parents=True, exist_ok=True)

        for template_name, filename in WORKSPACE_TEMPLATES.items():
            template = self.jinja_env.get_template(template_name)
            (workspace_dir / filename).write_text(template.render(**context), encoding="utf-8")

        logger.debug("Workspace generated", extra={"tenant_id": tenant_id, "path": str(workspace_dir)})

    def generate_agent_config(
        self,
        tenant_id: str,
        bot_token: str,
        gateway_token: str,
        gateway_port: int = 18789,
    ) -> Path:
        """
        Write the agent's own runtime config (``openclaw.json``).

        The file carries the bot token, so it is written owner-readable only.
        """
        agent_config: Dict = {
            "gateway": {
                "port": gateway_port,
                "auth": {"token": gateway_token},
            },
            "agents": {
                "defaults": {"workspace": "/home/node/.openclaw/workspace"},
            },
            "channels": {
                "telegram": {
                    "enabled": True,
                    "botToken": bot_token,
                    "dmPolicy": "open",
                    "allowFrom": ["*"],
                },
            },
        }

        config_dir = self.config_dir(tenant_id)
        config_dir.mkdir(parents=True, exist_ok=True)
        config_path = config_dir / "openclaw.json"
        config_path.write_text(json.dumps(agent_config, indent=2), encoding="utf-8")
        os.chmod(config_path, 0o600)
        return config_path
