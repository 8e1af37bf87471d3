"""
Tenant lifecycle workflows: provision, suspend, resume, terminate.

Provisioning pushes a compensating action after each side effect and
unwinds them newest first when a later step fails, so a failed provision
always leaves the tenant ``pending`` with no port and no container.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Iterable, Optional

from provisioner.adapters.telegram_adapter import BotInfo
from provisioner.infra.error_handler import (
    InvalidStateError,
    NotFoundError,
    ProvisioningStepError,
)
from provisioner.infra.metrics import (
    provisioning_operation_duration,
    provisioning_operations_total,
    proxy_registration_failures_total,
)
from provisioner.logging.event_logger import log_event
from provisioner.models.tenant import Tenant, TenantStatus
from provisioner.services.compensation import CompensationStack
from provisioner.services.compose_generator import AgentConfig

logger = logging.getLogger(__name__)

OPENCLAW = "openclaw"


def _observe(operation: str, status: str, started: float) -> None:
    provisioning_operations_total.labels(operation=operation, status=status).inc()
    provisioning_operation_duration.labels(operation=operation).observe(time.monotonic() - started)


def _check_status(tenant: Tenant, operation: str, allowed: Iterable[TenantStatus]) -> None:
    if tenant.status not in allowed:
        raise InvalidStateError(tenant.id, tenant.status.value, operation)


class ProvisioningOrchestrator:
    """
    Drives tenants through ``pending -> provisioning -> active -> suspended/cancelled``.

    Collaborators are injected. ``ports`` is shared by every workflow; all
    other calls touch only the tenant being operated on. Serializing
    operations on the same tenant is the caller's job.
    """

    def __init__(
        self,
        store,
        ports,
        workspace,
        compose,
        runtime,
        bot_validator,
        proxy=None,
        base_domain: str = "localhost",
        platform_llm_keys: Optional[Dict[str, str]] = None,
    ):
        self.store = store
        self.ports = ports
        self.workspace = workspace
        self.compose = compose
        self.runtime = runtime
        self.bot_validator = bot_validator
        self.proxy = proxy
        self.base_domain = base_domain
        self.platform_llm_keys = platform_llm_keys or {}

    def hostname(self, tenant_id: str) -> str:
        return f"{tenant_id}.{self.base_domain}"

    async def provision(self, tenant_id: str) -> Tenant:
        """
        Provision a pending tenant end to end.

        Returns:
            The tenant record after it became active

        Raises:
            InvalidStateError: If the tenant is not pending
            ProvisioningStepError: If a step failed; everything done before
                it has been rolled back
        """
        started = time.monotonic()
        stack = CompensationStack(tenant_id)
        step = "load_tenant"
        port: Optional[int] = None

        try:
            tenant = self.store.get_tenant(tenant_id)
        except Exception as e:
            _observe("provision", "failure", started)
            raise ProvisioningStepError(tenant_id, step, e) from e

        try:
            _check_status(tenant, "provision", (TenantStatus.PENDING,))
        except InvalidStateError:
            _observe("provision", "rejected", started)
            raise

        try:
            step = "mark_provisioning"
            self.store.update_status(tenant_id, TenantStatus.PROVISIONING)
            stack.push("reset_status", lambda: self.store.update_status(tenant_id, TenantStatus.PENDING))

            step = "render_workspace"
            self.workspace.generate(tenant_id, tenant.assistant_name, tenant.custom_instructions)

            step = "allocate_port"
            port = self.ports.allocate_port()
            stack.push("release_port", lambda: self.ports.release_port(port))
            self.store.record_port_allocation(port, tenant_id)
            stack.push("release_port_allocation", lambda: self.store.release_port_allocation(port))

            step = "assign_port"
            self.store.set_port(tenant_id, port)
            stack.push("clear_port", lambda: self.store.clear_port(tenant_id))

            step = "render_descriptor"
            self._render_descriptor(tenant, port)

            step = "create_container"
            # A failed create can leave partial state behind
            stack.push("remove_container", lambda: self.runtime.remove(tenant_id))
            await self.runtime.create(tenant_id)

            step = "start_container"
            await self.runtime.start(tenant_id)

            step = "mark_active"
            self.store.update_status(tenant_id, TenantStatus.ACTIVE)
        except asyncio.CancelledError:
            logger.warning(
                "Provisioning cancelled, rolling back",
                extra={"tenant_id": tenant_id, "step": step, "compensations": stack.pending},
            )
            await stack.unwind()
            _observe("provision", "cancelled", started)
            raise
        except Exception as e:
            logger.error(
                f"Provisioning failed at {step}: {e}",
                extra={"tenant_id": tenant_id, "step": step, "compensations": stack.pending},
            )
            compensation_errors = await stack.unwind()
            _observe("provision", "failure", started)
            await log_event(self.store, tenant_id, "provision_failed", {
                "step": step,
                "error": str(e),
                "compensation_failures": [err.action for err in compensation_errors],
            })
            raise ProvisioningStepError(tenant_id, step, e) from e

        await self._register_host(tenant_id, port)

        _observe("provision", "success", started)
        await log_event(self.store, tenant_id, "provisioned", {"port": port, "agent_type": tenant.agent_type_id})
        logger.info("Tenant provisioned", extra={"tenant_id": tenant_id, "port": port})
        return self.store.get_tenant(tenant_id)

    def _render_descriptor(self, tenant: Tenant, port: int) -> None:
        agent_type = self.store.get_agent_type(tenant.agent_type_id)
        provider = self.store.get_llm_provider(tenant.llm_provider_id)
        gateway_token = str(uuid.uuid4())

        env_vars = {
            "TELEGRAM_BOT_TOKEN": tenant.telegram_bot_token,
            "GATEWAY_TOKEN": gateway_token,
        }
        llm_key = self.platform_llm_keys.get(provider.env_key)
        if llm_key:
            env_vars[provider.env_key] = llm_key
        else:
            logger.warning(
                "No platform credential configured for LLM provider",
                extra={"tenant_id": tenant.id, "llm_provider": provider.id, "env_key": provider.env_key},
            )

        self.compose.generate_env_file(tenant.id, env_vars)
        self.compose.generate(AgentConfig(
            tenant_id=tenant.id,
            agent_type=agent_type.id,
            external_port=port,
            internal_port=agent_type.internal_port,
            base_image=agent_type.base_image,
            llm_env_key=provider.env_key,
            gateway_token=gateway_token,
            health_endpoint=agent_type.health_endpoint,
            min_memory=agent_type.min_memory,
            min_cpu=agent_type.min_cpu,
            internal_port_bridge=agent_type.internal_port_bridge,
        ))
        if agent_type.id == OPENCLAW:
            self.workspace.generate_agent_config(
                tenant.id, tenant.telegram_bot_token, gateway_token, agent_type.internal_port,
            )

    async def _register_host(self, tenant_id: str, port: int) -> None:
        """Best effort: failures are logged and counted, never raised."""
        if self.proxy is None:
            return
        hostname = self.hostname(tenant_id)
        try:
            await self.proxy.add_host(hostname, f"localhost:{port}")
        except Exception as e:
            proxy_registration_failures_total.inc()
            logger.warning(
                f"Reverse proxy registration failed (non-fatal): {e}",
                extra={"tenant_id": tenant_id, "hostname": hostname},
            )

    async def suspend(self, tenant_id: str) -> Tenant:
        """
        Stop the tenant's container, then mark it suspended.

        Status is left unchanged if the container could not be stopped.
        """
        return await self._transition(
            tenant_id,
            operation="suspend",
            allowed=(TenantStatus.ACTIVE, TenantStatus.SUSPENDED),
            runtime_step=("stop_container", self.runtime.stop),
            target=TenantStatus.SUSPENDED,
            audit_action="suspended",
        )

    async def resume(self, tenant_id: str) -> Tenant:
        """Start the tenant's container, then mark it active."""
        return await self._transition(
            tenant_id,
            operation="resume",
            allowed=(TenantStatus.SUSPENDED, TenantStatus.ACTIVE),
            runtime_step=("start_container", self.runtime.start),
            target=TenantStatus.ACTIVE,
            audit_action="resumed",
        )

    async def _transition(self, tenant_id, operation, allowed, runtime_step, target, audit_action) -> Tenant:
        started = time.monotonic()
        step = "load_tenant"
        try:
            tenant = self.store.get_tenant(tenant_id)
            _check_status(tenant, operation, allowed)

            step, runtime_call = runtime_step
            await runtime_call(tenant_id)

            step = f"mark_{target.value}"
            self.store.update_status(tenant_id, target)
        except InvalidStateError:
            _observe(operation, "rejected", started)
            raise
        except Exception as e:
            _observe(operation, "failure", started)
            logger.error(
                f"{operation.capitalize()} failed at {step}: {e}",
                extra={"tenant_id": tenant_id, "step": step},
            )
            raise ProvisioningStepError(tenant_id, step, e) from e

        _observe(operation, "success", started)
        await log_event(self.store, tenant_id, audit_action)
        logger.info(f"Tenant {audit_action}", extra={"tenant_id": tenant_id})
        return self.store.get_tenant(tenant_id)

    async def terminate(self, tenant_id: str) -> Tenant:
        """
        Release the tenant's port, remove its container and mark it cancelled.

        Safe to call again after a partial failure or on an already
        cancelled tenant.
        """
        started = time.monotonic()
        step = "load_tenant"
        try:
            tenant = self.store.get_tenant(tenant_id)

            if tenant.container_port is not None:
                step = "release_port"
                port = tenant.container_port
                self.store.release_port_allocation(port)
                self.ports.release_port(port)
                self.store.clear_port(tenant_id)

            if self.proxy is not None:
                step = "remove_host"
                await self._remove_host(tenant_id)

            step = "remove_container"
            await self.runtime.remove(tenant_id)

            step = "mark_cancelled"
            self.store.update_status(tenant_id, TenantStatus.CANCELLED)
        except Exception as e:
            _observe("terminate", "failure", started)
            logger.error(
                f"Terminate failed at {step}: {e}",
                extra={"tenant_id": tenant_id, "step": step},
            )
            raise ProvisioningStepError(tenant_id, step, e) from e

        _observe("terminate", "success", started)
        await log_event(self.store, tenant_id, "terminated")
        logger.info("Tenant terminated", extra={"tenant_id": tenant_id})
        return self.store.get_tenant(tenant_id)

    async def _remove_host(self, tenant_id: str) -> None:
        hostname = self.hostname(tenant_id)
        try:
            await self.proxy.remove_host(hostname)
        except NotFoundError:
            logger.debug("No proxy route to remove", extra={"tenant_id": tenant_id, "hostname": hostname})
        except Exception as e:
            logger.warning(
                f"Reverse proxy removal failed (non-fatal): {e}",
                extra={"tenant_id": tenant_id, "hostname": hostname},
            )

    async def validate_bot_token(self, token: str, tenant_id: Optional[str] = None) -> BotInfo:
        """
        Validate a bot token through the circuit breaker.

        When ``tenant_id`` is given the bot username is stored on the tenant.

        Raises:
            CircuitOpenError: Validation dependency is short-circuited, retry later
            ValidationError: Token rejected, do not retry
        """
        info = await self.bot_validator.validate(token)
        if tenant_id is not None:
            self.store.set_telegram_username(tenant_id, info.username)
        return info

    async def container_status(self, tenant_id: str) -> str:
        """Runtime state of the tenant's container (``running``, ``exited``, ``not_found``, ...)."""
        self.store.get_tenant(tenant_id)
        return await self.runtime.status(tenant_id)
