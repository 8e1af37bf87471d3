"""Docker compose container runtime adapter."""

import asyncio
import logging
from pathlib import Path
from typing import Tuple

from provisioner.infra.error_handler import ContainerRuntimeError
from provisioner.infra.timeout import CONTAINER_COMMAND_TIMEOUT
from provisioner.infra.validation import validate_tenant_id
from provisioner.services.compose_generator import COMPOSE_FILENAME, container_name

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"


class DockerComposeRuntime:
    """
    Drives one compose project per tenant by shelling out to ``docker compose``.

    Every command is bounded by ``timeout`` seconds; a command that overruns
    or whose caller is cancelled is killed.
    """

    def __init__(self, base_dir: str, timeout: float = CONTAINER_COMMAND_TIMEOUT, docker_binary: str = "docker"):
        self.base_dir = Path(base_dir)
        self.timeout = timeout
        self.docker_binary = docker_binary

    def _tenant_dir(self, tenant_id: str) -> Path:
        validate_tenant_id(tenant_id)
        return self.base_dir / tenant_id

    def _compose_path(self, tenant_id: str) -> Path:
        return self._tenant_dir(tenant_id) / COMPOSE_FILENAME

    async def _run(self, *args: str, cwd: Path = None) -> Tuple[int, str]:
        """Run a docker command. Returns (exit code, combined output)."""
        cmd = [self.docker_binary, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ContainerRuntimeError(f"{args[0]} could not be launched: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("Docker command timed out after %ss: %s", self.timeout, " ".join(args))
            raise ContainerRuntimeError(f"docker {' '.join(args[:3])} timed out after {self.timeout}s")
        except asyncio.CancelledError:
            proc.kill()
            raise

        return proc.returncode, stdout.decode("utf-8", errors="replace")

    async def _compose(self, tenant_id: str, *args: str) -> None:
        compose_path = self._compose_path(tenant_id)
        returncode, output = await self._run(
            "compose", "-f", str(compose_path), *args,
            cwd=compose_path.parent,
        )
        if returncode != 0:
            raise ContainerRuntimeError(f"docker compose {args[0]} failed for tenant {tenant_id}", output=output)

    async def create(self, tenant_id: str) -> None:
        """
        Create (but do not start) the tenant's containers.

        Raises:
            ContainerRuntimeError: If no descriptor exists or docker fails
        """
        if not self._compose_path(tenant_id).exists():
            raise ContainerRuntimeError(f"{COMPOSE_FILENAME} not found for tenant {tenant_id}")
        await self._compose(tenant_id, "create")
        logger.info("Container created", extra={"tenant_id": tenant_id})

    async def start(self, tenant_id: str) -> None:
        await self._compose(tenant_id, "up", "-d")
        logger.info("Container started", extra={"tenant_id": tenant_id})

    async def stop(self, tenant_id: str) -> None:
        await self._compose(tenant_id, "stop")
        logger.info("Container stopped", extra={"tenant_id": tenant_id})

    async def remove(self, tenant_id: str) -> None:
        """Tear down containers and volumes. A tenant without a descriptor has nothing to remove."""
        if not self._compose_path(tenant_id).exists():
            logger.info("No descriptor, nothing to remove", extra={"tenant_id": tenant_id})
            return
        await self._compose(tenant_id, "down", "-v")
        logger.info("Container removed", extra={"tenant_id": tenant_id})

    async def status(self, tenant_id: str) -> str:
        """Docker state of the tenant container (``running``, ``exited``, ...) or ``not_found``."""
        validate_tenant_id(tenant_id)
        returncode, output = await self._run(
            "inspect", "-f", "{{.State.Status}}", container_name(tenant_id),
        )
        if returncode == 1:
            return NOT_FOUND
        if returncode != 0:
            raise ContainerRuntimeError(f"docker inspect failed for tenant {tenant_id}", output=output)
        return output.strip()
