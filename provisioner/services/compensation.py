"""Stack of compensating actions for multi-step workflows."""

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Tuple, Union

from provisioner.infra.error_handler import CompensationError
from provisioner.infra.metrics import compensation_failures_total

logger = logging.getLogger(__name__)

CompensatingAction = Callable[[], Union[None, Awaitable[Any]]]


class CompensationStack:
    """
    Records how to undo each completed step of one workflow run.

    Actions are pushed after the step they undo succeeds and are executed in
    reverse order by ``unwind``. A failing action is logged and skipped so
    the remaining actions still run.
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._actions: List[Tuple[str, CompensatingAction]] = []

    def push(self, name: str, action: CompensatingAction) -> None:
        self._actions.append((name, action))

    @property
    def pending(self) -> List[str]:
        """Names of actions that ``unwind`` would run, in execution order."""
        return [name for name, _ in reversed(self._actions)]

    def __len__(self) -> int:
        return len(self._actions)

    async def unwind(self) -> List[CompensationError]:
        """Run every action newest first. Returns the failures; never raises them."""
        errors: List[CompensationError] = []
        while self._actions:
            name, action = self._actions.pop()
            try:
                result = action()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                error = CompensationError(self.tenant_id, name, e)
                errors.append(error)
                compensation_failures_total.labels(action=name).inc()
                logger.error(
                    str(error),
                    exc_info=True,
                    extra={"tenant_id": self.tenant_id, "action": name},
                )
            else:
                logger.debug(
                    "Compensation step completed",
                    extra={"tenant_id": self.tenant_id, "action": name},
                )
        return errors
