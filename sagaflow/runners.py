"""
Action registry: plain Python callables as step and compensation runners.

    >>> actions = ActionRegistry()
    >>> @actions.register("reserve_stock")
    ... async def reserve_stock(data):
    ...     return {"reservation_id": "r-1"}
    >>> controller = SagaController(actions)

Callables may be sync or async. Workflow actions receive the StepContext
and may return None, a mapping of data, or a StepResult. Saga actions and
compensations receive the accumulated saga data.

A workflow step is resolved through `config["action"]`, falling back to the
step id.
"""

import inspect
from collections.abc import Callable, Mapping
from typing import Any

from sagaflow.core.exceptions import NotFoundError
from sagaflow.core.logger import get_logger
from sagaflow.core.models import SagaStep, Step, StepContext, StepResult
from sagaflow.core.ports import CompensationRunner, SagaStepRunner, StepRunner

logger = get_logger(__name__)


class ActionRegistry(StepRunner, SagaStepRunner, CompensationRunner):
    """Maps action names to callables and runs them for both engines."""

    def __init__(self, actions: Mapping[str, Callable] | None = None):
        self._actions: dict[str, Callable] = dict(actions or {})

    def register(self, name: str, func: Callable | None = None):
        """Register `func` under `name`; usable as a decorator."""

        def decorator(fn: Callable) -> Callable:
            if not callable(fn):
                msg = f"Action '{name}' must be callable"
                raise TypeError(msg)
            self._actions[name] = fn
            return fn

        if func is not None:
            return decorator(func)
        return decorator

    def get(self, name: str) -> Callable:
        try:
            return self._actions[name]
        except KeyError:
            raise NotFoundError("action", name) from None

    def names(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    async def call(self, name: str, *args: Any) -> Any:
        result = self.get(name)(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def action_for(step: Step) -> str:
        return step.config.get("action") or step.id

    async def run(self, target, payload):
        """
        Dispatch on what is being run:

        * Step: workflow step, `payload` is the StepContext
        * SagaStep: saga action, `payload` is the saga data
        * str: compensation action name, `payload` is the saga data
        """
        if isinstance(target, Step):
            return await self.run_step(target, payload)
        if isinstance(target, SagaStep):
            return await self.run_saga_step(target, payload)
        return await self.call(target, payload)

    async def run_step(self, step: Step, context: StepContext) -> StepResult:
        return StepResult.from_value(await self.call(self.action_for(step), context))

    async def run_saga_step(self, step: SagaStep, data: dict[str, Any]) -> Mapping[str, Any] | None:
        result = await self.call(step.action, data)
        if result is not None and not isinstance(result, Mapping):
            logger.debug(f"Saga action '{step.action}' returned non-mapping {type(result).__name__}")
            return {step.id: result}
        return result
