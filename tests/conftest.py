"""
Pytest configuration and shared fixtures for sagaflow tests.

Every test gets its own ledger, repository, notification sink and state
store; nothing relies on process-wide engine state.
"""

import logging

import pytest
import pytest_asyncio

from sagaflow.core import env as env_module
from sagaflow.core.config import EngineConfig, configure
from sagaflow.core.env import EnvManager
from sagaflow.core.logger import set_logger
from sagaflow.core.models import Step, Trigger, WorkflowDefinition
from sagaflow.notifications.dispatcher import NotificationDispatcher
from sagaflow.notifications.memory import InMemoryNotificationSink
from sagaflow.repository import InMemoryDefinitionRepository
from sagaflow.runners import ActionRegistry
from sagaflow.saga.controller import SagaController
from sagaflow.storage.memory import InMemoryStateStore
from sagaflow.workflow.coordinator import WorkflowCoordinator

# ============================================
# AUTO-USE FIXTURES
# ============================================


@pytest.fixture(autouse=True)
def reset_globals():
    """Tests must not leak a configured engine or custom logger into each other."""
    yield
    configure(None)
    set_logger(None)


# ============================================
# COLLABORATORS
# ============================================


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Global EnvManager rooted in an empty directory, so no stray .env file is loaded."""
    manager = EnvManager(project_root=tmp_path)
    monkeypatch.setattr(env_module, "_global_env", manager)
    return manager


@pytest.fixture
def sagaflow_logger():
    """Restore the sagaflow logger after setup_logging() reconfigures it."""
    logger = logging.getLogger("sagaflow")
    handlers, level = logger.handlers[:], logger.level
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest_asyncio.fixture
async def dispatcher(sink):
    """Dispatcher whose workers are stopped when the test ends."""
    dispatcher = NotificationDispatcher([sink], retry_delay=0)
    yield dispatcher
    await dispatcher.aclose()


@pytest.fixture
def state_store():
    return InMemoryStateStore()


@pytest.fixture
def config(state_store):
    return EngineConfig(state_store=state_store, logging=False)


@pytest.fixture
def actions():
    return ActionRegistry()


@pytest.fixture
def repository():
    return InMemoryDefinitionRepository()


@pytest.fixture
def sleeps():
    """Delays requested through the coordinator's injected sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)

    return _sleep


# ============================================
# ENGINES
# ============================================


@pytest.fixture
def coordinator(repository, actions, dispatcher, config, fake_sleep):
    return WorkflowCoordinator(
        repository, actions, notifier=dispatcher, config=config, sleep=fake_sleep
    )


@pytest.fixture
def controller(actions, dispatcher, config):
    return SagaController(actions, notifier=dispatcher, config=config)


@pytest.fixture
def publish(repository):
    """Register a definition and make it executable."""

    async def _publish(definition):
        stored = await repository.register(definition)
        return await repository.publish(stored.id)

    return _publish


@pytest.fixture
def linear_workflow():
    """Factory: step_ids[0] -> step_ids[1] -> ... triggered by `event_type`."""

    def _build(*step_ids, event_type="order.created", name="order-flow", **step_options):
        steps = [
            Step(
                id=step_id,
                next=(step_ids[i + 1],) if i + 1 < len(step_ids) else (),
                **step_options,
            )
            for i, step_id in enumerate(step_ids)
        ]
        return WorkflowDefinition(
            id=f"{name}@1.0.0",
            name=name,
            version="1.0.0",
            triggers=(Trigger(event_type, step_ids[0]),),
            steps=tuple(steps),
        )

    return _build
