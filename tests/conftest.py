"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from agentbus.config import Settings

from .helpers import FakeRunner, passing_preflight


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path into tmp_path."""
    return Settings(
        database_url=":memory:",
        agent_timeout=30,
        agent_log_dir=tmp_path / "agents",
    )


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from agentbus.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def event_bus(storage):
    """Create EventBus with storage."""
    from agentbus.event_bus import EventBus

    return EventBus(storage)


@pytest.fixture
def runner(tmp_path):
    """Fake agent runner writing logs under tmp_path."""
    return FakeRunner(tmp_path / "runs")


@pytest_asyncio.fixture
async def orchestrator(event_bus, runner, storage, settings):
    """Orchestrator with a fake runner and a preflight that always passes."""
    from agentbus.orchestrator import Orchestrator

    orch = Orchestrator(
        event_bus,
        runner,
        storage=storage,
        settings=settings,
        preflight=passing_preflight,
    )
    yield orch
    await orch.shutdown()
