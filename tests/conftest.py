import sys
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

# Add the 'src' directory to the Python path
# This allows pytest to find modules in the 'collabhub' package
# Assumes conftest.py is in the 'tests' directory, and 'src' is a sibling.
added_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '../src'))
sys.path.insert(0, added_path)

from collabhub.registry import AgentRegistry  # noqa: E402
from collabhub.runtime import CollaborationEngine, CommunicationHub, KnowledgeExchange  # noqa: E402
from collabhub.schemas import AgentCard  # noqa: E402
from collabhub.utils.config_manager import SystemConfiguration  # noqa: E402

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock injected into components under test."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return SystemConfiguration()


@pytest.fixture
def registry():
    return AgentRegistry([
        AgentCard(name="infra", capabilities=["performance_monitoring"], expertise=["caching"]),
        AgentCard(name="quality", capabilities=["quality_scoring"], expertise=["testing"]),
        AgentCard(name="ux", capabilities=["personalization"]),
        AgentCard(name="orchestrator", capabilities=["coordination"]),
    ])


@pytest_asyncio.fixture
async def hub(registry, config, clock):
    hub = CommunicationHub(registry, config.hub, clock)
    await hub.initialize()
    yield hub
    await hub.shutdown()


@pytest_asyncio.fixture
async def exchange(registry, hub, config, clock):
    exchange = KnowledgeExchange(registry, hub, config.knowledge, clock)
    await exchange.initialize()
    yield exchange
    await exchange.shutdown()


@pytest_asyncio.fixture
async def engine(registry, hub, exchange, config, clock):
    engine = CollaborationEngine(registry, hub, exchange, config.collaboration, clock)
    await engine.initialize()
    yield engine
    await engine.shutdown()


@pytest.fixture
def fresh_config_manager(tmp_path, monkeypatch):
    """A new ConfigurationManager isolated from the user's home and env."""
    from collabhub.utils import config_manager as config_module

    for env_var in config_module.EnvironmentVariableMapper.ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setattr(config_module.ConfigurationManager, "_instance", None)
    monkeypatch.setattr(config_module, "_config_manager", None)
    return config_module.get_config_manager()
