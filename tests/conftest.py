"""Shared pytest fixtures for the test suite.

Provides reusable modules, simulated networks, journals and executors.
"""

# Add project root to path
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chainplan.config import DeploySettings
from chainplan.deploy.artifacts import StaticArtifactProvider
from chainplan.deploy.executor import Executor
from chainplan.deploy.journal import Journal, JournalStore
from chainplan.deploy.transport import SimulatedTransport
from chainplan.modules.builder import Module, ModuleBuilder, build_module


def token_definition(m: ModuleBuilder) -> dict:
    """Deploy Token, then mint 1000 on it."""
    token = m.contract("Token")
    m.call(token, "mint", [1000])
    return {"token": token}


@pytest.fixture
def token_module() -> Module:
    """TokenModule: Token deploy followed by a mint call."""
    return build_module("TokenModule", token_definition)


@pytest.fixture
def fast_settings() -> DeploySettings:
    """Settings with a small retry budget and short timeouts."""
    return DeploySettings(
        max_retries=2,
        retry_backoff=0.0,
        confirmation_timeout=0.05,
        poll_interval=0.01,
        max_concurrency=1,
        failure_policy="isolate",
    )


@pytest.fixture
def transport() -> SimulatedTransport:
    """Fresh simulated network."""
    return SimulatedTransport()


@pytest.fixture
def artifacts() -> StaticArtifactProvider:
    """Lenient in-memory artifact provider."""
    return StaticArtifactProvider()


@pytest.fixture
def journal_store(tmp_path: Path) -> JournalStore:
    """File-backed journal store in a temporary directory."""
    return JournalStore(tmp_path / "deployments")


@pytest.fixture
def journal(journal_store: JournalStore) -> Journal:
    """Journal of the simulated 'local' network."""
    return journal_store.journal("local")


@pytest.fixture
def make_executor(
    transport: SimulatedTransport,
    journal: Journal,
    artifacts: StaticArtifactProvider,
    fast_settings: DeploySettings,
) -> Callable[..., Executor]:
    """Factory for executors; keyword arguments override the defaults."""

    def factory(**overrides) -> Executor:
        options = {
            "transport": transport,
            "journal": journal,
            "artifacts": artifacts,
            "settings": fast_settings,
        }
        options.update(overrides)
        return Executor(**options)

    return factory
