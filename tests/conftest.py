"""
Shared pytest fixtures and configuration for converge-core tests.

This module provides:
- Automatic ``unit`` / ``integration`` markers based on test location
- A deterministic clock for transition-time assertions
- A store, collaborator fakes and a dispatcher wired together

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(dispatcher, store):
            ...
"""

import sys
from pathlib import Path

import pytest

# Ensure converge package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from _support.fakes import (  # noqa: E402
    ReadyStore,
    TickingClock,
    make_collaborators,
    make_dispatcher,
    make_topology,
    seed,
)
from converge.core.settings import ControllerSettings  # noqa: E402


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path) or "dispatcher" in test_path.name:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def settings() -> ControllerSettings:
    return ControllerSettings(_env_file=None)


@pytest.fixture
def store(clock) -> ReadyStore:
    return ReadyStore(clock=clock)


@pytest.fixture
def topology(store):
    """A seeded topology named openstack/octavia with its secrets in place."""
    return seed(store, make_topology())


@pytest.fixture
def collaborators(store):
    return make_collaborators(store)


@pytest.fixture
def dispatcher(collaborators, settings, clock):
    return make_dispatcher(collaborators, settings=settings, clock=clock)
