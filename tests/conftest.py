"""
Shared pytest fixtures for the Bingo Swarm test suite.

Every fixture returns fresh objects so tests never share registries or
counters.  Backend I/O is replaced by the fakes in :mod:`tests.fakes`;
nothing here opens a socket.

Key Concepts Demonstrated:
- Selecting the testing configuration before the package is imported
- Factory fixtures for objects that need per-test customisation
"""

from __future__ import annotations

import os

import pytest

# Set testing environment before importing the package
os.environ["SWARM_ENV"] = "testing"

from bingo_swarm.config import SwarmSettings, get_config
from bingo_swarm.metrics import Metrics
from bingo_swarm.models import Card, Grid
from bingo_swarm.participant import VirtualParticipant
from bingo_swarm.registry import ClaimRegistry
from tests.fakes import FakeApi, scripted_stream_factory


# -----------------------------------------------------------------------------
# Core Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def settings() -> SwarmSettings:
    """Settings frozen from the testing configuration."""
    return SwarmSettings.from_config(get_config("testing"))


@pytest.fixture
def metrics() -> Metrics:
    return Metrics()


@pytest.fixture
def card_registry() -> ClaimRegistry:
    return ClaimRegistry("cards")


@pytest.fixture
def identity_registry() -> ClaimRegistry:
    return ClaimRegistry("identities")


@pytest.fixture
def grid() -> Grid:
    """The 2x2 grid ``[[1, 2], [3, 4]]`` used throughout the scoring examples."""
    return Grid(((1, 2), (3, 4)))


@pytest.fixture
def card(grid) -> Card:
    return Card(card_id=7, grid=grid)


# -----------------------------------------------------------------------------
# Participant Factory
# -----------------------------------------------------------------------------

@pytest.fixture
def participant_factory(settings, metrics, card_registry, identity_registry):
    """
    Factory fixture for wiring a participant to fakes.

    Example:
        def test_something(participant_factory):
            participant, api, streams = participant_factory(events=[...])
            participant.run()
    """

    def _create(
        *,
        index: int = 0,
        api: FakeApi | None = None,
        events=(),
        stream_error: Exception | None = None,
        token: str | None = None,
        go_ahead=None,
        **overrides,
    ):
        overrides.setdefault("run_horizon", 0.2)
        run_settings = settings.replace(**overrides)
        fake_api = api or FakeApi()
        factory, streams = scripted_stream_factory(events, error=stream_error)
        participant = VirtualParticipant(
            index,
            run_settings,
            api=fake_api,
            stream_factory=factory,
            resource_registry=card_registry,
            identity_registry=identity_registry,
            metrics=metrics,
            token=token,
            go_ahead=go_ahead,
            sleep=lambda _: None,
        )
        return participant, fake_api, streams

    return _create
