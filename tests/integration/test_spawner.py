"""
Integration tests for the spawn controller.

Real participant threads run against per-participant fake clients that
share the controller's registries and metrics, so these tests check the
swarm-wide properties: unique card ownership under contention, the
concurrency cap, and that every admitted participant terminates.
"""

from __future__ import annotations

import threading
import time

import pytest

from bingo_swarm.events import DISTRIBUTION_STATUS, STATUS_EVENT, HubEvent
from bingo_swarm.metrics import Counter, Metrics
from bingo_swarm.models import Card, Grid, ParticipantState
from bingo_swarm.participant import VirtualParticipant
from bingo_swarm.registry import ClaimRegistry
from bingo_swarm.spawner import SpawnController
from tests.fakes import FakeApi, scripted_stream_factory

pytestmark = pytest.mark.integration

SHARED_CARD_ID = 1000


class _TimedParticipant:
    """Participant stand-in that tracks how many run at once."""

    lock = threading.Lock()
    running = 0
    peak = 0

    def __init__(self, index: int, duration: float = 0.05):
        self.index = index
        self.duration = duration
        self.state = ParticipantState.IDLE

    def run(self):
        cls = type(self)
        with cls.lock:
            cls.running += 1
            cls.peak = max(cls.peak, cls.running)
        time.sleep(self.duration)
        with cls.lock:
            cls.running -= 1
        self.state = ParticipantState.SUCCEEDED
        return self.state


@pytest.fixture
def timed_participants():
    _TimedParticipant.running = 0
    _TimedParticipant.peak = 0
    return _TimedParticipant


def _contending_factory(settings, metrics, cards, identities):
    """
    Every participant is first offered the same card, then one of its own.

    Exactly one participant can win the shared card; everybody else
    must see a conflict and claim their own listing on the retry.
    """
    grid = Grid(((1, 2), (3, 4)))
    apis: dict[int, FakeApi] = {}

    def factory(index, token):
        api = FakeApi(
            user_ids=[index + 1],
            listings=[[Card(SHARED_CARD_ID, grid)], [Card(index, grid)]],
        )
        apis[index] = api
        stream_factory, _ = scripted_stream_factory(
            [HubEvent(STATUS_EVENT, (DISTRIBUTION_STATUS,))]
        )
        return VirtualParticipant(
            index,
            settings,
            api=api,
            stream_factory=stream_factory,
            resource_registry=cards,
            identity_registry=identities,
            metrics=metrics,
        )

    return factory, apis


def test_contended_cards_end_with_unique_owners(settings):
    # Arrange
    run_settings = settings.replace(participants=12, concurrency=12, run_horizon=0.3)
    metrics = Metrics()
    cards = ClaimRegistry("cards")
    identities = ClaimRegistry("identities")
    factory, apis = _contending_factory(run_settings, metrics, cards, identities)
    controller = SpawnController(
        run_settings,
        metrics=metrics,
        resource_registry=cards,
        identity_registry=identities,
        participant_factory=factory,
    )

    # Act
    report = controller.run()

    # Assert
    selected = [card_id for api in apis.values() for card_id in api.selected]
    assert len(selected) == 12
    assert len(set(selected)) == 12
    assert SHARED_CARD_ID in selected
    assert metrics.get(Counter.CLAIM_CONFLICTS) == 11
    assert metrics.get(Counter.FORCED_CLAIMS) == 0
    assert len(identities) == 12
    assert report.succeeded == 12
    assert report.failed == 0


def test_every_admitted_participant_terminates_within_horizon(settings):
    # Arrange
    run_settings = settings.replace(participants=8, concurrency=8, run_horizon=0.3, join_grace=2.0)
    metrics = Metrics()
    cards = ClaimRegistry("cards")
    identities = ClaimRegistry("identities")
    factory, _ = _contending_factory(run_settings, metrics, cards, identities)
    controller = SpawnController(
        run_settings,
        metrics=metrics,
        resource_registry=cards,
        identity_registry=identities,
        participant_factory=factory,
    )

    # Act
    started = time.monotonic()
    report = controller.run()
    elapsed = time.monotonic() - started

    # Assert
    assert report.admitted == 8
    assert report.unfinished == 0
    assert all(participant.state.terminal for participant in controller.participants)
    assert elapsed < run_settings.run_horizon + run_settings.join_grace
    assert report.metrics["participants_started"] == 8


def test_concurrency_cap_is_respected(settings, timed_participants):
    # Arrange
    run_settings = settings.replace(participants=6, concurrency=2)
    controller = SpawnController(
        run_settings, participant_factory=lambda index, token: timed_participants(index)
    )

    # Act
    report = controller.run()

    # Assert
    assert timed_participants.peak <= 2
    assert report.succeeded == 6


def test_spawn_delay_between_admissions_only(settings, timed_participants):
    # Arrange
    sleeps = []
    run_settings = settings.replace(participants=3, spawn_delay=0.5)
    controller = SpawnController(
        run_settings,
        participant_factory=lambda index, token: timed_participants(index, duration=0),
        sleep=sleeps.append,
    )

    # Act
    controller.run()

    # Assert
    assert sleeps == [0.5, 0.5]


def test_one_participant_per_token(settings, timed_participants):
    seen = []

    def factory(index, token):
        seen.append((index, token))
        return timed_participants(index, duration=0)

    controller = SpawnController(
        settings.replace(participants=50), tokens=["a", "b", "c"], participant_factory=factory
    )

    report = controller.run()

    assert seen == [(0, "a"), (1, "b"), (2, "c")]
    assert report.admitted == 3


def test_progress_is_logged_every_report_interval(settings, timed_participants, caplog):
    controller = SpawnController(
        settings.replace(participants=4, report_every=2),
        participant_factory=lambda index, token: timed_participants(index, duration=0),
    )

    with caplog.at_level("INFO", logger="bingo_swarm.spawner"):
        controller.run()

    spawned = [record.getMessage() for record in caplog.records if "Spawned" in record.getMessage()]
    assert len(spawned) == 2
    assert spawned[0].startswith("Spawned 2/4: participants_started=")


def test_release_sets_go_ahead_once(settings):
    controller = SpawnController(settings.replace(wait_for_go_ahead=True))

    assert controller.go_ahead is not None
    assert not controller.go_ahead.is_set()

    controller.release()
    controller.release()

    assert controller.go_ahead.is_set()


def test_no_go_ahead_signal_unless_requested(settings):
    controller = SpawnController(settings)

    controller.release()

    assert controller.go_ahead is None


def test_go_ahead_releases_waiting_participants(settings):
    # Arrange
    run_settings = settings.replace(
        participants=4, concurrency=4, run_horizon=0.6, wait_for_go_ahead=True
    )
    metrics = Metrics()
    cards = ClaimRegistry("cards")
    identities = ClaimRegistry("identities")
    grid = Grid(((1, 2), (3, 4)))
    holder = {}

    def factory(index, token):
        stream_factory, _ = scripted_stream_factory(
            [HubEvent(STATUS_EVENT, (DISTRIBUTION_STATUS,))]
        )
        return VirtualParticipant(
            index,
            run_settings,
            api=FakeApi(user_ids=[index], listings=[[Card(index, grid)]]),
            stream_factory=stream_factory,
            resource_registry=cards,
            identity_registry=identities,
            metrics=metrics,
            go_ahead=holder["controller"].go_ahead,
        )

    controller = SpawnController(
        run_settings,
        metrics=metrics,
        resource_registry=cards,
        identity_registry=identities,
        participant_factory=factory,
    )
    holder["controller"] = controller
    threading.Timer(0.1, controller.release).start()

    # Act
    controller.run()

    # Assert
    assert metrics.get(Counter.CARDS_SELECTED) == 4
    assert len(cards) == 4
