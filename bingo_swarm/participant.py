"""
Virtual participant: one simulated bingo player.

A participant walks through the full client protocol on its own thread:

    idle -> registering -> authenticating -> connecting
         -> awaiting_distribution -> claiming_resource
         -> resource_assigned -> playing -> succeeded

and drops to ``failed`` from any non-terminal state on a fatal error.
No state is revisited; hub reconnects happen underneath without
touching the state machine.

After connecting, everything is driven by push events.  The hub reader
thread only *enqueues* :class:`~bingo_swarm.events.HubEvent` values on
the participant's inbox; the participant thread is the only one that
dequeues them and mutates participant state, so events are handled
strictly in delivery order and participant fields need no locking.  The
only state shared with other participants lives in the two claim
registries and the metrics, all of which lock internally.

Key Concepts Demonstrated:
- Explicit state machine with a whitelist of legal transitions
- Single-consumer inbox queue in place of callbacks mutating shared state
- Bounded retries with a last-resort forced claim instead of starvation
- Every failure path tagged with an error category and counted
"""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from collections.abc import Callable

from .api import GameApiClient, call_with_retries
from .config import SwarmSettings
from .errors import (
    AuthenticationError,
    ErrorCategory,
    RetryBudgetExhausted,
    SwarmError,
)
from .events import (
    DISTRIBUTION_STATUS,
    EMISSION_STATUS,
    NUMBER_EVENT,
    STATUS_EVENT,
    TIMER_EVENT,
    EventStream,
    EventStreamFactory,
    HubEvent,
    raise_for_closed,
)
from .metrics import Counter, Metrics
from .models import Card, Grid, Identity, ParticipantState
from .pacer import SelectionPacer
from .registry import ClaimRegistry
from .scoring import DEFAULT_SCORING_LINES, ScoringLines
from .tokens import identity_from_token

logger = logging.getLogger(__name__)

S = ParticipantState

ALLOWED_TRANSITIONS: dict[ParticipantState, frozenset[ParticipantState]] = {
    S.IDLE: frozenset({S.REGISTERING, S.FAILED}),
    S.REGISTERING: frozenset({S.AUTHENTICATING, S.FAILED}),
    S.AUTHENTICATING: frozenset({S.CONNECTING, S.FAILED}),
    S.CONNECTING: frozenset({S.AWAITING_DISTRIBUTION, S.FAILED}),
    S.AWAITING_DISTRIBUTION: frozenset({S.CLAIMING_RESOURCE, S.SUCCEEDED, S.FAILED}),
    S.CLAIMING_RESOURCE: frozenset({S.RESOURCE_ASSIGNED, S.FAILED}),
    S.RESOURCE_ASSIGNED: frozenset({S.PLAYING, S.SUCCEEDED, S.FAILED}),
    S.PLAYING: frozenset({S.SUCCEEDED, S.FAILED}),
    S.SUCCEEDED: frozenset(),
    S.FAILED: frozenset(),
}


class VirtualParticipant:
    """
    State machine for one simulated player.

    Args:
        index: Admission index.  Used as the registry claimant and as
            the actor id that decides the pacer's trigger tick.
        settings: Shared run settings.
        api: This participant's own REST client.
        stream_factory: Opens the push channel; see
            :data:`~bingo_swarm.events.EventStreamFactory`.
        resource_registry: Process-wide card id -> participant registry.
        identity_registry: Process-wide user id -> participant registry.
        metrics: Process-wide counters.
        token: Pre-issued bearer token.  When given, registration and
            login are skipped and the identity is read from the token.
        go_ahead: Optional one-shot signal; when given, the participant
            waits for it before claiming a card.
        rng: Random source for jitter delays.
        sleep: Sleep function, replaced in tests.
        clock: Monotonic clock, replaced in tests.

    Attributes:
        state: Current :class:`~bingo_swarm.models.ParticipantState`.
        identity: Backend identity once registered.
        claimed_card: Card bound to this participant by the registry.
        playing_grid: Grid snapshot taken when emission starts.
        failure: The error that failed the participant, if any.
    """

    def __init__(
        self,
        index: int,
        settings: SwarmSettings,
        *,
        api: GameApiClient,
        stream_factory: EventStreamFactory,
        resource_registry: ClaimRegistry,
        identity_registry: ClaimRegistry,
        metrics: Metrics,
        token: str | None = None,
        go_ahead: threading.Event | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.index = index
        self.settings = settings
        self.api = api
        self.stream_factory = stream_factory
        self.resource_registry = resource_registry
        self.identity_registry = identity_registry
        self.metrics = metrics
        self.token = token
        self.go_ahead = go_ahead
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._clock = clock

        self.state = ParticipantState.IDLE
        self.identity: Identity | None = None
        self.claimed_card: Card | None = None
        self.playing_grid: Grid | None = None
        self.failure: BaseException | None = None
        self.inbox: "queue.Queue[HubEvent]" = queue.Queue()
        self._stream: EventStream | None = None
        self._deadline = 0.0

        scoring_lines = DEFAULT_SCORING_LINES
        if settings.score_full_grid:
            scoring_lines |= ScoringLines.FULL_GRID
        self.pacer = SelectionPacer(
            actor_id=index,
            window=settings.trigger_window,
            submit=self._submit_mark,
            report_win=self.api.claim_win,
            metrics=metrics,
            jitter=settings.selection_jitter,
            scoring_lines=scoring_lines,
            rng=self._rng,
            sleep=sleep,
        )

    def __repr__(self) -> str:
        return f"VirtualParticipant(index={self.index}, state={self.state.value})"

    @property
    def confirmed_marks(self) -> frozenset[int]:
        return self.pacer.confirmed

    # =================================================================
    # Driving loop
    # =================================================================

    def run(self) -> ParticipantState:
        """
        Play the whole protocol until the run horizon or a fatal error.

        Never raises: every failure is recorded on ``self.failure``,
        logged, and counted in the metrics.

        Returns:
            The terminal state (``SUCCEEDED`` or ``FAILED``).
        """
        self._deadline = self._clock() + self.settings.run_horizon
        self.metrics.increment(Counter.PARTICIPANTS_STARTED)
        try:
            self._acquire_identity()
            self._authenticate()
            self._connect()
            self._transition(S.AWAITING_DISTRIBUTION)
            self._event_loop()
        except SwarmError as exc:
            self._fail(exc, exc.category)
        except Exception as exc:
            logger.exception("Participant %d: unexpected error", self.index)
            self._fail(exc, ErrorCategory.APPLICATION)
        else:
            self._transition(S.SUCCEEDED)
            self.metrics.increment(Counter.PARTICIPANTS_SUCCEEDED)
            logger.debug("Participant %d: run horizon reached", self.index)
        finally:
            self._shutdown()
        return self.state

    def _remaining(self) -> float:
        return self._deadline - self._clock()

    def _event_loop(self) -> None:
        while True:
            remaining = self._remaining()
            if remaining <= 0:
                return
            try:
                event = self.inbox.get(timeout=remaining)
            except queue.Empty:
                return
            self.handle_event(event)

    def _transition(self, new_state: ParticipantState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Participant {self.index}: illegal transition "
                f"{self.state.value} -> {new_state.value}"
            )
        logger.debug(
            "Participant %d: %s -> %s", self.index, self.state.value, new_state.value
        )
        self.state = new_state

    def _fail(self, exc: BaseException, category: ErrorCategory) -> None:
        self.failure = exc
        if not self.state.terminal:
            self._transition(S.FAILED)
        self.metrics.record_failure(category)
        logger.error(
            "Participant %d failed (%s): %s", self.index, category.value, exc
        )

    def _shutdown(self) -> None:
        if self._stream is not None:
            self._stream.close()
        self.api.close()

    def _count_error(self, exc: SwarmError) -> None:
        if exc.category is ErrorCategory.TRANSPORT:
            self.metrics.increment(Counter.TRANSPORT_ERRORS)
        elif exc.category is ErrorCategory.PROTOCOL:
            self.metrics.increment(Counter.PROTOCOL_ERRORS)

    def _jitter(self) -> None:
        if self.settings.selection_jitter > 0:
            self._sleep(self._rng.uniform(0, self.settings.selection_jitter))

    # =================================================================
    # Setup phases
    # =================================================================

    def _acquire_identity(self) -> None:
        """
        Obtain an identity that no other participant holds.

        A registered identity that collides with one already claimed in
        this process is discarded and registration is retried, up to
        ``max_identity_retries`` times.  A pre-issued token cannot be
        re-issued, so its collision fails the participant at once.
        """
        self._transition(S.REGISTERING)
        if self.token is not None:
            identity = identity_from_token(self.token)
            if not self.identity_registry.claim_one(identity.user_id, self.index).success:
                self.metrics.increment(Counter.IDENTITY_COLLISIONS)
                raise RetryBudgetExhausted(
                    f"Token identity {identity.user_id} already used by participant "
                    f"{self.identity_registry.owner_of(identity.user_id)}"
                )
            self.identity = identity
            return

        attempts = self.settings.max_identity_retries
        for attempt in range(1, attempts + 1):
            identity = self.api.register()
            result = self.identity_registry.claim_one(identity.user_id, self.index)
            if result.success:
                self.identity = identity
                logger.info("Participant %d: got user ID %s", self.index, identity.user_id)
                return
            self.metrics.increment(Counter.IDENTITY_COLLISIONS)
            logger.warning(
                "Participant %d: identity collision (%s), retrying (%d/%d)",
                self.index,
                result.describe_conflicts(),
                attempt,
                attempts,
            )
        raise RetryBudgetExhausted(
            f"No unique identity after {attempts} registration attempts"
        )

    def _authenticate(self) -> None:
        self._transition(S.AUTHENTICATING)
        if self.token is not None:
            self.api.set_token(self.token)
            return
        self.token = self.api.login(self.identity)
        logger.info("Participant %d: logged in", self.index)

    def _connect(self) -> None:
        self._transition(S.CONNECTING)
        self._stream = self.stream_factory(self.token, self.inbox, self._on_reconnect)
        self._stream.start()
        logger.info("Participant %d: hub connection started", self.index)

    def _on_reconnect(self) -> None:
        # Runs on the hub reader thread; only touches the shared counters.
        self.metrics.increment(Counter.RECONNECTS)

    # =================================================================
    # Event handling
    # =================================================================

    def handle_event(self, event: HubEvent) -> None:
        """
        Apply one push event to the state machine.

        Events that make no sense in the current state are ignored.

        Raises:
            StreamClosedError: For the hub's terminal close event.
        """
        raise_for_closed(event)
        if event.name == STATUS_EVENT:
            self._on_status(event.argument)
        elif event.name == NUMBER_EVENT:
            value = self._int_argument(event)
            if value is not None:
                self._on_number(value)
        elif event.name == TIMER_EVENT:
            value = self._int_argument(event)
            if value is not None:
                self._on_timer(value)
        else:
            logger.debug("Participant %d: ignoring event %s", self.index, event.name)

    def _int_argument(self, event: HubEvent) -> int | None:
        try:
            return int(event.argument)
        except (TypeError, ValueError):
            self.metrics.increment(Counter.PROTOCOL_ERRORS)
            logger.warning(
                "Participant %d: %s event with bad argument %r",
                self.index,
                event.name,
                event.argument,
            )
            return None

    def _on_status(self, status: object) -> None:
        logger.debug("Participant %d: status = %s", self.index, status)
        if status == DISTRIBUTION_STATUS and self.state is S.AWAITING_DISTRIBUTION:
            if self.go_ahead is not None and not self.go_ahead.wait(
                timeout=max(self._remaining(), 0)
            ):
                return
            self._claim_resource()
        elif status == EMISSION_STATUS and self.state is S.RESOURCE_ASSIGNED:
            self.playing_grid = self.claimed_card.grid
            self.pacer.bind(self.playing_grid)
            self._transition(S.PLAYING)
            logger.info(
                "Participant %d: playing with card %d",
                self.index,
                self.claimed_card.card_id,
            )

    def _on_number(self, value: int) -> None:
        if self.state is not S.PLAYING:
            return
        if self.pacer.enqueue(value):
            logger.debug("Participant %d: queued %d", self.index, value)

    def _on_timer(self, countdown: int) -> None:
        if self.state is not S.PLAYING:
            return
        self.pacer.on_tick(countdown)

    # =================================================================
    # Card claim
    # =================================================================

    def _on_retry_error(self, exc: SwarmError, attempt: int) -> None:
        self._count_error(exc)
        logger.warning("Participant %d: attempt %d failed: %s", self.index, attempt, exc)

    def _claim_resource(self) -> None:
        """
        Claim a card listing nobody else holds, then select its first card.

        Each attempt lists cards and claims every listed id as one batch.
        Listing errors and conflicts both use up an attempt.  When the
        budget runs out with a listing in hand, the participant forces
        the claim and carries on with possibly shared cards; without any
        listing it fails.
        """
        self._transition(S.CLAIMING_RESOURCE)
        attempts = self.settings.max_claim_retries
        cards: list[Card] = []
        claimed = False

        for attempt in range(1, attempts + 1):
            try:
                cards = self.api.list_cards()
            except AuthenticationError:
                raise
            except SwarmError as exc:
                self._count_error(exc)
                logger.warning(
                    "Participant %d: error getting cards: %s. Retrying (%d/%d)",
                    self.index,
                    exc,
                    attempt,
                    attempts,
                )
                self._sleep(self.settings.claim_error_delay)
                continue

            card_ids = [card.card_id for card in cards]
            result = self.resource_registry.try_claim(card_ids, self.index)
            if result.success:
                claimed = True
                break

            self.metrics.increment(Counter.CLAIM_CONFLICTS)
            logger.warning(
                "Participant %d: received duplicate cards! %s. Retrying (%d/%d)",
                self.index,
                result.describe_conflicts(),
                attempt,
                attempts,
            )
            self._sleep(self.settings.claim_conflict_delay)

        if not claimed:
            if not cards:
                raise RetryBudgetExhausted(
                    f"Could not get cards after {attempts} attempts"
                )
            result = self.resource_registry.force_claim(
                [card.card_id for card in cards], self.index
            )
            self.metrics.increment(Counter.FORCED_CLAIMS)
            logger.warning(
                "Participant %d: could not get unique cards after %d attempts. "
                "Proceeding with potentially duplicate cards (%s)",
                self.index,
                attempts,
                result.describe_conflicts() or "no live conflicts",
            )

        logger.info(
            "Participant %d: got cards %s",
            self.index,
            ", ".join(str(card.card_id) for card in cards),
        )
        self._select_card(cards[0])

    def _select_card(self, card: Card) -> None:
        self._jitter()
        call_with_retries(
            lambda: self.api.select_card(card.card_id),
            attempts=self.settings.max_select_retries,
            delay=self.settings.claim_error_delay,
            on_error=self._on_retry_error,
            sleep=self._sleep,
        )
        self.claimed_card = card
        self._transition(S.RESOURCE_ASSIGNED)
        self.metrics.increment(Counter.CARDS_SELECTED)
        logger.info("Participant %d: card %d selected", self.index, card.card_id)

    # =================================================================
    # Pacer callbacks
    # =================================================================

    def _submit_mark(self, value: int, score: int) -> None:
        try:
            self.api.submit_number(value, score)
        except SwarmError as exc:
            self._count_error(exc)
            raise

