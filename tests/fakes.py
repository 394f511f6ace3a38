"""
In-memory stand-ins for the backend used across the test suite.

``FakeApi`` mimics :class:`bingo_swarm.api.GameApiClient` and
``ScriptedStream`` mimics :class:`bingo_swarm.events.HubEventStream`.
Both record what the participant did so tests can assert on it.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from bingo_swarm.errors import ApiError
from bingo_swarm.events import HubEvent
from bingo_swarm.models import Card, Grid, Identity, WinPredicates

DEFAULT_CARD = Card(card_id=7, grid=Grid(((1, 2), (3, 4))))


class FakeApi:
    """
    Scriptable replacement for the REST client.

    Scripted sequences (``user_ids``, ``listings``) are consumed one item
    per call; the last item repeats once the rest are used up.  Error
    lists are raised one per call before the call starts succeeding.
    """

    def __init__(
        self,
        *,
        user_ids: Iterable = (1,),
        listings: Iterable[list[Card]] | None = None,
        list_errors: Iterable[Exception] = (),
        select_errors: Iterable[Exception] = (),
        reject: Iterable[int] = (),
        login_error: Exception | None = None,
        win_error: Exception | None = None,
    ):
        self._user_ids = list(user_ids)
        self._listings = [list(listing) for listing in (listings or [[DEFAULT_CARD]])]
        self._list_errors = list(list_errors)
        self._select_errors = list(select_errors)
        self._reject = set(reject)
        self._login_error = login_error
        self._win_error = win_error
        self.calls: list[str] = []
        self.selected: list[int] = []
        self.submitted: list[tuple[int, int]] = []
        self.wins: list[WinPredicates] = []
        self.token: str | None = None
        self.closed = False

    @staticmethod
    def _next(items: list):
        return items.pop(0) if len(items) > 1 else items[0]

    def register(self) -> Identity:
        self.calls.append("register")
        user_id = self._next(self._user_ids)
        return Identity(user_id=user_id, secret=f"code-{user_id}")

    def login(self, identity: Identity) -> str:
        self.calls.append("login")
        if self._login_error is not None:
            raise self._login_error
        self.token = f"token-{identity.user_id}"
        return self.token

    def set_token(self, token: str) -> None:
        self.calls.append("set_token")
        self.token = token

    def list_cards(self) -> list[Card]:
        self.calls.append("list_cards")
        if self._list_errors:
            raise self._list_errors.pop(0)
        return list(self._next(self._listings))

    def select_card(self, card_id: int) -> None:
        self.calls.append("select_card")
        if self._select_errors:
            raise self._select_errors.pop(0)
        self.selected.append(card_id)

    def submit_number(self, value: int, score: int) -> None:
        self.calls.append("submit_number")
        if value in self._reject:
            raise ApiError(f"{value} rejected", status_code=400)
        self.submitted.append((value, score))

    def claim_win(self, predicates: WinPredicates) -> None:
        self.calls.append("claim_win")
        if self._win_error is not None:
            raise self._win_error
        self.wins.append(predicates)

    def close(self) -> None:
        self.closed = True


class ScriptedStream:
    """Push channel that delivers a fixed list of events when started."""

    def __init__(self, token, sink, on_reconnect, events, error=None):
        self.token = token
        self.sink = sink
        self.on_reconnect = on_reconnect
        self.events = list(events)
        self.error = error
        self.started = False
        self.closed = False

    def start(self) -> None:
        if self.error is not None:
            raise self.error
        self.started = True
        for event in self.events:
            self.sink.put(event)

    def close(self) -> None:
        self.closed = True


def scripted_stream_factory(events: Iterable[HubEvent], error: Exception | None = None):
    """
    Build a stream factory and the list it records created streams in.

    Returns:
        ``(factory, streams)``.
    """
    streams: list[ScriptedStream] = []
    lock = threading.Lock()
    events = list(events)

    def factory(token, sink, on_reconnect):
        stream = ScriptedStream(token, sink, on_reconnect, events, error)
        with lock:
            streams.append(stream)
        return stream

    return factory, streams
