"""
Push-event channel from the backend's notification hub.

The backend broadcasts game progress over an ASP.NET Core SignalR hub.
This module speaks just enough of SignalR's JSON hub protocol to receive
those broadcasts on a plain websocket:

1. ``POST {hub}/negotiate?negotiateVersion=1`` with the bearer token
   returns a connection token (or a redirect URL plus access token).
2. A websocket is opened to ``{hub}?id=<connection token>``.
3. The client sends the handshake ``{"protocol":"json","version":1}``
   and waits for the empty ``{}`` acknowledgement.
4. From then on every frame holds one or more JSON messages, each
   terminated by the ASCII record separator ``0x1E``.  Invocation
   messages (``type`` 1) carry a ``target`` such as ``status``,
   ``NumberSelected`` or ``Timer`` and a list of ``arguments``.

Each :class:`HubEventStream` runs one background reader thread that
turns invocations into :class:`HubEvent` values and puts them on the
owning participant's inbox queue, in arrival order.  The participant
thread is the only consumer, so events for one participant are always
handled sequentially.

When the socket drops, the reader reconnects on its own following a
back-off schedule, without telling the participant anything beyond an
``on_reconnect`` callback: participant state is untouched.  Only when
the schedule is exhausted does it deliver a terminal
``HubEvent(CLOSED_EVENT)``.

Key Concepts Demonstrated:
- Producer/consumer hand-off through ``queue.Queue``
- Automatic reconnect with an interruptible back-off (``Event.wait``)
- Record-separator framing of a text protocol
- Application-level keepalive pings sent between bounded receives
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit

import requests
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from .errors import ProtocolError, StreamClosedError, TransportError

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\x1e"
HANDSHAKE = json.dumps({"protocol": "json", "version": 1}) + RECORD_SEPARATOR
PING = json.dumps({"type": 6}) + RECORD_SEPARATOR

MESSAGE_INVOCATION = 1
MESSAGE_PING = 6
MESSAGE_CLOSE = 7

STATUS_EVENT = "status"
NUMBER_EVENT = "NumberSelected"
TIMER_EVENT = "Timer"
CLOSED_EVENT = "__closed__"

DISTRIBUTION_STATUS = "distribution_in_progress"
EMISSION_STATUS = "emission_in_progress"


@dataclass(frozen=True)
class HubEvent:
    """
    One server-to-client invocation.

    Attributes:
        name: Hub method name (``status``, ``NumberSelected``, ``Timer``)
            or :data:`CLOSED_EVENT`.
        arguments: Positional arguments of the invocation.
    """

    name: str
    arguments: tuple[Any, ...] = ()

    @property
    def argument(self) -> Any:
        """First argument, or ``None`` for argument-less events."""
        return self.arguments[0] if self.arguments else None


class EventStream(Protocol):
    """What a participant needs from its push channel."""

    def start(self) -> None: ...

    def close(self) -> None: ...


EventStreamFactory = Callable[[str, "queue.Queue[HubEvent]", Callable[[], None]], EventStream]


class _ServerClosed(Exception):
    """The hub sent a close message."""


def split_frames(buffer: str) -> tuple[list[str], str]:
    """
    Split *buffer* into complete records and the unterminated remainder.

    Returns:
        ``(records, remainder)`` where every record had its trailing
        separator and the remainder must be prefixed to the next frame.
    """
    *records, remainder = buffer.split(RECORD_SEPARATOR)
    return [record for record in records if record], remainder


def parse_message(record: str) -> HubEvent | None:
    """
    Decode one hub message.

    Returns:
        A :class:`HubEvent` for invocations, ``None`` for pings and
        message types the swarm does not use.

    Raises:
        ProtocolError: If the record is not a JSON object.
        _ServerClosed: For close messages.
    """
    try:
        message = json.loads(record)
    except ValueError as exc:
        raise ProtocolError(f"Malformed hub message: {record[:80]!r}") from exc
    if not isinstance(message, dict):
        raise ProtocolError("Hub message is not an object")

    message_type = message.get("type")
    if message_type == MESSAGE_INVOCATION:
        target = message.get("target")
        if not isinstance(target, str):
            raise ProtocolError("Invocation without target")
        return HubEvent(target, tuple(message.get("arguments") or ()))
    if message_type == MESSAGE_CLOSE:
        raise _ServerClosed(message.get("error") or "server closed the connection")
    return None


def websocket_url(hub_url: str, connection_token: str | None, access_token: str) -> str:
    """Turn an http(s) hub URL into the ws(s) URL used after negotiation."""
    parts = urlsplit(hub_url)
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    query = {}
    if connection_token:
        query["id"] = connection_token
    query["access_token"] = access_token
    existing = f"{parts.query}&" if parts.query else ""
    return urlunsplit((scheme, parts.netloc, parts.path, existing + urlencode(query), ""))


class HubEventStream:
    """
    Reconnecting reader for the backend's notification hub.

    Args:
        hub_url: Absolute http(s) URL of the hub.
        token: Bearer token of the owning participant.
        sink: The participant's inbox queue.
        on_reconnect: Called after every successful automatic reconnect.
        timeout: Seconds allowed for negotiate, connect and handshake.
        reconnect_delays: Back-off schedule; one reconnect attempt is
            made after each delay.
        keepalive_interval: Seconds between client pings.  SignalR servers
            drop a client they have not heard from within their client
            timeout, and websocket-level pings do not count.
        name: Label for log lines.
        session: ``requests`` session used for negotiation.
        connect: Websocket connect function, replaced in tests.
    """

    def __init__(
        self,
        hub_url: str,
        token: str,
        sink: "queue.Queue[HubEvent]",
        on_reconnect: Callable[[], None] | None = None,
        *,
        timeout: float = 30.0,
        reconnect_delays: Sequence[float] = (0.0, 2.0, 10.0, 30.0),
        keepalive_interval: float = 15.0,
        name: str = "hub",
        session: requests.Session | None = None,
        connect: Callable[..., Any] = ws_connect,
    ):
        self.hub_url = hub_url
        self.token = token
        self.sink = sink
        self.on_reconnect = on_reconnect
        self.timeout = timeout
        self.reconnect_delays = tuple(reconnect_delays)
        self.keepalive_interval = keepalive_interval
        self.name = name
        self._session = session or requests.Session()
        self._connect = connect
        self._socket: Any = None
        self._buffer = ""
        self._closing = threading.Event()
        self._thread: threading.Thread | None = None

    # -----------------------------------------------------------------
    # Connection setup
    # -----------------------------------------------------------------

    def _negotiate(self) -> tuple[str, str | None, str]:
        """
        Run the negotiate round-trip.

        Returns:
            ``(hub_url, connection_token, access_token)``; the URL and
            token differ from ours when the server redirects.
        """
        try:
            response = self._session.post(
                f"{self.hub_url.rstrip('/')}/negotiate",
                params={"negotiateVersion": 1},
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Hub negotiate failed: {exc}") from exc
        if response.status_code != 200:
            raise TransportError(f"Hub negotiate returned {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError("Hub negotiate returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ProtocolError("Hub negotiate body is not an object")

        if body.get("url"):
            return body["url"], None, body.get("accessToken") or self.token
        connection_token = body.get("connectionToken") or body.get("connectionId")
        if not connection_token:
            raise ProtocolError("Hub negotiate response missing connection token")
        return self.hub_url, connection_token, self.token

    def _open(self) -> None:
        """Negotiate, connect and complete the handshake."""
        hub_url, connection_token, access_token = self._negotiate()
        url = websocket_url(hub_url, connection_token, access_token)
        try:
            socket = self._connect(
                url,
                additional_headers={"Authorization": f"Bearer {access_token}"},
                open_timeout=self.timeout,
            )
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"Hub websocket connect failed: {exc}") from exc

        try:
            socket.send(HANDSHAKE)
            buffer = ""
            while RECORD_SEPARATOR not in buffer:
                buffer += self._as_text(socket.recv(timeout=self.timeout))
        except TimeoutError as exc:
            socket.close()
            raise TransportError("Hub handshake timed out") from exc
        except (OSError, WebSocketException) as exc:
            socket.close()
            raise TransportError(f"Hub handshake failed: {exc}") from exc
        except ProtocolError:
            socket.close()
            raise

        ack, _, rest = buffer.partition(RECORD_SEPARATOR)
        try:
            ack_body = json.loads(ack)
        except ValueError as exc:
            socket.close()
            raise ProtocolError("Malformed hub handshake response") from exc
        if isinstance(ack_body, dict) and ack_body.get("error"):
            socket.close()
            raise ProtocolError(f"Hub handshake rejected: {ack_body['error']}")

        self._socket = socket
        self._buffer = rest

    @staticmethod
    def _as_text(frame: str | bytes) -> str:
        if not isinstance(frame, bytes):
            return frame
        try:
            return frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("Hub frame is not valid UTF-8") from exc

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def start(self) -> None:
        """
        Open the connection and start the reader thread.

        Raises:
            TransportError: If the hub cannot be reached.
            ProtocolError: If negotiation or the handshake is malformed.
        """
        self._open()
        logger.debug("%s: connected to %s", self.name, self.hub_url)
        self._thread = threading.Thread(
            target=self._run, name=f"{self.name}-reader", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stop reconnecting and close the socket.  Safe to call twice."""
        self._closing.set()
        if self._socket is not None:
            self._socket.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.timeout)
        self._session.close()

    @property
    def closed(self) -> bool:
        return self._closing.is_set()

    # -----------------------------------------------------------------
    # Reader thread
    # -----------------------------------------------------------------

    def _drain(self) -> None:
        """
        Read frames and deliver events until the socket fails.

        Receives are bounded by the time left until the next ping, so an
        idle hub still gets a ping every ``keepalive_interval`` seconds.
        """
        next_ping = time.monotonic() + self.keepalive_interval
        while not self._closing.is_set():
            try:
                frame = self._socket.recv(timeout=max(next_ping - time.monotonic(), 0.0))
            except TimeoutError:
                frame = ""
            if time.monotonic() >= next_ping:
                self._socket.send(PING)
                next_ping = time.monotonic() + self.keepalive_interval
            self._buffer += self._as_text(frame)
            records, self._buffer = split_frames(self._buffer)
            for record in records:
                event = parse_message(record)
                if event is not None:
                    self.sink.put(event)

    def _reconnect(self) -> bool:
        for attempt, delay in enumerate(self.reconnect_delays, start=1):
            if self._closing.wait(delay):
                return False
            try:
                self._open()
            except (TransportError, ProtocolError) as exc:
                logger.warning(
                    "%s: reconnect attempt %d/%d failed: %s",
                    self.name,
                    attempt,
                    len(self.reconnect_delays),
                    exc,
                )
                continue
            if self._closing.is_set():
                self._socket.close()
                return False
            logger.info("%s: reconnected", self.name)
            if self.on_reconnect is not None:
                self.on_reconnect()
            return True
        return False

    def _run(self) -> None:
        while not self._closing.is_set():
            try:
                self._drain()
            except (OSError, WebSocketException, ProtocolError, _ServerClosed) as exc:
                if self._closing.is_set():
                    return
                logger.warning("%s: connection lost: %s", self.name, exc)
                self._socket.close()
                self._buffer = ""
                if not self._reconnect():
                    if not self._closing.is_set():
                        self.sink.put(HubEvent(CLOSED_EVENT, (str(exc),)))
                    return


def hub_stream_factory(
    hub_url: str,
    *,
    timeout: float,
    reconnect_delays: Sequence[float],
    keepalive_interval: float = 15.0,
) -> EventStreamFactory:
    """
    Build the factory participants use to open their hub connection.

    Returns:
        A callable ``(token, sink, on_reconnect) -> HubEventStream``.
    """

    def factory(
        token: str, sink: "queue.Queue[HubEvent]", on_reconnect: Callable[[], None]
    ) -> HubEventStream:
        return HubEventStream(
            hub_url,
            token,
            sink,
            on_reconnect,
            timeout=timeout,
            reconnect_delays=reconnect_delays,
            keepalive_interval=keepalive_interval,
        )

    return factory


def raise_for_closed(event: HubEvent) -> None:
    """Convert the terminal :data:`CLOSED_EVENT` into an exception."""
    if event.name == CLOSED_EVENT:
        raise StreamClosedError(f"Notification hub closed: {event.argument}")
