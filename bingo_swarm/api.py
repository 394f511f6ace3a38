"""
HTTP client for the bingo backend's REST API.

Every virtual participant owns one :class:`GameApiClient`, and with it
one :class:`requests.Session`, so connection pooling and the bearer
token never leak between participants.  Each public method maps to one
backend endpoint and converts the HTTP outcome into either a parsed
value or an exception from :mod:`bingo_swarm.errors`:

- ``requests`` transport failures and 5xx answers -> ``TransportError``
- 401 / 403 -> ``AuthenticationError``
- any other non-2xx -> ``ApiError``
- a 2xx body of the wrong shape -> ``ProtocolError``

Retries are *not* done here.  Whether a call is safe to repeat is a
decision for the participant state machine, which wraps the calls it
may retry in :func:`call_with_retries`.

Key Concepts Demonstrated:
- Session-per-actor isolation with ``requests.Session``
- Centralised request helper with a per-call timeout
- Exception translation at the I/O boundary
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import requests

from .errors import (
    ApiError,
    AuthenticationError,
    ProtocolError,
    RetryBudgetExhausted,
    SwarmError,
    TransportError,
)
from .models import Card, Identity, WinPredicates

logger = logging.getLogger(__name__)

T = TypeVar("T")

REGISTER_PATH = "/api/Utilisateur"
LOGIN_PATH = "/api/Utilisateur/login"
CARDS_PATH = "/api/Card"
SELECT_CARD_PATH = "/api/Card/Select"
SUBMIT_NUMBER_PATH = "/api/SelectedNumberClient/Number"
DEFAULT_WIN_CLAIM_PATH = "/api/SelectedNumberClient/Win"


def _safe_json(response: requests.Response) -> Any:
    """
    Return the decoded JSON body.

    Raises:
        ProtocolError: If the body is not valid JSON.
    """
    try:
        return response.json()
    except ValueError as exc:
        raise ProtocolError(f"{response.url} returned a non-JSON body") from exc


class GameApiClient:
    """
    Thin wrapper around the backend endpoints used by one participant.

    Args:
        base_url: Backend root URL, without a trailing slash.
        timeout: Seconds to wait for each response.
        win_claim_path: Path of the win-claim endpoint.
        session: Optional pre-built session, injected by tests.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        win_claim_path: str = DEFAULT_WIN_CLAIM_PATH,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.win_claim_path = win_claim_path
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        self.token: str | None = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """
        Send one request and translate failures into swarm errors.

        Returns:
            The :class:`requests.Response` for any 2xx status.

        Raises:
            TransportError: On connection problems, timeouts and 5xx.
            AuthenticationError: On 401 or 403.
            ApiError: On any other non-2xx status.
        """
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise TransportError(f"{method} {url} timed out") from exc
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"{method} {url} rejected with {status}")
        if status >= 500:
            raise TransportError(f"{method} {url} returned {status}")
        if not 200 <= status < 300:
            raise ApiError(f"{method} {url} returned {status}", status_code=status)
        return response

    def set_token(self, token: str) -> None:
        """Attach *token* as the bearer credential for all later calls."""
        self.token = token
        self.session.headers["Authorization"] = f"Bearer {token}"

    def register(self) -> Identity:
        """
        Ask the backend for a fresh anonymous player identity.

        Returns:
            The issued :class:`Identity` (user id + client code).
        """
        response = self._request("POST", REGISTER_PATH, params={"tokenUser": 0}, data="")
        body = _safe_json(response)
        if not isinstance(body, dict):
            raise ProtocolError("Registration response is not an object")
        user_id = body.get("id")
        code = body.get("codeClient")
        if user_id is None or not isinstance(code, str) or not code:
            raise ProtocolError("Registration response missing id or codeClient")
        return Identity(user_id=user_id, secret=code)

    def login(self, identity: Identity) -> str:
        """
        Exchange *identity* for a bearer token and attach it to the session.

        Returns:
            The access token.
        """
        response = self._request(
            "POST",
            LOGIN_PATH,
            json={"id": identity.user_id, "codeClient": identity.secret},
        )
        body = _safe_json(response)
        token = body.get("accessToken") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise ProtocolError("Login response missing accessToken")
        self.set_token(token)
        return token

    def list_cards(self) -> list[Card]:
        """
        Fetch the cards the backend currently offers this participant.

        The backend may offer cards it has already offered somebody else;
        deduplication is the registry's job.

        Raises:
            ProtocolError: If the list is malformed or empty.
        """
        response = self._request("GET", CARDS_PATH)
        body = _safe_json(response)
        if not isinstance(body, list):
            raise ProtocolError("Card listing is not a list")
        if not body:
            raise ProtocolError("Received empty card list")
        return [Card.from_payload(entry) for entry in body]

    def select_card(self, card_id: int) -> None:
        """Tell the backend which card this participant plays with."""
        self._request("POST", SELECT_CARD_PATH, json={"id": card_id})

    def submit_number(self, value: int, score: int) -> None:
        """Mark *value* on the participant's card, carrying its *score*."""
        self._request("POST", SUBMIT_NUMBER_PATH, json=[value, score])

    def claim_win(self, predicates: WinPredicates) -> None:
        """Report the win patterns completed on the participant's card."""
        self._request("POST", self.win_claim_path, json=predicates.to_payload())

    def close(self) -> None:
        self.session.close()


def call_with_retries(
    call: Callable[[], T],
    *,
    attempts: int,
    delay: float,
    on_error: Callable[[SwarmError, int], None] | None = None,
    retry_on: tuple[type[SwarmError], ...] = (TransportError, ProtocolError, ApiError),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Invoke *call* until it succeeds or *attempts* are used up.

    Only exceptions listed in *retry_on* are retried; anything else
    (notably :class:`AuthenticationError`) propagates immediately.

    Args:
        call: Zero-argument callable to invoke.
        attempts: Maximum number of invocations, at least 1.
        delay: Seconds to sleep between attempts.
        on_error: Called with the error and the 1-based attempt number
            after every retryable failure, for logging and counting.
        retry_on: Exception types considered retryable.
        sleep: Sleep function, replaced in tests.

    Returns:
        Whatever *call* returns on its first successful invocation.

    Raises:
        RetryBudgetExhausted: If every attempt failed with a retryable
            error.  The last error is chained as ``__cause__``.
    """
    last_error: SwarmError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return call()
        except retry_on as exc:
            last_error = exc
            if on_error is not None:
                on_error(exc, attempt)
            if attempt < attempts and delay > 0:
                sleep(delay)
    raise RetryBudgetExhausted(
        f"Gave up after {attempts} attempts: {last_error}"
    ) from last_error
