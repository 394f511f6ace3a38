"""
Unit tests for the REST client and the retry helper.

The ``requests`` session is replaced with a small fake that returns
canned responses, so each test checks one translation from HTTP outcome
to parsed value or swarm error.

Key Concepts Demonstrated:
- Simulating network-level errors with raised ``requests`` exceptions
- Verifying the exact request each endpoint sends
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from bingo_swarm.api import (
    CARDS_PATH,
    DEFAULT_WIN_CLAIM_PATH,
    GameApiClient,
    call_with_retries,
)
from bingo_swarm.errors import (
    ApiError,
    AuthenticationError,
    ProtocolError,
    RetryBudgetExhausted,
    TransportError,
)
from bingo_swarm.models import Identity, WinPredicates


pytestmark = pytest.mark.unit

BASE_URL = "http://bingo.test"


class _FakeResponse:
    """Configurable stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, body=None, url: str = BASE_URL):
        self.status_code = status_code
        self._body = body
        self.url = url

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


class _FakeSession:
    """Records every request and answers from a queue of responses or errors."""

    def __init__(self, *responses):
        self.headers: dict[str, str] = {}
        self.responses = list(responses)
        self.requests: list[SimpleNamespace] = []
        self.closed = False

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append(SimpleNamespace(method=method, url=url, timeout=timeout, **kwargs))
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


def _client(*responses) -> tuple[GameApiClient, _FakeSession]:
    session = _FakeSession(*responses)
    return GameApiClient(BASE_URL + "/", timeout=3.0, session=session), session


def test_register_returns_identity():
    # Arrange
    client, session = _client(_FakeResponse(body={"id": 17, "codeClient": "ABC"}))

    # Act
    identity = client.register()

    # Assert
    assert identity == Identity(user_id=17, secret="ABC")
    sent = session.requests[0]
    assert sent.method == "POST"
    assert sent.url == f"{BASE_URL}/api/Utilisateur"
    assert sent.params == {"tokenUser": 0}
    assert sent.timeout == 3.0


@pytest.mark.parametrize("body", [{"id": 17}, {"codeClient": "ABC"}, [], None])
def test_register_rejects_incomplete_body(body):
    client, _ = _client(_FakeResponse(body=body))

    with pytest.raises(ProtocolError):
        client.register()


def test_login_attaches_bearer_token():
    # Arrange
    client, session = _client(_FakeResponse(body={"accessToken": "jwt-token"}))

    # Act
    token = client.login(Identity(user_id=17, secret="ABC"))

    # Assert
    assert token == "jwt-token"
    assert session.headers["Authorization"] == "Bearer jwt-token"
    assert session.requests[0].json == {"id": 17, "codeClient": "ABC"}


def test_login_rejection_is_authentication_error():
    client, _ = _client(_FakeResponse(status_code=401))

    with pytest.raises(AuthenticationError):
        client.login(Identity(user_id=17, secret="bad"))


def test_list_cards_parses_every_entry():
    # Arrange
    body = [{"id": 1, "cards": [[1, 2], [3, 4]]}, {"id": 2, "cards": [[5, 6], [7, 8]]}]
    client, session = _client(_FakeResponse(body=body))

    # Act
    cards = client.list_cards()

    # Assert
    assert [card.card_id for card in cards] == [1, 2]
    assert cards[1].grid.rows == ((5, 6), (7, 8))
    assert session.requests[0].url == f"{BASE_URL}{CARDS_PATH}"


@pytest.mark.parametrize("body", [[], {"id": 1}, None])
def test_list_cards_rejects_empty_or_malformed_listing(body):
    client, _ = _client(_FakeResponse(body=body))

    with pytest.raises(ProtocolError):
        client.list_cards()


def test_submit_number_sends_value_and_score():
    client, session = _client(_FakeResponse())

    client.submit_number(42, 70)

    assert session.requests[0].url == f"{BASE_URL}/api/SelectedNumberClient/Number"
    assert session.requests[0].json == [42, 70]


def test_claim_win_posts_predicates_to_configured_path():
    # Arrange
    session = _FakeSession(_FakeResponse())
    client = GameApiClient(BASE_URL, win_claim_path="/api/Bingo", session=session)

    # Act
    client.claim_win(WinPredicates(column=True))

    # Assert
    assert session.requests[0].url == f"{BASE_URL}/api/Bingo"
    assert session.requests[0].json["columnWin"] is True
    assert client.win_claim_path != DEFAULT_WIN_CLAIM_PATH


def test_select_card_sends_card_id():
    client, session = _client(_FakeResponse(status_code=204))

    client.select_card(9)

    assert session.requests[0].json == {"id": 9}


@pytest.mark.parametrize(
    ("outcome", "error"),
    [
        (requests.Timeout("slow"), TransportError),
        (requests.ConnectionError("refused"), TransportError),
        (_FakeResponse(status_code=503), TransportError),
        (_FakeResponse(status_code=403), AuthenticationError),
        (_FakeResponse(status_code=409), ApiError),
    ],
)
def test_failures_map_to_swarm_errors(outcome, error):
    client, _ = _client(outcome)

    with pytest.raises(error):
        client.select_card(1)


def test_api_error_carries_status_code():
    client, _ = _client(_FakeResponse(status_code=404))

    with pytest.raises(ApiError) as exc_info:
        client.select_card(1)

    assert exc_info.value.status_code == 404


def test_close_closes_session():
    client, session = _client()

    client.close()

    assert session.closed


# =============================================================================
# call_with_retries
# =============================================================================


def test_retries_until_success():
    # Arrange
    call = MagicMock(side_effect=[TransportError("a"), ProtocolError("b"), "ok"])
    on_error = MagicMock()
    sleeps = []

    # Act
    result = call_with_retries(call, attempts=3, delay=0.5, on_error=on_error, sleep=sleeps.append)

    # Assert
    assert result == "ok"
    assert call.call_count == 3
    assert on_error.call_count == 2
    assert on_error.call_args_list[1].args[1] == 2
    assert sleeps == [0.5, 0.5]


def test_exhausted_budget_chains_last_error():
    last = ApiError("still busy", status_code=409)
    call = MagicMock(side_effect=[TransportError("a"), last])

    with pytest.raises(RetryBudgetExhausted) as exc_info:
        call_with_retries(call, attempts=2, delay=0, sleep=lambda _: None)

    assert exc_info.value.__cause__ is last


def test_authentication_error_is_not_retried():
    call = MagicMock(side_effect=AuthenticationError("denied"))

    with pytest.raises(AuthenticationError):
        call_with_retries(call, attempts=5, delay=0, sleep=lambda _: None)

    assert call.call_count == 1
