from __future__ import annotations

import time

import pytest
import requests

from regime_bot.data.capital_client import (
    CapitalAPIError,
    CapitalAuthError,
    CapitalClient,
    RetryableCapitalAPIError,
    TokenBucketLimiter,
    _direction,
    _parse_retry_after,
)


class FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None, headers: dict | None = None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = "" if payload is None else str(payload)

    def json(self) -> dict:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


SESSION_OK = FakeResponse(200, {}, {"CST": "cst-1", "X-SECURITY-TOKEN": "xst-1"})


class FakeSession:
    def __init__(self, responses: list[FakeResponse | Exception]):
        self.headers: dict[str, str] = {}
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict | None]] = []

    def request(self, *, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append((method, url, json))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def retry_sleeps(monkeypatch) -> list[float]:
    slept: list[float] = []
    monkeypatch.setattr("regime_bot.data.capital_client.time.sleep", slept.append)
    return slept


def _client(responses, **kwargs) -> tuple[CapitalClient, FakeSession]:
    session = FakeSession(responses)
    client = CapitalClient(
        base_url="https://demo-api-capital.backend-capital.com",
        api_key="key",
        identifier="me@example.com",
        password="secret",
        rate_limit_burst=50,
        request_max_attempts=3,
        session=session,
        **kwargs,
    )
    return client, session


def test_token_bucket_limiter_applies_wait() -> None:
    limiter = TokenBucketLimiter(rate_per_second=5.0, burst=1)
    limiter.acquire()
    start = time.perf_counter()
    limiter.acquire()
    elapsed = time.perf_counter() - start
    assert elapsed >= 0.15


def test_parse_retry_after() -> None:
    assert _parse_retry_after({"Retry-After": "3"}) == 3.0
    assert _parse_retry_after({"Retry-After": "not-a-number"}) is None
    assert _parse_retry_after({}) is None


def test_direction_aliases() -> None:
    assert _direction("long") == "BUY"
    assert _direction("SHORT") == "SELL"
    with pytest.raises(ValueError):
        _direction("FLAT")


def test_base_url_gets_api_prefix() -> None:
    client, _ = _client([])
    assert client.base_url == "https://demo-api-capital.backend-capital.com/api/v1"


def test_request_creates_session_and_sends_tokens(retry_sleeps) -> None:
    client, session = _client([SESSION_OK, FakeResponse(200, {"accounts": [{"accountId": "A1"}]})])

    assert client.get_accounts() == [{"accountId": "A1"}]
    assert [call[0] for call in session.calls] == ["POST", "GET"]
    assert client.cst == "cst-1"
    assert retry_sleeps == []


def test_server_errors_are_retried_with_retry_after(retry_sleeps) -> None:
    client, _ = _client(
        [
            SESSION_OK,
            FakeResponse(429, {"errorCode": "error.too-many.requests"}, {"Retry-After": "2"}),
            FakeResponse(503, {"errorCode": "unavailable"}),
            FakeResponse(200, {"positions": []}),
        ]
    )

    assert client.get_positions() == []
    assert retry_sleeps[0] == 2.0
    assert len(retry_sleeps) == 2
    metrics = client.metrics_snapshot()
    assert metrics["total_retries"] == 2
    assert metrics["http_429_count"] == 1


def test_network_errors_exhaust_attempts(retry_sleeps) -> None:
    boom = requests.ConnectionError("reset")
    client, _ = _client([SESSION_OK, boom, boom, boom])

    with pytest.raises(RetryableCapitalAPIError, match="Network error"):
        client.get_positions()
    assert len(retry_sleeps) == 2


def test_expired_session_is_refreshed_once(retry_sleeps) -> None:
    client, session = _client(
        [
            SESSION_OK,
            FakeResponse(401, {"errorCode": "error.invalid.session.token"}),
            FakeResponse(200, {}, {"CST": "cst-2", "X-SECURITY-TOKEN": "xst-2"}),
            FakeResponse(200, {"workingOrders": [{"workingOrderData": {"dealId": "W1"}}]}),
        ]
    )

    orders = client.get_working_orders()

    assert orders[0]["workingOrderData"]["dealId"] == "W1"
    assert client.cst == "cst-2"
    assert client.metrics_snapshot()["session_refreshes"] == 1


def test_invalid_api_key_is_auth_error(retry_sleeps) -> None:
    client, _ = _client([FakeResponse(401, {"errorCode": "error.invalid.api.key"})])

    with pytest.raises(CapitalAuthError, match="API key"):
        client.create_session()


def test_account_switch_tolerates_already_active(retry_sleeps) -> None:
    client, session = _client(
        [SESSION_OK, FakeResponse(400, {"errorCode": "error.not-different.accountId"})],
        account_id="ACC-7",
    )

    client.create_session()

    assert session.calls[1] == ("PUT", f"{client.base_url}/session", {"accountId": "ACC-7", "defaultAccount": False})


def test_client_error_is_not_retried(retry_sleeps) -> None:
    client, _ = _client([SESSION_OK, FakeResponse(400, {"errorCode": "error.invalid.size"})])

    with pytest.raises(CapitalAPIError, match="HTTP 400"):
        client.open_position(epic="EURUSD", side="BUY", size=0.0)
    assert retry_sleeps == []


def test_open_position_payload(retry_sleeps) -> None:
    client, session = _client([SESSION_OK, FakeResponse(200, {"dealReference": "REF1"})])

    response = client.open_position(epic="eurusd", side="SELL", size=1000, stop_level=1.1, profit_level=1.08)

    assert response == {"dealReference": "REF1"}
    method, url, payload = session.calls[1]
    assert (method, url) == ("POST", f"{client.base_url}/positions")
    assert payload == {
        "epic": "EURUSD",
        "direction": "SELL",
        "size": 1000,
        "guaranteedStop": False,
        "stopLevel": 1.1,
        "profitLevel": 1.08,
    }


def test_close_of_missing_position_is_tolerated(retry_sleeps) -> None:
    client, _ = _client([SESSION_OK, FakeResponse(404, {"errorCode": "error.not-found.dealId"})])

    assert client.close_position("GONE") == {}


def test_market_details_resolves_alias(retry_sleeps) -> None:
    client, session = _client(
        [
            SESSION_OK,
            FakeResponse(404, {"errorCode": "error.not-found.epic"}),
            FakeResponse(200, {"markets": [{"epic": "US500.CASH"}]}),
            FakeResponse(200, {"snapshot": {"bid": 5000.0, "offer": 5000.5}}),
        ]
    )

    payload = client.get_market_details("US500")

    assert payload["snapshot"]["offer"] == 5000.5
    assert client.resolve_epic("us500") == "US500.CASH"
    assert session.calls[-1][1].endswith("/markets/US500.CASH")
