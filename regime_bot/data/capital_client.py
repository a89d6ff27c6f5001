from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import requests

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUS = (500, 502, 503, 504)


class CapitalAPIError(RuntimeError):
    """Non-retryable Capital.com API error."""


class RetryableCapitalAPIError(CapitalAPIError):
    """Retryable API/network error."""


class CapitalAuthError(CapitalAPIError):
    """Authentication/authorization error for session creation."""


@dataclass(slots=True)
class CapitalClientMetrics:
    total_requests: int = 0
    total_retries: int = 0
    http_429_count: int = 0
    session_refreshes: int = 0


class TokenBucketLimiter:
    def __init__(self, rate_per_second: float, burst: int):
        self.rate_per_second = max(0.1, float(rate_per_second))
        self.capacity = max(1, int(burst))
        self.tokens = float(self.capacity)
        self.last_refill = time.monotonic()
        self.lock = threading.Lock()

    def acquire(self) -> None:
        while True:
            with self.lock:
                now = time.monotonic()
                elapsed = max(0.0, now - self.last_refill)
                self.tokens = min(float(self.capacity), self.tokens + elapsed * self.rate_per_second)
                self.last_refill = now
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return
                wait_seconds = (1.0 - self.tokens) / self.rate_per_second
            time.sleep(wait_seconds)


def _parse_retry_after(headers: Any) -> float | None:
    value = headers.get("Retry-After")
    if not value:
        return None
    try:
        parsed = float(value.strip())
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


def _direction(side: str) -> str:
    normalized = side.strip().upper()
    if normalized in {"BUY", "LONG"}:
        return "BUY"
    if normalized in {"SELL", "SHORT"}:
        return "SELL"
    raise ValueError(f"Unsupported side {side}")


class CapitalClient:
    """
    Capital.com REST API client.

    Auth flow:
    - POST /session with X-CAP-API-KEY + identifier/password.
    - Read CST and X-SECURITY-TOKEN from response headers.
    - Optional PUT /session to switch to a specific account.

    Retries 429/5xx/network errors with exponential backoff and refreshes the
    session once on 401/403. Callers never retry on their own.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        identifier: str,
        password: str,
        account_id: str | None = None,
        timeout_seconds: int = 10,
        *,
        rate_limit_rps: float = 2.0,
        rate_limit_burst: int = 5,
        request_max_attempts: int = 6,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 20.0,
        session_refresh_min_interval_seconds: int = 5,
        session: requests.Session | None = None,
    ):
        self.base_url = self._normalize_base_url(base_url)
        self.api_key = api_key
        self.identifier = identifier
        self.password = password
        self.account_id = account_id.strip() if account_id else None
        self.timeout_seconds = timeout_seconds
        self.request_max_attempts = max(1, int(request_max_attempts))
        self.backoff_base_seconds = max(0.1, float(backoff_base_seconds))
        self.backoff_max_seconds = max(self.backoff_base_seconds, float(backoff_max_seconds))
        self.session_refresh_min_interval_seconds = max(1, int(session_refresh_min_interval_seconds))

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})
        self.cst: str | None = None
        self.security_token: str | None = None
        self._epic_aliases: dict[str, str] = {}
        self._limiter = TokenBucketLimiter(rate_per_second=rate_limit_rps, burst=rate_limit_burst)
        self._session_lock = threading.Lock()
        self._last_session_refresh_at: datetime | None = None
        self._metrics = CapitalClientMetrics()
        self._metrics_lock = threading.Lock()

    @staticmethod
    def _normalize_base_url(base_url: str) -> str:
        normalized = base_url.strip().rstrip("/")
        if normalized.endswith("/api/v1"):
            return normalized
        if normalized.endswith("/api"):
            return f"{normalized}/v1"
        return f"{normalized}/api/v1"

    @staticmethod
    def _extract_error_code(response: requests.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        error_code = payload.get("errorCode")
        return str(error_code) if error_code else None

    def _metric_add(self, field_name: str, value: int = 1) -> None:
        with self._metrics_lock:
            setattr(self._metrics, field_name, getattr(self._metrics, field_name) + value)

    def metrics_snapshot(self) -> dict[str, int]:
        with self._metrics_lock:
            return asdict(self._metrics)

    def _auth_headers(self) -> dict[str, str]:
        headers = {"X-CAP-API-KEY": self.api_key}
        if self.cst and self.security_token:
            headers["CST"] = self.cst
            headers["X-SECURITY-TOKEN"] = self.security_token
        return headers

    def _backoff_seconds(self, attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return max(0.0, retry_after)
        exponential = min(self.backoff_max_seconds, self.backoff_base_seconds * (2 ** max(0, attempt - 1)))
        jitter = random.uniform(0.0, max(0.01, exponential * 0.2))
        return min(self.backoff_max_seconds, exponential + jitter)

    def _sleep_retry(self, *, endpoint: str, attempt: int, reason: str, retry_after: float | None = None) -> None:
        sleep_seconds = self._backoff_seconds(attempt, retry_after)
        self._metric_add("total_retries")
        LOGGER.warning(
            "Retrying Capital API call endpoint=%s attempt=%d/%d sleep=%.2fs reason=%s",
            endpoint,
            attempt,
            self.request_max_attempts,
            sleep_seconds,
            reason,
        )
        time.sleep(sleep_seconds)

    def _send_http(
        self,
        *,
        method: str,
        path: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        json_payload: dict[str, Any] | None = None,
    ) -> requests.Response:
        self._limiter.acquire()
        self._metric_add("total_requests")
        return self.session.request(
            method=method,
            url=f"{self.base_url}{path}",
            params=params,
            json=json_payload,
            headers=headers,
            timeout=self.timeout_seconds,
        )

    def create_session(self) -> None:
        response = self._send_http(
            method="POST",
            path="/session",
            headers={"X-CAP-API-KEY": self.api_key},
            json_payload={"identifier": self.identifier, "password": self.password, "encryptedPassword": False},
        )
        if response.status_code in (401, 403):
            error_code = self._extract_error_code(response)
            if error_code == "error.invalid.api.key":
                raise CapitalAuthError("Invalid Capital.com API key (wrong key, disabled key, or key from another environment)")
            if error_code == "error.invalid.details":
                raise CapitalAuthError("Invalid Capital.com credentials or wrong account environment")
            raise CapitalAuthError(f"Session authorization failed: HTTP {response.status_code} {response.text}")
        if response.status_code == 429 or response.status_code in RETRYABLE_STATUS:
            raise RetryableCapitalAPIError(f"Retryable session error: HTTP {response.status_code} {response.text}")
        if response.status_code >= 400:
            raise CapitalAPIError(f"Failed to create session: HTTP {response.status_code} {response.text}")

        self.cst = response.headers.get("CST")
        self.security_token = response.headers.get("X-SECURITY-TOKEN")
        if not self.cst or not self.security_token:
            raise CapitalAPIError("Session tokens missing in response headers")
        if self.account_id:
            switch = self._send_http(
                method="PUT",
                path="/session",
                headers=self._auth_headers(),
                json_payload={"accountId": self.account_id, "defaultAccount": False},
            )
            # Capital.com answers 400 when the account is already active.
            if switch.status_code >= 400 and self._extract_error_code(switch) != "error.not-different.accountId":
                raise CapitalAuthError(
                    f"Could not switch to accountId={self.account_id}: HTTP {switch.status_code} {switch.text}"
                )

    def _refresh_session(self, reason: str) -> None:
        with self._session_lock:
            now = datetime.now(timezone.utc)
            if (
                self._last_session_refresh_at is not None
                and (now - self._last_session_refresh_at).total_seconds() < self.session_refresh_min_interval_seconds
            ):
                LOGGER.info("Session refresh skipped (recent) reason=%s", reason)
                return
            LOGGER.info("Refreshing Capital session reason=%s", reason)
            self.cst = None
            self.security_token = None
            self.create_session()
            self._last_session_refresh_at = now
            self._metric_add("session_refreshes")

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> dict[str, Any]:
        refreshed_once = False

        for attempt in range(1, self.request_max_attempts + 1):
            try:
                if not self.cst or not self.security_token:
                    self.create_session()
                response = self._send_http(
                    method=method,
                    path=path,
                    headers=self._auth_headers(),
                    params=params,
                    json_payload=json,
                )
            except RetryableCapitalAPIError as exc:
                if attempt >= self.request_max_attempts:
                    raise
                self._sleep_retry(endpoint=path, attempt=attempt, reason=str(exc))
                continue
            except requests.RequestException as exc:
                if attempt >= self.request_max_attempts:
                    raise RetryableCapitalAPIError(f"Network error {method} {path}: {exc}") from exc
                self._sleep_retry(endpoint=path, attempt=attempt, reason=f"network:{type(exc).__name__}")
                continue

            if response.status_code in (401, 403):
                if not refreshed_once:
                    self._refresh_session("session_expired")
                    refreshed_once = True
                    continue
                raise CapitalAuthError(f"Session authorization failed: HTTP {response.status_code} {response.text}")

            if response.status_code == 429 or response.status_code in RETRYABLE_STATUS:
                if response.status_code == 429:
                    self._metric_add("http_429_count")
                if attempt >= self.request_max_attempts:
                    raise RetryableCapitalAPIError(f"Retryable API error: HTTP {response.status_code} {response.text}")
                self._sleep_retry(
                    endpoint=path,
                    attempt=attempt,
                    reason=f"http_{response.status_code}",
                    retry_after=_parse_retry_after(response.headers),
                )
                continue

            if response.status_code == 404 and allow_404:
                return {}

            if response.status_code >= 400:
                raise CapitalAPIError(f"API error {method} {path}: HTTP {response.status_code} {response.text}")

            if not response.text:
                return {}
            return response.json()

        raise RetryableCapitalAPIError(f"Could not complete request {method} {path}")

    def resolve_epic(self, epic: str) -> str:
        key = epic.strip().upper()
        return self._epic_aliases.get(key, key)

    def _search_epic(self, epic: str) -> str | None:
        term = epic.strip().upper()
        payload = self._request("GET", "/markets", params={"searchTerm": term})
        markets = payload.get("markets", [])
        if not isinstance(markets, list) or not markets:
            return None
        exact = [m for m in markets if str(m.get("epic", "")).upper() == term]
        chosen = exact[0] if exact else markets[0]
        found = str(chosen.get("epic") or "")
        if found and found.upper() != term:
            self._epic_aliases[term] = found
            LOGGER.info("Resolved epic alias: %s -> %s", term, found)
        return found or None

    def get_market_details(self, epic: str) -> dict[str, Any]:
        resolved = self.resolve_epic(epic)
        payload = self._request("GET", f"/markets/{resolved}", allow_404=True)
        if payload:
            return payload
        discovered = self._search_epic(epic)
        if discovered and discovered != resolved:
            payload = self._request("GET", f"/markets/{discovered}", allow_404=True)
            if payload:
                return payload
        raise CapitalAPIError(f"API error GET /markets/{epic}: epic not found")

    def get_accounts(self) -> list[dict[str, Any]]:
        payload = self._request("GET", "/accounts")
        accounts = payload.get("accounts", [])
        return accounts if isinstance(accounts, list) else []

    def get_positions(self) -> list[dict[str, Any]]:
        payload = self._request("GET", "/positions")
        positions = payload.get("positions", [])
        return positions if isinstance(positions, list) else []

    def get_working_orders(self) -> list[dict[str, Any]]:
        payload = self._request("GET", "/workingorders")
        orders = payload.get("workingOrders", [])
        return orders if isinstance(orders, list) else []

    def get_confirmation(self, deal_reference: str) -> dict[str, Any]:
        return self._request("GET", f"/confirms/{deal_reference}", allow_404=True)

    def open_position(
        self,
        *,
        epic: str,
        side: str,
        size: float,
        stop_level: float | None = None,
        profit_level: float | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "epic": self.resolve_epic(epic),
            "direction": _direction(side),
            "size": size,
            "guaranteedStop": False,
        }
        if stop_level is not None:
            payload["stopLevel"] = stop_level
        if profit_level is not None:
            payload["profitLevel"] = profit_level
        return self._request("POST", "/positions", json=payload)

    def place_working_order(
        self,
        *,
        epic: str,
        side: str,
        order_type: str,
        size: float,
        level: float,
        stop_level: float | None = None,
        profit_level: float | None = None,
    ) -> dict[str, Any]:
        normalized_type = order_type.strip().upper()
        if normalized_type not in {"LIMIT", "STOP"}:
            raise ValueError(f"Unsupported working order type {order_type}")
        payload: dict[str, Any] = {
            "epic": self.resolve_epic(epic),
            "direction": _direction(side),
            "size": size,
            "level": level,
            "type": normalized_type,
            "guaranteedStop": False,
        }
        if stop_level is not None:
            payload["stopLevel"] = stop_level
        if profit_level is not None:
            payload["profitLevel"] = profit_level
        return self._request("POST", "/workingorders", json=payload)

    def close_position(self, deal_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/positions/{deal_id}", allow_404=True)

    def cancel_working_order(self, deal_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/workingorders/{deal_id}", allow_404=True)
