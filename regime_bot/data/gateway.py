from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from regime_bot.clock import utc_now
from regime_bot.config import InstrumentConfig
from regime_bot.data.capital_client import CapitalAPIError, CapitalClient

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Tick:
    bid: float
    ask: float
    time: datetime


@dataclass(frozen=True, slots=True)
class SymbolSpec:
    symbol: str
    point_size: float
    min_size: float
    size_step: float
    digits: int


@dataclass(frozen=True, slots=True)
class OrderResult:
    deal_id: str | None
    accepted: bool
    price: float | None = None
    size: float = 0.0
    reason: str | None = None


class TradingGateway(Protocol):
    def get_tick(self, symbol: str) -> Tick:
        ...

    def get_symbol_spec(self, symbol: str) -> SymbolSpec:
        ...

    def get_point_size(self, symbol: str) -> float:
        ...

    def get_balance(self) -> float:
        ...

    def send_market_order(
        self,
        symbol: str,
        side: str,
        size: float,
        *,
        stop_level: float | None = None,
        profit_level: float | None = None,
        comment: str | None = None,
    ) -> OrderResult:
        ...

    def send_pending_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        size: float,
        level: float,
        *,
        stop_level: float | None = None,
        profit_level: float | None = None,
        comment: str | None = None,
    ) -> OrderResult:
        ...

    def open_position_ids(self, symbol: str) -> set[str]:
        ...

    def pending_order_ids(self, symbol: str) -> set[str]:
        ...

    def close_position(self, deal_id: str) -> None:
        ...

    def cancel_order(self, deal_id: str) -> None:
        ...

    def close_all(self, symbol: str) -> int:
        ...


def _nested_value(payload: dict[str, Any], *keys: str) -> Any:
    current: Any = payload
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _parse_update_time(raw: Any) -> datetime:
    if not raw:
        return utc_now()
    text = str(raw).replace("/", "-").replace(" ", "T")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CapitalGateway:
    """TradingGateway backed by the Capital.com REST API.

    In dry-run mode quotes, symbol metadata and balance stay live while order
    intents are only logged and tracked locally under ``DRY-`` deal ids.
    """

    def __init__(
        self,
        client: CapitalClient,
        *,
        instrument_defaults: InstrumentConfig | None = None,
        dry_run: bool = True,
        confirm_attempts: int = 5,
        confirm_delay_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.instrument_defaults = instrument_defaults or InstrumentConfig()
        self.dry_run = dry_run
        self.confirm_attempts = max(1, int(confirm_attempts))
        self.confirm_delay_seconds = max(0.0, float(confirm_delay_seconds))
        self._sleep = sleep
        self._spec_cache: dict[str, SymbolSpec] = {}
        self._dry_positions: dict[str, str] = {}
        self._dry_orders: dict[str, str] = {}
        self._dry_lock = threading.Lock()

    def get_tick(self, symbol: str) -> Tick:
        payload = self.client.get_market_details(symbol)
        snapshot = payload.get("snapshot", {})
        bid = snapshot.get("bid")
        ask = snapshot.get("offer")
        if bid is None or ask is None:
            raise CapitalAPIError(f"Missing bid/ask in market snapshot for {symbol}")
        return Tick(bid=float(bid), ask=float(ask), time=_parse_update_time(snapshot.get("updateTimeUTC")))

    def get_symbol_spec(self, symbol: str) -> SymbolSpec:
        key = symbol.strip().upper()
        cached = self._spec_cache.get(key)
        if cached is not None:
            return cached
        payload = self.client.get_market_details(key)
        defaults = self.instrument_defaults
        decimals = _nested_value(payload, "snapshot", "decimalPlacesFactor")
        if decimals is not None:
            digits = int(decimals)
            point_size = 10.0 ** -digits
        else:
            point_size = defaults.point_size
            digits = max(0, len(f"{point_size:.10f}".rstrip("0").split(".")[1]))
        min_size = _nested_value(payload, "dealingRules", "minDealSize", "value")
        size_step = _nested_value(payload, "dealingRules", "minSizeIncrement", "value")
        spec = SymbolSpec(
            symbol=key,
            point_size=point_size,
            min_size=float(min_size) if min_size else defaults.min_size,
            size_step=float(size_step) if size_step else defaults.size_step,
            digits=digits,
        )
        self._spec_cache[key] = spec
        return spec

    def get_point_size(self, symbol: str) -> float:
        return self.get_symbol_spec(symbol).point_size

    def get_balance(self) -> float:
        accounts = self.client.get_accounts()
        if not accounts:
            raise CapitalAPIError("No trading accounts returned")
        chosen = accounts[0]
        for account in accounts:
            if self.client.account_id and str(account.get("accountId")) == self.client.account_id:
                chosen = account
                break
            if account.get("preferred"):
                chosen = account
        balance = _nested_value(chosen, "balance", "balance")
        if balance is None:
            raise CapitalAPIError("Account balance missing in /accounts response")
        return float(balance)

    def _confirm(self, response: dict[str, Any]) -> OrderResult:
        deal_reference = response.get("dealReference")
        if not deal_reference:
            raise CapitalAPIError(f"Deal reference missing in response: {response}")
        for attempt in range(1, self.confirm_attempts + 1):
            confirmation = self.client.get_confirmation(str(deal_reference))
            if confirmation:
                status = str(confirmation.get("dealStatus") or "").upper()
                affected = confirmation.get("affectedDeals") or []
                deal_id = str(affected[0].get("dealId")) if affected else confirmation.get("dealId")
                level = confirmation.get("level")
                return OrderResult(
                    deal_id=str(deal_id) if deal_id else None,
                    accepted=status == "ACCEPTED",
                    price=float(level) if level is not None else None,
                    size=float(confirmation.get("size") or 0.0),
                    reason=confirmation.get("reason"),
                )
            if attempt < self.confirm_attempts:
                self._sleep(self.confirm_delay_seconds)
        raise CapitalAPIError(f"No deal confirmation for dealReference={deal_reference}")

    def _dry_result(self, book: dict[str, str], symbol: str, price: float | None, size: float) -> OrderResult:
        deal_id = f"DRY-{uuid.uuid4().hex[:10]}"
        with self._dry_lock:
            book[deal_id] = symbol.strip().upper()
        return OrderResult(deal_id=deal_id, accepted=True, price=price, size=size)

    def send_market_order(
        self,
        symbol: str,
        side: str,
        size: float,
        *,
        stop_level: float | None = None,
        profit_level: float | None = None,
        comment: str | None = None,
    ) -> OrderResult:
        if self.dry_run:
            tick = self.get_tick(symbol)
            price = tick.ask if side.upper() in {"BUY", "LONG"} else tick.bid
            LOGGER.info(
                "DRY-RUN: market %s %s size=%.4f sl=%s tp=%s comment=%s",
                side,
                symbol,
                size,
                stop_level,
                profit_level,
                comment,
            )
            return self._dry_result(self._dry_positions, symbol, price, size)
        response = self.client.open_position(
            epic=symbol,
            side=side,
            size=size,
            stop_level=stop_level,
            profit_level=profit_level,
        )
        result = self._confirm(response)
        LOGGER.info(
            "Market %s %s size=%.4f accepted=%s deal=%s comment=%s",
            side,
            symbol,
            size,
            result.accepted,
            result.deal_id,
            comment,
        )
        return result

    def send_pending_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        size: float,
        level: float,
        *,
        stop_level: float | None = None,
        profit_level: float | None = None,
        comment: str | None = None,
    ) -> OrderResult:
        if self.dry_run:
            LOGGER.info(
                "DRY-RUN: %s %s %s size=%.4f level=%.5f comment=%s",
                order_type,
                side,
                symbol,
                size,
                level,
                comment,
            )
            return self._dry_result(self._dry_orders, symbol, level, size)
        response = self.client.place_working_order(
            epic=symbol,
            side=side,
            order_type=order_type,
            size=size,
            level=level,
            stop_level=stop_level,
            profit_level=profit_level,
        )
        result = self._confirm(response)
        LOGGER.info(
            "%s %s %s size=%.4f level=%.5f accepted=%s deal=%s comment=%s",
            order_type,
            side,
            symbol,
            size,
            level,
            result.accepted,
            result.deal_id,
            comment,
        )
        return result

    def _dry_ids(self, book: dict[str, str], symbol: str) -> set[str]:
        key = symbol.strip().upper()
        with self._dry_lock:
            return {deal_id for deal_id, item in book.items() if item == key}

    def open_position_ids(self, symbol: str) -> set[str]:
        if self.dry_run:
            return self._dry_ids(self._dry_positions, symbol)
        key = symbol.strip().upper()
        ids: set[str] = set()
        for item in self.client.get_positions():
            epic = str(_nested_value(item, "market", "epic") or "").upper()
            deal_id = _nested_value(item, "position", "dealId")
            if deal_id and epic in {key, self.client.resolve_epic(key).upper()}:
                ids.add(str(deal_id))
        return ids

    def pending_order_ids(self, symbol: str) -> set[str]:
        if self.dry_run:
            return self._dry_ids(self._dry_orders, symbol)
        key = symbol.strip().upper()
        ids: set[str] = set()
        for item in self.client.get_working_orders():
            data = item.get("workingOrderData", item)
            epic = str(data.get("epic") or _nested_value(item, "marketData", "epic") or "").upper()
            deal_id = data.get("dealId")
            if deal_id and epic in {key, self.client.resolve_epic(key).upper()}:
                ids.add(str(deal_id))
        return ids

    def close_position(self, deal_id: str) -> None:
        if self.dry_run:
            with self._dry_lock:
                self._dry_positions.pop(deal_id, None)
            LOGGER.info("DRY-RUN: closed position %s", deal_id)
            return
        self.client.close_position(deal_id)
        LOGGER.info("Closed position %s", deal_id)

    def cancel_order(self, deal_id: str) -> None:
        if self.dry_run:
            with self._dry_lock:
                self._dry_orders.pop(deal_id, None)
            LOGGER.info("DRY-RUN: cancelled order %s", deal_id)
            return
        self.client.cancel_working_order(deal_id)
        LOGGER.info("Cancelled working order %s", deal_id)

    def close_all(self, symbol: str) -> int:
        closed = 0
        for deal_id in sorted(self.open_position_ids(symbol)):
            self.close_position(deal_id)
            closed += 1
        for deal_id in sorted(self.pending_order_ids(symbol)):
            self.cancel_order(deal_id)
            closed += 1
        LOGGER.info("Close-all %s: %d positions/orders closed", symbol, closed)
        return closed
