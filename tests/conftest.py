from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Callable

import pytest

from regime_bot.data.gateway import OrderResult, SymbolSpec, Tick
from regime_bot.strategy.contracts import StrategyParameters

NOW = datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc)


class FakeGateway:
    """In-memory TradingGateway.

    ``ticks`` and ``balances`` are consumed one per call; the last value sticks.
    Pending orders whose side is listed in ``fill_sides`` move to the position
    book the first time ``pending_order_ids`` is polled.
    ``pending_errors`` maps a side to the error its pending order raises.
    """

    def __init__(
        self,
        *,
        ticks: list[tuple[float, float]] | None = None,
        balances: list[float] | None = None,
        spec: SymbolSpec | None = None,
    ):
        self.ticks = list(ticks or [(1.10000, 1.10003)])
        self.balances = list(balances or [1000.0])
        self.spec = spec or SymbolSpec(symbol="EURUSD", point_size=0.00001, min_size=0.01, size_step=0.01, digits=5)
        self.market_orders: list[dict[str, object]] = []
        self.pending_orders: list[dict[str, object]] = []
        self.positions: dict[str, str] = {}
        self.pending: dict[str, dict[str, object]] = {}
        self.cancelled: list[str] = []
        self.closed_positions: list[str] = []
        self.close_all_calls: list[str] = []
        self.fill_sides: set[str] = set()
        self.reject_comments: set[str] = set()
        self.pending_errors: dict[str, Exception] = {}
        self.close_all_error: Exception | None = None
        self.tick_error: Exception | None = None
        self.balance_error: Exception | None = None
        self._ids = itertools.count(1)

    def get_tick(self, symbol: str) -> Tick:
        if self.tick_error is not None:
            raise self.tick_error
        bid, ask = self.ticks.pop(0) if len(self.ticks) > 1 else self.ticks[0]
        return Tick(bid=bid, ask=ask, time=NOW)

    def get_symbol_spec(self, symbol: str) -> SymbolSpec:
        return self.spec

    def get_point_size(self, symbol: str) -> float:
        return self.spec.point_size

    def get_balance(self) -> float:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.pop(0) if len(self.balances) > 1 else self.balances[0]

    def _next_id(self) -> str:
        return f"D{next(self._ids)}"

    def send_market_order(self, symbol, side, size, *, stop_level=None, profit_level=None, comment=None) -> OrderResult:
        order = {
            "symbol": symbol,
            "side": side,
            "size": size,
            "stop_level": stop_level,
            "profit_level": profit_level,
            "comment": comment,
        }
        self.market_orders.append(order)
        if comment in self.reject_comments:
            return OrderResult(deal_id=None, accepted=False, reason="REJECTED")
        deal_id = self._next_id()
        self.positions[deal_id] = symbol
        tick = self.get_tick(symbol)
        price = tick.ask if side == "BUY" else tick.bid
        return OrderResult(deal_id=deal_id, accepted=True, price=price, size=size)

    def send_pending_order(
        self, symbol, side, order_type, size, level, *, stop_level=None, profit_level=None, comment=None
    ) -> OrderResult:
        order = {
            "symbol": symbol,
            "side": side,
            "order_type": order_type,
            "size": size,
            "level": level,
            "stop_level": stop_level,
            "profit_level": profit_level,
            "comment": comment,
        }
        self.pending_orders.append(order)
        if side in self.pending_errors:
            raise self.pending_errors[side]
        if comment in self.reject_comments:
            return OrderResult(deal_id=None, accepted=False, reason="REJECTED")
        deal_id = self._next_id()
        self.pending[deal_id] = order
        return OrderResult(deal_id=deal_id, accepted=True, price=level, size=size)

    def open_position_ids(self, symbol: str) -> set[str]:
        return {deal_id for deal_id, sym in self.positions.items() if sym == symbol}

    def pending_order_ids(self, symbol: str) -> set[str]:
        for deal_id, order in list(self.pending.items()):
            if order["side"] in self.fill_sides:
                del self.pending[deal_id]
                self.positions[deal_id] = symbol
        return {deal_id for deal_id, order in self.pending.items() if order["symbol"] == symbol}

    def close_position(self, deal_id: str) -> None:
        self.closed_positions.append(deal_id)
        self.positions.pop(deal_id, None)

    def cancel_order(self, deal_id: str) -> None:
        self.cancelled.append(deal_id)
        self.pending.pop(deal_id, None)

    def close_all(self, symbol: str) -> int:
        self.close_all_calls.append(symbol)
        if self.close_all_error is not None:
            raise self.close_all_error
        count = 0
        for deal_id in [d for d, sym in self.positions.items() if sym == symbol]:
            self.close_position(deal_id)
            count += 1
        for deal_id in [d for d, order in self.pending.items() if order["symbol"] == symbol]:
            self.cancel_order(deal_id)
            count += 1
        return count


class FakeModule:
    """Strategy module returning scripted P&L values; an Exception item is raised instead."""

    def __init__(
        self,
        outcomes: list[float | Exception],
        *,
        name: str = "FAKE",
        on_execute: Callable[[int], None] | None = None,
    ):
        self.name = name
        self.outcomes = list(outcomes)
        self.on_execute = on_execute
        self.calls: list[StrategyParameters] = []

    def execute(self, parameters: StrategyParameters) -> float:
        self.calls.append(parameters)
        if self.on_execute is not None:
            self.on_execute(len(self.calls))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_gateway() -> type[FakeGateway]:
    return FakeGateway


@pytest.fixture
def make_module() -> type[FakeModule]:
    return FakeModule


@pytest.fixture
def sleeps() -> list[float]:
    """Pass ``sleeps.append`` as a strategy's sleep to record waits without sleeping."""
    return []
