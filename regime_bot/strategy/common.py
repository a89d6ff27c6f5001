from __future__ import annotations

import logging
import math
from typing import Callable, TypeVar

from regime_bot.data.gateway import TradingGateway
from regime_bot.strategy.contracts import StrategyExecutionError

LOGGER = logging.getLogger(__name__)

P = TypeVar("P")


def require_parameters(parameters: object, expected: type[P], strategy_name: str) -> P:
    if not isinstance(parameters, expected):
        raise StrategyExecutionError(
            f"{strategy_name} expects {expected.__name__}, got {type(parameters).__name__}"
        )
    return parameters


def require_positive(strategy_name: str, **values: float) -> None:
    for key, value in values.items():
        if value <= 0:
            raise StrategyExecutionError(f"{strategy_name}: {key} must be > 0 (got {value})")


def poll_count(total_seconds: float, interval_seconds: float) -> int:
    if total_seconds <= 0 or interval_seconds <= 0:
        return 0
    return int(math.ceil(total_seconds / interval_seconds))


def close_all_best_effort(gateway: TradingGateway, symbol: str) -> None:
    try:
        gateway.close_all(symbol)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Cleanup close-all failed for %s: %s", symbol, exc)


def watch_bracket(
    gateway: TradingGateway,
    symbol: str,
    buy_id: str,
    sell_id: str,
    *,
    polls: int,
    poll_seconds: float,
    sleep: Callable[[float], None],
) -> str:
    """Wait for a BUY STOP / SELL STOP pair and report which side triggered.

    Returns ``UP`` (buy filled), ``DOWN`` (sell filled), ``BOTH`` or ``NONE``
    when neither left the pending book within ``polls`` checks.
    """
    for _ in range(polls):
        sleep(poll_seconds)
        pending = gateway.pending_order_ids(symbol)
        buy_pending = buy_id in pending
        sell_pending = sell_id in pending
        if not buy_pending and sell_pending:
            return "UP"
        if buy_pending and not sell_pending:
            return "DOWN"
        if not buy_pending and not sell_pending:
            return "BOTH"
    return "NONE"
