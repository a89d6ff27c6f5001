from __future__ import annotations

import logging
import time
from typing import Callable

from regime_bot.data.gateway import TradingGateway
from regime_bot.execution.orders import PointOrders
from regime_bot.strategy.common import (
    close_all_best_effort,
    poll_count,
    require_parameters,
    require_positive,
)
from regime_bot.strategy.contracts import GridParameters, StrategyModule, StrategyParameters

LOGGER = logging.getLogger(__name__)


class GridTradingStrategy(StrategyModule):
    """Symmetric grid of limit orders for range-bound markets.

    Places ``levels`` BUY LIMIT orders below the ask and as many SELL LIMIT
    orders above the bid, spaced ``spacing_points`` apart, lets them work for
    ``max_run_minutes`` and then closes everything on the symbol.
    """

    name = "GRID"
    poll_seconds = 5.0

    def __init__(self, gateway: TradingGateway, *, sleep: Callable[[float], None] = time.sleep):
        self.gateway = gateway
        self.orders = PointOrders(gateway)
        self._sleep = sleep

    def execute(self, parameters: StrategyParameters) -> float:
        params = require_parameters(parameters, GridParameters, self.name)
        require_positive(
            self.name,
            levels=params.levels,
            spacing_points=params.spacing_points,
            volume_per_level=params.volume_per_level,
        )
        symbol = params.symbol
        initial_balance = self.gateway.get_balance()
        LOGGER.info(
            "Grid start %s levels=%d spacing=%d volume=%.2f sl=%d tp=%d",
            symbol,
            params.levels,
            params.spacing_points,
            params.volume_per_level,
            params.stop_loss_points,
            params.take_profit_points,
        )
        try:
            placed = 0
            for side, order_fn in (("BUY", self.orders.buy_limit_points), ("SELL", self.orders.sell_limit_points)):
                for level in range(1, params.levels + 1):
                    result = order_fn(
                        symbol,
                        volume=params.volume_per_level,
                        offset_points=level * params.spacing_points,
                        stop_points=params.stop_loss_points,
                        take_profit_points=params.take_profit_points,
                        comment=f"Grid-{side.title()}-{level}",
                    )
                    if result.accepted:
                        placed += 1
                    else:
                        LOGGER.warning("Grid %s level %d rejected: %s", side, level, result.reason)
            LOGGER.info("Grid placed %d pending orders on %s", placed, symbol)

            for _ in range(poll_count(params.max_run_minutes * 60, self.poll_seconds)):
                self._sleep(self.poll_seconds)
                LOGGER.info("Grid %s running P/L: %.2f", symbol, self.gateway.get_balance() - initial_balance)

            self.gateway.close_all(symbol)
        except Exception:
            close_all_best_effort(self.gateway, symbol)
            raise

        profit = self.gateway.get_balance() - initial_balance
        LOGGER.info("Grid finished %s profit=%.2f", symbol, profit)
        return profit
