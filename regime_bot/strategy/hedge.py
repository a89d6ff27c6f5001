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
from regime_bot.strategy.contracts import HedgeParameters, StrategyModule, StrategyParameters

LOGGER = logging.getLogger(__name__)


class QuickHedgeStrategy(StrategyModule):
    """Risk-sized entry protected by an equal-size opposite position.

    The hedge opens once price moves ``hedge_trigger_points`` against the
    primary position within the monitoring window.
    """

    name = "HEDGE"
    poll_seconds = 2.0

    def __init__(self, gateway: TradingGateway, *, sleep: Callable[[float], None] = time.sleep):
        self.gateway = gateway
        self.orders = PointOrders(gateway)
        self._sleep = sleep

    def execute(self, parameters: StrategyParameters) -> float:
        params = require_parameters(parameters, HedgeParameters, self.name)
        require_positive(
            self.name,
            risk_amount=params.risk_amount,
            stop_loss_points=params.stop_loss_points,
            hedge_trigger_points=params.hedge_trigger_points,
        )
        symbol = params.symbol
        primary_side = "BUY" if params.open_buy_first else "SELL"
        hedge_side = "SELL" if params.open_buy_first else "BUY"
        initial_balance = self.gateway.get_balance()
        LOGGER.info(
            "Hedge start %s side=%s risk=%.2f trigger=%dpts",
            symbol,
            primary_side,
            params.risk_amount,
            params.hedge_trigger_points,
        )

        primary = self.orders.market_by_risk(
            symbol,
            primary_side,
            stop_points=params.stop_loss_points,
            risk_money=params.risk_amount,
            take_profit_points=params.take_profit_points,
            comment="Hedge-Primary",
        )
        if not primary.accepted:
            LOGGER.warning("Hedge primary order rejected on %s: %s", symbol, primary.reason)
            return 0.0

        hedged = False
        try:
            point = self.gateway.get_point_size(symbol)
            entry_price = primary.price
            if entry_price is None:
                tick = self.gateway.get_tick(symbol)
                entry_price = tick.ask if params.open_buy_first else tick.bid

            for _ in range(poll_count(params.max_monitor_minutes * 60, self.poll_seconds)):
                self._sleep(self.poll_seconds)
                tick = self.gateway.get_tick(symbol)
                current = tick.bid if params.open_buy_first else tick.ask
                adverse = current < entry_price if params.open_buy_first else current > entry_price
                moved_points = abs(current - entry_price) / point
                if adverse and moved_points >= params.hedge_trigger_points:
                    LOGGER.info("Price moved %.1f pts against %s, opening hedge", moved_points, primary_side)
                    hedge = self.orders.market(symbol, hedge_side, primary.size, comment="Hedge-Protection")
                    if hedge.accepted:
                        hedged = True
                        break
                    LOGGER.warning("Hedge order rejected on %s: %s", symbol, hedge.reason)

            self._sleep(params.hold_seconds)
            self.gateway.close_all(symbol)
        except Exception:
            close_all_best_effort(self.gateway, symbol)
            raise

        profit = self.gateway.get_balance() - initial_balance
        LOGGER.info("Hedge finished %s hedged=%s profit=%.2f", symbol, hedged, profit)
        return profit
