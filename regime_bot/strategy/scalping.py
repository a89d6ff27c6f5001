from __future__ import annotations

import logging
import time
from typing import Callable

from regime_bot.data.gateway import TradingGateway
from regime_bot.execution.orders import PointOrders
from regime_bot.strategy.common import close_all_best_effort, require_parameters, require_positive
from regime_bot.strategy.contracts import ScalpingParameters, StrategyModule, StrategyParameters

LOGGER = logging.getLogger(__name__)


class SimpleScalpingStrategy(StrategyModule):
    name = "SCALPING"

    def __init__(self, gateway: TradingGateway, *, sleep: Callable[[float], None] = time.sleep):
        self.gateway = gateway
        self.orders = PointOrders(gateway)
        self._sleep = sleep

    def execute(self, parameters: StrategyParameters) -> float:
        params = require_parameters(parameters, ScalpingParameters, self.name)
        require_positive(self.name, risk_amount=params.risk_amount, stop_loss_points=params.stop_loss_points)
        symbol = params.symbol
        side = "BUY" if params.is_buy else "SELL"
        initial_balance = self.gateway.get_balance()
        LOGGER.info(
            "Scalp start %s side=%s risk=%.2f sl=%d tp=%d hold=%ds",
            symbol,
            side,
            params.risk_amount,
            params.stop_loss_points,
            params.take_profit_points,
            params.max_hold_seconds,
        )

        result = self.orders.market_by_risk(
            symbol,
            side,
            stop_points=params.stop_loss_points,
            risk_money=params.risk_amount,
            take_profit_points=params.take_profit_points,
            comment="Scalper",
        )
        if not result.accepted or result.deal_id is None:
            LOGGER.warning("Scalp order rejected on %s: %s", symbol, result.reason)
            return 0.0

        try:
            self._sleep(params.max_hold_seconds)
            if result.deal_id in self.gateway.open_position_ids(symbol):
                LOGGER.info("Scalp position %s still open after %ds, closing", result.deal_id, params.max_hold_seconds)
                self.gateway.close_position(result.deal_id)
            else:
                LOGGER.info("Scalp position %s closed by SL/TP", result.deal_id)
        except Exception:
            close_all_best_effort(self.gateway, symbol)
            raise

        profit = self.gateway.get_balance() - initial_balance
        LOGGER.info("Scalp finished %s profit=%.2f", symbol, profit)
        return profit
