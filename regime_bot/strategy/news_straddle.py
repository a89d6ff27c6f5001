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
    watch_bracket,
)
from regime_bot.strategy.contracts import NewsStraddleParameters, StrategyModule, StrategyParameters

LOGGER = logging.getLogger(__name__)

FILLED_HOLD_SECONDS = 60
BOTH_FILLED_HOLD_SECONDS = 30


class NewsStraddleStrategy(StrategyModule):
    name = "NEWS_STRADDLE"
    poll_seconds = 1.0

    def __init__(self, gateway: TradingGateway, *, sleep: Callable[[float], None] = time.sleep):
        self.gateway = gateway
        self.orders = PointOrders(gateway)
        self._sleep = sleep

    def execute(self, parameters: StrategyParameters) -> float:
        params = require_parameters(parameters, NewsStraddleParameters, self.name)
        require_positive(
            self.name,
            straddle_distance_points=params.straddle_distance_points,
            volume=params.volume,
        )
        symbol = params.symbol
        initial_balance = self.gateway.get_balance()
        LOGGER.info(
            "News straddle %s countdown=%ds distance=%dpts volume=%.2f",
            symbol,
            params.seconds_before_news,
            params.straddle_distance_points,
            params.volume,
        )
        self._sleep(params.seconds_before_news)

        order_kwargs = {
            "volume": params.volume,
            "offset_points": params.straddle_distance_points,
            "stop_points": params.stop_loss_points,
            "take_profit_points": params.take_profit_points,
        }
        buy = self.orders.buy_stop_points(symbol, comment="News-Buy", **order_kwargs)
        if not buy.accepted or buy.deal_id is None:
            LOGGER.warning("News BUY STOP rejected on %s: %s", symbol, buy.reason)
            return 0.0

        # The BUY STOP is live from here on.
        try:
            sell = self.orders.sell_stop_points(symbol, comment="News-Sell", **order_kwargs)
            if not sell.accepted or sell.deal_id is None:
                LOGGER.warning("News SELL STOP rejected on %s: %s", symbol, sell.reason)
                self.gateway.cancel_order(buy.deal_id)
                return 0.0

            direction = watch_bracket(
                self.gateway,
                symbol,
                buy.deal_id,
                sell.deal_id,
                polls=poll_count(params.max_wait_after_news_seconds, self.poll_seconds),
                poll_seconds=self.poll_seconds,
                sleep=self._sleep,
            )
            LOGGER.info("News straddle %s breakout direction=%s", symbol, direction)
            if direction == "UP":
                self.gateway.cancel_order(sell.deal_id)
                self._sleep(FILLED_HOLD_SECONDS)
            elif direction == "DOWN":
                self.gateway.cancel_order(buy.deal_id)
                self._sleep(FILLED_HOLD_SECONDS)
            elif direction == "BOTH":
                self._sleep(BOTH_FILLED_HOLD_SECONDS)
            else:
                self.gateway.cancel_order(buy.deal_id)
                self.gateway.cancel_order(sell.deal_id)
            self.gateway.close_all(symbol)
        except Exception:
            close_all_best_effort(self.gateway, symbol)
            raise

        profit = self.gateway.get_balance() - initial_balance
        LOGGER.info("News straddle finished %s profit=%.2f", symbol, profit)
        return profit
