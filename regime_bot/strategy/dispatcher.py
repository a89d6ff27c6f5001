from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from regime_bot.clock import is_even_second, utc_now
from regime_bot.data.gateway import TradingGateway
from regime_bot.strategy.breakout import PendingBreakoutStrategy
from regime_bot.strategy.contracts import (
    BreakoutParameters,
    GridParameters,
    HedgeParameters,
    NewsStraddleParameters,
    Regime,
    RegimeDecision,
    ScalpingParameters,
    StrategyModule,
    StrategyParameters,
)
from regime_bot.strategy.grid import GridTradingStrategy
from regime_bot.strategy.hedge import QuickHedgeStrategy
from regime_bot.strategy.news_straddle import NewsStraddleStrategy
from regime_bot.strategy.scalping import SimpleScalpingStrategy

LOGGER = logging.getLogger(__name__)

HEDGE_RISK_FACTOR = 0.7


@dataclass(frozen=True, slots=True)
class DispatchBase:
    symbol: str
    base_risk_amount: float


ParameterBuilder = Callable[[DispatchBase, datetime], StrategyParameters]


def grid_parameters(base: DispatchBase, now: datetime) -> GridParameters:
    return GridParameters(
        symbol=base.symbol,
        levels=3,
        spacing_points=20,
        volume_per_level=0.01,
        stop_loss_points=30,
        take_profit_points=50,
    )


def scalping_parameters(base: DispatchBase, now: datetime) -> ScalpingParameters:
    return ScalpingParameters(
        symbol=base.symbol,
        risk_amount=base.base_risk_amount,
        stop_loss_points=15,
        take_profit_points=25,
        is_buy=is_even_second(now),
    )


def hedge_parameters(base: DispatchBase, now: datetime) -> HedgeParameters:
    return HedgeParameters(
        symbol=base.symbol,
        risk_amount=base.base_risk_amount * HEDGE_RISK_FACTOR,
        stop_loss_points=25,
        take_profit_points=40,
        hedge_trigger_points=15,
        open_buy_first=is_even_second(now),
    )


def news_parameters(base: DispatchBase, now: datetime) -> NewsStraddleParameters:
    return NewsStraddleParameters(
        symbol=base.symbol,
        straddle_distance_points=15,
        volume=0.02,
        stop_loss_points=20,
        take_profit_points=40,
        seconds_before_news=30,
        max_wait_after_news_seconds=120,
    )


def breakout_parameters(base: DispatchBase, now: datetime) -> BreakoutParameters:
    return BreakoutParameters(
        symbol=base.symbol,
        volume=0.01,
        breakout_distance_points=20,
        stop_loss_points=20,
        take_profit_points=40,
        max_wait_minutes=3,
    )


DEFAULT_BUILDERS: dict[Regime, ParameterBuilder] = {
    Regime.GRID: grid_parameters,
    Regime.SCALPING: scalping_parameters,
    Regime.HIGH_VOLATILITY_HEDGE: hedge_parameters,
    Regime.NEWS: news_parameters,
    Regime.BREAKOUT: breakout_parameters,
}


@dataclass(frozen=True, slots=True)
class StrategyRoute:
    regime: Regime
    build: ParameterBuilder
    module: StrategyModule


class StrategyDispatcher:
    """Maps each regime to a parameter builder and the module that executes it.

    Module errors are not caught or retried here.
    """

    def __init__(
        self,
        base: DispatchBase,
        modules: dict[Regime, StrategyModule],
        *,
        builders: dict[Regime, ParameterBuilder] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        resolved_builders = dict(DEFAULT_BUILDERS)
        if builders:
            resolved_builders.update(builders)
        missing = [regime.value for regime in Regime if regime not in modules or regime not in resolved_builders]
        if missing:
            raise ValueError(f"No strategy route for regimes: {', '.join(missing)}")
        self.base = base
        self._clock = clock
        self._routes = {
            regime: StrategyRoute(regime=regime, build=resolved_builders[regime], module=modules[regime])
            for regime in Regime
        }

    def route_for(self, regime: Regime) -> StrategyRoute:
        return self._routes[regime]

    def build_parameters(self, decision: RegimeDecision, now: datetime | None = None) -> StrategyParameters:
        route = self.route_for(decision.regime)
        return route.build(self.base, now or self._clock())

    def dispatch(self, decision: RegimeDecision) -> float:
        route = self.route_for(decision.regime)
        parameters = route.build(self.base, self._clock())
        LOGGER.info(
            "Dispatching %s regime=%s strategy=%s params=%s",
            self.base.symbol,
            decision.regime.value,
            route.module.name,
            parameters,
        )
        return float(route.module.execute(parameters))


def build_default_modules(
    gateway: TradingGateway,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[Regime, StrategyModule]:
    return {
        Regime.GRID: GridTradingStrategy(gateway, sleep=sleep),
        Regime.SCALPING: SimpleScalpingStrategy(gateway, sleep=sleep),
        Regime.HIGH_VOLATILITY_HEDGE: QuickHedgeStrategy(gateway, sleep=sleep),
        Regime.NEWS: NewsStraddleStrategy(gateway, sleep=sleep),
        Regime.BREAKOUT: PendingBreakoutStrategy(gateway, sleep=sleep),
    }
