from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union


class Regime(str, Enum):
    GRID = "GRID"
    SCALPING = "SCALPING"
    HIGH_VOLATILITY_HEDGE = "HIGH_VOLATILITY_HEDGE"
    NEWS = "NEWS"
    BREAKOUT = "BREAKOUT"


@dataclass(frozen=True, slots=True)
class RegimeDecision:
    regime: Regime
    volatility_points: float
    spread_points: float
    rationale: str


@dataclass(frozen=True, slots=True)
class GridParameters:
    symbol: str
    levels: int
    spacing_points: int
    volume_per_level: float
    stop_loss_points: int
    take_profit_points: int
    max_run_minutes: int = 15


@dataclass(frozen=True, slots=True)
class ScalpingParameters:
    symbol: str
    risk_amount: float
    stop_loss_points: int
    take_profit_points: int
    is_buy: bool
    max_hold_seconds: int = 60


@dataclass(frozen=True, slots=True)
class HedgeParameters:
    symbol: str
    risk_amount: float
    stop_loss_points: int
    take_profit_points: int
    hedge_trigger_points: int
    open_buy_first: bool
    max_monitor_minutes: int = 5
    hold_seconds: int = 30


@dataclass(frozen=True, slots=True)
class NewsStraddleParameters:
    symbol: str
    straddle_distance_points: int
    volume: float
    stop_loss_points: int
    take_profit_points: int
    seconds_before_news: int
    max_wait_after_news_seconds: int


@dataclass(frozen=True, slots=True)
class BreakoutParameters:
    symbol: str
    volume: float
    breakout_distance_points: int
    stop_loss_points: int
    take_profit_points: int
    max_wait_minutes: int


StrategyParameters = Union[
    GridParameters,
    ScalpingParameters,
    HedgeParameters,
    NewsStraddleParameters,
    BreakoutParameters,
]


class StrategyModule(Protocol):
    name: str

    def execute(self, parameters: StrategyParameters) -> float:
        ...


class StrategyExecutionError(RuntimeError):
    """Raised by a strategy module when it cannot run with the given parameters."""
