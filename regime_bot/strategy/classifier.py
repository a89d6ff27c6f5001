from __future__ import annotations

from datetime import datetime

from regime_bot.clock import as_utc
from regime_bot.config import RegimeConfig
from regime_bot.data.market_data import MarketSnapshot, spread_points
from regime_bot.news.schedule import active_news_event
from regime_bot.strategy.contracts import Regime, RegimeDecision


def classify(snapshot: MarketSnapshot, now_utc: datetime, config: RegimeConfig) -> RegimeDecision:
    """Pick exactly one regime for the snapshot.

    Priority chain, first match wins: news window, breakout spread, then the
    volatility bands (Grid < low <= Scalping < high <= HighVolatilityHedge).
    The volatility figure is ``spread_points * volatility_multiplier``; it is a
    cheap proxy, not an estimate of realised volatility.
    """
    spread = spread_points(snapshot)
    volatility = spread * config.volatility_multiplier

    if config.news_enabled:
        event = active_news_event(
            now_utc,
            config.news_schedule_utc,
            config.minutes_before_news,
            config.minutes_after_news,
        )
        if event is not None:
            now = as_utc(now_utc)
            return RegimeDecision(
                regime=Regime.NEWS,
                volatility_points=volatility,
                spread_points=spread,
                rationale=f"News event window {event} UTC (now {now.hour:02d}:{now.minute:02d})",
            )

    if spread > config.breakout_spread_points:
        return RegimeDecision(
            regime=Regime.BREAKOUT,
            volatility_points=volatility,
            spread_points=spread,
            rationale=(
                f"Breakout potential: spread {spread:.1f} pts > {config.breakout_spread_points:.1f} pts"
            ),
        )

    if volatility < config.low_volatility_threshold:
        return RegimeDecision(
            regime=Regime.GRID,
            volatility_points=volatility,
            spread_points=spread,
            rationale=(
                f"Low volatility - range-bound market ({volatility:.1f} < {config.low_volatility_threshold:.1f} pts)"
            ),
        )

    if volatility < config.high_volatility_threshold:
        return RegimeDecision(
            regime=Regime.SCALPING,
            volatility_points=volatility,
            spread_points=spread,
            rationale=(
                f"Medium volatility - normal market conditions "
                f"({config.low_volatility_threshold:.1f} <= {volatility:.1f} < {config.high_volatility_threshold:.1f} pts)"
            ),
        )

    return RegimeDecision(
        regime=Regime.HIGH_VOLATILITY_HEDGE,
        volatility_points=volatility,
        spread_points=spread,
        rationale=(
            f"High volatility - protective mode ({volatility:.1f} >= {config.high_volatility_threshold:.1f} pts)"
        ),
    )
