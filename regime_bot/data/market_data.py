from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from regime_bot.data.gateway import TradingGateway

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    bid: float
    ask: float
    point_size: float
    observed_at_utc: datetime


def compute_spread(bid: float, ask: float) -> float:
    return ask - bid


def spread_points(snapshot: MarketSnapshot) -> float:
    # Rounded so that float noise in (ask - bid) / point cannot cross an exact threshold.
    return round(compute_spread(snapshot.bid, snapshot.ask) / snapshot.point_size, 6)


class MarketDataService:
    def __init__(self, gateway: TradingGateway):
        self.gateway = gateway

    def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        tick = self.gateway.get_tick(symbol)
        point_size = self.gateway.get_point_size(symbol)
        if point_size <= 0:
            raise ValueError(f"Invalid point size {point_size} for {symbol}")
        snapshot = MarketSnapshot(
            bid=tick.bid,
            ask=tick.ask,
            point_size=point_size,
            observed_at_utc=tick.time,
        )
        LOGGER.debug(
            "Snapshot %s bid=%.5f ask=%.5f point=%g",
            symbol,
            snapshot.bid,
            snapshot.ask,
            snapshot.point_size,
        )
        return snapshot
