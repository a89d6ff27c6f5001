from __future__ import annotations

import logging

from regime_bot.data.gateway import OrderResult, SymbolSpec, TradingGateway
from regime_bot.execution.sizing import volume_for_risk

LOGGER = logging.getLogger(__name__)


def _is_buy(side: str) -> bool:
    normalized = side.strip().upper()
    if normalized not in {"BUY", "SELL"}:
        raise ValueError(f"Unsupported side {side}")
    return normalized == "BUY"


def _round_price(spec: SymbolSpec, price: float) -> float:
    return round(price, spec.digits)


class PointOrders:
    """Order helpers that express prices as point offsets from the current tick.

    Buy-side prices are derived from the ask, sell-side prices from the bid.
    """

    def __init__(self, gateway: TradingGateway):
        self.gateway = gateway

    def protective_levels(
        self,
        spec: SymbolSpec,
        side: str,
        price: float,
        stop_points: float | None,
        take_profit_points: float | None,
    ) -> tuple[float | None, float | None]:
        direction = 1.0 if _is_buy(side) else -1.0
        stop = None
        take_profit = None
        if stop_points:
            stop = _round_price(spec, price - direction * stop_points * spec.point_size)
        if take_profit_points:
            take_profit = _round_price(spec, price + direction * take_profit_points * spec.point_size)
        return stop, take_profit

    def market(self, symbol: str, side: str, size: float, *, comment: str | None = None) -> OrderResult:
        _is_buy(side)
        return self.gateway.send_market_order(symbol, side.upper(), size, comment=comment)

    def market_by_risk(
        self,
        symbol: str,
        side: str,
        *,
        stop_points: float,
        risk_money: float,
        take_profit_points: float | None = None,
        comment: str | None = None,
    ) -> OrderResult:
        spec = self.gateway.get_symbol_spec(symbol)
        size = volume_for_risk(spec, stop_points, risk_money)
        if size <= 0:
            LOGGER.warning(
                "Risk %.2f over %s pts is below minimum size %.4f for %s",
                risk_money,
                stop_points,
                spec.min_size,
                symbol,
            )
            return OrderResult(deal_id=None, accepted=False, reason="SIZE_BELOW_MINIMUM")
        tick = self.gateway.get_tick(symbol)
        buy = _is_buy(side)
        # Stop measured from the closing side of the book, target from the opening side.
        stop_basis = tick.bid if buy else tick.ask
        target_basis = tick.ask if buy else tick.bid
        stop, _ = self.protective_levels(spec, side, stop_basis, stop_points, None)
        _, take_profit = self.protective_levels(spec, side, target_basis, None, take_profit_points)
        return self.gateway.send_market_order(
            symbol,
            side.upper(),
            size,
            stop_level=stop,
            profit_level=take_profit,
            comment=comment,
        )

    def pending_points(
        self,
        symbol: str,
        side: str,
        order_type: str,
        *,
        volume: float,
        offset_points: float,
        stop_points: float | None = None,
        take_profit_points: float | None = None,
        comment: str | None = None,
    ) -> OrderResult:
        normalized_type = order_type.strip().upper()
        if normalized_type not in {"LIMIT", "STOP"}:
            raise ValueError(f"Unsupported pending order type {order_type}")
        spec = self.gateway.get_symbol_spec(symbol)
        tick = self.gateway.get_tick(symbol)
        buy = _is_buy(side)
        basis = tick.ask if buy else tick.bid
        # Buy stops and sell limits sit above the market; the other two below.
        above = buy == (normalized_type == "STOP")
        offset = abs(offset_points) * spec.point_size
        level = _round_price(spec, basis + offset if above else basis - offset)
        stop, take_profit = self.protective_levels(spec, side, level, stop_points, take_profit_points)
        return self.gateway.send_pending_order(
            symbol,
            side.upper(),
            normalized_type,
            volume,
            level,
            stop_level=stop,
            profit_level=take_profit,
            comment=comment,
        )

    def buy_limit_points(self, symbol: str, **kwargs) -> OrderResult:
        return self.pending_points(symbol, "BUY", "LIMIT", **kwargs)

    def sell_limit_points(self, symbol: str, **kwargs) -> OrderResult:
        return self.pending_points(symbol, "SELL", "LIMIT", **kwargs)

    def buy_stop_points(self, symbol: str, **kwargs) -> OrderResult:
        return self.pending_points(symbol, "BUY", "STOP", **kwargs)

    def sell_stop_points(self, symbol: str, **kwargs) -> OrderResult:
        return self.pending_points(symbol, "SELL", "STOP", **kwargs)
