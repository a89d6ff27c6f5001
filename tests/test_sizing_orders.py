from __future__ import annotations

import pytest

from regime_bot.data.gateway import SymbolSpec
from regime_bot.execution.orders import PointOrders
from regime_bot.execution.sizing import floor_to_step, position_size_from_risk, volume_for_risk

SPEC = SymbolSpec(symbol="EURUSD", point_size=0.0001, min_size=1.0, size_step=1.0, digits=4)


def test_floor_to_step_tolerates_float_noise() -> None:
    assert floor_to_step(0.3, 0.01) == pytest.approx(0.3)
    assert floor_to_step(0.299, 0.01) == pytest.approx(0.29)
    with pytest.raises(ValueError):
        floor_to_step(1.0, 0.0)


def test_position_size_from_risk() -> None:
    size = position_size_from_risk(risk_amount=50.0, entry_price=100.0, stop_price=98.0, min_size=1.0, size_step=1.0)
    assert size == 25.0
    assert position_size_from_risk(risk_amount=1.0, entry_price=100.0, stop_price=98.0, min_size=1.0, size_step=1.0) == 0.0
    assert position_size_from_risk(risk_amount=50.0, entry_price=100.0, stop_price=100.0, min_size=1.0, size_step=1.0) == 0.0


def test_volume_for_risk_uses_point_distance() -> None:
    # 20 currency units over 25 points of 0.0001 -> 8000 units
    assert volume_for_risk(SPEC, 25, 20.0) == 8000.0


@pytest.mark.parametrize("stop_points, risk", [(0, 20.0), (-5, 20.0), (25, 0.0)])
def test_volume_for_risk_rejects_non_positive_inputs(stop_points: float, risk: float) -> None:
    with pytest.raises(ValueError):
        volume_for_risk(SPEC, stop_points, risk)


def test_pending_levels_sit_on_the_expected_side(gateway) -> None:
    orders = PointOrders(gateway)

    orders.buy_limit_points("EURUSD", volume=0.01, offset_points=10)
    orders.sell_limit_points("EURUSD", volume=0.01, offset_points=10)
    orders.buy_stop_points("EURUSD", volume=0.01, offset_points=10)
    orders.sell_stop_points("EURUSD", volume=0.01, offset_points=10)

    levels = [(o["side"], o["order_type"], o["level"]) for o in gateway.pending_orders]
    assert levels == [
        ("BUY", "LIMIT", pytest.approx(1.09993)),
        ("SELL", "LIMIT", pytest.approx(1.10010)),
        ("BUY", "STOP", pytest.approx(1.10013)),
        ("SELL", "STOP", pytest.approx(1.09990)),
    ]
    assert all(o["stop_level"] is None and o["profit_level"] is None for o in gateway.pending_orders)


def test_protective_levels_round_to_symbol_digits(gateway) -> None:
    orders = PointOrders(gateway)
    stop, take_profit = orders.protective_levels(gateway.spec, "SELL", 1.123456789, 10, 20)

    assert stop == 1.12356
    assert take_profit == 1.12326


def test_unknown_side_or_type_is_rejected(gateway) -> None:
    orders = PointOrders(gateway)

    with pytest.raises(ValueError):
        orders.market("EURUSD", "HOLD", 1.0)
    with pytest.raises(ValueError):
        orders.pending_points("EURUSD", "BUY", "TRAILING", volume=0.01, offset_points=5)
    assert gateway.market_orders == [] and gateway.pending_orders == []


def test_market_by_risk_below_minimum_is_not_sent(make_gateway) -> None:
    gateway = make_gateway(spec=SPEC)
    result = PointOrders(gateway).market_by_risk("EURUSD", "BUY", stop_points=1000, risk_money=0.05)

    assert not result.accepted
    assert result.reason == "SIZE_BELOW_MINIMUM"
    assert gateway.market_orders == []
