from __future__ import annotations

import math

from regime_bot.data.gateway import SymbolSpec


def floor_to_step(value: float, step: float) -> float:
    if step <= 0:
        raise ValueError("step must be > 0")
    # Small epsilon keeps 0.3 / 0.01 from flooring to 29 steps.
    return math.floor(value / step + 1e-9) * step


def position_size_from_risk(
    *,
    risk_amount: float,
    entry_price: float,
    stop_price: float,
    min_size: float,
    size_step: float,
) -> float:
    risk_distance = abs(entry_price - stop_price)
    if risk_distance <= 0:
        return 0.0
    sized = floor_to_step(risk_amount / risk_distance, size_step)
    if sized < min_size:
        return 0.0
    return round(sized, 8)


def volume_for_risk(spec: SymbolSpec, stop_points: float, risk_money: float) -> float:
    """Size so that a stop ``stop_points`` away loses about ``risk_money``.

    Assumes one size unit moves one account-currency unit per price unit.
    """
    if stop_points <= 0:
        raise ValueError("stop_points must be > 0")
    if risk_money <= 0:
        raise ValueError("risk_money must be > 0")
    return position_size_from_risk(
        risk_amount=risk_money,
        entry_price=0.0,
        stop_price=stop_points * spec.point_size,
        min_size=spec.min_size,
        size_step=spec.size_step,
    )
