from __future__ import annotations

from datetime import datetime, timezone

import pytest

from regime_bot.strategy.contracts import (
    BreakoutParameters,
    GridParameters,
    HedgeParameters,
    NewsStraddleParameters,
    Regime,
    RegimeDecision,
    ScalpingParameters,
    StrategyExecutionError,
)
from regime_bot.strategy.dispatcher import DispatchBase, StrategyDispatcher, build_default_modules

EVEN = datetime(2024, 1, 2, 10, 0, 2, tzinfo=timezone.utc)
ODD = datetime(2024, 1, 2, 10, 0, 3, tzinfo=timezone.utc)
BASE = DispatchBase(symbol="EURUSD", base_risk_amount=20.0)


def _decision(regime: Regime) -> RegimeDecision:
    return RegimeDecision(regime=regime, volatility_points=30.0, spread_points=3.0, rationale="test")


def _modules(make_module, outcome: float | Exception = 0.0):
    return {regime: make_module([outcome], name=regime.value) for regime in Regime}


def test_grid_parameters(make_module) -> None:
    dispatcher = StrategyDispatcher(BASE, _modules(make_module), clock=lambda: EVEN)
    params = dispatcher.build_parameters(_decision(Regime.GRID))

    assert params == GridParameters(
        symbol="EURUSD",
        levels=3,
        spacing_points=20,
        volume_per_level=0.01,
        stop_loss_points=30,
        take_profit_points=50,
    )


def test_scalping_parameters_follow_second_parity(make_module) -> None:
    dispatcher = StrategyDispatcher(BASE, _modules(make_module))

    even = dispatcher.build_parameters(_decision(Regime.SCALPING), EVEN)
    odd = dispatcher.build_parameters(_decision(Regime.SCALPING), ODD)

    assert isinstance(even, ScalpingParameters)
    assert even.risk_amount == 20.0
    assert even.stop_loss_points == 15
    assert even.take_profit_points == 25
    assert even.is_buy is True
    assert odd.is_buy is False


def test_hedge_parameters_scale_risk(make_module) -> None:
    dispatcher = StrategyDispatcher(BASE, _modules(make_module))
    params = dispatcher.build_parameters(_decision(Regime.HIGH_VOLATILITY_HEDGE), ODD)

    assert isinstance(params, HedgeParameters)
    assert params.risk_amount == pytest.approx(14.0)
    assert params.stop_loss_points == 25
    assert params.take_profit_points == 40
    assert params.hedge_trigger_points == 15
    assert params.open_buy_first is False


def test_news_and_breakout_parameters(make_module) -> None:
    dispatcher = StrategyDispatcher(BASE, _modules(make_module))

    news = dispatcher.build_parameters(_decision(Regime.NEWS), EVEN)
    breakout = dispatcher.build_parameters(_decision(Regime.BREAKOUT), EVEN)

    assert news == NewsStraddleParameters(
        symbol="EURUSD",
        straddle_distance_points=15,
        volume=0.02,
        stop_loss_points=20,
        take_profit_points=40,
        seconds_before_news=30,
        max_wait_after_news_seconds=120,
    )
    assert breakout == BreakoutParameters(
        symbol="EURUSD",
        volume=0.01,
        breakout_distance_points=20,
        stop_loss_points=20,
        take_profit_points=40,
        max_wait_minutes=3,
    )


def test_dispatch_runs_selected_module_once(make_module) -> None:
    modules = _modules(make_module, 4.5)
    dispatcher = StrategyDispatcher(BASE, modules, clock=lambda: EVEN)

    pnl = dispatcher.dispatch(_decision(Regime.SCALPING))

    assert pnl == 4.5
    assert len(modules[Regime.SCALPING].calls) == 1
    assert isinstance(modules[Regime.SCALPING].calls[0], ScalpingParameters)
    assert all(not modules[r].calls for r in Regime if r is not Regime.SCALPING)


def test_missing_route_is_rejected_at_construction(make_module) -> None:
    modules = _modules(make_module)
    del modules[Regime.NEWS]

    with pytest.raises(ValueError, match="NEWS"):
        StrategyDispatcher(BASE, modules)


def test_module_errors_propagate_without_retry(make_module) -> None:
    modules = _modules(make_module, StrategyExecutionError("rejected by broker"))
    dispatcher = StrategyDispatcher(BASE, modules, clock=lambda: EVEN)

    with pytest.raises(StrategyExecutionError, match="rejected by broker"):
        dispatcher.dispatch(_decision(Regime.BREAKOUT))
    assert len(modules[Regime.BREAKOUT].calls) == 1


def test_custom_builder_overrides_default(make_module) -> None:
    def tight_scalp(base: DispatchBase, now: datetime) -> ScalpingParameters:
        return ScalpingParameters(
            symbol=base.symbol,
            risk_amount=1.0,
            stop_loss_points=5,
            take_profit_points=5,
            is_buy=True,
        )

    dispatcher = StrategyDispatcher(BASE, _modules(make_module), builders={Regime.SCALPING: tight_scalp})
    params = dispatcher.build_parameters(_decision(Regime.SCALPING), ODD)

    assert params.stop_loss_points == 5
    assert dispatcher.route_for(Regime.SCALPING).build is tight_scalp


def test_default_modules_cover_every_regime(gateway) -> None:
    modules = build_default_modules(gateway, sleep=lambda _: None)

    assert set(modules) == set(Regime)
    assert modules[Regime.NEWS].name == "NEWS_STRADDLE"
    StrategyDispatcher(BASE, modules)
