from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from regime_bot.clock import utc_now
from regime_bot.config import RegimeConfig, RunConfig
from regime_bot.data.gateway import TradingGateway
from regime_bot.data.market_data import MarketDataService
from regime_bot.monitoring.alerts import AlertDispatcher
from regime_bot.reporting.cycle_reporter import CycleReporter
from regime_bot.runner.models import CycleResult, RunState, RunSummary, TerminationReason
from regime_bot.strategy.classifier import classify
from regime_bot.strategy.dispatcher import StrategyDispatcher

LOGGER = logging.getLogger(__name__)


class CycleController:
    """Runs snapshot -> classify -> dispatch -> account cycles for one symbol.

    The loop has no cycle limit. It ends on the safety stop, on ``stop_event``
    or on the first error escaping a cycle. ``run`` is the only error boundary:
    it never raises an ``Exception`` and always returns a ``RunSummary``.
    Cancelled and failed runs get exactly one emergency ``close_all`` for the
    symbol from the controller; a strategy module that failed has already made
    its own best-effort close before re-raising, so the symbol may see two.
    A safety stop leaves positions to the strategy that opened them.
    """

    def __init__(
        self,
        symbol: str,
        run_config: RunConfig,
        regime_config: RegimeConfig,
        market_data: MarketDataService,
        gateway: TradingGateway,
        dispatcher: StrategyDispatcher,
        reporter: CycleReporter,
        stop_event: threading.Event,
        *,
        clock: Callable[[], datetime] = utc_now,
        alerts: AlertDispatcher | None = None,
    ):
        self.symbol = symbol
        self.run_config = run_config
        self.regime_config = regime_config
        self.market_data = market_data
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.reporter = reporter
        self.stop_event = stop_event
        self.clock = clock
        self.alerts = alerts
        self.state = RunState()

    def run(self) -> RunSummary:
        state = self.state
        termination: TerminationReason | None = None
        error: str | None = None
        initial_balance: float | None = None
        try:
            initial_balance = self.gateway.get_balance()
            self.reporter.run_started(
                initial_balance,
                self.run_config.base_risk_amount,
                self.regime_config.low_volatility_threshold,
                self.regime_config.high_volatility_threshold,
            )
            termination = self._loop(state)
        except Exception as exc:
            termination = TerminationReason.FATAL_ERROR
            error = str(exc) or type(exc).__name__
            LOGGER.exception(
                "Run failed symbol=%s cycle=%s cumulative_pnl=%.2f",
                self.symbol,
                state.cycle_number,
                state.cumulative_pnl,
            )
            self._alert(
                event="FATAL_ERROR",
                message=f"{self.symbol} run stopped: {error}",
                level="error",
            )
        finally:
            state.stopped = True
            if termination is not TerminationReason.SAFETY_STOP:
                self._emergency_close()

        summary = RunSummary(
            symbol=self.symbol,
            initial_balance=initial_balance,
            final_balance=self._final_balance(),
            cumulative_pnl=state.cumulative_pnl,
            cycles=state.cycle_number,
            termination=termination,
            results=tuple(state.results),
            error=error,
        )
        self.reporter.run_finished(summary)
        return summary

    def _loop(self, state: RunState) -> TerminationReason:
        limit = self.run_config.safety_loss_limit
        while True:
            if self.stop_event.is_set():
                return TerminationReason.CANCELLED

            state.cycle_number += 1
            self.reporter.cycle_started(state.cycle_number)
            snapshot = self.market_data.fetch_snapshot(self.symbol)
            decision = classify(snapshot, self.clock(), self.regime_config)
            self.reporter.regime_selected(state.cycle_number, decision)

            if self.stop_event.is_set():
                return TerminationReason.CANCELLED

            realized_pnl = self.dispatcher.dispatch(decision)
            # Counted before the balance read so a failed read cannot drop it.
            state.realize(realized_pnl)
            balance = self.gateway.get_balance()
            result = CycleResult(
                cycle_number=state.cycle_number,
                regime=decision.regime,
                realized_pnl=realized_pnl,
                balance_after=balance,
            )
            state.record(result)
            LOGGER.info(
                "Cycle done symbol=%s cycle=%s regime=%s pnl=%.2f cumulative_pnl=%.2f",
                self.symbol,
                result.cycle_number,
                result.regime.value,
                result.realized_pnl,
                state.cumulative_pnl,
            )
            self.reporter.cycle_completed(result, state)

            if state.cumulative_pnl < -limit:
                self.reporter.safety_stop(state, limit)
                self._alert(
                    event="SAFETY_STOP",
                    message=f"{self.symbol} cumulative P/L {state.cumulative_pnl:.2f} below -{limit:.2f}",
                    level="warning",
                )
                return TerminationReason.SAFETY_STOP

            if self.stop_event.wait(self.run_config.pause_seconds):
                return TerminationReason.CANCELLED

    def _emergency_close(self) -> None:
        try:
            closed = self.gateway.close_all(self.symbol)
            LOGGER.warning("Emergency close symbol=%s closed=%s", self.symbol, closed)
        except Exception as exc:
            LOGGER.error("Emergency close failed symbol=%s: %s", self.symbol, exc)

    def _final_balance(self) -> float | None:
        try:
            return self.gateway.get_balance()
        except Exception as exc:
            LOGGER.warning("Final balance unavailable symbol=%s: %s", self.symbol, exc)
            return None

    def _alert(self, *, event: str, message: str, level: str) -> None:
        if self.alerts is None:
            return
        self.alerts.send(
            event=event,
            message=message,
            level=level,
            context={"symbol": self.symbol, "cycle": self.state.cycle_number},
            dedupe_key=f"{event}:{self.symbol}",
        )
