from __future__ import annotations

import logging
from typing import Callable

from regime_bot.monitoring.dashboard import DashboardWriter
from regime_bot.runner.models import CycleResult, RunState, RunSummary
from regime_bot.strategy.contracts import RegimeDecision

LOGGER = logging.getLogger(__name__)

Sink = Callable[[str], None]


def _log_sink(line: str) -> None:
    LOGGER.info("%s", line)


class CycleReporter:
    """Renders run progress through ``sink``; optionally mirrors it to a dashboard file."""

    def __init__(self, symbol: str, sink: Sink | None = None, dashboard: DashboardWriter | None = None):
        self.symbol = symbol
        self.sink = sink or _log_sink
        self.dashboard = dashboard

    def run_started(self, initial_balance: float, base_risk_amount: float, low: float, high: float) -> None:
        self.sink(
            f"[{self.symbol}] Adaptive run started | balance=${initial_balance:.2f} "
            f"base_risk=${base_risk_amount:.2f} | volatility bands: low < {low:g} pts <= medium < {high:g} pts <= high"
        )
        self._mirror({"status": "RUNNING", "initial_balance": initial_balance, "cycle": 0, "cumulative_pnl": 0.0})

    def cycle_started(self, cycle_number: int) -> None:
        self.sink(f"[{self.symbol}] Cycle #{cycle_number}")

    def regime_selected(self, cycle_number: int, decision: RegimeDecision) -> None:
        self.sink(
            f"[{self.symbol}] Cycle #{cycle_number} regime={decision.regime.value} "
            f"volatility={decision.volatility_points:.1f} pts | {decision.rationale}"
        )

    def cycle_completed(self, result: CycleResult, state: RunState) -> None:
        self.sink(
            f"[{self.symbol}] Cycle #{result.cycle_number} result | profit=${result.realized_pnl:.2f} "
            f"total=${state.cumulative_pnl:.2f} balance=${result.balance_after:.2f}"
        )
        self._mirror(
            {
                "status": "RUNNING",
                "cycle": result.cycle_number,
                "regime": result.regime.value,
                "last_pnl": result.realized_pnl,
                "cumulative_pnl": state.cumulative_pnl,
                "balance": result.balance_after,
            }
        )

    def safety_stop(self, state: RunState, limit: float) -> None:
        self.sink(f"[{self.symbol}] STOP: total loss ${state.cumulative_pnl:.2f} exceeds -${limit:.2f}")

    def run_finished(self, summary: RunSummary) -> None:
        initial = "n/a" if summary.initial_balance is None else f"${summary.initial_balance:.2f}"
        final = "n/a" if summary.final_balance is None else f"${summary.final_balance:.2f}"
        line = (
            f"[{self.symbol}] Final results | initial={initial} final={final} "
            f"total P/L=${summary.cumulative_pnl:.2f} cycles={summary.cycles} "
            f"reason={summary.termination.value}"
        )
        if summary.error:
            line += f" error={summary.error}"
        self.sink(line)
        self._mirror({"status": "STOPPED", **summary.to_dict()})

    def _mirror(self, payload: dict[str, object]) -> None:
        if self.dashboard is None:
            return
        try:
            self.dashboard.update(self.symbol, payload)
        except OSError as exc:
            LOGGER.warning("Dashboard write failed: %s", exc)
