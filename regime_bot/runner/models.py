from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from regime_bot.strategy.contracts import Regime


class TerminationReason(str, Enum):
    SAFETY_STOP = "SAFETY_STOP"
    CANCELLED = "CANCELLED"
    FATAL_ERROR = "FATAL_ERROR"


@dataclass(frozen=True, slots=True)
class CycleResult:
    cycle_number: int
    regime: Regime
    realized_pnl: float
    balance_after: float


@dataclass(slots=True)
class RunState:
    cumulative_pnl: float = 0.0
    cycle_number: int = 0
    stopped: bool = False
    results: list[CycleResult] = field(default_factory=list)

    def realize(self, pnl: float) -> None:
        self.cumulative_pnl += pnl

    def record(self, result: CycleResult) -> None:
        self.results.append(result)


@dataclass(frozen=True, slots=True)
class RunSummary:
    symbol: str
    initial_balance: float | None
    final_balance: float | None
    cumulative_pnl: float
    cycles: int
    termination: TerminationReason
    results: tuple[CycleResult, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "symbol": self.symbol,
            "initial_balance": self.initial_balance,
            "final_balance": self.final_balance,
            "cumulative_pnl": round(self.cumulative_pnl, 2),
            "cycles": self.cycles,
            "termination": self.termination.value,
            "error": self.error,
        }
