from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

from regime_bot.config import AppConfig, load_config
from regime_bot.data.capital_client import CapitalClient
from regime_bot.data.gateway import CapitalGateway
from regime_bot.data.market_data import MarketDataService
from regime_bot.monitoring.alerts import AlertConfig, AlertDispatcher
from regime_bot.monitoring.dashboard import DashboardWriter
from regime_bot.reporting.cycle_reporter import CycleReporter
from regime_bot.runner.controller import CycleController
from regime_bot.runner.models import RunSummary, TerminationReason
from regime_bot.strategy.dispatcher import DispatchBase, StrategyDispatcher, build_default_modules

LOGGER = logging.getLogger("regime_bot")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Capital.com regime-driven strategy dispatcher")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--dry-run", action="store_true", help="Log order intents without sending them (default)")
    mode_group.add_argument("--live", action="store_true", help="Send orders to the configured Capital.com account")

    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--symbols", default=None, help="Comma separated symbols, overrides run.symbols")
    parser.add_argument(
        "--max-runtime-minutes",
        type=float,
        default=None,
        help="Cancel every run after this many minutes",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def parse_symbols_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    out: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        symbol = part.strip().upper()
        if not symbol or symbol in seen:
            continue
        seen.add(symbol)
        out.append(symbol)
    return out


def build_client(config: AppConfig) -> CapitalClient:
    base_url = os.getenv("CAPITAL_BASE_URL", config.capital.demo_base_url)
    api_key = os.getenv("CAPITAL_API_KEY")
    identifier = os.getenv("CAPITAL_IDENTIFIER")
    password = os.getenv("CAPITAL_API_PASSWORD") or os.getenv("CAPITAL_PASSWORD")
    account_id = os.getenv("CAPITAL_ACCOUNT_ID")

    if not (api_key and identifier and password):
        raise RuntimeError("API credentials missing: set CAPITAL_API_KEY, CAPITAL_IDENTIFIER and CAPITAL_API_PASSWORD in .env")
    return CapitalClient(
        base_url=base_url,
        api_key=api_key,
        identifier=identifier,
        password=password,
        account_id=account_id,
        timeout_seconds=config.capital.timeout_seconds,
        rate_limit_rps=config.capital.rate_limit_rps,
        rate_limit_burst=config.capital.rate_limit_burst,
        request_max_attempts=config.capital.request_max_attempts,
        backoff_base_seconds=config.capital.backoff_base_seconds,
        backoff_max_seconds=config.capital.backoff_max_seconds,
        session_refresh_min_interval_seconds=config.capital.session_refresh_min_interval_seconds,
    )


def build_alert_dispatcher(config: AppConfig) -> AlertDispatcher:
    return AlertDispatcher(
        AlertConfig(
            enabled=config.monitoring.alerts_enabled,
            discord_webhook=os.getenv("DISCORD_WEBHOOK_URL"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
            cooldown_seconds=config.monitoring.alert_cooldown_seconds,
        )
    )


def build_dashboard(config: AppConfig, root: Path) -> DashboardWriter | None:
    raw_path = os.getenv("DASHBOARD_PATH", config.monitoring.dashboard_path or "")
    if not raw_path:
        return None
    path = Path(raw_path)
    if not path.is_absolute():
        path = root / path
    return DashboardWriter(path)


def build_controller(
    symbol: str,
    *,
    config: AppConfig,
    gateway: CapitalGateway,
    stop_event: threading.Event,
    alerts: AlertDispatcher | None,
    dashboard: DashboardWriter | None,
) -> CycleController:
    dispatcher = StrategyDispatcher(
        DispatchBase(symbol=symbol, base_risk_amount=config.run.base_risk_amount),
        build_default_modules(gateway),
    )
    return CycleController(
        symbol,
        config.run,
        config.regime,
        MarketDataService(gateway),
        gateway,
        dispatcher,
        CycleReporter(symbol, dashboard=dashboard),
        stop_event,
        alerts=alerts,
    )


def run_symbols(controllers: list[CycleController]) -> list[RunSummary]:
    summaries: dict[str, RunSummary] = {}
    lock = threading.Lock()

    def _worker(controller: CycleController) -> None:
        summary = controller.run()
        with lock:
            summaries[controller.symbol] = summary

    threads = [
        threading.Thread(target=_worker, args=(controller,), name=f"run-{controller.symbol}", daemon=True)
        for controller in controllers
    ]
    for thread in threads:
        thread.start()
    # join with a timeout so the main thread keeps receiving signals
    for thread in threads:
        while thread.is_alive():
            thread.join(timeout=1.0)
    return [summaries[c.symbol] for c in controllers if c.symbol in summaries]


def exit_code_for(summaries: list[RunSummary]) -> int:
    if summaries and all(s.termination is TerminationReason.FATAL_ERROR for s in summaries):
        return 1
    return 0


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    dry_run = not args.live
    load_dotenv()
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    root = Path(__file__).resolve().parent
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = root / config_path
    config = load_config(config_path)
    symbols = parse_symbols_csv(args.symbols) or config.run.symbols
    LOGGER.info("Symbols configured: %s mode=%s", ",".join(symbols), "dry-run" if dry_run else "live")

    client = build_client(config)
    gateway = CapitalGateway(
        client,
        instrument_defaults=config.instrument,
        dry_run=dry_run,
        confirm_attempts=config.capital.confirm_attempts,
        confirm_delay_seconds=config.capital.confirm_delay_seconds,
    )
    alerts = build_alert_dispatcher(config)
    dashboard = build_dashboard(config, root)
    stop_event = threading.Event()

    def _stop(signum: int, _frame: object) -> None:
        LOGGER.info("Received signal %s, shutting down.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _stop)

    deadline: threading.Timer | None = None
    if args.max_runtime_minutes is not None and args.max_runtime_minutes > 0:
        deadline = threading.Timer(args.max_runtime_minutes * 60.0, stop_event.set)
        deadline.daemon = True
        deadline.start()

    controllers = [
        build_controller(
            symbol,
            config=config,
            gateway=gateway,
            stop_event=stop_event,
            alerts=alerts,
            dashboard=dashboard,
        )
        for symbol in symbols
    ]
    try:
        summaries = run_symbols(controllers)
    finally:
        if deadline is not None:
            deadline.cancel()

    for summary in summaries:
        LOGGER.info(
            "Run summary symbol=%s reason=%s cycles=%d cumulative_pnl=%.2f error=%s",
            summary.symbol,
            summary.termination.value,
            summary.cycles,
            summary.cumulative_pnl,
            summary.error,
        )
    metrics = client.metrics_snapshot()
    LOGGER.info(
        "API usage requests=%d retries=%d http429=%d session_refreshes=%d",
        metrics.get("total_requests", 0),
        metrics.get("total_retries", 0),
        metrics.get("http_429_count", 0),
        metrics.get("session_refreshes", 0),
    )
    LOGGER.info("Bot stopped.")
    return exit_code_for(summaries)


if __name__ == "__main__":
    sys.exit(run())
