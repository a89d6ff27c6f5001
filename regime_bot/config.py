from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_NEWS_SCHEDULE_UTC = ["08:30", "12:30", "14:00", "18:00", "19:00"]


def _normalize_hhmm(value: str, field_name: str) -> str:
    parts = str(value).strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"{field_name} must use HH:MM format")
    try:
        hh = int(parts[0])
        mm = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"{field_name} must use HH:MM format") from exc
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"{field_name} must be a valid UTC time")
    return f"{hh:02d}:{mm:02d}"


class InstrumentConfig(BaseModel):
    point_size: float = 0.00001
    min_size: float = 0.01
    size_step: float = 0.01

    @model_validator(mode="after")
    def validate_values(self) -> "InstrumentConfig":
        if self.point_size <= 0:
            raise ValueError("instrument.point_size must be > 0")
        if self.min_size <= 0:
            raise ValueError("instrument.min_size must be > 0")
        if self.size_step <= 0:
            raise ValueError("instrument.size_step must be > 0")
        return self


class RunConfig(BaseModel):
    symbols: list[str] = Field(default_factory=lambda: ["EURUSD"])
    base_risk_amount: float = 20.0
    pause_seconds: float = 30.0
    safety_loss_multiple: float = 5.0

    @model_validator(mode="after")
    def validate_values(self) -> "RunConfig":
        normalized: list[str] = []
        seen: set[str] = set()
        for symbol in self.symbols:
            item = str(symbol).strip().upper()
            if not item or item in seen:
                continue
            seen.add(item)
            normalized.append(item)
        if not normalized:
            raise ValueError("run.symbols must contain at least one symbol")
        self.symbols = normalized
        if self.base_risk_amount <= 0:
            raise ValueError("run.base_risk_amount must be > 0")
        if self.pause_seconds < 0:
            raise ValueError("run.pause_seconds must be >= 0")
        if self.safety_loss_multiple <= 0:
            raise ValueError("run.safety_loss_multiple must be > 0")
        return self

    @property
    def safety_loss_limit(self) -> float:
        return self.base_risk_amount * self.safety_loss_multiple


class RegimeConfig(BaseModel):
    low_volatility_threshold: float = 15.0
    high_volatility_threshold: float = 40.0
    news_enabled: bool = True
    minutes_before_news: int = 5
    minutes_after_news: int = 15
    breakout_spread_points: float = 3.0
    # Spread-to-range proxy, not a statistical estimator.
    volatility_multiplier: float = 10.0
    news_schedule_utc: list[str] = Field(default_factory=lambda: list(DEFAULT_NEWS_SCHEDULE_UTC))

    @model_validator(mode="after")
    def validate_values(self) -> "RegimeConfig":
        if self.low_volatility_threshold < 0:
            raise ValueError("regime.low_volatility_threshold must be >= 0")
        if self.high_volatility_threshold < self.low_volatility_threshold:
            raise ValueError("regime.high_volatility_threshold must be >= low_volatility_threshold")
        if self.minutes_before_news < 0:
            raise ValueError("regime.minutes_before_news must be >= 0")
        if self.minutes_after_news < 0:
            raise ValueError("regime.minutes_after_news must be >= 0")
        if self.breakout_spread_points <= 0:
            raise ValueError("regime.breakout_spread_points must be > 0")
        if self.volatility_multiplier <= 0:
            raise ValueError("regime.volatility_multiplier must be > 0")
        self.news_schedule_utc = [
            _normalize_hhmm(item, "regime.news_schedule_utc") for item in self.news_schedule_utc
        ]
        return self


class CapitalConfig(BaseModel):
    demo_base_url: str = "https://demo-api-capital.backend-capital.com/api/v1"
    timeout_seconds: int = 10
    rate_limit_rps: float = 2.0
    rate_limit_burst: int = 5
    request_max_attempts: int = 6
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 20.0
    session_refresh_min_interval_seconds: int = 5
    confirm_attempts: int = 5
    confirm_delay_seconds: float = 0.5


class MonitoringConfig(BaseModel):
    dashboard_path: str | None = "runtime_dashboard.json"
    alerts_enabled: bool = True
    alert_cooldown_seconds: int = 30


class AppConfig(BaseModel):
    run: RunConfig = Field(default_factory=RunConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    instrument: InstrumentConfig = Field(default_factory=InstrumentConfig)
    capital: CapitalConfig = Field(default_factory=CapitalConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    if not config_path.exists():
        return AppConfig()
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)
