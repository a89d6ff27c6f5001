from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

import requests

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertConfig:
    enabled: bool = True
    discord_webhook: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    cooldown_seconds: int = 30


class AlertDispatcher:
    """Posts run alerts to Discord and/or Telegram. Delivery failures are only logged."""

    def __init__(self, config: AlertConfig):
        self.config = config
        self._last_sent_ts: dict[str, float] = {}
        self._lock = threading.Lock()

    def send(
        self,
        *,
        event: str,
        message: str,
        level: str = "info",
        context: dict[str, Any] | None = None,
        dedupe_key: str | None = None,
    ) -> None:
        if not self.config.enabled:
            return
        key = dedupe_key or event
        now = time.monotonic()
        with self._lock:
            prev = self._last_sent_ts.get(key)
            if prev is not None and (now - prev) < self.config.cooldown_seconds:
                return
            self._last_sent_ts[key] = now

        text = f"[{level.upper()}] {event}: {message}"
        if context:
            text += " | " + " ".join(f"{k}={v}" for k, v in context.items())

        webhook = (self.config.discord_webhook or "").strip()
        if webhook:
            self._post("Discord", webhook, {"content": text})
        bot_token = (self.config.telegram_bot_token or "").strip()
        chat_id = (self.config.telegram_chat_id or "").strip()
        if bot_token and chat_id:
            self._post(
                "Telegram",
                f"https://api.telegram.org/bot{bot_token}/sendMessage",
                {"chat_id": chat_id, "text": text},
            )

    @staticmethod
    def _post(channel: str, url: str, payload: dict[str, Any]) -> None:
        try:
            response = requests.post(url, json=payload, timeout=10)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.warning("%s alert failed: %s", channel, exc)
