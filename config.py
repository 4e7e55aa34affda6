from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

STORAGE_BACKENDS = ("file", "redis")
PARSE_MODES = ("HTML", "Markdown", "MarkdownV2")


class ConfigError(RuntimeError):
    pass


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass(frozen=True)
class Settings:
    bot_token: str = ""
    webhook_url: str = ""
    webhook_secret: str = ""
    storage_backend: str = "file"
    chats_file: str = "/tmp/chats.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_key: str = "chat_ids"
    parse_mode: Optional[str] = "Markdown"
    telegram_timeout: float = 15.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from the process environment (and .env, if present)."""
        if dotenv:
            load_dotenv()

        backend = _env("STORAGE_BACKEND", "file").lower()
        if backend not in STORAGE_BACKENDS:
            raise ConfigError(f"STORAGE_BACKEND must be one of {STORAGE_BACKENDS}, got '{backend}'")

        raw_timeout = _env("TELEGRAM_TIMEOUT", "15")
        try:
            timeout = float(raw_timeout)
        except ValueError:
            raise ConfigError(f"TELEGRAM_TIMEOUT must be a number, got '{raw_timeout}'") from None

        return cls(
            bot_token=_env("BOT_TOKEN"),
            webhook_url=_env("WEBHOOK_URL"),
            webhook_secret=_env("WEBHOOK_SECRET"),
            storage_backend=backend,
            chats_file=_env("CHATS_FILE", "/tmp/chats.json"),
            redis_url=_env("REDIS_URL") or _env("KV_URL") or "redis://localhost:6379/0",
            redis_key=_env("REDIS_KEY", "chat_ids"),
            parse_mode=parse_mode_from(_env("DEFAULT_PARSE_MODE", "Markdown")),
            telegram_timeout=timeout,
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )

    def missing(self) -> list[str]:
        names = []
        if not self.bot_token:
            names.append("BOT_TOKEN")
        if not self.webhook_url:
            names.append("WEBHOOK_URL")
        return names


def parse_mode_from(value: str) -> Optional[str]:
    # "none"/"off" sends plain text; unknown values fall back to plain text too
    for mode in PARSE_MODES:
        if value.lower() == mode.lower():
            return mode
    return None
