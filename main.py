from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from broadcast import Broadcaster
from config import Settings
from handlers import handle_update
from registry import ChatRegistry, build_store
from telegram_api import TelegramBotAPI, TelegramError, short_text

logger = logging.getLogger("relay")

LIVENESS_TEXT = "Report relay bot is alive! Visit /set-webhook once to activate."
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

# ---------------- logging ----------------

class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: List[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def configure_logging(level_name: str = "INFO", secrets: Optional[List[str]] = None) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(_RedactingFormatter(
        secrets or [],
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logging.basicConfig(level=level, handlers=[handler], force=True)

# ---------------- utils ----------------

def _now_ms() -> int:
    return int(time.time() * 1000)

def _rid() -> str:
    return uuid.uuid4().hex[:8]

def _as_json(obj: Any) -> str:
    try:
        return json.dumps(obj, ensure_ascii=False)
    except (TypeError, ValueError):
        return f"<unserializable {type(obj).__name__}>"

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)

def extract_message(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    message = data.get("message")
    if isinstance(message, str) and message.strip():
        return message
    return None

# ---------------- app ----------------

def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ChatRegistry] = None,
    bot: Optional[TelegramBotAPI] = None,
) -> FastAPI:
    """Wire settings, registry and bot client into a FastAPI app.

    Anything not passed in is built from the environment; the registry is
    loaded from its store here, once per process.
    """
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level, secrets=[settings.bot_token])

    missing = settings.missing()
    if missing:
        logger.warning("[boot] missing env vars: %s", ", ".join(missing))

    if registry is None:
        registry = ChatRegistry(build_store(settings))
        registry.load()
    if bot is None:
        bot = TelegramBotAPI(settings.bot_token, timeout=settings.telegram_timeout)

    app = FastAPI(title="report-relay-bot", version="1.0.0")
    app.state.settings = settings
    app.state.registry = registry
    app.state.bot = bot
    app.state.broadcaster = Broadcaster(bot, registry, parse_mode=settings.parse_mode)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            logger.info("Unhandled request: %s %s", request.method, request.url.path)
            return _error(404, "Route not found")
        return _error(exc.status_code, str(exc.detail))

    @app.post("/send-report")
    async def send_report(request: Request):
        rid = _rid()
        t0 = _now_ms()
        try:
            data = await request.json()
        except ValueError:
            data = None
        logger.info("[%s][send-report] payload=%s", rid, short_text(_as_json(data), 1200))

        message = extract_message(data)
        if message is None:
            logger.info("[%s][send-report] missing message in body", rid)
            return _error(400, "No message provided")
        try:
            chat_ids = registry.list_ids()
            # nothing to send means no bot is needed either
            if chat_ids and not getattr(bot, "configured", True):
                return _error(503, "Service not ready: BOT_TOKEN missing")
            logger.info("[%s][send-report] starting broadcast to %s chats", rid, len(chat_ids))
            result = await run_in_threadpool(app.state.broadcaster.send_all, message, chat_ids, rid)
        except Exception:
            logger.exception("[%s][send-report] broadcast error (duration_ms=%s)", rid, _now_ms() - t0)
            return _error(500, "Failed to send reports")

        logger.info("[%s][send-report] done duration_ms=%s", rid, _now_ms() - t0)
        return result.as_response()

    @app.get("/set-webhook")
    def set_webhook():
        try:
            if not settings.webhook_url:
                raise TelegramError("WEBHOOK_URL is not configured")
            bot.set_webhook(settings.webhook_url, secret_token=settings.webhook_secret or None)
        except TelegramError as e:
            logger.error("[set-webhook] %s", e)
            return PlainTextResponse(f"Failed to set webhook: {e}", status_code=500)
        logger.info("[set-webhook] webhook set to %s", settings.webhook_url)
        return PlainTextResponse("Webhook set successfully! Bot now listens via webhook.")

    @app.post("/webhook")
    async def telegram_webhook(request: Request):
        """Telegram POSTs updates here once /set-webhook has been called."""
        rid = _rid()
        if settings.webhook_secret and request.headers.get(SECRET_HEADER) != settings.webhook_secret:
            logger.warning("[%s][webhook][DENY] bad secret", rid)
            return _error(403, "Forbidden")
        try:
            update = await request.json()
        except ValueError:
            update = {}
        logger.debug("[%s][webhook] %s", rid, short_text(_as_json(update), 1200))
        try:
            await run_in_threadpool(handle_update, update, registry, bot, rid)
        except Exception:
            logger.exception("[%s][webhook] failed to handle update", rid)
        return {"ok": True}

    @app.get("/chats")
    def list_chats() -> Dict[str, Any]:
        chat_ids = registry.list_ids()
        return {"chats": chat_ids, "count": len(chat_ids)}

    @app.get("/")
    def liveness():
        return PlainTextResponse(LIVENESS_TEXT)

    return app


app = create_app()
