"""Minimal Telegram Bot API client.

Only the calls the relay needs: sendMessage, setWebhook and getMe. Failures
are raised as exceptions carrying the Bot API ``error_code`` so callers can
tell a dead chat from a flaky network without parsing prose.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


class TelegramError(Exception):
    pass


class TelegramNotConfigured(TelegramError):
    def __init__(self) -> None:
        super().__init__("Service not ready: BOT_TOKEN missing")


class TelegramNetworkError(TelegramError):
    pass


class TelegramAPIError(TelegramError):
    def __init__(
        self,
        error_code: int,
        description: str,
        method: str = "",
        parameters: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.error_code = error_code
        self.description = description
        self.method = method
        # ResponseParameters: migrate_to_chat_id, retry_after
        self.parameters = parameters or {}
        super().__init__(f"{method or 'telegram'} failed ({error_code}): {description}")


def short_text(s: str, n: int = 800) -> str:
    if s is None:
        return "None"
    return s if len(s) <= n else s[:n] + f"... [truncated {len(s)-n} chars]"


def split_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    if not text:
        return [text]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


class TelegramBotAPI:
    def __init__(self, token: str, timeout: float = 15, session: Optional[requests.Session] = None):
        self._token = token or ""
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._token)

    def _url(self, method: str) -> str:
        return f"{API_BASE}/bot{self._token}/{method}"

    def call(self, method: str, params: Dict[str, Any]) -> Any:
        """POST a Bot API method and return its ``result``.

        Raises TelegramNetworkError when the request never completes and
        TelegramAPIError when Telegram answers with ``ok: false`` or with a
        body that is not JSON.
        """
        if not self.configured:
            raise TelegramNotConfigured()
        logger.debug("[tg] %s params=%s", method, short_text(json.dumps(params, ensure_ascii=False, default=str)))
        try:
            r = self._session.post(self._url(method), json=params, timeout=self._timeout)
        except requests.RequestException as e:
            # the exception text can embed the URL, which embeds the token
            raise TelegramNetworkError(f"{method} request error: {type(e).__name__}") from e

        try:
            j = r.json()
        except ValueError:
            logger.warning("[tg] %s http=%s non-JSON body: %s", method, r.status_code, short_text(r.text))
            raise TelegramAPIError(r.status_code, short_text(r.text, 200), method) from None

        if not isinstance(j, dict) or not j.get("ok"):
            j = j if isinstance(j, dict) else {}
            code = int(j.get("error_code") or r.status_code)
            params = j.get("parameters")
            raise TelegramAPIError(
                code, str(j.get("description", "")), method,
                parameters=params if isinstance(params, dict) else None,
            )
        return j.get("result")

    def send_message(
        self,
        chat_id: int | str,
        text: str,
        parse_mode: Optional[str] = None,
        disable_web_page_preview: bool = True,
    ) -> None:
        for chunk in split_text(text):
            params: Dict[str, Any] = {
                "chat_id": chat_id,
                "text": chunk,
                "disable_web_page_preview": disable_web_page_preview,
            }
            if parse_mode:
                params["parse_mode"] = parse_mode
            self.call("sendMessage", params)

    def set_webhook(
        self,
        url: str,
        secret_token: Optional[str] = None,
        allowed_updates: Optional[List[str]] = None,
    ) -> bool:
        params: Dict[str, Any] = {"url": url}
        if secret_token:
            params["secret_token"] = secret_token
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        return bool(self.call("setWebhook", params))

    def get_me(self) -> Dict[str, Any]:
        return self.call("getMe", {}) or {}
