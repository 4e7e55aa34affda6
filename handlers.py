from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from registry import ChatRegistry

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "Hi! I'm your report bot. I'll post reports here as they arrive. "
    "Use /start for help or /report to check on reports."
)
START_TEXT = "Bot started! Add me to groups to receive reports there too. /report for details."
REPORT_TEXT = "Reports are sent automatically as soon as they are ready!"


def parse_command(text: Optional[str]) -> Optional[str]:
    """'/start@MyBot payload' -> 'start'; anything that is not a command -> None."""
    if not text or not text.startswith("/"):
        return None
    head = text.split(maxsplit=1)[0][1:]
    return head.split("@", 1)[0].lower() or None


def _reply(bot, chat_id: Any, text: str, rid: str) -> None:
    if not getattr(bot, "configured", True):
        return
    try:
        bot.send_message(chat_id, text)
    except Exception as e:
        logger.warning("[%s][webhook] reply to %s failed: %s", rid, chat_id, e)


def handle_update(update: Dict[str, Any], registry: ChatRegistry, bot, rid: str = "-") -> None:
    """Apply one Telegram update: register chats and answer bot commands."""
    if not isinstance(update, dict):
        return

    member_update = update.get("my_chat_member")
    if isinstance(member_update, dict):
        chat = member_update.get("chat") or {}
        status = (member_update.get("new_chat_member") or {}).get("status")
        if chat.get("id") is not None and status in ("member", "administrator"):
            registry.add(chat["id"], chat.get("type"))
        return

    msg = update.get("message")
    if not isinstance(msg, dict):
        return
    chat = msg.get("chat") or {}
    chat_id = chat.get("id")
    chat_type = chat.get("type")
    if chat_id is None:
        return

    if msg.get("new_chat_members"):
        registry.add(chat_id, chat_type)
        _reply(bot, chat_id, WELCOME_TEXT, rid)
        return

    command = parse_command(msg.get("text"))
    if command == "start":
        registry.add(chat_id, chat_type)
        _reply(bot, chat_id, START_TEXT, rid)
    elif command == "report":
        _reply(bot, chat_id, REPORT_TEXT, rid)
