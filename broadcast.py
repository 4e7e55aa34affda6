"""Broadcast one message to every registered chat.

Sends are strictly sequential and never abort the loop. A chat whose send
fails permanently (deleted chat, bot blocked or kicked) is dropped from the
registry; anything else is logged and the chat is kept for the next report.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from registry import ChatRegistry
from telegram_api import TelegramAPIError, TelegramNetworkError

logger = logging.getLogger(__name__)

PERMANENT_PHRASES = (
    "chat not found",
    "blocked by user",
    "bot was blocked",
    "bot was kicked",
    "user is deactivated",
)

# 400 descriptions that mean the chat itself is gone, not that the text was bad
GONE_CHAT_PHRASES = PERMANENT_PHRASES + (
    "user not found",
    "peer_id_invalid",
    "chat_id is empty",
    "group chat was upgraded",
)


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def _mentions(text: str, phrases: Sequence[str]) -> bool:
    text = text.lower()
    return any(p in text for p in phrases)


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, TelegramNetworkError):
        return FailureKind.TRANSIENT
    if isinstance(exc, TelegramAPIError):
        if exc.error_code == 403:
            return FailureKind.PERMANENT
        if exc.error_code == 400 and _mentions(exc.description, GONE_CHAT_PHRASES):
            return FailureKind.PERMANENT
        return FailureKind.TRANSIENT
    # no structured code to go on
    if _mentions(str(exc), PERMANENT_PHRASES):
        return FailureKind.PERMANENT
    return FailureKind.TRANSIENT


class MessageSender(Protocol):
    def send_message(self, chat_id: int | str, text: str, parse_mode: Optional[str] = None) -> None:
        ...


@dataclass
class BroadcastResult:
    sent_count: int = 0
    total_chats: int = 0
    removed: List[str] = field(default_factory=list)
    migrated: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    def as_response(self) -> Dict[str, int]:
        return {"sentTo": self.sent_count, "totalChats": self.total_chats}


def migrated_chat_id(exc: BaseException) -> Optional[str]:
    """New supergroup id when Telegram reports that a group was upgraded."""
    if isinstance(exc, TelegramAPIError):
        new_id = exc.parameters.get("migrate_to_chat_id")
        if new_id is not None:
            return str(new_id)
    return None


def _as_chat_id(chat_id: str) -> int | str:
    try:
        return int(chat_id)
    except ValueError:
        return chat_id


class Broadcaster:
    def __init__(self, bot: MessageSender, registry: ChatRegistry, parse_mode: Optional[str] = None):
        self.bot = bot
        self.registry = registry
        self.parse_mode = parse_mode

    def send_all(self, message: str, chat_ids: Sequence[str], rid: str = "-") -> BroadcastResult:
        """Attempt delivery of ``message`` to each chat in ``chat_ids`` exactly once."""
        result = BroadcastResult(total_chats=len(chat_ids))
        if not chat_ids:
            logger.info("[%s][broadcast] no registered chats", rid)
            return result

        for chat_id in chat_ids:
            logger.debug("[%s][broadcast] sending to %s", rid, chat_id)
            try:
                self.bot.send_message(_as_chat_id(chat_id), message, parse_mode=self.parse_mode)
            except Exception as e:
                kind = classify_failure(e)
                result.failed[chat_id] = str(e)
                logger.warning("[%s][broadcast] failed to send to %s (%s): %s", rid, chat_id, kind.value, e)
                if kind is FailureKind.PERMANENT:
                    self.registry.remove(chat_id)
                    result.removed.append(chat_id)
                    new_id = migrated_chat_id(e)
                    if new_id is not None and self.registry.add(new_id, "supergroup"):
                        result.migrated[chat_id] = new_id
                        logger.info("[%s][broadcast] chat %s moved to supergroup %s", rid, chat_id, new_id)
                continue
            result.sent_count += 1

        logger.info(
            "[%s][broadcast] complete: sent=%s total=%s removed=%s",
            rid, result.sent_count, result.total_chats, len(result.removed),
        )
        return result
