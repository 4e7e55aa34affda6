"""Chat registry: the durable, ordered set of chats that receive broadcasts.

The registry keeps the list in memory and writes the whole list back to a
store after every change. Stores only know how to read and write a list of
ids; a failed write is logged and the in-memory list stays authoritative for
the rest of the process lifetime.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Iterable, List, Optional, Protocol

import redis

logger = logging.getLogger(__name__)

# "private" is Telegram's name for a direct chat with a user
ALLOWED_CHAT_TYPES = frozenset({"private", "group", "supergroup"})


class StorageError(Exception):
    pass


class ChatStore(Protocol):
    def read(self) -> Optional[list]:
        ...

    def write(self, chat_ids: List[str]) -> None:
        ...


def _decode(raw: str, where: str) -> list:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise StorageError(f"malformed chat list in {where}: {e}") from e
    if not isinstance(data, list):
        raise StorageError(f"malformed chat list in {where}: expected a JSON array, got {type(data).__name__}")
    return data


class JsonFileStore:
    """JSON array of chat ids in a single file."""

    def __init__(self, path: str):
        self.path = path

    def __repr__(self) -> str:
        return f"JsonFileStore({self.path!r})"

    def read(self) -> Optional[list]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        return _decode(raw, self.path)

    def write(self, chat_ids: List[str]) -> None:
        tmp = self.path + ".tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(chat_ids, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"cannot write {self.path}: {e}") from e


class RedisStore:
    """JSON array of chat ids under one key of a Redis-compatible store."""

    def __init__(self, client: redis.Redis, key: str = "chat_ids"):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "chat_ids") -> "RedisStore":
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=5)
        return cls(client, key)

    def __repr__(self) -> str:
        return f"RedisStore(key={self.key!r})"

    def read(self) -> Optional[list]:
        try:
            raw = self.client.get(self.key)
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
        except (redis.RedisError, UnicodeDecodeError) as e:
            # decode_responses clients raise UnicodeDecodeError from get itself
            raise StorageError(f"cannot read key '{self.key}': {e}") from e
        if raw is None:
            return None
        return _decode(raw, f"key '{self.key}'")

    def write(self, chat_ids: List[str]) -> None:
        try:
            self.client.set(self.key, json.dumps(chat_ids))
        except redis.RedisError as e:
            raise StorageError(f"cannot write key '{self.key}': {e}") from e


def _chat_key(chat_id: object) -> Optional[str]:
    if chat_id is None:
        return None
    return str(chat_id).strip() or None


def _unique(ids: Iterable) -> List[str]:
    keys = (_chat_key(i) for i in ids)
    return list(dict.fromkeys(k for k in keys if k is not None))


class ChatRegistry:
    def __init__(self, store: ChatStore):
        self.store = store
        self._lock = threading.Lock()
        self._ids: List[str] = []

    def load(self) -> None:
        """Replace the in-memory list with what the store holds. Never raises."""
        try:
            data = self.store.read()
        except StorageError as e:
            logger.warning("[registry][load] %s; starting with no chats", e)
            data = []
        if data is None:
            logger.warning("[registry][load] no saved chats in %r; starting empty", self.store)
            data = []
        with self._lock:
            self._ids = _unique(data)
        logger.info("[registry][load] loaded %s chats", len(self._ids))

    def _save(self) -> None:
        try:
            self.store.write(list(self._ids))
        except StorageError as e:
            logger.error("[registry][save] %s (non-fatal, keeping in-memory state)", e)

    def add(self, chat_id: int | str, chat_type: Optional[str]) -> bool:
        if chat_type not in ALLOWED_CHAT_TYPES:
            logger.debug("[registry] ignoring chat %s of type %r", chat_id, chat_type)
            return False
        cid = _chat_key(chat_id)
        if cid is None:
            logger.debug("[registry] ignoring empty chat id")
            return False
        with self._lock:
            if cid in self._ids:
                return False
            self._ids.append(cid)
            self._save()
        logger.info("[registry] added chat %s type=%s at=%s", cid, chat_type, int(time.time()))
        return True

    def remove(self, chat_id: int | str) -> bool:
        cid = _chat_key(chat_id)
        with self._lock:
            if cid is None or cid not in self._ids:
                return False
            self._ids.remove(cid)
            self._save()
        logger.info("[registry] removed chat %s", cid)
        return True

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, chat_id: object) -> bool:
        return str(chat_id) in self._ids


def build_store(settings) -> ChatStore:
    if settings.storage_backend == "redis":
        return RedisStore.from_url(settings.redis_url, settings.redis_key)
    return JsonFileStore(settings.chats_file)
