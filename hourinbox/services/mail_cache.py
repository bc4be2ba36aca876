# hourinbox/services/mail_cache.py
"""Mail Cache - TTL-Cache zwischen API und Mail Gateway.

Jeder Eintrag wird zusätzlich im Index-Set ``cache:index:<email>`` vermerkt,
damit Invalidierung pro Account bzw. Account+Ordner ein Set-Scan ist und kein
Keyspace-Scan. Das Index-Set läuft selbst nach 5 Minuten ab.

Key-Layout (Ordner-Segment immer an Position 3, URL-quoted):
    cache:folders:<email>
    cache:messages:<email>:<folder>:<page>:<limit>
    cache:msg:<email>:<folder>:<uid>
    cache:resolve:<email>:<folder>:<messageId>
    cache:search:<token>:<folder>:<digest>:<limit>
    cache:starred:<email>
    cache:contacts:<email>

Redis-Fehler werden geloggt und als Miss / No-Op behandelt.
"""

import hashlib
import json
import logging
import time
from urllib.parse import quote

import redis

logger = logging.getLogger(__name__)

PREFIX = "cache:"
INDEX_TTL = 300

# TTL pro Datenklasse (Sekunden)
TTL_FOLDERS = 60
TTL_MESSAGES = 30
TTL_MESSAGE = 60
TTL_SEARCH = 30
TTL_STARRED = 30
TTL_CONTACTS = 300
TTL_RESOLVE = 300

FOLDER_SEGMENT = 3

_MISS = object()


def _seg(folder: str) -> str:
    return quote(folder, safe="")


def folders_key(email: str) -> str:
    return f"{PREFIX}folders:{email}"


def messages_key(email: str, folder: str, page: int, limit: int) -> str:
    return f"{PREFIX}messages:{email}:{_seg(folder)}:{page}:{limit}"


def message_key(email: str, folder: str, uid: int) -> str:
    return f"{PREFIX}msg:{email}:{_seg(folder)}:{uid}"


def resolve_key(email: str, folder: str, message_id: str) -> str:
    return f"{PREFIX}resolve:{email}:{_seg(folder)}:{quote(message_id, safe='')}"


def search_key(token: str, folder: str, criteria: dict, limit: int) -> str:
    digest = hashlib.sha256(
        json.dumps(criteria, sort_keys=True, default=str).encode()
    ).hexdigest()[:32]
    return f"{PREFIX}search:{token}:{_seg(folder)}:{digest}:{limit}"


def starred_key(email: str) -> str:
    return f"{PREFIX}starred:{email}"


def contacts_key(email: str) -> str:
    return f"{PREFIX}contacts:{email}"


def index_key(email: str) -> str:
    return f"{PREFIX}index:{email}"


class MailCache:
    """TTL-Cache mit Account-Index"""

    MISS = _MISS

    def __init__(self, redis_client, clock=time.time):
        self.redis = redis_client
        self.clock = clock

    def get(self, key: str):
        """Payload oder ``MailCache.MISS``

        Abgelaufene Einträge sind ein Miss, auch wenn Redis sie noch hält.
        """
        try:
            raw = self.redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Cache-Read fehlgeschlagen ({key}): {e}")
            return _MISS
        if raw is None:
            return _MISS
        try:
            envelope = json.loads(raw)
            if self.clock() >= envelope["exp"]:
                return _MISS
            return envelope["v"]
        except (ValueError, KeyError, TypeError):
            logger.warning(f"⚠️ Cache-Eintrag defekt, ignoriert: {key}")
            return _MISS

    def set(self, email: str, key: str, payload, ttl: int):
        envelope = json.dumps({"v": payload, "exp": self.clock() + ttl}, default=str)
        try:
            pipe = self.redis.pipeline()
            pipe.set(key, envelope, ex=ttl)
            pipe.sadd(index_key(email), key)
            pipe.expire(index_key(email), INDEX_TTL)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"⚠️ Cache-Write fehlgeschlagen ({key}): {e}")

    def get_or_load(self, email: str, key: str, ttl: int, loader, refresh: bool = False):
        if not refresh:
            cached = self.get(key)
            if cached is not _MISS:
                return cached
        payload = loader()
        self.set(email, key, payload, ttl)
        return payload

    def invalidate_account(self, email: str):
        """Löscht alle indizierten Keys + folders/starred, leert den Index (idempotent)"""
        try:
            members = self.redis.smembers(index_key(email)) or set()
            keys = set(members) | {folders_key(email), starred_key(email)}
            self.redis.delete(*keys, index_key(email))
            logger.debug(f"🗑️ Cache invalidiert: {email} ({len(keys)} Keys)")
        except redis.RedisError as e:
            logger.warning(f"⚠️ Cache-Invalidierung fehlgeschlagen ({email}): {e}")

    def invalidate_folder(self, email: str, folder: str):
        """Nur Keys dieses Ordners + starred + Ordnerliste (Zähler)"""
        segment = _seg(folder)
        try:
            members = self.redis.smembers(index_key(email)) or set()
            matching = [
                k for k in members
                if _key_segment(k, FOLDER_SEGMENT) == segment
            ]
            always = [starred_key(email), folders_key(email)]
            self.redis.delete(*matching, *always)
            if matching:
                self.redis.srem(index_key(email), *matching)
            logger.debug(f"🗑️ Cache invalidiert: {email}/{folder} ({len(matching)} Keys)")
        except redis.RedisError as e:
            logger.warning(f"⚠️ Cache-Invalidierung fehlgeschlagen ({email}/{folder}): {e}")


def _key_segment(key, position: int):
    if isinstance(key, bytes):
        key = key.decode("utf-8", "replace")
    parts = key.split(":")
    if len(parts) <= position:
        return None
    return parts[position]
