"""
Tests für den Mail Cache (TTL, Index, Invalidierung)
"""

from unittest.mock import MagicMock

import fakeredis
import pytest
import redis

from hourinbox.services import mail_cache as keys
from hourinbox.services.mail_cache import MailCache

EMAIL = "alice@example.com"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client, clock):
    return MailCache(redis_client, clock=clock)


def test_entry_expires_after_ttl(cache, clock):
    """Eintrag gilt bis exp, ab exp ist es ein Miss"""
    key = keys.messages_key(EMAIL, "INBOX", 1, 50)
    cache.set(EMAIL, key, {"messages": [], "total": 0}, keys.TTL_MESSAGES)

    clock.advance(keys.TTL_MESSAGES - 1)
    assert cache.get(key) == {"messages": [], "total": 0}

    clock.advance(1)
    assert cache.get(key) is MailCache.MISS


def test_get_or_load_uses_cache(cache):
    loader = MagicMock(return_value=[{"path": "INBOX"}])
    key = keys.folders_key(EMAIL)

    assert cache.get_or_load(EMAIL, key, keys.TTL_FOLDERS, loader) == [{"path": "INBOX"}]
    assert cache.get_or_load(EMAIL, key, keys.TTL_FOLDERS, loader) == [{"path": "INBOX"}]
    assert loader.call_count == 1

    cache.get_or_load(EMAIL, key, keys.TTL_FOLDERS, loader, refresh=True)
    assert loader.call_count == 2


def test_keys_are_indexed(cache, redis_client):
    key = keys.message_key(EMAIL, "INBOX", 7)
    cache.set(EMAIL, key, {"uid": 7}, keys.TTL_MESSAGE)

    assert key in redis_client.smembers(keys.index_key(EMAIL))
    assert 0 < redis_client.ttl(keys.index_key(EMAIL)) <= keys.INDEX_TTL


def test_invalidate_folder_only_touches_that_folder(cache):
    """Andere Ordner bleiben, Ordnerliste und Starred werden geleert"""
    inbox = keys.messages_key(EMAIL, "INBOX", 1, 50)
    inbox_msg = keys.message_key(EMAIL, "INBOX", 3)
    sent = keys.messages_key(EMAIL, "Sent", 1, 50)
    for key in (inbox, inbox_msg, sent):
        cache.set(EMAIL, key, {"k": key}, 60)
    cache.set(EMAIL, keys.folders_key(EMAIL), [], 60)
    cache.set(EMAIL, keys.starred_key(EMAIL), {}, 60)

    cache.invalidate_folder(EMAIL, "INBOX")

    assert cache.get(inbox) is MailCache.MISS
    assert cache.get(inbox_msg) is MailCache.MISS
    assert cache.get(keys.folders_key(EMAIL)) is MailCache.MISS
    assert cache.get(keys.starred_key(EMAIL)) is MailCache.MISS
    assert cache.get(sent) == {"k": sent}


def test_folder_names_with_colons(cache):
    """Ordner "A:B" darf beim Invalidieren von "A" nicht mitgelöscht werden"""
    plain = keys.messages_key(EMAIL, "A", 1, 50)
    nested = keys.messages_key(EMAIL, "A:B", 1, 50)
    cache.set(EMAIL, plain, 1, 60)
    cache.set(EMAIL, nested, 2, 60)

    cache.invalidate_folder(EMAIL, "A")

    assert cache.get(plain) is MailCache.MISS
    assert cache.get(nested) == 2


def test_search_key_stable_for_criteria_order():
    first = keys.search_key("tok", "INBOX", {"from": "bob", "text": "rechnung"}, 50)
    second = keys.search_key("tok", "INBOX", {"text": "rechnung", "from": "bob"}, 50)
    assert first == second
    assert first != keys.search_key("tok", "INBOX", {"text": "rechnung"}, 50)


def test_invalidate_account_is_idempotent(cache, redis_client):
    for key in (keys.folders_key(EMAIL), keys.messages_key(EMAIL, "INBOX", 1, 50),
                keys.search_key("tok", "INBOX", {"text": "x"}, 50)):
        cache.set(EMAIL, key, {}, 60)

    cache.invalidate_account(EMAIL)
    cache.invalidate_account(EMAIL)

    assert redis_client.keys("cache:*") == []


def test_other_accounts_untouched(cache):
    other = keys.folders_key("bob@example.com")
    cache.set("bob@example.com", other, ["x"], 60)
    cache.invalidate_account(EMAIL)
    assert cache.get(other) == ["x"]


def test_redis_errors_are_swallowed(clock):
    """Cache-Ausfall → Miss bzw. No-Op, nie eine Exception"""
    broken = MagicMock()
    broken.get.side_effect = redis.ConnectionError("down")
    broken.pipeline.side_effect = redis.ConnectionError("down")
    broken.smembers.side_effect = redis.ConnectionError("down")
    cache = MailCache(broken, clock=clock)

    assert cache.get("cache:folders:x") is MailCache.MISS
    cache.set(EMAIL, "cache:folders:x", [], 60)
    cache.invalidate_account(EMAIL)
    cache.invalidate_folder(EMAIL, "INBOX")
    assert cache.get_or_load(EMAIL, "cache:folders:x", 60, lambda: ["fresh"]) == ["fresh"]


def test_corrupt_entry_is_miss(cache, redis_client):
    redis_client.set("cache:folders:broken", "{not json")
    assert cache.get("cache:folders:broken") is MailCache.MISS
