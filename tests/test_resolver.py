import threading
from datetime import date, datetime, timezone

import pytest

from companion.errors import NotFound, StorageError
from companion.resolver import ConversationResolver
from companion.storage import ConversationStore, UniqueViolation


def test_creates_today_once(resolver, store):
    first = resolver.resolve("user-1")
    second = resolver.resolve("user-1")
    assert first.id == second.id
    assert first.date == date(2024, 1, 1)
    assert len(store.list_conversations("user-1")) == 1


def test_owners_get_separate_conversations(resolver):
    assert resolver.resolve("user-1").id != resolver.resolve("user-2").id


def test_new_day_new_conversation(store):
    now = [datetime(2024, 1, 1, 23, 59, tzinfo=timezone.utc)]
    resolver = ConversationResolver(store, "UTC", clock=lambda: now[0])
    yesterday = resolver.resolve("user-1")
    now[0] = datetime(2024, 1, 2, 0, 1, tzinfo=timezone.utc)
    today = resolver.resolve("user-1")
    assert yesterday.id != today.id
    assert today.date == date(2024, 1, 2)


def test_today_uses_reference_timezone(store):
    late_utc = lambda: datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc)  # noqa: E731
    assert ConversationResolver(store, "UTC", clock=late_utc).today() == date(2024, 1, 1)
    assert ConversationResolver(store, "Asia/Tokyo", clock=late_utc).today() == date(2024, 1, 2)
    assert ConversationResolver(store, "America/New_York", clock=late_utc).today() == date(
        2024, 1, 1
    )


def test_explicit_id(resolver):
    conv = resolver.resolve("user-1")
    assert resolver.resolve("user-1", conv.id) == conv


def test_explicit_id_not_owned(resolver):
    conv = resolver.resolve("user-1")
    with pytest.raises(NotFound):
        resolver.resolve("user-2", conv.id)


def test_explicit_id_missing(resolver):
    with pytest.raises(NotFound):
        resolver.resolve("user-1", "does-not-exist")


class RacingStore(ConversationStore):
    """Lets a competing writer insert between our lookup and our insert."""

    def __init__(self, db_path, rival_inserts=1):
        super().__init__(db_path)
        self.rival_inserts = rival_inserts

    def insert_conversation(self, owner_id, day):
        if self.rival_inserts:
            self.rival_inserts -= 1
            rival = ConversationStore(self.db_path)
            try:
                rival.insert_conversation(owner_id, day)
            finally:
                rival.close()
        return super().insert_conversation(owner_id, day)


def test_lost_insert_race_reads_back_winner(db_path, clock):
    store = RacingStore(db_path)
    try:
        conv = ConversationResolver(store, "UTC", clock=clock).resolve("user-1")
        assert store.find_conversation("user-1", date(2024, 1, 1)).id == conv.id
        assert len(store.list_conversations("user-1")) == 1
    finally:
        store.close()


class AlwaysConflictingStore(ConversationStore):
    def find_conversation(self, owner_id, day):
        return None

    def insert_conversation(self, owner_id, day):
        raise UniqueViolation("UNIQUE constraint failed")


def test_persistent_conflict_gives_up(db_path, clock):
    store = AlwaysConflictingStore(db_path)
    try:
        with pytest.raises(StorageError):
            ConversationResolver(store, "UTC", clock=clock).resolve("user-1")
    finally:
        store.close()


def test_concurrent_first_calls_create_one_conversation(db_path, clock):
    ConversationStore(db_path).close()
    workers = 8
    barrier = threading.Barrier(workers)
    ids, errors = [], []

    def resolve():
        store = ConversationStore(db_path, create_schema=False)
        try:
            barrier.wait()
            ids.append(ConversationResolver(store, "UTC", clock=clock).resolve("user-1").id)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)
        finally:
            store.close()

    threads = [threading.Thread(target=resolve) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(ids) == workers
    assert len(set(ids)) == 1

    store = ConversationStore(db_path)
    try:
        assert len(store.list_conversations("user-1")) == 1
    finally:
        store.close()
