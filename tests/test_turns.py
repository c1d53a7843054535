import logging
from datetime import date, timedelta

import pytest

from companion.errors import (
    Forbidden,
    InvalidRequest,
    ModelUnavailable,
    NotFound,
    StorageError,
)
from companion.history import load_recent
from companion.models import AudioFeatures, Role
from companion.turns import TurnState


def test_first_message_of_the_day(turns, store, model, policy):
    result = turns.handle("new-user", "Hello")

    assert result.state == TurnState.DONE.value
    assert result.crisis is False
    conv = store.find_conversation("new-user", date(2024, 1, 1))
    assert conv is not None
    assert result.conversation_id == conv.id

    messages = store.list_messages(conv.id)
    assert [(m.role, m.content) for m in messages] == [
        (Role.USER, "Hello"),
        (Role.ASSISTANT, model.reply),
    ]
    assert result.assistant_message == messages[1]

    [prompt] = model.calls
    assert [(m.role, m.content) for m in prompt] == [
        (Role.SYSTEM, policy.persona_prompt),
        (Role.USER, "Hello"),
    ]


def test_crisis_halts_before_any_write_or_model_call(turns, store, model):
    result = turns.handle("user-1", "I want to end my life")

    assert result.state == TurnState.CRISIS_HALT.value
    assert result.crisis is True
    assert "end my life" in result.keywords
    assert result.assistant_message is None
    assert model.calls == []
    assert store.list_conversations("user-1") == []
    assert store.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0

    [flag] = store.list_crisis_flags("user-1")
    assert flag.keywords == result.keywords


def test_crisis_in_existing_conversation_stores_nothing(turns, store, model):
    first = turns.handle("user-1", "Hello")
    turns.handle("user-1", "Some days I think about suicide", conversation_id=first.conversation_id)

    assert len(store.list_messages(first.conversation_id)) == 2
    assert len(model.calls) == 1


def test_model_sees_only_last_twenty_messages(turns, store, model, resolver):
    conv = resolver.resolve("user-1")
    for i in range(25):
        store.insert_message(conv.id, Role.USER if i % 2 == 0 else Role.ASSISTANT, f"m{i}")

    turns.handle("user-1", "latest")

    [prompt] = model.calls
    assert prompt[0].role is Role.SYSTEM
    history = [m.content for m in prompt[1:]]
    assert len(history) == 20
    assert history == [f"m{i}" for i in range(6, 25)] + ["latest"]


def test_model_failure_keeps_user_message(turns, store, model):
    model.error = ModelUnavailable()
    with pytest.raises(ModelUnavailable):
        turns.handle("user-1", "Are you there?")

    conv = store.find_conversation("user-1", date(2024, 1, 1))
    [saved] = load_recent(store, conv.id)
    assert saved.role is Role.USER
    assert saved.content == "Are you there?"

    # A retry sees its own earlier attempt in the context
    model.error = None
    result = turns.handle("user-1", "Are you there?")
    assert result.state == TurnState.DONE.value
    assert [m.content for m in model.calls[-1][1:]] == ["Are you there?", "Are you there?"]


def test_assistant_persist_failure_keeps_user_message(turns, store, monkeypatch):
    original = store.insert_message

    def fail_for_assistant(conversation_id, role, content, audio_features=None):
        if role is Role.ASSISTANT:
            raise StorageError()
        return original(conversation_id, role, content, audio_features)

    monkeypatch.setattr(store, "insert_message", fail_for_assistant)
    with pytest.raises(StorageError):
        turns.handle("user-1", "Hello")

    conv = store.find_conversation("user-1", date(2024, 1, 1))
    assert [m.role for m in store.list_messages(conv.id)] == [Role.USER]


def test_user_persist_failure_skips_model(turns, store, model, monkeypatch):
    def fail(*args, **kwargs):
        raise StorageError()

    monkeypatch.setattr(store, "insert_message", fail)
    with pytest.raises(StorageError):
        turns.handle("user-1", "Hello")
    assert model.calls == []


@pytest.mark.parametrize("text", ["", "   ", None, 42])
def test_invalid_input(turns, store, text):
    with pytest.raises(InvalidRequest):
        turns.handle("user-1", text)
    assert store.list_conversations("user-1") == []


def test_audio_features_only_on_user_message(turns, store):
    features = AudioFeatures(volume=0.3, pace=95, pause_count=2)
    result = turns.handle("user-1", "Hello", audio_features=features)

    user, assistant = store.list_messages(result.conversation_id)
    assert user.audio_features == features
    assert assistant.audio_features is None


def test_explicit_conversation_must_be_owned(turns):
    first = turns.handle("user-1", "Hello")
    with pytest.raises(NotFound):
        turns.handle("user-2", "Hi", conversation_id=first.conversation_id)


def test_history_defaults_to_today(turns):
    turns.handle("user-1", "Hello")
    conversation, messages = turns.history("user-1")
    assert conversation.date == date(2024, 1, 1)
    assert len(messages) == 2


def test_delete(turns, store):
    result = turns.handle("user-1", "Hello")

    with pytest.raises(Forbidden):
        turns.delete("user-2", result.conversation_id)
    turns.delete("user-1", result.conversation_id)

    assert store.list_messages(result.conversation_id) == []
    with pytest.raises(NotFound):
        turns.delete("user-1", result.conversation_id)
    with pytest.raises(NotFound):
        turns.history("user-1", result.conversation_id)
    with pytest.raises(InvalidRequest):
        turns.delete("user-1", "")


def test_conversation_list(turns, store):
    start = date(2024, 1, 1)
    for offset in range(35):
        store.insert_conversation("user-1", start + timedelta(days=offset))
    store.insert_conversation("user-2", date(2025, 1, 1))

    listed = turns.conversations("user-1")
    assert len(listed) == 30
    assert listed[0].date == date(2024, 2, 4)
    assert listed[-1].date == date(2024, 1, 6)


def test_failure_moves_turn_to_failed(turns, model, caplog):
    caplog.set_level(logging.DEBUG, logger="companion.turns")
    model.error = ModelUnavailable()
    with pytest.raises(ModelUnavailable):
        turns.handle("user-1", "Hello")

    assert "Turn completing -> failed" in caplog.text
    assert "Turn failed in state completing" in caplog.text


def test_whitespace_only_message_is_rejected(turns, model):
    with pytest.raises(InvalidRequest, match="Message is required"):
        turns.handle("user-1", " \n\t ")
    assert model.calls == []
