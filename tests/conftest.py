"""Shared fixtures: a temporary store, the bundled policy and a scripted model."""

from datetime import datetime, timezone

import pytest

from companion.policy import load_policy
from companion.resolver import ConversationResolver
from companion.storage import ConversationStore
from companion.turns import TurnOrchestrator

NEW_YEAR_NOON = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeModel:
    """Records every prompt and answers with a canned reply or error."""

    def __init__(self, reply="It sounds like **a lot** to carry today.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "companion.db"


@pytest.fixture
def store(db_path):
    s = ConversationStore(db_path)
    yield s
    s.close()


@pytest.fixture(scope="session")
def policy():
    return load_policy()


@pytest.fixture
def clock():
    return lambda: NEW_YEAR_NOON


@pytest.fixture
def resolver(store, clock):
    return ConversationResolver(store, "UTC", clock=clock)


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def turns(store, model, policy, resolver):
    return TurnOrchestrator(store, model, policy, resolver=resolver)
