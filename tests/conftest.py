from datetime import datetime, timedelta

import pytest

from db.memory import InMemoryRepository
from services.reputation_service import ReputationEngine
from services.trade_service import TradeEngine


class StepClock:
    """每次调用前进一秒，保证 created_at 有序"""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self):
        self.current = self.current + timedelta(seconds=1)
        return self.current


class RecordingNotifier:

    def __init__(self):
        self.events = []

    def notify(self, event, trade):
        self.events.append((event, trade.id))


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def repo():
    repository = InMemoryRepository()
    repository.add_user("alice", trade_coins=100)
    repository.add_user("bob", trade_coins=20)
    repository.add_user("carol")
    repository.add_user("dave")
    repository.add_listing("bike", "alice", estimated_value=120, category="sports", title="Road bike")
    repository.add_listing("guitar", "bob", estimated_value=150, category="music", title="Acoustic guitar")
    repository.add_listing("lamp", "carol", estimated_value=30, category="home", title="Desk lamp")
    repository.add_listing("skates", "dave", estimated_value=60, category="sports", title="Inline skates")
    return repository


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(repo, notifier, clock):
    return TradeEngine(repo, notifier=notifier, clock=clock)


@pytest.fixture
def reputation(repo, clock):
    return ReputationEngine(repo, clock=clock)


@pytest.fixture
def proposed(engine):
    return engine.propose("alice", "bob", "bike", "guitar", trade_coin_amount=10, notes="Can meet downtown")


@pytest.fixture
def accepted(engine, proposed):
    return engine.accept(proposed.id, "bob", meetup_location="Library")


@pytest.fixture
def completed(engine, accepted):
    return engine.complete(accepted.id, "alice")
