import pytest

from aegis_sentinel import AccessGate, AegisSentinel, EvaluationTrigger, StaticPriceFeed
from aegis_sentinel.models import RiskParams

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed(clock):
    return StaticPriceFeed(2000.0, clock=clock)


@pytest.fixture
def sentinel(feed, clock):
    return AegisSentinel(feed, params=RiskParams(), clock=clock)


@pytest.fixture
def gate(sentinel):
    return AccessGate(sentinel)


@pytest.fixture
def trigger(sentinel):
    return EvaluationTrigger(sentinel)
