import pytest

from deliverycast.broadcast.state import BroadcastStateContainer
from deliverycast.notifications import Notifier

from fakes import FakeApi, FakeTransport, ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def state(api, clock):
    return BroadcastStateContainer(api, clock, min_fetch_interval_s=30)
