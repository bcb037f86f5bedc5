import os

# Settings are read at import time.
os.environ["ENVIRONMENT"] = "testing"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789abcdefghijklmnop"
os.environ["LOG_FORMAT"] = "console"
os.environ["WIDGET_BASE_URL"] = "https://widgets.example"
os.environ["PUBLIC_API_URL"] = "https://api.widgets.example"

import pytest

from fakes import (
    FakeClock,
    FakeSubscriptionProvider,
    InMemoryKeyStore,
    InMemoryLeadStore,
    InMemoryUsageLog,
    RecordingNotifier,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_store():
    return InMemoryKeyStore()


@pytest.fixture
def usage_log():
    return InMemoryUsageLog()


@pytest.fixture
def subscriptions():
    return FakeSubscriptionProvider()


@pytest.fixture
def lead_store():
    return InMemoryLeadStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()
