"""
Shared fixtures: a temp-dir record store, a controllable clock and recording
fakes for every outbound collaborator.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest

from briefloop.shared.config import Settings
from briefloop.shared.record_store import FileRecordStore
from briefloop.shared.services import build_services
from briefloop.specs.common.errors import ExternalServiceError


START = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)
ADDRESS = "+15551230000"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeChannel:
    def __init__(self):
        self.messages: List[Tuple[str, str]] = []
        self.calls: List[dict] = []
        self.fail_messages = False
        self.fail_calls = False

    def send_message(self, to: str, body: str) -> str:
        if self.fail_messages:
            raise ExternalServiceError("twilio", "message send failed")
        self.messages.append((to, body))
        return f"SM{len(self.messages)}"

    def place_call(self, to, callback_url, status_callback_url=None, timeout_seconds=60) -> str:
        if self.fail_calls:
            raise ExternalServiceError("twilio", "call placement failed")
        self.calls.append(
            {"to": to, "url": callback_url, "statusCallback": status_callback_url, "timeout": timeout_seconds}
        )
        return f"CA{len(self.calls)}"

    def bodies(self, to: str = ADDRESS) -> List[str]:
        return [body for dest, body in self.messages if dest == to]

    @property
    def last(self) -> str:
        return self.messages[-1][1]


class FakeGeneration:
    def __init__(self):
        self.requests = []
        self.revisions = []
        self.fail = False

    def request_generation(self, session, context) -> None:
        if self.fail:
            raise ExternalServiceError("queue", "enqueue failed")
        self.requests.append((session.id, context))

    def request_revision(self, workflow, notes) -> None:
        if self.fail:
            raise ExternalServiceError("queue", "enqueue failed")
        self.revisions.append((workflow.id, notes))


class FakePublisher:
    def __init__(self):
        self.published = []
        self.fail = False

    def publish(self, workflow) -> None:
        if self.fail:
            raise ExternalServiceError("queue", "publish enqueue failed")
        self.published.append(workflow.id)


class FakeNotifier:
    def __init__(self):
        self.notifications = []

    def notify(self, record_type, record_id, status, at, extra=None) -> bool:
        self.notifications.append((record_type, record_id, status))
        return True


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        callbackSharedSecret="callback-secret",
        publicBaseUrl="https://briefloop.test",
        roomSigningSecret="room-signing-secret-0123456789abcdef",
        localTimezone="UTC",
        runtimeStateDir=tmp_path / "state",
        recordStoreBackend="file",
    )


@pytest.fixture
def store(tmp_path):
    return FileRecordStore(tmp_path / "state")


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def generation():
    return FakeGeneration()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def services(settings, store, channel, generation, publisher, notifier, clock):
    return build_services(
        settings,
        store=store,
        channel=channel,
        generation=generation,
        publisher=publisher,
        notifier=notifier,
        clock=clock,
        warm=False,
    )


@pytest.fixture
def sessions(services):
    return services.sessions


@pytest.fixture
def approvals(services):
    return services.approvals


@pytest.fixture
def new_session(sessions):
    """A freshly created pending session for ADDRESS."""
    return sessions.create(ADDRESS, "img://abc").value
