"""Shared fixtures: scripted HTTP transport, stores in tmp_path, an owner thread."""

import pytest

from forever_paws.api.backend import DirectAuthClient, TableClient
from forever_paws.api.gateway import GatewayClient
from forever_paws.auth.credential_store import CredentialStore
from forever_paws.auth.session_manager import SessionManager
from forever_paws.core.events import Event, EventBus
from forever_paws.core.owner import OwnerExecutor
from forever_paws.stores.local_store import LocalStore

from fakes import ALT_GATEWAY, ANON_KEY, BACKEND, GATEWAY, FakeHttp


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def owner():
    executor = OwnerExecutor(name="test-owner")
    yield executor
    executor.shutdown()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorded(events):
    """Every event published on the bus, in order."""
    seen = []
    events.subscribe(Event, seen.append)
    return seen


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "forever_paws.db")


@pytest.fixture
def credentials(tmp_path):
    return CredentialStore(tmp_path / "credentials.enc")


@pytest.fixture
def gateway(http):
    return GatewayClient(http, GATEWAY)


@pytest.fixture
def direct_auth(http):
    return DirectAuthClient(http, BACKEND, ANON_KEY)


@pytest.fixture
def clock():
    class Clock:
        now = 1000.0

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def sessions(http, credentials, gateway, direct_auth, store, owner, events, clock):
    return SessionManager(
        credential_store=credentials,
        gateway=gateway,
        direct_auth=direct_auth,
        local_store=store,
        owner=owner,
        events=events,
        alternate_gateway=GatewayClient(http, ALT_GATEWAY, name="alternate-gateway"),
        table_client=TableClient(http, BACKEND, ANON_KEY),
        clock=clock,
    )
