"""Shared fixtures: in-memory backends, simulated relays, a controllable clock."""

from datetime import datetime, timezone

import pytest

from config.settings import Settings
from src.cs_account.infrastructure.memory import InMemoryAccountLedger
from src.cs_relay.application.controller import RelayController
from src.cs_session.application.service import ChargingSessionManager
from src.cs_session.infrastructure.memory import InMemorySessionStore
from tests.support import PIN_MAP, FakeClock, RecordingOutputs, make_settings


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock(datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc))
    monkeypatch.setattr("src.cs_session.application.service.utc_now", fake)
    monkeypatch.setattr("src.cs_session.infrastructure.memory.utc_now", fake)
    monkeypatch.setattr("src.cs_account.infrastructure.memory.utc_now", fake)
    return fake


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def ledger() -> InMemoryAccountLedger:
    return InMemoryAccountLedger()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def outputs() -> RecordingOutputs:
    return RecordingOutputs()


@pytest.fixture
def relay(outputs: RecordingOutputs) -> RelayController:
    return RelayController(PIN_MAP, outputs)


@pytest.fixture
def manager(
    ledger: InMemoryAccountLedger,
    store: InMemorySessionStore,
    relay: RelayController,
    settings: Settings,
    clock: FakeClock,
) -> ChargingSessionManager:
    return ChargingSessionManager(ledger, store, relay, settings)
