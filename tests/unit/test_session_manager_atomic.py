"""ChargingSessionManager against a store that writes balance and session together."""

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from src.cs_account.infrastructure.memory import InMemoryAccountLedger
from src.cs_common.enums import SessionStatus, SocketClass
from src.cs_common.errors import SessionAlreadyFinalizedError
from src.cs_relay.application.controller import RelayController
from src.cs_session.application.service import ChargingSessionManager
from src.cs_session.domain.models import ChargingSession, SessionFinalization
from src.cs_session.infrastructure.memory import InMemorySessionStore
from tests.support import FakeClock, make_settings


class AtomicMemoryStore(InMemorySessionStore):
    """Records the atomic calls; the plain create/update paths must not be used."""

    def __init__(self, ledger: InMemoryAccountLedger) -> None:
        super().__init__()
        self._ledger = ledger
        self.calls: list[str] = []

    async def create(self, session):
        raise AssertionError("plain create used on an atomic store")

    async def create_with_debit(self, session: ChargingSession) -> tuple[ChargingSession, int]:
        self.calls.append("create_with_debit")
        balance = await self._ledger.adjust_balance(session.holder_id, -session.points_reserved)
        created = await super().create(replace(session, remaining_points=balance))
        return created, balance

    async def finalize_with_credit(
        self,
        session_id: str,
        holder_id: str,
        changes: SessionFinalization,
        refund_points: int,
    ) -> ChargingSession:
        self.calls.append("finalize_with_credit")
        if refund_points > 0:
            balance = await self._ledger.adjust_balance(holder_id, refund_points)
            changes = replace(changes, remaining_points=balance)
        finished = await self.update(
            session_id, changes, expected_status=SessionStatus.IN_PROGRESS
        )
        if finished is None:
            raise SessionAlreadyFinalizedError(session_id, "finalized")
        return finished


@pytest.fixture
async def atomic_setup(relay: RelayController, clock: FakeClock):
    ledger = InMemoryAccountLedger()
    await ledger.open_account("RFID-1", 100)
    store = AtomicMemoryStore(ledger)
    manager = ChargingSessionManager(ledger, store, relay, make_settings())
    return manager, ledger, store


class TestAtomicPath:
    async def test_start_uses_single_write(self, atomic_setup) -> None:
        manager, ledger, store = atomic_setup
        result = await manager.start_lease("RFID-1", 10, SocketClass.UNIVERSAL_CHARGER, 1)

        assert store.calls == ["create_with_debit"]
        assert result.remaining_points == 90
        assert await ledger.get_balance("RFID-1") == 90

    async def test_cancel_uses_single_write(self, atomic_setup, clock: FakeClock) -> None:
        manager, ledger, store = atomic_setup
        result = await manager.start_lease("RFID-1", 10, SocketClass.UNIVERSAL_CHARGER, 1)
        clock.advance(125)
        session = await manager.stop_lease(result.session_id, SessionStatus.CANCELLED)

        assert store.calls == ["create_with_debit", "finalize_with_credit"]
        assert session.refunded_points == 8
        assert session.remaining_points == 98
        assert await ledger.get_balance("RFID-1") == 98

    async def test_complete_passes_zero_refund(self, atomic_setup) -> None:
        manager, ledger, store = atomic_setup
        result = await manager.start_lease("RFID-1", 10, SocketClass.UNIVERSAL_CHARGER, 1)
        session = await manager.stop_lease(result.session_id)

        assert session.status == SessionStatus.COMPLETED
        assert session.remaining_points == 90
        assert await ledger.get_balance("RFID-1") == 90


class TestStoreCapabilityDetection:
    def test_plain_store_uses_saga(self, relay: RelayController) -> None:
        manager = ChargingSessionManager(
            InMemoryAccountLedger(), InMemorySessionStore(), relay, make_settings()
        )
        assert manager._atomic_store is None

    def test_spec_mock_of_plain_store_is_not_atomic(self, relay: RelayController) -> None:
        manager = ChargingSessionManager(
            AsyncMock(spec=InMemoryAccountLedger),
            AsyncMock(spec=InMemorySessionStore),
            relay,
            make_settings(),
        )
        assert manager._atomic_store is None

    def test_atomic_store_detected(self, relay: RelayController) -> None:
        ledger = InMemoryAccountLedger()
        store = AtomicMemoryStore(ledger)
        manager = ChargingSessionManager(ledger, store, relay, make_settings())
        assert manager._atomic_store is store
