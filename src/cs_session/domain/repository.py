"""SessionStore Protocols — dependency inversion for testability.

SessionStoreProtocol is the minimum a document store must offer. A store
that can also write sessions and balances in one transaction advertises
it by implementing AtomicLeaseWriter; the manager then skips its
compensating saga.
"""

from typing import Protocol, runtime_checkable

from src.cs_common.enums import SessionStatus
from src.cs_session.domain.models import ChargingSession, SessionFinalization


class SessionStoreProtocol(Protocol):
    async def create(self, session: ChargingSession) -> ChargingSession:
        """Persist a new session and return it with its id.

        Raises ActiveLeaseExistsError when the holder already has an
        in-progress session, SocketInUseError when the socket does.
        """
        ...

    async def get(self, session_id: str) -> ChargingSession | None: ...

    async def update(
        self,
        session_id: str,
        changes: SessionFinalization,
        *,
        expected_status: SessionStatus | None = None,
    ) -> ChargingSession | None:
        """Apply `changes`; None if the id is unknown or the status guard fails."""
        ...

    async def query(
        self,
        *,
        holder_id: str | None = None,
        status: SessionStatus | None = None,
        socket_number: int | None = None,
    ) -> list[ChargingSession]:
        """Unordered; callers sort."""
        ...


@runtime_checkable
class AtomicLeaseWriter(Protocol):
    async def create_with_debit(
        self, session: ChargingSession
    ) -> tuple[ChargingSession, int]:
        """Insert the session and debit points_reserved; returns (session, new balance)."""
        ...

    async def finalize_with_credit(
        self,
        session_id: str,
        holder_id: str,
        changes: SessionFinalization,
        refund_points: int,
    ) -> ChargingSession:
        """Credit refund_points and finalize an in-progress session together."""
        ...
