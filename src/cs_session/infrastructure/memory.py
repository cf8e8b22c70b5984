"""In-process SessionStore for single-node deployments and tests.

Implements SessionStoreProtocol only (not AtomicLeaseWriter): balance and
session writes go to separate objects, so the manager protects them with
its compensating saga. The one-in-progress-per-holder and per-socket
rules are still enforced here, mirroring the unique indexes of the SQL store.
"""

import uuid
from dataclasses import replace

from src.cs_common.datetime_utils import utc_now
from src.cs_common.enums import SessionStatus
from src.cs_common.errors import ActiveLeaseExistsError, SocketInUseError
from src.cs_session.domain.models import ChargingSession, SessionFinalization


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, ChargingSession] = {}

    async def create(self, session: ChargingSession) -> ChargingSession:
        if any(
            s.holder_id == session.holder_id and s.is_active
            for s in self._sessions.values()
        ):
            raise ActiveLeaseExistsError(session.holder_id)
        if any(
            s.socket_number == session.socket_number and s.is_active
            for s in self._sessions.values()
        ):
            raise SocketInUseError(session.socket_number)
        now = utc_now()
        stored = replace(session, id=str(uuid.uuid4()), created_at=now, updated_at=now)
        self._sessions[stored.id] = stored  # type: ignore[index]
        return replace(stored)

    async def get(self, session_id: str) -> ChargingSession | None:
        session = self._sessions.get(session_id)
        return replace(session) if session else None

    async def update(
        self,
        session_id: str,
        changes: SessionFinalization,
        *,
        expected_status: SessionStatus | None = None,
    ) -> ChargingSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if expected_status is not None and session.status != expected_status:
            return None
        updated = replace(
            session,
            status=changes.status,
            actual_end_time=changes.actual_end_time,
            duration_seconds=changes.duration_seconds,
            refunded_points=changes.refunded_points,
            points_used_actual=changes.points_used_actual,
            remaining_points=(
                changes.remaining_points
                if changes.remaining_points is not None
                else session.remaining_points
            ),
            updated_at=utc_now(),
        )
        self._sessions[session_id] = updated
        return replace(updated)

    async def query(
        self,
        *,
        holder_id: str | None = None,
        status: SessionStatus | None = None,
        socket_number: int | None = None,
    ) -> list[ChargingSession]:
        return [
            replace(s)
            for s in self._sessions.values()
            if (holder_id is None or s.holder_id == holder_id)
            and (status is None or s.status == status)
            and (socket_number is None or s.socket_number == socket_number)
        ]
