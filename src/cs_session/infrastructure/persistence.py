"""SqlSessionStore — PostgreSQL SessionStore that is also an AtomicLeaseWriter.

One-active-lease-per-holder is enforced by the partial unique index
uq_charging_sessions_holder_active (holder_id WHERE status = 'in-progress');
a violating INSERT surfaces as ActiveLeaseExistsError. The same holds per
socket through uq_charging_sessions_socket_active (SocketInUseError).

Finalization is a guarded UPDATE (... AND status = :expected_status), so two
racing stops cannot both finalize one session.
"""

import uuid
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.cs_account.infrastructure.persistence import apply_balance_delta
from src.cs_common.enums import SessionStatus, SocketClass
from src.cs_common.errors import (
    ActiveLeaseExistsError,
    SessionAlreadyFinalizedError,
    SocketInUseError,
)
from src.cs_session.domain.models import ChargingSession, SessionFinalization

ACTIVE_LEASE_INDEX = "uq_charging_sessions_holder_active"
ACTIVE_SOCKET_INDEX = "uq_charging_sessions_socket_active"

_SESSION_COLUMNS = """id, holder_id, points_reserved, socket_class, socket_number,
              start_time, expected_end_time, status, actual_end_time,
              duration_seconds, refunded_points, points_used_actual,
              remaining_points, created_at, updated_at"""

_INSERT_SESSION_SQL = text(f"""
    INSERT INTO charging_sessions
        (holder_id, points_reserved, socket_class, socket_number,
         start_time, expected_end_time, status, remaining_points)
    VALUES
        (:holder_id, :points_reserved, :socket_class, :socket_number,
         :start_time, :expected_end_time, :status, :remaining_points)
    RETURNING {_SESSION_COLUMNS}
""")

_GET_SESSION_SQL = text(f"""
    SELECT {_SESSION_COLUMNS}
    FROM charging_sessions
    WHERE id = :id
""")

_FINALIZE_SESSION_SQL = text(f"""
    UPDATE charging_sessions
    SET status = :status,
        actual_end_time = :actual_end_time,
        duration_seconds = :duration_seconds,
        refunded_points = :refunded_points,
        points_used_actual = :points_used_actual,
        remaining_points = COALESCE(:remaining_points, remaining_points),
        updated_at = NOW()
    WHERE id = :id
      AND (:expected_status IS NULL OR status = :expected_status)
    RETURNING {_SESSION_COLUMNS}
""")

_QUERY_SESSIONS_SQL = text(f"""
    SELECT {_SESSION_COLUMNS}
    FROM charging_sessions
    WHERE (:holder_id IS NULL OR holder_id = :holder_id)
      AND (:status IS NULL OR status = :status)
      AND (:socket_number IS NULL OR socket_number = :socket_number)
""")


def _row_to_session(row: object) -> ChargingSession:
    return ChargingSession(
        id=str(row.id),  # type: ignore[attr-defined]
        holder_id=row.holder_id,  # type: ignore[attr-defined]
        points_reserved=row.points_reserved,  # type: ignore[attr-defined]
        socket_class=SocketClass(row.socket_class),  # type: ignore[attr-defined]
        socket_number=row.socket_number,  # type: ignore[attr-defined]
        start_time=row.start_time,  # type: ignore[attr-defined]
        expected_end_time=row.expected_end_time,  # type: ignore[attr-defined]
        status=SessionStatus(row.status),  # type: ignore[attr-defined]
        actual_end_time=row.actual_end_time,  # type: ignore[attr-defined]
        duration_seconds=row.duration_seconds,  # type: ignore[attr-defined]
        refunded_points=row.refunded_points,  # type: ignore[attr-defined]
        points_used_actual=row.points_used_actual,  # type: ignore[attr-defined]
        remaining_points=row.remaining_points,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _insert_params(session: ChargingSession, remaining_points: int | None) -> dict[str, Any]:
    return {
        "holder_id": session.holder_id,
        "points_reserved": session.points_reserved,
        "socket_class": session.socket_class.value,
        "socket_number": session.socket_number,
        "start_time": session.start_time,
        "expected_end_time": session.expected_end_time,
        "status": session.status.value,
        "remaining_points": remaining_points,
    }


def _finalize_params(
    session_id: str,
    changes: SessionFinalization,
    expected_status: SessionStatus | None,
) -> dict[str, Any]:
    return {
        "id": session_id,
        "status": changes.status.value,
        "actual_end_time": changes.actual_end_time,
        "duration_seconds": changes.duration_seconds,
        "refunded_points": changes.refunded_points,
        "points_used_actual": changes.points_used_actual,
        "remaining_points": changes.remaining_points,
        "expected_status": expected_status.value if expected_status else None,
    }


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def _translate_integrity_error(exc: IntegrityError, session: ChargingSession) -> Exception:
    detail = str(exc.orig)
    if ACTIVE_LEASE_INDEX in detail:
        return ActiveLeaseExistsError(session.holder_id)
    if ACTIVE_SOCKET_INDEX in detail:
        return SocketInUseError(session.socket_number)
    return exc


class SqlSessionStore:
    """Each public call runs in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # --- SessionStoreProtocol ---

    async def create(self, session: ChargingSession) -> ChargingSession:
        try:
            async with self._session_factory() as db, db.begin():
                result = await db.execute(
                    _INSERT_SESSION_SQL, _insert_params(session, session.remaining_points)
                )
                row = result.fetchone()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, session) from exc
        return _row_to_session(row)

    async def get(self, session_id: str) -> ChargingSession | None:
        # Ids are UUIDs; anything else cannot exist
        if not _is_uuid(session_id):
            return None
        async with self._session_factory() as db:
            result = await db.execute(_GET_SESSION_SQL, {"id": session_id})
            row = result.fetchone()
        return _row_to_session(row) if row else None

    async def update(
        self,
        session_id: str,
        changes: SessionFinalization,
        *,
        expected_status: SessionStatus | None = None,
    ) -> ChargingSession | None:
        if not _is_uuid(session_id):
            return None
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                _FINALIZE_SESSION_SQL, _finalize_params(session_id, changes, expected_status)
            )
            row = result.fetchone()
        return _row_to_session(row) if row else None

    async def query(
        self,
        *,
        holder_id: str | None = None,
        status: SessionStatus | None = None,
        socket_number: int | None = None,
    ) -> list[ChargingSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                _QUERY_SESSIONS_SQL,
                {
                    "holder_id": holder_id,
                    "status": status.value if status else None,
                    "socket_number": socket_number,
                },
            )
            rows = result.fetchall()
        return [_row_to_session(row) for row in rows]

    # --- AtomicLeaseWriter ---

    async def create_with_debit(
        self, session: ChargingSession
    ) -> tuple[ChargingSession, int]:
        try:
            async with self._session_factory() as db, db.begin():
                balance = await apply_balance_delta(
                    db, session.holder_id, -session.points_reserved
                )
                result = await db.execute(_INSERT_SESSION_SQL, _insert_params(session, balance))
                row = result.fetchone()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, session) from exc
        return _row_to_session(row), balance

    async def finalize_with_credit(
        self,
        session_id: str,
        holder_id: str,
        changes: SessionFinalization,
        refund_points: int,
    ) -> ChargingSession:
        async with self._session_factory() as db, db.begin():
            remaining = changes.remaining_points
            if refund_points > 0:
                remaining = await apply_balance_delta(db, holder_id, refund_points)
            params = _finalize_params(session_id, changes, SessionStatus.IN_PROGRESS)
            params["remaining_points"] = remaining
            result = await db.execute(_FINALIZE_SESSION_SQL, params)
            row = result.fetchone()
            if row is None:
                # Rolls back the credit with the rest of the transaction
                raise SessionAlreadyFinalizedError(session_id, "finalized")
        return _row_to_session(row)
