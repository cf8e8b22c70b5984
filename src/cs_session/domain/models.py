"""Charging session domain models — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.cs_common.enums import SessionStatus, SocketClass


@dataclass
class ChargingSession:
    holder_id: str
    points_reserved: int          # debited at start, never changes
    socket_class: SocketClass
    socket_number: int
    start_time: datetime
    expected_end_time: datetime   # start_time + points_reserved x seconds_per_point
    status: SessionStatus = SessionStatus.IN_PROGRESS
    id: str | None = None         # assigned by the store
    actual_end_time: datetime | None = None
    duration_seconds: int | None = None
    # Set only when a cancellation credited points back
    refunded_points: int | None = None
    points_used_actual: int | None = None
    # Balance snapshot: after the debit, then after the refund credit (if any)
    remaining_points: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.IN_PROGRESS

    @property
    def expected_duration_seconds(self) -> int:
        return int((self.expected_end_time - self.start_time).total_seconds())


@dataclass(frozen=True)
class SessionFinalization:
    """The single update a session receives: in-progress → terminal."""

    status: SessionStatus
    actual_end_time: datetime
    duration_seconds: int
    refunded_points: int | None = None
    points_used_actual: int | None = None
    remaining_points: int | None = None
