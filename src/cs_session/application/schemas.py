"""Pydantic schemas for the charging session manager."""

from datetime import datetime

from pydantic import BaseModel, Field, StrictInt

from src.cs_common.enums import SocketClass

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class StartLeaseRequest(BaseModel):
    holder_id: str = Field(..., min_length=1, max_length=64, description="Card / RFID tag")
    points_to_spend: StrictInt = Field(..., gt=0)
    socket_class: SocketClass
    socket_number: StrictInt = Field(..., gt=0)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaseStartResult(BaseModel):
    session_id: str
    remaining_points: int
    expected_duration_seconds: int
    expected_end_time: datetime


class LeaseStats(BaseModel):
    total_sessions: int = 0
    total_points_used: int = 0
    total_duration: int = 0          # seconds, finalized sessions only
    completed_sessions: int = 0
    cancelled_sessions: int = 0
    average_points_per_session: int = 0
    average_duration: int = 0
