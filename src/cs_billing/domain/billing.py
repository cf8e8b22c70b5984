"""Points ↔ time conversion and early-stop refunds.

All quantities are int (points, whole seconds). No float anywhere: a
started point is billed as a whole point, so the used-point count is an
integer ceiling division and the refund is whatever whole points remain.
"""

from dataclasses import dataclass
from datetime import datetime

from src.cs_common.datetime_utils import epoch_seconds

SECONDS_PER_POINT: int = 120


@dataclass(frozen=True)
class RefundQuote:
    used_points: int
    refund_points: int


def _check_rate(seconds_per_point: int) -> None:
    if seconds_per_point <= 0:
        raise ValueError(f"seconds_per_point must be positive, got {seconds_per_point}")


def duration_from_points(points: int, seconds_per_point: int = SECONDS_PER_POINT) -> int:
    """Lease length in seconds bought by `points`."""
    _check_rate(seconds_per_point)
    if points < 0:
        raise ValueError(f"points must be >= 0, got {points}")
    return points * seconds_per_point


def calculate_refund(
    points_reserved: int,
    elapsed_seconds: int,
    seconds_per_point: int = SECONDS_PER_POINT,
) -> RefundQuote:
    """Split a reservation into billed points and refundable points.

    expected = points_reserved x seconds_per_point
    used     = min(elapsed, expected)
    billed   = ceil(used / seconds_per_point)
    refund   = max(points_reserved - billed, 0)

    Example: 10 points, 125s elapsed → billed 2, refund 8.
    """
    _check_rate(seconds_per_point)
    if points_reserved < 0:
        raise ValueError(f"points_reserved must be >= 0, got {points_reserved}")
    if elapsed_seconds < 0:
        raise ValueError(f"elapsed_seconds must be >= 0, got {elapsed_seconds}")

    expected = points_reserved * seconds_per_point
    used = min(elapsed_seconds, expected)
    used_points = (used + seconds_per_point - 1) // seconds_per_point
    refund = max(points_reserved - used_points, 0)
    return RefundQuote(used_points=used_points, refund_points=refund)


def refund_points(
    points_reserved: int,
    elapsed_seconds: int,
    seconds_per_point: int = SECONDS_PER_POINT,
) -> int:
    return calculate_refund(points_reserved, elapsed_seconds, seconds_per_point).refund_points


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants at second resolution, never negative."""
    return max(epoch_seconds(end) - epoch_seconds(start), 0)
