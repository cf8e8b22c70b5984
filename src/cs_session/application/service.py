"""ChargingSessionManager — orchestrates ledger, session store and relays.

Start and stop for one holder run under that holder's asyncio.Lock, so the
"no in-progress session → create one" check cannot interleave with another
request from the same holder. Different holders use different locks and
never contend; a lock entry is dropped when its last user leaves. A socket
is leased to at most one in-progress session. Store-level guards (unique
active indexes per holder and per socket, status-guarded finalize) back
the lock and the socket check up.

Balance and session writes go through the store's single transaction when
it is an AtomicLeaseWriter. Otherwise they run as a saga: every applied
balance change is undone by a compensating change if the next step fails,
and a failed compensation is logged at CRITICAL and raised as
CompensationFailedError for manual reconciliation.

Relay writes happen after the lock is released and run in a worker
thread. A failed actuation is logged and, unless STRICT_ACTUATION is set, does not affect the lease.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import timedelta

from pydantic import ValidationError

from config.settings import Settings
from src.cs_account.domain.models import Account
from src.cs_account.domain.repository import AccountLedgerProtocol
from src.cs_billing.domain.billing import (
    calculate_refund,
    duration_from_points,
    elapsed_seconds,
)
from src.cs_common.datetime_utils import utc_now
from src.cs_common.enums import SessionStatus, SocketClass
from src.cs_common.errors import (
    AccountNotFoundError,
    ActiveLeaseExistsError,
    ActuationError,
    CompensationFailedError,
    InsufficientBalanceError,
    InvalidLeaseRequestError,
    SessionAlreadyFinalizedError,
    SessionNotFoundError,
    SocketInUseError,
    UnknownSocketError,
)
from src.cs_relay.application.controller import RelayController
from src.cs_session.application.schemas import LeaseStartResult, LeaseStats, StartLeaseRequest
from src.cs_session.domain.models import ChargingSession, SessionFinalization
from src.cs_session.domain.repository import AtomicLeaseWriter, SessionStoreProtocol

logger = logging.getLogger(__name__)


def _sort_key(session: ChargingSession) -> tuple[float, str]:
    created = session.created_at.timestamp() if session.created_at else 0.0
    return created, session.id or ""


def _newest_first(sessions: Sequence[ChargingSession]) -> list[ChargingSession]:
    return sorted(sessions, key=_sort_key, reverse=True)


def _round_half_up(total: int, count: int) -> int:
    """Integer average rounded half up (total >= 0, count > 0)."""
    return (2 * total + count) // (2 * count)


class ChargingSessionManager:
    def __init__(
        self,
        ledger: AccountLedgerProtocol,
        store: SessionStoreProtocol,
        relay: RelayController,
        settings: Settings,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._relay = relay
        self._settings = settings
        self._seconds_per_point = settings.SECONDS_PER_POINT
        self._holder_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: dict[str, int] = defaultdict(int)

    def _get_or_create_lock(self, holder_id: str) -> asyncio.Lock:
        return self._holder_locks[holder_id]

    @asynccontextmanager
    async def _holder_lock(self, holder_id: str) -> AsyncIterator[None]:
        """Hold the holder's lock; the entry is dropped once nobody uses or awaits it."""
        lock = self._get_or_create_lock(holder_id)
        self._lock_users[holder_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[holder_id] -= 1
            if self._lock_users[holder_id] == 0:
                del self._lock_users[holder_id]
                del self._holder_locks[holder_id]

    @property
    def _atomic_store(self) -> AtomicLeaseWriter | None:
        return self._store if isinstance(self._store, AtomicLeaseWriter) else None

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_lease(
        self,
        holder_id: str,
        points_to_spend: int,
        socket_class: SocketClass | str,
        socket_number: int,
    ) -> LeaseStartResult:
        try:
            request = StartLeaseRequest(
                holder_id=holder_id,
                points_to_spend=points_to_spend,
                socket_class=socket_class,
                socket_number=socket_number,
            )
        except ValidationError as exc:
            raise InvalidLeaseRequestError(
                "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
            ) from exc
        if not self._relay.has_socket(request.socket_number):
            raise InvalidLeaseRequestError(f"unknown socket number {request.socket_number}")

        async with self._holder_lock(request.holder_id):
            session, remaining = await self._open_session(request)

        logger.info(
            "Lease %s started: holder=%s points=%d socket=%d remaining=%d",
            session.id,
            session.holder_id,
            session.points_reserved,
            session.socket_number,
            remaining,
        )
        await self._energize_or_rollback(session)
        return LeaseStartResult(
            session_id=session.id or "",
            remaining_points=remaining,
            expected_duration_seconds=session.expected_duration_seconds,
            expected_end_time=session.expected_end_time,
        )

    async def _open_session(self, request: StartLeaseRequest) -> tuple[ChargingSession, int]:
        """Caller holds the holder lock."""
        account = await self._ledger.get_account(request.holder_id)
        if account is None:
            raise AccountNotFoundError(request.holder_id)
        if await self.get_active_lease(request.holder_id) is not None:
            raise ActiveLeaseExistsError(request.holder_id)
        if await self._store.query(
            status=SessionStatus.IN_PROGRESS, socket_number=request.socket_number
        ):
            raise SocketInUseError(request.socket_number)
        if account.balance < request.points_to_spend:
            raise InsufficientBalanceError(request.points_to_spend, account.balance)

        now = utc_now()
        duration = duration_from_points(request.points_to_spend, self._seconds_per_point)
        draft = ChargingSession(
            holder_id=request.holder_id,
            points_reserved=request.points_to_spend,
            socket_class=request.socket_class,
            socket_number=request.socket_number,
            start_time=now,
            expected_end_time=now + timedelta(seconds=duration),
        )

        atomic = self._atomic_store
        if atomic is not None:
            return await atomic.create_with_debit(draft)

        remaining = await self._ledger.adjust_balance(draft.holder_id, -draft.points_reserved)
        draft.remaining_points = remaining
        try:
            session = await self._store.create(draft)
        except Exception as exc:
            await self._compensate(
                draft.holder_id, draft.points_reserved, f"session create failed: {exc!r}"
            )
            raise
        return session, remaining

    async def _energize_or_rollback(self, session: ChargingSession) -> None:
        try:
            await asyncio.to_thread(self._relay.energize, session.socket_number)
        except (ActuationError, UnknownSocketError) as exc:
            if not self._settings.STRICT_ACTUATION:
                logger.error(
                    "Lease %s: socket %d could not be energized (%s); lease kept",
                    session.id,
                    session.socket_number,
                    exc.message,
                )
                return
            logger.error(
                "Lease %s: socket %d could not be energized (%s); rolling back",
                session.id,
                session.socket_number,
                exc.message,
            )
            async with self._holder_lock(session.holder_id):
                current = await self._store.get(session.id or "")
                if current is not None and current.is_active:
                    await self._finalize(current, SessionStatus.CANCELLED, refund_all=True)
            raise

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop_lease(
        self,
        session_id: str,
        requested_status: SessionStatus | str | None = SessionStatus.COMPLETED,
    ) -> ChargingSession:
        status = SessionStatus.normalize_stop(requested_status)
        session = await self._store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        async with self._holder_lock(session.holder_id):
            # Re-read under the lock: a concurrent stop may have finished it
            session = await self._store.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if not session.is_active:
                raise SessionAlreadyFinalizedError(session_id, session.status.value)
            finished = await self._finalize(session, status)

        logger.info(
            "Lease %s %s: elapsed=%ss refunded=%s",
            finished.id,
            finished.status.value,
            finished.duration_seconds,
            finished.refunded_points or 0,
        )
        await self._deenergize(finished)
        return finished

    async def _finalize(
        self,
        session: ChargingSession,
        status: SessionStatus,
        *,
        refund_all: bool = False,
    ) -> ChargingSession:
        """Caller holds the holder lock; session is in progress."""
        now = utc_now()
        elapsed = elapsed_seconds(session.start_time, now)

        refund = 0
        used_points: int | None = None
        if refund_all:
            refund, used_points = session.points_reserved, 0
        elif status == SessionStatus.CANCELLED:
            quote = calculate_refund(session.points_reserved, elapsed, self._seconds_per_point)
            refund, used_points = quote.refund_points, quote.used_points

        changes = SessionFinalization(
            status=status,
            actual_end_time=now,
            duration_seconds=elapsed,
            refunded_points=refund if refund > 0 else None,
            points_used_actual=used_points if refund > 0 else None,
        )
        session_id = session.id or ""

        atomic = self._atomic_store
        if atomic is not None:
            return await atomic.finalize_with_credit(
                session_id, session.holder_id, changes, refund
            )

        if refund > 0:
            remaining = await self._ledger.adjust_balance(session.holder_id, refund)
            changes = replace(changes, remaining_points=remaining)
        try:
            finished = await self._store.update(
                session_id, changes, expected_status=SessionStatus.IN_PROGRESS
            )
        except Exception as exc:
            if refund > 0:
                await self._compensate(
                    session.holder_id, -refund, f"session finalize failed: {exc!r}"
                )
            raise
        if finished is None:
            if refund > 0:
                await self._compensate(
                    session.holder_id, -refund, "session finalized concurrently"
                )
            raise SessionAlreadyFinalizedError(session_id, "finalized")
        return finished

    async def _deenergize(self, session: ChargingSession) -> None:
        try:
            await asyncio.to_thread(self._relay.deenergize, session.socket_number)
        except (ActuationError, UnknownSocketError) as exc:
            # The lease is already closed; the socket may still be live
            logger.critical(
                "Lease %s: socket %d could not be de-energized (%s)",
                session.id,
                session.socket_number,
                exc.message,
            )

    async def _compensate(self, holder_id: str, delta: int, reason: str) -> None:
        logger.warning(
            "Compensating %+d points for holder %s: %s", delta, holder_id, reason
        )
        try:
            await self._ledger.adjust_balance(holder_id, delta)
        except Exception as exc:
            logger.critical(
                "RECONCILE: compensation of %+d points for holder %s failed (%r); cause: %s",
                delta,
                holder_id,
                exc,
                reason,
            )
            raise CompensationFailedError(holder_id, delta, reason) from exc

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def open_account(self, holder_id: str, initial_points: int | None = None) -> Account:
        points = self._settings.INITIAL_POINTS if initial_points is None else initial_points
        account = await self._ledger.open_account(holder_id, points)
        logger.info("Opened account for holder %s with %d points", holder_id, points)
        return account

    async def set_balance(self, holder_id: str, points: int) -> Account:
        async with self._holder_lock(holder_id):
            account = await self._ledger.set_balance(holder_id, points)
        logger.info("Balance of holder %s set to %d", holder_id, points)
        return account

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_active_lease(self, holder_id: str) -> ChargingSession | None:
        sessions = await self._store.query(
            holder_id=holder_id, status=SessionStatus.IN_PROGRESS
        )
        if not sessions:
            return None
        if len(sessions) > 1:
            logger.error(
                "Holder %s has %d in-progress sessions; using the newest",
                holder_id,
                len(sessions),
            )
        return _newest_first(sessions)[0]

    def _check_limit(self, limit: int | None, default: int) -> int:
        if limit is None:
            return default
        if limit < 1:
            raise InvalidLeaseRequestError(f"limit must be >= 1, got {limit}")
        return limit

    async def list_history(
        self, holder_id: str, limit: int | None = None
    ) -> list[ChargingSession]:
        limit = self._check_limit(limit, self._settings.HISTORY_DEFAULT_LIMIT)
        sessions = await self._store.query(holder_id=holder_id)
        return _newest_first(sessions)[:limit]

    async def list_all(self, limit: int | None = None) -> list[ChargingSession]:
        limit = self._check_limit(limit, self._settings.ALL_SESSIONS_DEFAULT_LIMIT)
        sessions = await self._store.query()
        return _newest_first(sessions)[:limit]

    async def compute_stats(self, holder_id: str) -> LeaseStats:
        sessions = await self._store.query(holder_id=holder_id)
        total = len(sessions)
        if total == 0:
            return LeaseStats()
        points = sum(s.points_reserved for s in sessions)
        duration = sum(s.duration_seconds or 0 for s in sessions)
        return LeaseStats(
            total_sessions=total,
            total_points_used=points,
            total_duration=duration,
            completed_sessions=sum(1 for s in sessions if s.status == SessionStatus.COMPLETED),
            cancelled_sessions=sum(1 for s in sessions if s.status == SessionStatus.CANCELLED),
            average_points_per_session=_round_half_up(points, total),
            average_duration=_round_half_up(duration, total),
        )


