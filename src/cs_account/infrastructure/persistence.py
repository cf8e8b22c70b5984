"""SqlAccountLedger — PostgreSQL implementation of AccountLedgerProtocol.

All balance-mutating operations use an atomic UPDATE ... RETURNING.
A result of 0 rows means either the holder is unknown or the debit would
overdraw the balance; a follow-up SELECT tells the two apart.

apply_balance_delta() runs inside the caller's transaction so the session
store can debit/credit in the same unit as its own writes.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.cs_account.domain.models import Account
from src.cs_common.errors import (
    AccountExistsError,
    AccountNotFoundError,
    InsufficientBalanceError,
)

_ACCOUNT_COLUMNS = "holder_id, balance, last_used_at, created_at, updated_at"

_GET_ACCOUNT_SQL = text(f"""
    SELECT {_ACCOUNT_COLUMNS}
    FROM accounts
    WHERE holder_id = :holder_id
""")

_ADJUST_BALANCE_SQL = text(f"""
    UPDATE accounts
    SET balance = balance + :delta,
        last_used_at = CASE WHEN :is_debit THEN NOW() ELSE last_used_at END,
        version = version + 1,
        updated_at = NOW()
    WHERE holder_id = :holder_id AND balance + :delta >= 0
    RETURNING {_ACCOUNT_COLUMNS}
""")

_INSERT_ACCOUNT_SQL = text(f"""
    INSERT INTO accounts (holder_id, balance)
    VALUES (:holder_id, :balance)
    ON CONFLICT (holder_id) DO NOTHING
    RETURNING {_ACCOUNT_COLUMNS}
""")

_SET_BALANCE_SQL = text(f"""
    UPDATE accounts
    SET balance = :balance,
        version = version + 1,
        updated_at = NOW()
    WHERE holder_id = :holder_id
    RETURNING {_ACCOUNT_COLUMNS}
""")


def _row_to_account(row: object) -> Account:
    return Account(
        holder_id=row.holder_id,  # type: ignore[attr-defined]
        balance=row.balance,  # type: ignore[attr-defined]
        last_used_at=row.last_used_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


async def apply_balance_delta(db: AsyncSession, holder_id: str, delta: int) -> int:
    """Add `delta` (negative = debit) to a balance; return the new balance."""
    result = await db.execute(
        _ADJUST_BALANCE_SQL,
        {"holder_id": holder_id, "delta": delta, "is_debit": delta < 0},
    )
    row = result.fetchone()
    if row is not None:
        return row.balance
    acc_row = (await db.execute(_GET_ACCOUNT_SQL, {"holder_id": holder_id})).fetchone()
    if acc_row is None:
        raise AccountNotFoundError(holder_id)
    raise InsufficientBalanceError(-delta, acc_row.balance)


class SqlAccountLedger:
    """Each public call runs in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_account(self, holder_id: str) -> Account | None:
        async with self._session_factory() as db:
            result = await db.execute(_GET_ACCOUNT_SQL, {"holder_id": holder_id})
            row = result.fetchone()
        return _row_to_account(row) if row else None

    async def get_balance(self, holder_id: str) -> int:
        account = await self.get_account(holder_id)
        if account is None:
            raise AccountNotFoundError(holder_id)
        return account.balance

    async def adjust_balance(self, holder_id: str, delta: int) -> int:
        async with self._session_factory() as db, db.begin():
            return await apply_balance_delta(db, holder_id, delta)

    async def open_account(self, holder_id: str, initial_points: int) -> Account:
        if initial_points < 0:
            raise ValueError(f"initial_points must be >= 0, got {initial_points}")
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                _INSERT_ACCOUNT_SQL, {"holder_id": holder_id, "balance": initial_points}
            )
            row = result.fetchone()
        if row is None:
            raise AccountExistsError(holder_id)
        return _row_to_account(row)

    async def set_balance(self, holder_id: str, points: int) -> Account:
        if points < 0:
            raise ValueError(f"points must be >= 0, got {points}")
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                _SET_BALANCE_SQL, {"holder_id": holder_id, "balance": points}
            )
            row = result.fetchone()
        if row is None:
            raise AccountNotFoundError(holder_id)
        return _row_to_account(row)
