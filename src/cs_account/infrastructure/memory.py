"""In-process AccountLedger for single-node deployments and tests.

Every method completes without awaiting in between reading and writing a
balance, so on one event loop each call is atomic. Callers receive copies;
stored accounts are never handed out for mutation.
"""

from dataclasses import replace

from src.cs_account.domain.models import Account
from src.cs_common.datetime_utils import utc_now
from src.cs_common.errors import (
    AccountExistsError,
    AccountNotFoundError,
    InsufficientBalanceError,
)


class InMemoryAccountLedger:
    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}

    async def get_account(self, holder_id: str) -> Account | None:
        account = self._accounts.get(holder_id)
        return replace(account) if account else None

    async def get_balance(self, holder_id: str) -> int:
        account = self._accounts.get(holder_id)
        if account is None:
            raise AccountNotFoundError(holder_id)
        return account.balance

    async def adjust_balance(self, holder_id: str, delta: int) -> int:
        account = self._accounts.get(holder_id)
        if account is None:
            raise AccountNotFoundError(holder_id)
        if account.balance + delta < 0:
            raise InsufficientBalanceError(-delta, account.balance)
        now = utc_now()
        account.balance += delta
        account.updated_at = now
        if delta < 0:
            account.last_used_at = now
        return account.balance

    async def open_account(self, holder_id: str, initial_points: int) -> Account:
        if initial_points < 0:
            raise ValueError(f"initial_points must be >= 0, got {initial_points}")
        if holder_id in self._accounts:
            raise AccountExistsError(holder_id)
        now = utc_now()
        account = Account(
            holder_id=holder_id,
            balance=initial_points,
            created_at=now,
            updated_at=now,
        )
        self._accounts[holder_id] = account
        return replace(account)

    async def set_balance(self, holder_id: str, points: int) -> Account:
        if points < 0:
            raise ValueError(f"points must be >= 0, got {points}")
        account = self._accounts.get(holder_id)
        if account is None:
            raise AccountNotFoundError(holder_id)
        account.balance = points
        account.updated_at = utc_now()
        return replace(account)
