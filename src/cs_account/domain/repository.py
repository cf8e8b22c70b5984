"""AccountLedger Protocol — the balance operations the session core relies on.

adjust_balance is the only path that moves points during leasing. It must be
a single conditional write: a debit that would take the balance below zero
is rejected instead of applied, so concurrent debits cannot lose updates.
"""

from typing import Protocol

from src.cs_account.domain.models import Account


class AccountLedgerProtocol(Protocol):
    async def get_account(self, holder_id: str) -> Account | None: ...

    async def get_balance(self, holder_id: str) -> int: ...

    async def adjust_balance(self, holder_id: str, delta: int) -> int: ...

    async def open_account(self, holder_id: str, initial_points: int) -> Account: ...

    async def set_balance(self, holder_id: str, points: int) -> Account: ...
