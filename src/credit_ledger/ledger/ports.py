from __future__ import annotations

from typing import Callable, List, Optional, Protocol

from .models import AccountSnapshot, LedgerEntry


class AccountStore(Protocol):
    """
    Point lookup and point update of accounts.

    Implementations are responsible for:
    - Returning the latest committed state (no cached reads).
    - Rejecting a save whose snapshot version is stale with ConcurrencyConflict.
    - Translating driver errors into PersistenceFailure.
    """

    async def find_by_account_number(
        self,
        account_number: str,
        for_update: bool = False,
    ) -> Optional[AccountSnapshot]:
        """Return the account addressed by `account_number`, or None."""

        ...

    async def save(self, account: AccountSnapshot) -> None:
        """Persist a new balance for an existing account."""

        ...

    async def add(self, account: AccountSnapshot) -> None:
        """Persist a newly opened account."""

        ...


class TransactionLog(Protocol):
    """Append-only record of completed transfers."""

    async def append(self, entry: LedgerEntry) -> None:
        ...

    async def list_for_account(self, account_id: str, limit: int = 20) -> List[LedgerEntry]:
        """Entries where the account is sender or receiver, newest first."""

        ...

    async def find_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        ...


class LedgerUnitOfWork(Protocol):
    """
    One atomic unit over the account store and the transaction log.

    Used as an async context manager. Writes become visible only on
    `commit()`; leaving the block without committing rolls everything back.
    """

    accounts: AccountStore
    transactions: TransactionLog

    async def __aenter__(self) -> "LedgerUnitOfWork":
        ...

    async def __aexit__(self, exc_type, exc, tb) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


UnitOfWorkFactory = Callable[[], LedgerUnitOfWork]
