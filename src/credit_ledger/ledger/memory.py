from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from .errors import ConcurrencyConflict, DuplicateAccount, DuplicateReference, PersistenceFailure
from .models import CENT, AccountSnapshot, LedgerEntry


class InMemoryLedger:
    """
    Process-local account store and transaction log.

    Backs the `memory` ledger backend and the test suite. Writes made through
    a unit of work are staged and applied together at commit, after every
    staged account version has been checked against the committed one.
    """

    def __init__(self) -> None:
        self.accounts: Dict[str, AccountSnapshot] = {}
        self.ids_by_number: Dict[str, str] = {}
        self.entries: List[LedgerEntry] = []
        self.references: Dict[str, LedgerEntry] = {}

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)

    def seed(self, account_number: str, balance: Decimal | int | str = 0) -> AccountSnapshot:
        """Open an account directly, bypassing any unit of work."""

        if account_number in self.ids_by_number:
            raise DuplicateAccount(account_number)
        account = AccountSnapshot(
            id=str(uuid4()),
            account_number=account_number,
            balance=Decimal(str(balance)).quantize(CENT),
        )
        self.accounts[account.id] = account
        self.ids_by_number[account_number] = account.id
        return account

    def get(self, account_number: str) -> Optional[AccountSnapshot]:
        account_id = self.ids_by_number.get(account_number)
        if account_id is None:
            return None
        return self.accounts[account_id]

    def balance_of(self, account_number: str) -> Decimal:
        account = self.get(account_number)
        if account is None:
            raise KeyError(account_number)
        return account.balance

    def total_balance(self) -> Decimal:
        return sum((a.balance for a in self.accounts.values()), Decimal("0"))


class InMemoryAccountStore:
    def __init__(self, ledger: InMemoryLedger) -> None:
        self._ledger = ledger
        self.staged: Dict[str, AccountSnapshot] = {}
        self.created: Dict[str, AccountSnapshot] = {}

    async def find_by_account_number(
        self,
        account_number: str,
        for_update: bool = False,
    ) -> Optional[AccountSnapshot]:
        created = self.created.get(account_number)
        if created is not None:
            return created
        account_id = self._ledger.ids_by_number.get(account_number)
        if account_id is None:
            return None
        return self.staged.get(account_id) or self._ledger.accounts[account_id]

    async def save(self, account: AccountSnapshot) -> None:
        current = self._ledger.accounts.get(account.id)
        if current is None:
            raise PersistenceFailure("save account", f"unknown account {account.account_number}")
        if current.version != account.version:
            raise ConcurrencyConflict(account.account_number)
        self.staged[account.id] = account

    async def add(self, account: AccountSnapshot) -> None:
        if account.account_number in self._ledger.ids_by_number or account.account_number in self.created:
            raise DuplicateAccount(account.account_number)
        self.created[account.account_number] = account


class InMemoryTransactionLog:
    def __init__(self, ledger: InMemoryLedger) -> None:
        self._ledger = ledger
        self.pending: List[LedgerEntry] = []

    async def append(self, entry: LedgerEntry) -> None:
        if entry.reference in self._ledger.references or any(
            e.reference == entry.reference for e in self.pending
        ):
            raise DuplicateReference(entry.reference)
        self.pending.append(entry)

    async def list_for_account(self, account_id: str, limit: int = 20) -> List[LedgerEntry]:
        matches = [
            e for e in self._ledger.entries if account_id in (e.sender_id, e.receiver_id)
        ]
        matches.reverse()
        return matches[:limit]

    async def find_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        return self._ledger.references.get(reference)


class InMemoryUnitOfWork:
    def __init__(self, ledger: InMemoryLedger) -> None:
        self._ledger = ledger
        self.accounts = InMemoryAccountStore(ledger)
        self.transactions = InMemoryTransactionLog(ledger)
        self.committed = False

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            await self.rollback()

    async def commit(self) -> None:
        # No await below: the check and the apply happen in one step on the loop.
        updates: List[Tuple[str, AccountSnapshot]] = []
        for account_id, account in self.accounts.staged.items():
            current = self._ledger.accounts[account_id]
            if current.version != account.version:
                raise ConcurrencyConflict(account.account_number)
            updates.append((account_id, AccountSnapshot(
                id=account.id,
                account_number=account.account_number,
                balance=account.balance,
                version=account.version + 1,
            )))
        for number in self.accounts.created:
            if number in self._ledger.ids_by_number:
                raise DuplicateAccount(number)
        for entry in self.transactions.pending:
            if entry.reference in self._ledger.references:
                raise DuplicateReference(entry.reference)

        for account_id, account in updates:
            self._ledger.accounts[account_id] = account
        for number, account in self.accounts.created.items():
            self._ledger.accounts[account.id] = account
            self._ledger.ids_by_number[number] = account.id
        self._ledger.entries.extend(self.transactions.pending)
        for entry in self.transactions.pending:
            self._ledger.references[entry.reference] = entry
        self.committed = True
        self._clear()

    async def rollback(self) -> None:
        self._clear()

    def _clear(self) -> None:
        self.accounts.staged.clear()
        self.accounts.created.clear()
        self.transactions.pending.clear()
