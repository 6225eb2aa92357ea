"""
SQLAlchemy-backed unit of work.

One AsyncSession and one database transaction per unit. Account rows are
read with FOR UPDATE (a no-op on SQLite) and written with a version
predicate, so a writer in another process that got there first turns this
save into a ConcurrencyConflict instead of a lost update.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..ledger.errors import ConcurrencyConflict, DuplicateAccount, DuplicateReference, PersistenceFailure
from ..ledger.models import CENT, AccountSnapshot, LedgerEntry
from ..logging_config import get_logger
from .models import Account, Transaction

logger = get_logger("credit_ledger.db.unit_of_work")


def _to_account(row: Account) -> AccountSnapshot:
    return AccountSnapshot(
        id=row.account_id,
        account_number=row.account_number,
        balance=Decimal(str(row.balance if row.balance is not None else 0)).quantize(CENT),
        version=row.version or 0,
    )


def _to_entry(row: Transaction) -> LedgerEntry:
    return LedgerEntry(
        transaction_id=row.transaction_id,
        reference=row.transaction_reference,
        sender_id=row.sender_account_id,
        receiver_id=row.receiver_account_id,
        amount=Decimal(str(row.amount)).quantize(CENT),
        created_at=row.created_at,
        status=row.status,
    )


class SqlAccountStore:
    def __init__(self, session) -> None:
        self._session = session

    async def find_by_account_number(
        self,
        account_number: str,
        for_update: bool = False,
    ) -> Optional[AccountSnapshot]:
        stmt = select(Account).where(Account.account_number == account_number)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            res = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Account lookup failed account_number=%s", account_number)
            raise PersistenceFailure("look up account", str(e)) from e
        row = res.scalars().first()
        if row is None:
            return None
        return _to_account(row)

    async def save(self, account: AccountSnapshot) -> None:
        stmt = (
            update(Account)
            .where(Account.account_id == account.id, Account.version == account.version)
            .values(balance=account.balance, version=Account.version + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        try:
            res = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Account save failed account_number=%s", account.account_number)
            raise PersistenceFailure("save account", str(e)) from e
        if res.rowcount != 1:
            raise ConcurrencyConflict(account.account_number)

    async def add(self, account: AccountSnapshot) -> None:
        now = datetime.now(timezone.utc)
        self._session.add(
            Account(
                account_id=account.id,
                account_number=account.account_number,
                balance=account.balance,
                version=account.version,
                created_at=now,
                updated_at=now,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateAccount(account.account_number) from e
        except SQLAlchemyError as e:
            logger.exception("Account insert failed account_number=%s", account.account_number)
            raise PersistenceFailure("open account", str(e)) from e


class SqlTransactionLog:
    def __init__(self, session) -> None:
        self._session = session

    async def append(self, entry: LedgerEntry) -> None:
        self._session.add(
            Transaction(
                transaction_id=entry.transaction_id,
                transaction_reference=entry.reference,
                sender_account_id=entry.sender_id,
                receiver_account_id=entry.receiver_id,
                amount=entry.amount,
                status=entry.status,
                created_at=entry.created_at,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateReference(entry.reference) from e
        except SQLAlchemyError as e:
            logger.exception("Transaction append failed ref=%s", entry.reference)
            raise PersistenceFailure("append transaction record", str(e)) from e

    async def list_for_account(self, account_id: str, limit: int = 20) -> List[LedgerEntry]:
        stmt = (
            select(Transaction)
            .where(
                or_(
                    Transaction.sender_account_id == account_id,
                    Transaction.receiver_account_id == account_id,
                )
            )
            .order_by(Transaction.created_at.desc(), Transaction.transaction_id.desc())
            .limit(limit)
        )
        try:
            res = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceFailure("list transactions", str(e)) from e
        return [_to_entry(t) for t in res.scalars().all()]

    async def find_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        stmt = select(Transaction).where(Transaction.transaction_reference == reference)
        try:
            res = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceFailure("look up transaction", str(e)) from e
        row = res.scalars().first()
        return _to_entry(row) if row is not None else None


class SqlAlchemyUnitOfWork:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory
        self.session = None
        self.accounts: Optional[SqlAccountStore] = None
        self.transactions: Optional[SqlTransactionLog] = None
        self.committed = False

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.accounts = SqlAccountStore(self.session)
        self.transactions = SqlTransactionLog(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self.committed:
                await self.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.exception("Commit failed")
            raise PersistenceFailure("commit", str(e)) from e
        self.committed = True

    async def rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")
            raise


def sql_unit_of_work_factory(session_factory):
    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)

    return factory
