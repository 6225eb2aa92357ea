"""
Account reads and account opening.

These run through the same unit-of-work ports as transfers so that the
HTTP layer works unchanged against either backend.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple
from uuid import uuid4

from ..logging_config import get_logger
from .engine import resolve_account
from .errors import InvalidAmount
from .models import CENT, AccountSnapshot, LedgerEntry
from .ports import UnitOfWorkFactory

logger = get_logger("credit_ledger.ledger.accounts")


def generate_account_number() -> str:
    return f"ACC{uuid4().hex[:8].upper()}"


def _initial_balance(value: Any) -> Decimal:
    try:
        balance = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(value, "initial balance must be a number")
    if not balance.is_finite() or balance < 0:
        raise InvalidAmount(value, "initial balance must be a finite, non-negative number")
    if balance.quantize(CENT) != balance:
        raise InvalidAmount(value, "initial balance must have at most two decimal places")
    return balance.quantize(CENT)


async def open_account(
    uow_factory: UnitOfWorkFactory,
    initial_balance: Any = 0,
    account_number: Optional[str] = None,
) -> AccountSnapshot:
    account = AccountSnapshot(
        id=str(uuid4()),
        account_number=(account_number or "").strip() or generate_account_number(),
        balance=_initial_balance(initial_balance),
    )
    async with uow_factory() as uow:
        await uow.accounts.add(account)
        await uow.commit()
    logger.info("Opened account %s balance=%s", account.account_number, account.balance)
    return account


async def get_account(uow_factory: UnitOfWorkFactory, account_number: str) -> AccountSnapshot:
    async with uow_factory() as uow:
        return await resolve_account(uow.accounts, account_number)


async def list_account_transactions(
    uow_factory: UnitOfWorkFactory,
    account_number: str,
    limit: int = 20,
) -> Tuple[AccountSnapshot, List[LedgerEntry]]:
    async with uow_factory() as uow:
        account = await resolve_account(uow.accounts, account_number)
        entries = await uow.transactions.list_for_account(account.id, limit=limit)
    return account, entries


async def find_transfer(uow_factory: UnitOfWorkFactory, reference: str) -> Optional[LedgerEntry]:
    """Look up a transfer by reference, e.g. to settle an in-doubt commit."""

    async with uow_factory() as uow:
        return await uow.transactions.find_by_reference(reference.strip())
