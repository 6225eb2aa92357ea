"""
Credit transfer engine.

Moves a positive amount from one account to another and appends one ledger
entry, all inside a single unit of work:

- Per-account locks serialize resolve/validate/persist for the same account
  inside this process, while disjoint pairs run in parallel.
- The store's version check (compare-and-swap) catches writers outside this
  process; a lost race is retried a bounded number of times.
- Every persistence call has a timeout; a timeout is a PersistenceFailure.
- Once persistence has started it runs to completion even if the caller is
  cancelled, so an account is never left debited without its credit.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Optional, TypeVar
from uuid import uuid4

from ..logging_config import get_logger
from .errors import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateReference,
    InsufficientCredit,
    InvalidAmount,
    LedgerFailure,
    PersistenceFailure,
    SameAccountTransfer,
    TransferRejected,
)
from .locks import AccountLocks
from .models import CENT, AccountSnapshot, LedgerEntry, TransferReceipt
from .ports import AccountStore, LedgerUnitOfWork, UnitOfWorkFactory

logger = get_logger("credit_ledger.ledger.engine")

T = TypeVar("T")

MAX_AMOUNT = Decimal("9999999999999.99")


def new_reference() -> str:
    return f"TXN{uuid4().hex[:12].upper()}"


def normalize_amount(amount: Any) -> Decimal:
    """
    Coerce a transfer amount to a two-place Decimal.

    Rejects booleans, non-numeric values, NaN/Infinity, zero, negatives,
    sub-cent precision and values beyond the storable range.
    """
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmount(amount, "amount must be a number")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(amount, "amount must be a number")

    if not value.is_finite():
        raise InvalidAmount(amount, "amount must be finite")
    if value <= 0:
        raise InvalidAmount(amount, "amount must be greater than zero")
    if value > MAX_AMOUNT:
        raise InvalidAmount(amount, f"amount must not exceed {MAX_AMOUNT}")

    quantized = value.quantize(CENT)
    if quantized != value:
        raise InvalidAmount(amount, "amount must have at most two decimal places")
    return quantized


async def resolve_account(
    accounts: AccountStore,
    account_number: str,
    role: str = "account",
    for_update: bool = False,
    timeout: Optional[float] = None,
) -> AccountSnapshot:
    """
    Return the current state of the account addressed by `account_number`.

    A missing account is AccountNotFound; a failing lookup is a
    PersistenceFailure raised by the store. Neither is reported as found.
    """
    ref = (account_number or "").strip()
    if not ref:
        raise AccountNotFound(ref, role)

    try:
        account = await asyncio.wait_for(
            accounts.find_by_account_number(ref, for_update=for_update),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise PersistenceFailure(f"look up {role} account", f"timed out after {timeout}s") from exc

    if account is None:
        raise AccountNotFound(ref, role)
    return account


def build_ledger_entry(
    sender: AccountSnapshot,
    receiver: AccountSnapshot,
    amount: Decimal,
    reference: Optional[str] = None,
) -> LedgerEntry:
    return LedgerEntry(
        transaction_id=str(uuid4()),
        reference=reference or new_reference(),
        sender_id=sender.id,
        receiver_id=receiver.id,
        amount=amount,
        created_at=datetime.now(timezone.utc),
    )


async def _run_to_completion(awaitable: Awaitable[T]) -> T:
    task = asyncio.ensure_future(awaitable)
    cancelled = False
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.done():
                break
            cancelled = True
            logger.warning("Caller cancelled during persistence; finishing the write first")
    if cancelled:
        raise asyncio.CancelledError()
    return task.result()


class TransferEngine:
    """
    Executes credit transfers against an injected unit-of-work factory.

    The factory is called once per attempt and must return a fresh
    LedgerUnitOfWork; see ledger.memory and db.unit_of_work.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        locks: Optional[AccountLocks] = None,
        max_retries: int = 3,
        persistence_timeout: Optional[float] = 5.0,
        retry_backoff: float = 0.05,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._uow_factory = uow_factory
        self._locks = locks if locks is not None else AccountLocks()
        self._max_retries = max_retries
        self._timeout = persistence_timeout
        self._retry_backoff = retry_backoff

    async def transfer(
        self,
        sender_account: str,
        receiver_account: str,
        amount: Any,
        reference: Optional[str] = None,
    ) -> TransferReceipt:
        sender_ref = str(sender_account or "").strip()
        receiver_ref = str(receiver_account or "").strip()
        reference = reference or new_reference()
        logger.info(
            "Transfer request ref=%s from=%s to=%s amount=%s",
            reference,
            sender_ref,
            receiver_ref,
            amount,
        )

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._locks.hold(sender_ref, receiver_ref):
                    receipt = await self._attempt(sender_ref, receiver_ref, amount, reference)
            except ConcurrencyConflict as exc:
                if attempt >= self._max_retries:
                    logger.error(
                        "Transfer ref=%s gave up after %s conflicting attempts: %s",
                        reference,
                        attempt,
                        exc,
                    )
                    raise
                logger.warning("Transfer ref=%s attempt %s lost a race, retrying: %s", reference, attempt, exc)
                await asyncio.sleep(self._retry_backoff * attempt)
                continue
            except TransferRejected as exc:
                logger.info("Transfer rejected ref=%s code=%s: %s", reference, exc.code, exc)
                raise
            except LedgerFailure as exc:
                logger.error("Transfer failed ref=%s code=%s: %s", reference, exc.code, exc)
                raise

            logger.info(
                "Transfer success ref=%s txn=%s from=%s to=%s amount=%s",
                receipt.reference,
                receipt.transaction_id,
                receipt.sender_account,
                receipt.receiver_account,
                receipt.amount,
            )
            return receipt

    async def _attempt(
        self,
        sender_ref: str,
        receiver_ref: str,
        amount: Any,
        reference: str,
    ) -> TransferReceipt:
        async with self._uow_factory() as uow:
            sender = await resolve_account(
                uow.accounts, sender_ref, role="sender", for_update=True, timeout=self._timeout
            )
            receiver = await resolve_account(
                uow.accounts, receiver_ref, role="receiver", for_update=True, timeout=self._timeout
            )

            value = normalize_amount(amount)
            if sender.id == receiver.id:
                raise SameAccountTransfer(sender.account_number)
            if sender.balance < value:
                raise InsufficientCredit(sender.account_number, value, sender.balance)
            existing = await self._bounded(
                uow.transactions.find_by_reference(reference), "look up transfer reference"
            )
            if existing is not None:
                raise DuplicateReference(reference)

            debited = sender.with_balance(sender.balance - value)
            credited = receiver.with_balance(receiver.balance + value)
            entry = build_ledger_entry(sender, receiver, value, reference)

            await _run_to_completion(self._persist(uow, debited, credited, entry))

        return TransferReceipt(
            transaction_id=entry.transaction_id,
            reference=entry.reference,
            sender_account=debited.account_number,
            receiver_account=credited.account_number,
            amount=value,
            sender_balance=debited.balance,
            receiver_balance=credited.balance,
            created_at=entry.created_at,
        )

    async def _persist(
        self,
        uow: LedgerUnitOfWork,
        sender: AccountSnapshot,
        receiver: AccountSnapshot,
        entry: LedgerEntry,
    ) -> None:
        await self._bounded(uow.accounts.save(sender), "save sender account")
        await self._bounded(uow.accounts.save(receiver), "save receiver account")
        await self._bounded(uow.transactions.append(entry), "append transaction record")

        # Nothing is visible before this point; a failure past it is in doubt.
        try:
            await self._bounded(uow.commit(), "commit transfer")
        except PersistenceFailure as exc:
            raise PersistenceFailure(
                exc.operation, exc.reason, in_doubt=True, reference=entry.reference
            ) from exc

    async def _bounded(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise PersistenceFailure(operation, f"timed out after {self._timeout}s") from exc
