from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..ledger.accounts import find_transfer, get_account, list_account_transactions, open_account
from ..ledger.errors import LedgerError
from ..logging_config import get_logger
from .deps import get_uow_factory, http_error
from .schemas import AccountCreate, AccountOut, TransactionOut
from .serializers import serialize_account, serialize_entry

logger = get_logger("credit_ledger.api.accounts")

router = APIRouter(tags=["accounts"])


@router.post("/accounts", response_model=AccountOut, status_code=201)
async def create_account(payload: AccountCreate, uow_factory=Depends(get_uow_factory)):
    """
    Open an account with an initial balance.
    """
    try:
        account = await open_account(
            uow_factory,
            initial_balance=payload.initial_balance,
            account_number=payload.account_number,
        )
    except LedgerError as exc:
        logger.warning("Account creation refused account_number=%s: %s", payload.account_number, exc)
        raise http_error(exc)
    return serialize_account(account)


@router.get("/accounts/{account_number}", response_model=AccountOut)
async def read_account(account_number: str, uow_factory=Depends(get_uow_factory)):
    """
    Fetch a single account by account_number.
    """
    logger.info("Lookup account_number=%s", account_number)
    try:
        account = await get_account(uow_factory, account_number)
    except LedgerError as exc:
        logger.warning("Account lookup failed account_number=%s: %s", account_number, exc)
        raise http_error(exc)
    return serialize_account(account)


@router.get("/accounts/{account_number}/transactions", response_model=List[TransactionOut])
async def read_account_transactions(
    account_number: str,
    limit: int = Query(20, ge=1, le=200),
    uow_factory=Depends(get_uow_factory),
):
    """
    Return recent transfers where the account is sender or receiver.
    """
    logger.info("Fetching transactions for account_number=%s limit=%s", account_number, limit)
    try:
        _, entries = await list_account_transactions(uow_factory, account_number, limit=limit)
    except LedgerError as exc:
        raise http_error(exc)
    return [serialize_entry(e) for e in entries]


@router.get("/transactions/{reference}", response_model=TransactionOut)
async def read_transaction(reference: str, uow_factory=Depends(get_uow_factory)):
    try:
        entry = await find_transfer(uow_factory, reference)
    except LedgerError as exc:
        raise http_error(exc)
    if entry is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return serialize_entry(entry)
