from typing import Any, Dict

from ..ledger.errors import LedgerError, PersistenceFailure
from ..ledger.models import AccountSnapshot, LedgerEntry, TransferReceipt


def serialize_account(a: AccountSnapshot) -> Dict[str, Any]:
    return {
        "account_id": a.id,
        "account_number": a.account_number,
        "balance": float(a.balance),
        "version": a.version,
    }


def serialize_entry(e: LedgerEntry) -> Dict[str, Any]:
    return {
        "transaction_id": e.transaction_id,
        "transaction_reference": e.reference,
        "sender_account_id": e.sender_id,
        "receiver_account_id": e.receiver_id,
        "amount": float(e.amount),
        "status": e.status,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def serialize_receipt(r: TransferReceipt) -> Dict[str, Any]:
    return {
        "status": "success",
        "message": "Transfer successful",
        "transaction_reference": r.reference,
        "txn_id": r.transaction_id,
        "amount": float(r.amount),
        "sender_balance": float(r.sender_balance),
        "receiver_balance": float(r.receiver_balance),
    }


def serialize_error(exc: LedgerError) -> Dict[str, Any]:
    detail = {
        "error": exc.code,
        "message": str(exc),
        "retryable": exc.retryable,
    }
    if isinstance(exc, PersistenceFailure):
        detail["in_doubt"] = exc.in_doubt
        detail["reference"] = exc.reference
    return detail
