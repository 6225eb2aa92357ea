"""
Error taxonomy for ledger operations.

Two families are kept apart so callers can tell them apart:

- TransferRejected: the request itself was refused. Nothing was written.
- LedgerFailure: storage misbehaved or a race was lost. The request may be
  retried; when `in_doubt` is set on a PersistenceFailure the outcome is
  unknown and must be checked against the transaction log by reference.
"""

from decimal import Decimal
from typing import Any, Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""

    code = "ledger_error"
    retryable = False


class TransferRejected(LedgerError):
    """The request was refused during validation; state is untouched."""

    code = "rejected"


class LedgerFailure(LedgerError):
    """The request could not be carried out by the storage layer."""

    code = "failure"
    retryable = True


class AccountNotFound(TransferRejected):
    code = "account_not_found"

    def __init__(self, account_number: str, role: str = "account"):
        self.account_number = account_number
        self.role = role
        super().__init__(f"{role.capitalize()} not found: {account_number!r}")


class InvalidAmount(TransferRejected):
    code = "invalid_amount"

    def __init__(self, amount: Any, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class SameAccountTransfer(TransferRejected):
    code = "same_account"

    def __init__(self, account_number: str):
        self.account_number = account_number
        super().__init__(f"Sender and receiver are the same account: {account_number!r}")


class InsufficientCredit(TransferRejected):
    code = "insufficient_credit"

    def __init__(self, account_number: str, requested: Decimal, available: Decimal):
        self.account_number = account_number
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient credit: account {account_number} requested {requested}, available {available}"
        )


class DuplicateAccount(TransferRejected):
    code = "duplicate_account"

    def __init__(self, account_number: str):
        self.account_number = account_number
        super().__init__(f"Account number already exists: {account_number!r}")


class DuplicateReference(TransferRejected):
    code = "duplicate_reference"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transfer reference already used: {reference!r}")


class PersistenceFailure(LedgerFailure):
    code = "persistence_failure"

    def __init__(
        self,
        operation: str,
        reason: str = "",
        in_doubt: bool = False,
        reference: Optional[str] = None,
    ):
        self.operation = operation
        self.reason = reason
        self.in_doubt = in_doubt
        self.reference = reference
        message = f"Failed to {operation}"
        if reason:
            message = f"{message}: {reason}"
        if in_doubt:
            message = f"{message} (outcome unknown, check reference {reference})"
        super().__init__(message)


class ConcurrencyConflict(LedgerFailure):
    code = "concurrency_conflict"

    def __init__(self, account_number: str):
        self.account_number = account_number
        super().__init__(f"Account {account_number} was modified concurrently")
