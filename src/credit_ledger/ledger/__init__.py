from .engine import TransferEngine, build_ledger_entry, normalize_amount, resolve_account
from .errors import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateAccount,
    DuplicateReference,
    InsufficientCredit,
    InvalidAmount,
    LedgerError,
    LedgerFailure,
    PersistenceFailure,
    SameAccountTransfer,
    TransferRejected,
)
from .locks import AccountLocks
from .memory import InMemoryLedger
from .models import AccountSnapshot, LedgerEntry, TransferReceipt
