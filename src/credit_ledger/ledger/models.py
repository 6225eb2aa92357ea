from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal


CENT = Decimal("0.01")


@dataclass(frozen=True)
class AccountSnapshot:
    """
    Balance-holding account as read from a store at a given version.

    Snapshots are immutable; a balance change produces a new snapshot that
    still carries the version it was read at, so the store can reject the
    save if someone else committed in between.
    """

    id: str
    account_number: str
    balance: Decimal
    version: int = 0

    def __post_init__(self) -> None:
        if self.balance < 0:
            raise ValueError(f"Account {self.account_number} balance cannot be negative: {self.balance}")

    def with_balance(self, balance: Decimal) -> "AccountSnapshot":
        return replace(self, balance=balance.quantize(CENT))


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable record of one completed transfer."""

    transaction_id: str
    reference: str
    sender_id: str
    receiver_id: str
    amount: Decimal
    created_at: datetime
    status: str = "completed"


@dataclass(frozen=True)
class TransferReceipt:
    transaction_id: str
    reference: str
    sender_account: str
    receiver_account: str
    amount: Decimal
    sender_balance: Decimal
    receiver_balance: Decimal
    created_at: datetime
