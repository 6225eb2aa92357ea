from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class AccountCreate(BaseModel):
    account_number: Optional[str] = Field(None, max_length=20, examples=["ACC000001"])
    initial_balance: Decimal = Field(Decimal("0"), examples=[1000.00])


class AccountOut(BaseModel):
    account_id: str
    account_number: str
    balance: float
    version: int


class TransactionOut(BaseModel):
    transaction_id: str
    transaction_reference: str
    sender_account_id: str
    receiver_account_id: str
    amount: float
    status: str
    created_at: Optional[str] = None


class TransferIn(BaseModel):
    sender_account: str = Field(..., examples=["ACC000001"])
    receiver_account: str = Field(..., examples=["ACC000002"])
    # Range, precision and finiteness are checked by the engine.
    amount: Decimal = Field(..., allow_inf_nan=True, examples=[100.00])
    reference: Optional[str] = Field(None, max_length=50)


class TransferOut(BaseModel):
    status: str
    message: str
    transaction_reference: str
    txn_id: str
    amount: float
    sender_balance: float
    receiver_balance: float
