from sqlalchemy import DECIMAL, TIMESTAMP, CheckConstraint, Column, ForeignKey, Integer, String

from .session import Base


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    account_id = Column(String(36), primary_key=True)
    account_number = Column(String(20), unique=True, nullable=False, index=True)
    balance = Column(DECIMAL(15, 2), nullable=False, default=0)
    # Bumped on every balance write; saves compare against it.
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id = Column(String(36), primary_key=True)
    transaction_reference = Column(String(50), nullable=False, unique=True, index=True)
    sender_account_id = Column(String(36), ForeignKey("accounts.account_id"), nullable=False, index=True)
    receiver_account_id = Column(String(36), ForeignKey("accounts.account_id"), nullable=False, index=True)
    amount = Column(DECIMAL(15, 2), nullable=False)
    status = Column(String(20), nullable=False, default="completed")
    created_at = Column(TIMESTAMP(timezone=True))
