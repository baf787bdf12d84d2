from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionKind(str, Enum):
    one_time = "one_time"
    recurring = "recurring"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    current_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    one_time_transactions: Mapped[list["OneTimeTransaction"]] = relationship(
        "OneTimeTransaction",
        back_populates="account",
        cascade="all, delete-orphan",
    )
    recurring_transactions: Mapped[list["RecurringTransaction"]] = relationship(
        "RecurringTransaction",
        back_populates="account",
        cascade="all, delete-orphan",
    )
    monthly_balances: Mapped[list["MonthlyAccountBalance"]] = relationship(
        "MonthlyAccountBalance",
        back_populates="account",
        cascade="all, delete-orphan",
    )
    processed_transactions: Mapped[list["ProcessedTransaction"]] = relationship(
        "ProcessedTransaction",
        back_populates="account",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_accounts_user_sort", "user_id", "sort_order"),)


class OneTimeTransaction(Base, TimestampMixin):
    __tablename__ = "one_time_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    transfer_pair_id: Mapped[Optional[str]] = mapped_column(String(32))

    account: Mapped["Account"] = relationship(
        "Account", back_populates="one_time_transactions"
    )

    __table_args__ = (
        Index("ix_one_time_account_date", "account_id", "transaction_date"),
        Index("ix_one_time_user_date", "user_id", "transaction_date"),
        Index("ix_one_time_transfer_pair", "transfer_pair_id"),
        CheckConstraint("amount >= 0", name="ck_one_time_amount_positive"),
    )


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Null for obligations not tied to an account.
    account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    default_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    transfer_pair_id: Mapped[Optional[str]] = mapped_column(String(32))

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="recurring_transactions"
    )
    amounts: Mapped[list["RecurringTransactionAmount"]] = relationship(
        "RecurringTransactionAmount",
        back_populates="recurring_transaction",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_recurring_account_day", "account_id", "day_of_month"),
        CheckConstraint("default_amount >= 0", name="ck_recurring_amount_positive"),
        CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_recurring_day_of_month"
        ),
    )


class RecurringTransactionAmount(Base, TimestampMixin):
    __tablename__ = "recurring_transaction_amounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recurring_transaction_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_transactions.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    recurring_transaction: Mapped["RecurringTransaction"] = relationship(
        "RecurringTransaction", back_populates="amounts"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_transaction_id",
            "year",
            "month",
            name="uq_recurring_amount_month",
        ),
        CheckConstraint("amount >= 0", name="ck_recurring_override_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_recurring_override_month"),
    )


class MonthlyAccountBalance(Base, TimestampMixin):
    """Opening balance of an account at the first instant of (year, month)."""

    __tablename__ = "monthly_account_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False)

    account: Mapped["Account"] = relationship(
        "Account", back_populates="monthly_balances"
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "year", "month", name="uq_monthly_balance_account_month"
        ),
        Index("ix_monthly_balance_user_month", "user_id", "year", "month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_balance_month"),
    )


class ProcessedTransaction(Base, TimestampMixin):
    """Marks a transaction as already applied to an account's live balance.

    One-time transactions are applied once, so ``year``/``month`` stay null.
    Recurring transactions are applied once per calendar month.
    """

    __tablename__ = "processed_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    transaction_kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind), nullable=False
    )
    transaction_id: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[Optional[int]] = mapped_column(Integer)
    month: Mapped[Optional[int]] = mapped_column(Integer)

    account: Mapped["Account"] = relationship(
        "Account", back_populates="processed_transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "transaction_kind",
            "transaction_id",
            "year",
            "month",
            name="uq_processed_txn",
        ),
    )
