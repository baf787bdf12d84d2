from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from balances import BalanceSource
from models import TransactionKind, TransactionType
from periods import MAX_YEAR, MIN_YEAR


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    current_balance: int = 0
    sort_order: Optional[int] = Field(default=None, ge=0)


class AccountOrderIn(BaseModel):
    account_ids: list[int] = Field(..., min_length=1)


class OneTimeTransactionIn(BaseModel):
    account_id: int
    name: str = Field(..., min_length=1, max_length=120)
    amount: int = Field(..., ge=0)
    type: TransactionType
    transaction_date: date
    description: Optional[str] = Field(default=None, max_length=500)


class OneTimeTransactionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount: Optional[int] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    transaction_date: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=500)


class TransferIn(BaseModel):
    source_account_id: int
    destination_account_id: int
    name: str = Field(..., min_length=1, max_length=120)
    amount: int = Field(..., ge=0)
    transaction_date: date
    description: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _distinct_accounts(self) -> "TransferIn":
        if self.source_account_id == self.destination_account_id:
            raise ValueError("Source and destination accounts must differ")
        return self


class RecurringTransactionIn(BaseModel):
    account_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=120)
    default_amount: int = Field(..., ge=0)
    type: TransactionType
    day_of_month: int = Field(..., ge=1, le=31)
    description: Optional[str] = Field(default=None, max_length=500)


class RecurringTransferIn(BaseModel):
    source_account_id: int
    destination_account_id: int
    name: str = Field(..., min_length=1, max_length=120)
    default_amount: int = Field(..., ge=0)
    day_of_month: int = Field(..., ge=1, le=31)
    description: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _distinct_accounts(self) -> "RecurringTransferIn":
        if self.source_account_id == self.destination_account_id:
            raise ValueError("Source and destination accounts must differ")
        return self


class YearMonthIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    year: int = Field(..., ge=MIN_YEAR, le=MAX_YEAR)
    month: int = Field(..., ge=1, le=12)


class RecurringAmountIn(YearMonthIn):
    amount: int = Field(..., ge=0)


class RecurringBulkAmountIn(BaseModel):
    start_year: int = Field(..., ge=MIN_YEAR, le=MAX_YEAR)
    start_month: int = Field(..., ge=1, le=12)
    end_year: int = Field(..., ge=MIN_YEAR, le=MAX_YEAR)
    end_month: int = Field(..., ge=1, le=12)
    amount: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "RecurringBulkAmountIn":
        if (self.start_year, self.start_month) > (self.end_year, self.end_month):
            raise ValueError("Start month must not be after end month")
        return self


class OpeningBalanceIn(YearMonthIn):
    balance: int


class SummaryTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: TransactionKind
    id: int
    name: str
    type: TransactionType
    amount: int
    date: date
    description: Optional[str]
    transfer_pair_id: Optional[str]
    running_balance: int


class AccountSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    income: int
    expense: int
    net_change: int
    opening_balance: int
    opening_balance_source: BalanceSource
    end_of_month_balance: int
    transactions: list[SummaryTransactionOut]


class MonthlySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year: int
    month: int
    total_income: int
    total_expense: int
    net_balance: int
    total_opening_balance: int
    total_end_of_month_balance: int
    accounts: list[AccountSummaryOut]


class SavingsPredictionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: str
    months: int
    date: date
    amount: int
    accounts: dict[int, int]
