from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import (
    OneTimeTransaction,
    RecurringTransaction,
    TransactionKind,
    TransactionType,
)
from periods import YearMonth
from recurrence import effective_amount, occurrence_date, overrides_for_month


class SignedAmount(Protocol):
    type: TransactionType
    amount: int


@dataclass(frozen=True)
class LedgerEntry:
    kind: TransactionKind
    id: int
    account_id: Optional[int]
    name: str
    type: TransactionType
    amount: int
    date: date
    description: Optional[str] = None
    transfer_pair_id: Optional[str] = None

    @property
    def signed_amount(self) -> int:
        if self.type == TransactionType.income:
            return self.amount
        return -self.amount

    def sort_key(self) -> tuple[date, int, int]:
        kind_rank = 0 if self.kind == TransactionKind.recurring else 1
        return (self.date, kind_rank, self.id)


@dataclass
class MonthLedger:
    month: YearMonth
    one_time: list[LedgerEntry] = field(default_factory=list)
    recurring: list[LedgerEntry] = field(default_factory=list)

    def entries(self) -> list[LedgerEntry]:
        """All entries in the order they hit the balance."""
        return sorted(self.one_time + self.recurring, key=LedgerEntry.sort_key)


def compute_net_change(transactions: Iterable[SignedAmount]) -> int:
    total = 0
    for txn in transactions:
        amount = int(txn.amount)
        if txn.type == TransactionType.income:
            total += amount
        else:
            total -= amount
    return total


def income_and_expense(transactions: Iterable[SignedAmount]) -> tuple[int, int]:
    income = 0
    expense = 0
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += int(txn.amount)
        else:
            expense += int(txn.amount)
    return income, expense


def _one_time_entry(txn: OneTimeTransaction) -> LedgerEntry:
    return LedgerEntry(
        kind=TransactionKind.one_time,
        id=txn.id,
        account_id=txn.account_id,
        name=txn.name,
        type=txn.type,
        amount=int(txn.amount),
        date=txn.transaction_date,
        description=txn.description,
        transfer_pair_id=txn.transfer_pair_id,
    )


def _recurring_entry(
    rule: RecurringTransaction, ym: YearMonth, overrides: dict[int, int]
) -> LedgerEntry:
    return LedgerEntry(
        kind=TransactionKind.recurring,
        id=rule.id,
        account_id=rule.account_id,
        name=rule.name,
        type=rule.type,
        amount=effective_amount(rule, overrides),
        date=occurrence_date(rule, ym),
        description=rule.description,
        transfer_pair_id=rule.transfer_pair_id,
    )


class LedgerReader:
    """Read-only view of what moves an account's balance in a given month."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def transactions_for_account_and_month(
        self, account_id: int, year: int, month: int
    ) -> MonthLedger:
        ym = YearMonth(year, month)
        one_time = self.session.scalars(
            select(OneTimeTransaction)
            .where(
                OneTimeTransaction.user_id == self.user_id,
                OneTimeTransaction.account_id == account_id,
                OneTimeTransaction.transaction_date.between(ym.start, ym.end),
            )
            .order_by(OneTimeTransaction.transaction_date, OneTimeTransaction.id)
        ).all()
        rules = self.session.scalars(
            select(RecurringTransaction)
            .where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.account_id == account_id,
            )
            .order_by(RecurringTransaction.day_of_month, RecurringTransaction.id)
        ).all()
        overrides = overrides_for_month(self.session, (r.id for r in rules), ym)
        return MonthLedger(
            month=ym,
            one_time=[_one_time_entry(t) for t in one_time],
            recurring=[_recurring_entry(r, ym, overrides) for r in rules],
        )

    def transactions_for_month(self, year: int, month: int) -> dict[int, MonthLedger]:
        """Ledgers for every account of the user, keyed by account id.

        Recurring items without an account are left out.
        """
        ym = YearMonth(year, month)
        ledgers: dict[int, MonthLedger] = defaultdict(lambda: MonthLedger(month=ym))

        one_time = self.session.scalars(
            select(OneTimeTransaction)
            .where(
                OneTimeTransaction.user_id == self.user_id,
                OneTimeTransaction.transaction_date.between(ym.start, ym.end),
            )
            .order_by(OneTimeTransaction.transaction_date, OneTimeTransaction.id)
        ).all()
        for txn in one_time:
            ledgers[txn.account_id].one_time.append(_one_time_entry(txn))

        rules = self.session.scalars(
            select(RecurringTransaction)
            .where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.account_id.isnot(None),
            )
            .order_by(RecurringTransaction.day_of_month, RecurringTransaction.id)
        ).all()
        overrides = overrides_for_month(self.session, (r.id for r in rules), ym)
        for rule in rules:
            ledgers[rule.account_id].recurring.append(
                _recurring_entry(rule, ym, overrides)
            )
        return dict(ledgers)

    def net_change_for_account_and_month(
        self, account_id: int, year: int, month: int
    ) -> int:
        ledger = self.transactions_for_account_and_month(account_id, year, month)
        return compute_net_change(ledger.one_time) + compute_net_change(
            ledger.recurring
        )
