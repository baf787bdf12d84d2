from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from balances import (
    BalanceSource,
    CarryForwardLimitExceeded,
    CarryForwardResolver,
    MonthlyBalanceRecorder,
    OpeningBalance,
    RecordResult,
    SnapshotInvalidator,
    SnapshotStore,
)
from config import Settings, get_settings
from ledger import (
    LedgerEntry,
    LedgerReader,
    MonthLedger,
    compute_net_change,
    income_and_expense,
)
from models import (
    Account,
    MonthlyAccountBalance,
    OneTimeTransaction,
    ProcessedTransaction,
    RecurringTransaction,
    RecurringTransactionAmount,
    TransactionKind,
    TransactionType,
)
from periods import YearMonth
from recurrence import (
    effective_amount,
    local_today,
    occurrence_date,
    override_for_month,
    overrides_for_month,
)
from schemas import (
    AccountIn,
    OneTimeTransactionIn,
    OneTimeTransactionUpdate,
    RecurringBulkAmountIn,
    RecurringTransactionIn,
    RecurringTransferIn,
    TransferIn,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


def new_transfer_pair_id() -> str:
    return uuid.uuid4().hex


class NotFoundError(ValueError):
    pass


class AccountNotFound(NotFoundError):
    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class TransactionNotFound(NotFoundError):
    def __init__(self, transaction_id: int) -> None:
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.sort_order, Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def find(self, account_id: int) -> Optional[Account]:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            return None
        return account

    def get(self, account_id: int) -> Account:
        account = self.find(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def create(self, data: AccountIn) -> Account:
        sort_order = data.sort_order
        if sort_order is None:
            current_max = self.session.execute(
                select(func.max(Account.sort_order)).where(
                    Account.user_id == self.user_id
                )
            ).scalar_one()
            sort_order = 0 if current_max is None else int(current_max) + 1
        account = Account(
            user_id=self.user_id,
            name=data.name,
            current_balance=data.current_balance,
            sort_order=sort_order,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name
        account.current_balance = data.current_balance
        if data.sort_order is not None:
            account.sort_order = data.sort_order
        self.session.commit()
        self.session.refresh(account)
        return account

    def update_balance(self, account_id: int, new_balance: int) -> Account:
        account = self.get(account_id)
        account.current_balance = new_balance
        self.session.commit()
        self.session.refresh(account)
        return account

    def reorder(self, account_ids: list[int]) -> None:
        accounts = {a.id: a for a in self.list_all()}
        unknown = [i for i in account_ids if i not in accounts]
        if unknown:
            raise AccountNotFound(unknown[0])
        for position, account_id in enumerate(account_ids):
            accounts[account_id].sort_order = position
        self.session.commit()

    def _delete_counterparts(self, model, account_id: int, kind: TransactionKind) -> list:
        pair_ids = self.session.scalars(
            select(model.transfer_pair_id).where(
                model.user_id == self.user_id,
                model.account_id == account_id,
                model.transfer_pair_id.isnot(None),
            )
        ).all()
        if not pair_ids:
            return []
        counterparts = self.session.scalars(
            select(model).where(
                model.user_id == self.user_id,
                model.transfer_pair_id.in_(set(pair_ids)),
                model.account_id != account_id,
            )
        ).all()
        if counterparts:
            self.session.execute(
                delete(ProcessedTransaction).where(
                    ProcessedTransaction.user_id == self.user_id,
                    ProcessedTransaction.transaction_kind == kind,
                    ProcessedTransaction.transaction_id.in_(
                        [c.id for c in counterparts]
                    ),
                )
            )
        for counterpart in counterparts:
            self.session.delete(counterpart)
        return counterparts

    def delete(self, account_id: int, *, today: Optional[date] = None) -> None:
        """Delete an account with its entries and the other legs of its transfers.

        Snapshots of the remaining accounts are dropped from the earliest month
        the deleted entries touched.
        """
        account = self.get(account_id)
        dates = set(
            self.session.scalars(
                select(OneTimeTransaction.transaction_date).where(
                    OneTimeTransaction.user_id == self.user_id,
                    OneTimeTransaction.account_id == account.id,
                )
            ).all()
        )
        has_recurring = (
            self.session.scalar(
                select(func.count(RecurringTransaction.id)).where(
                    RecurringTransaction.user_id == self.user_id,
                    RecurringTransaction.account_id == account.id,
                )
            )
            or 0
        ) > 0

        one_time_legs = self._delete_counterparts(
            OneTimeTransaction, account.id, TransactionKind.one_time
        )
        recurring_legs = self._delete_counterparts(
            RecurringTransaction, account.id, TransactionKind.recurring
        )
        self.session.delete(account)
        self.session.flush()

        if has_recurring:
            dates.add(today or local_today())
        if dates:
            SnapshotInvalidator(self.session, self.user_id).invalidate_for_dates(*dates)
        self.session.commit()
        logger.info(
            f"account_deleted: account_id={account_id} "
            f"transfer_legs={len(one_time_legs) + len(recurring_legs)}"
        )


class OneTimeTransactionService:
    """One-time entries and inter-account transfers.

    Both legs of a transfer share a ``transfer_pair_id``. Editing either leg
    updates both, and deleting either leg deletes both. Every mutation drops
    the snapshots that were derived from the affected months.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.accounts = AccountService(session, self.user_id)
        self.invalidator = SnapshotInvalidator(session, self.user_id)

    def get(self, transaction_id: int) -> OneTimeTransaction:
        txn = self.session.get(OneTimeTransaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise TransactionNotFound(transaction_id)
        return txn

    def list(
        self,
        account_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[OneTimeTransaction]:
        stmt = (
            select(OneTimeTransaction)
            .where(OneTimeTransaction.user_id == self.user_id)
            .order_by(
                OneTimeTransaction.transaction_date.desc(),
                OneTimeTransaction.id.desc(),
            )
        )
        if account_id is not None:
            stmt = stmt.where(OneTimeTransaction.account_id == account_id)
        if start is not None:
            stmt = stmt.where(OneTimeTransaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(OneTimeTransaction.transaction_date <= end)
        return self.session.scalars(stmt).all()

    def pair_of(self, txn: OneTimeTransaction) -> list[OneTimeTransaction]:
        if not txn.transfer_pair_id:
            return [txn]
        stmt = (
            select(OneTimeTransaction)
            .where(
                OneTimeTransaction.user_id == self.user_id,
                OneTimeTransaction.transfer_pair_id == txn.transfer_pair_id,
            )
            .order_by(OneTimeTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: OneTimeTransactionIn) -> OneTimeTransaction:
        self.accounts.get(data.account_id)
        txn = OneTimeTransaction(
            user_id=self.user_id,
            account_id=data.account_id,
            name=data.name,
            amount=data.amount,
            type=data.type,
            transaction_date=data.transaction_date,
            description=data.description,
        )
        self.session.add(txn)
        self.session.flush()
        self.invalidator.invalidate_for_dates(txn.transaction_date)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def create_transfer(
        self, data: TransferIn
    ) -> tuple[OneTimeTransaction, OneTimeTransaction]:
        source = self.accounts.get(data.source_account_id)
        destination = self.accounts.get(data.destination_account_id)
        pair_id = new_transfer_pair_id()
        outgoing = OneTimeTransaction(
            user_id=self.user_id,
            account_id=source.id,
            name=data.name,
            amount=data.amount,
            type=TransactionType.expense,
            transaction_date=data.transaction_date,
            description=data.description,
            transfer_pair_id=pair_id,
        )
        incoming = OneTimeTransaction(
            user_id=self.user_id,
            account_id=destination.id,
            name=data.name,
            amount=data.amount,
            type=TransactionType.income,
            transaction_date=data.transaction_date,
            description=data.description,
            transfer_pair_id=pair_id,
        )
        self.session.add_all([outgoing, incoming])
        self.session.flush()
        self.invalidator.invalidate_for_dates(data.transaction_date)
        self.session.commit()
        self.session.refresh(outgoing)
        self.session.refresh(incoming)
        logger.info(
            f"transfer_created: pair={pair_id} source={source.id} "
            f"destination={destination.id} amount={data.amount}"
        )
        return outgoing, incoming

    def update(
        self, transaction_id: int, data: OneTimeTransactionUpdate
    ) -> OneTimeTransaction:
        txn = self.get(transaction_id)
        legs = self.pair_of(txn)
        touched_dates = {leg.transaction_date for leg in legs}

        if data.type is not None and txn.transfer_pair_id and data.type != txn.type:
            raise ValueError("Cannot change the direction of a transfer leg")

        for leg in legs:
            if data.name is not None:
                leg.name = data.name
            if data.amount is not None:
                leg.amount = data.amount
            if data.transaction_date is not None:
                leg.transaction_date = data.transaction_date
            if data.description is not None:
                leg.description = data.description or None
        if data.type is not None and not txn.transfer_pair_id:
            txn.type = data.type

        self.session.flush()
        touched_dates.update(leg.transaction_date for leg in legs)
        self.invalidator.invalidate_for_dates(*touched_dates)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> int:
        """Delete a transaction, and its transfer counterpart if it has one.

        Returns the number of rows removed.
        """
        txn = self.get(transaction_id)
        legs = self.pair_of(txn)
        dates = [leg.transaction_date for leg in legs]
        ids = [leg.id for leg in legs]
        self.session.execute(
            delete(ProcessedTransaction).where(
                ProcessedTransaction.user_id == self.user_id,
                ProcessedTransaction.transaction_kind == TransactionKind.one_time,
                ProcessedTransaction.transaction_id.in_(ids),
            )
        )
        for leg in legs:
            self.session.delete(leg)
        self.session.flush()
        self.invalidator.invalidate_for_dates(*dates)
        self.session.commit()
        if len(legs) > 1:
            logger.info(
                f"transfer_deleted: pair={txn.transfer_pair_id} legs={len(legs)}"
            )
        return len(legs)


class RecurringTransactionService:
    """Monthly recurring entries and their per-month amount overrides.

    Changing a rule's default amount only affects months that are not yet
    backed by a snapshot, so snapshots after the current month are dropped.
    An override for a specific month drops every snapshot after that month.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.accounts = AccountService(session, self.user_id)
        self.invalidator = SnapshotInvalidator(session, self.user_id)

    def get(self, rule_id: int) -> RecurringTransaction:
        rule = self.session.get(RecurringTransaction, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise TransactionNotFound(rule_id)
        return rule

    def list(self, account_id: Optional[int] = None) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.day_of_month, RecurringTransaction.id)
        )
        if account_id is not None:
            stmt = stmt.where(RecurringTransaction.account_id == account_id)
        return self.session.scalars(stmt).all()

    def pair_of(self, rule: RecurringTransaction) -> list[RecurringTransaction]:
        if not rule.transfer_pair_id:
            return [rule]
        stmt = (
            select(RecurringTransaction)
            .where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.transfer_pair_id == rule.transfer_pair_id,
            )
            .order_by(RecurringTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def _invalidate_projections(self, today: Optional[date]) -> None:
        current = YearMonth.from_date(today or local_today())
        self.invalidator.invalidate_from(current.year, current.month)

    def create(
        self, data: RecurringTransactionIn, *, today: Optional[date] = None
    ) -> RecurringTransaction:
        if data.account_id is not None:
            self.accounts.get(data.account_id)
        rule = RecurringTransaction(
            user_id=self.user_id,
            account_id=data.account_id,
            name=data.name,
            default_amount=data.default_amount,
            type=data.type,
            day_of_month=data.day_of_month,
            description=data.description,
        )
        self.session.add(rule)
        self.session.flush()
        self._invalidate_projections(today)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def create_transfer(
        self, data: RecurringTransferIn, *, today: Optional[date] = None
    ) -> tuple[RecurringTransaction, RecurringTransaction]:
        source = self.accounts.get(data.source_account_id)
        destination = self.accounts.get(data.destination_account_id)
        pair_id = new_transfer_pair_id()
        legs = []
        for account, txn_type in (
            (source, TransactionType.expense),
            (destination, TransactionType.income),
        ):
            legs.append(
                RecurringTransaction(
                    user_id=self.user_id,
                    account_id=account.id,
                    name=data.name,
                    default_amount=data.default_amount,
                    type=txn_type,
                    day_of_month=data.day_of_month,
                    description=data.description,
                    transfer_pair_id=pair_id,
                )
            )
        self.session.add_all(legs)
        self.session.flush()
        self._invalidate_projections(today)
        self.session.commit()
        for leg in legs:
            self.session.refresh(leg)
        return legs[0], legs[1]

    def update(
        self,
        rule_id: int,
        data: RecurringTransactionIn,
        *,
        today: Optional[date] = None,
    ) -> RecurringTransaction:
        rule = self.get(rule_id)
        if rule.transfer_pair_id:
            if data.type != rule.type:
                raise ValueError("Cannot change the direction of a transfer leg")
            if data.account_id != rule.account_id:
                raise ValueError("Cannot move a transfer leg to another account")
        elif data.account_id is not None and data.account_id != rule.account_id:
            self.accounts.get(data.account_id)

        for leg in self.pair_of(rule):
            leg.name = data.name
            leg.default_amount = data.default_amount
            leg.day_of_month = data.day_of_month
            leg.description = data.description
        if not rule.transfer_pair_id:
            rule.account_id = data.account_id
            rule.type = data.type
        self.session.flush()
        self._invalidate_projections(today)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int, *, today: Optional[date] = None) -> int:
        rule = self.get(rule_id)
        legs = self.pair_of(rule)
        self.session.execute(
            delete(ProcessedTransaction).where(
                ProcessedTransaction.user_id == self.user_id,
                ProcessedTransaction.transaction_kind == TransactionKind.recurring,
                ProcessedTransaction.transaction_id.in_([leg.id for leg in legs]),
            )
        )
        for leg in legs:
            self.session.delete(leg)
        self.session.flush()
        self._invalidate_projections(today)
        self.session.commit()
        return len(legs)

    def amount_override(self, rule_id: int, year: int, month: int) -> Optional[int]:
        self.get(rule_id)
        return override_for_month(self.session, rule_id, YearMonth(year, month))

    def amount_for_month(self, rule_id: int, year: int, month: int) -> int:
        rule = self.get(rule_id)
        ym = YearMonth(year, month)
        return effective_amount(rule, overrides_for_month(self.session, [rule.id], ym))

    def monthly_amounts(
        self, rule_id: int, start: YearMonth, end: YearMonth
    ) -> list[tuple[YearMonth, int]]:
        rule = self.get(rule_id)
        rows = self.session.scalars(
            select(RecurringTransactionAmount).where(
                RecurringTransactionAmount.recurring_transaction_id == rule.id,
                RecurringTransactionAmount.year.between(start.year, end.year),
            )
        ).all()
        overrides = {YearMonth(r.year, r.month): int(r.amount) for r in rows}
        months = list(start.iter_through(end))
        return [(ym, overrides.get(ym, rule.default_amount)) for ym in months]

    def _set_override(self, rule: RecurringTransaction, ym: YearMonth, amount: int) -> None:
        existing = self.session.scalar(
            select(RecurringTransactionAmount).where(
                RecurringTransactionAmount.recurring_transaction_id == rule.id,
                RecurringTransactionAmount.year == ym.year,
                RecurringTransactionAmount.month == ym.month,
            )
        )
        if existing:
            existing.amount = amount
        else:
            self.session.add(
                RecurringTransactionAmount(
                    recurring_transaction_id=rule.id,
                    year=ym.year,
                    month=ym.month,
                    amount=amount,
                )
            )

    def set_amount_for_month(
        self, rule_id: int, year: int, month: int, amount: int
    ) -> None:
        if amount < 0:
            raise ValueError("Amount must not be negative")
        rule = self.get(rule_id)
        ym = YearMonth(year, month)
        for leg in self.pair_of(rule):
            self._set_override(leg, ym, amount)
        self.session.flush()
        self.invalidator.invalidate_from(ym.year, ym.month)
        self.session.commit()

    def set_bulk_amounts(self, rule_id: int, data: RecurringBulkAmountIn) -> int:
        rule = self.get(rule_id)
        start = YearMonth(data.start_year, data.start_month)
        end = YearMonth(data.end_year, data.end_month)
        legs = self.pair_of(rule)
        count = 0
        for ym in start.iter_through(end):
            for leg in legs:
                self._set_override(leg, ym, data.amount)
            count += 1
        self.session.flush()
        self.invalidator.invalidate_from(start.year, start.month)
        self.session.commit()
        return count

    def clear_amount_for_month(self, rule_id: int, year: int, month: int) -> None:
        rule = self.get(rule_id)
        ym = YearMonth(year, month)
        self.session.execute(
            delete(RecurringTransactionAmount).where(
                RecurringTransactionAmount.recurring_transaction_id.in_(
                    [leg.id for leg in self.pair_of(rule)]
                ),
                RecurringTransactionAmount.year == ym.year,
                RecurringTransactionAmount.month == ym.month,
            )
        )
        self.invalidator.invalidate_from(ym.year, ym.month)
        self.session.commit()


class MonthlyBalanceService:
    """Entry points for the opening-balance snapshots."""

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = settings or get_settings()
        self.store = SnapshotStore(session, self.user_id)
        self.invalidator = SnapshotInvalidator(session, self.user_id)

    def list_for_account(self, account_id: int) -> list[MonthlyAccountBalance]:
        AccountService(self.session, self.user_id).get(account_id)
        return self.store.list_for_account(account_id)

    def record_monthly_balances(self, year: int, month: int) -> RecordResult:
        recorder = MonthlyBalanceRecorder(
            self.session, self.user_id, settings=self.settings
        )
        return recorder.record_monthly_balances(year, month)

    def invalidate_future_monthly_balances(self, year: int, month: int) -> int:
        deleted = self.invalidator.invalidate_from(year, month)
        self.session.commit()
        return deleted

    def set_opening_balance(
        self, account_id: int, year: int, month: int, balance: int
    ) -> None:
        """Manually correct one month's opening balance.

        Later snapshots were derived from the old value, so they are dropped.
        """
        AccountService(self.session, self.user_id).get(account_id)
        ym = YearMonth(year, month)
        self.store.upsert(account_id, ym.year, ym.month, balance)
        self.invalidator.invalidate_from(ym.year, ym.month)
        self.session.commit()


class BalanceProcessingService:
    """Applies transactions that have come due to each account's live balance.

    One-time transactions apply once when their date has passed. Recurring
    transactions apply once per month when their day of the current month has
    passed.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _processed_ids(
        self, account_id: int, kind: TransactionKind, ym: Optional[YearMonth]
    ) -> set[int]:
        stmt = select(ProcessedTransaction.transaction_id).where(
            ProcessedTransaction.user_id == self.user_id,
            ProcessedTransaction.account_id == account_id,
            ProcessedTransaction.transaction_kind == kind,
        )
        if ym is None:
            stmt = stmt.where(ProcessedTransaction.year.is_(None))
        else:
            stmt = stmt.where(
                ProcessedTransaction.year == ym.year,
                ProcessedTransaction.month == ym.month,
            )
        return set(self.session.scalars(stmt).all())

    def _due_entries(self, account: Account, today: date) -> list[LedgerEntry]:
        current = YearMonth.from_date(today)
        processed_one_time = self._processed_ids(
            account.id, TransactionKind.one_time, None
        )
        one_time = self.session.scalars(
            select(OneTimeTransaction)
            .where(
                OneTimeTransaction.user_id == self.user_id,
                OneTimeTransaction.account_id == account.id,
                OneTimeTransaction.transaction_date <= today,
            )
            .order_by(OneTimeTransaction.transaction_date, OneTimeTransaction.id)
        ).all()
        due: list[LedgerEntry] = [
            LedgerEntry(
                kind=TransactionKind.one_time,
                id=txn.id,
                account_id=txn.account_id,
                name=txn.name,
                type=txn.type,
                amount=int(txn.amount),
                date=txn.transaction_date,
            )
            for txn in one_time
            if txn.id not in processed_one_time
        ]

        processed_recurring = self._processed_ids(
            account.id, TransactionKind.recurring, current
        )
        rules = self.session.scalars(
            select(RecurringTransaction).where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.account_id == account.id,
            )
        ).all()
        overrides = overrides_for_month(self.session, (r.id for r in rules), current)
        for rule in rules:
            when = occurrence_date(rule, current)
            if when > today or rule.id in processed_recurring:
                continue
            due.append(
                LedgerEntry(
                    kind=TransactionKind.recurring,
                    id=rule.id,
                    account_id=rule.account_id,
                    name=rule.name,
                    type=rule.type,
                    amount=effective_amount(rule, overrides),
                    date=when,
                )
            )
        return due

    def process_due(self, today: Optional[date] = None) -> dict[int, int]:
        """Returns the applied balance change per account id."""
        today = today or local_today()
        current = YearMonth.from_date(today)
        changes: dict[int, int] = {}
        for account in AccountService(self.session, self.user_id).list_all():
            due = self._due_entries(account, today)
            if not due:
                continue
            change = compute_net_change(due)
            account.current_balance = int(account.current_balance) + change
            for entry in due:
                is_recurring = entry.kind == TransactionKind.recurring
                self.session.add(
                    ProcessedTransaction(
                        user_id=self.user_id,
                        account_id=account.id,
                        transaction_kind=entry.kind,
                        transaction_id=entry.id,
                        year=current.year if is_recurring else None,
                        month=current.month if is_recurring else None,
                    )
                )
            changes[account.id] = change
            logger.info(
                f"process_due: account_id={account.id} entries={len(due)} "
                f"change={change} balance={account.current_balance}"
            )
        self.session.commit()
        return changes


def opening_balance_or_live(
    resolver: CarryForwardResolver, account: Account, ym: YearMonth
) -> OpeningBalance:
    try:
        return resolver.resolve(account, ym)
    except CarryForwardLimitExceeded as exc:
        logger.warning(
            f"carry_forward_limit: account_id={account.id} target={ym} "
            f"months={exc.months} limit={exc.limit} using=live_balance"
        )
        return OpeningBalance(int(account.current_balance), BalanceSource.fallback)


@dataclass(frozen=True)
class SummaryTransaction:
    kind: TransactionKind
    id: int
    name: str
    type: TransactionType
    amount: int
    date: date
    description: Optional[str]
    transfer_pair_id: Optional[str]
    running_balance: int


@dataclass
class AccountSummary:
    id: int
    name: str
    income: int
    expense: int
    opening_balance: int
    opening_balance_source: BalanceSource
    end_of_month_balance: int
    transactions: list[SummaryTransaction] = field(default_factory=list)

    @property
    def net_change(self) -> int:
        return self.income - self.expense


@dataclass
class MonthlySummary:
    year: int
    month: int
    total_income: int
    total_expense: int
    net_balance: int
    total_opening_balance: int
    total_end_of_month_balance: int
    accounts: list[AccountSummary] = field(default_factory=list)


class SummaryService:
    """Builds the per-month income/expense and balance projection.

    Calling :meth:`monthly_summary` during the first days of a real calendar
    month also records the current month's opening-balance snapshots for any
    account that lacks one. Callers should treat the read as cache warming,
    not as a pure query.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = settings or get_settings()

    def _account_summary(
        self,
        account: Account,
        ledger: MonthLedger,
        opening: OpeningBalance,
    ) -> AccountSummary:
        entries = ledger.entries()
        income, expense = income_and_expense(entries)
        running = opening.balance
        items: list[SummaryTransaction] = []
        for entry in entries:
            running += entry.signed_amount
            items.append(
                SummaryTransaction(
                    kind=entry.kind,
                    id=entry.id,
                    name=entry.name,
                    type=entry.type,
                    amount=entry.amount,
                    date=entry.date,
                    description=entry.description,
                    transfer_pair_id=entry.transfer_pair_id,
                    running_balance=running,
                )
            )
        return AccountSummary(
            id=account.id,
            name=account.name,
            income=income,
            expense=expense,
            opening_balance=opening.balance,
            opening_balance_source=opening.source,
            end_of_month_balance=opening.balance + compute_net_change(entries),
            transactions=items,
        )

    def _warm_snapshots(self, today: date) -> None:
        recorder = MonthlyBalanceRecorder(
            self.session, self.user_id, settings=self.settings
        )
        if recorder.ensure_recorded(today):
            self.session.commit()

    def monthly_summary(
        self, year: int, month: int, *, today: Optional[date] = None
    ) -> MonthlySummary:
        ym = YearMonth(year, month)
        today = today or local_today()
        self._warm_snapshots(today)

        accounts = AccountService(self.session, self.user_id).list_all()
        ledgers = LedgerReader(self.session, self.user_id).transactions_for_month(
            ym.year, ym.month
        )
        known = {a.id for a in accounts}
        orphaned = sorted(set(ledgers) - known)
        if orphaned:
            raise AccountNotFound(orphaned[0])

        resolver = CarryForwardResolver(
            self.session, self.user_id, today=today, settings=self.settings
        )
        summaries = [
            self._account_summary(
                account,
                ledgers.get(account.id) or MonthLedger(month=ym),
                opening_balance_or_live(resolver, account, ym),
            )
            for account in accounts
        ]

        total_income = sum(s.income for s in summaries)
        total_expense = sum(s.expense for s in summaries)
        return MonthlySummary(
            year=ym.year,
            month=ym.month,
            total_income=total_income,
            total_expense=total_expense,
            net_balance=total_income - total_expense,
            total_opening_balance=sum(s.opening_balance for s in summaries),
            total_end_of_month_balance=sum(s.end_of_month_balance for s in summaries),
            accounts=summaries,
        )

    def account_summary(
        self,
        account_id: int,
        year: int,
        month: int,
        *,
        today: Optional[date] = None,
    ) -> AccountSummary:
        ym = YearMonth(year, month)
        today = today or local_today()
        account = AccountService(self.session, self.user_id).get(account_id)
        ledger = LedgerReader(
            self.session, self.user_id
        ).transactions_for_account_and_month(account.id, ym.year, ym.month)
        resolver = CarryForwardResolver(
            self.session, self.user_id, today=today, settings=self.settings
        )
        return self._account_summary(
            account, ledger, opening_balance_or_live(resolver, account, ym)
        )

    def resolve_opening_balance(
        self,
        account_id: int,
        year: int,
        month: int,
        *,
        today: Optional[date] = None,
    ) -> int:
        account = AccountService(self.session, self.user_id).get(account_id)
        resolver = CarryForwardResolver(
            self.session, self.user_id, today=today, settings=self.settings
        )
        return resolver.resolve_opening_balance(account, year, month)


PREDICTION_HORIZONS = (1, 3, 6, 12)
MAX_PREDICTION_MONTHS = 120


def prediction_label(months: int) -> str:
    return "1month" if months == 1 else f"{months}months"


@dataclass(frozen=True)
class SavingsPrediction:
    period: str
    months: int
    date: date
    amount: int
    accounts: dict[int, int] = field(default_factory=dict)


class PredictionService:
    """Projected balances on the first day of upcoming months.

    A projection for ``N`` months ahead is the opening balance of the month
    ``N`` months after the current one, as resolved by the carry-forward walk
    from the live balance. Recurring items count in full for every month,
    with per-month overrides applied, and dated one-time entries count in the
    month they fall in.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = settings or get_settings()

    def _resolver(self, today: date) -> CarryForwardResolver:
        return CarryForwardResolver(
            self.session, self.user_id, today=today, settings=self.settings
        )

    def monthly_predictions(
        self, months: int = 12, *, today: Optional[date] = None
    ) -> list[SavingsPrediction]:
        if not 1 <= months <= MAX_PREDICTION_MONTHS:
            raise ValueError(
                f"Prediction range must be between 1 and {MAX_PREDICTION_MONTHS} months"
            )
        today = today or local_today()
        accounts = AccountService(self.session, self.user_id).list_all()
        resolver = self._resolver(today)

        predictions: list[SavingsPrediction] = []
        target = YearMonth.from_date(today)
        for offset in range(1, months + 1):
            target = target.increment()
            balances = {
                account.id: opening_balance_or_live(resolver, account, target).balance
                for account in accounts
            }
            predictions.append(
                SavingsPrediction(
                    period=prediction_label(offset),
                    months=offset,
                    date=target.start,
                    amount=sum(balances.values()),
                    accounts=balances,
                )
            )
        return predictions

    def horizon_predictions(
        self, *, today: Optional[date] = None
    ) -> list[SavingsPrediction]:
        monthly = self.monthly_predictions(max(PREDICTION_HORIZONS), today=today)
        return [p for p in monthly if p.months in PREDICTION_HORIZONS]

    def account_predictions(
        self, account_id: int, *, today: Optional[date] = None
    ) -> list[SavingsPrediction]:
        account = AccountService(self.session, self.user_id).get(account_id)
        today = today or local_today()
        resolver = self._resolver(today)
        current = YearMonth.from_date(today)

        predictions = []
        for horizon in PREDICTION_HORIZONS:
            target = current
            for _ in range(horizon):
                target = target.increment()
            balance = opening_balance_or_live(resolver, account, target).balance
            predictions.append(
                SavingsPrediction(
                    period=prediction_label(horizon),
                    months=horizon,
                    date=target.start,
                    amount=balance,
                    accounts={account.id: balance},
                )
            )
        return predictions
