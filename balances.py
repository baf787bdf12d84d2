from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from ledger import LedgerReader
from models import Account, MonthlyAccountBalance
from periods import YearMonth
from recurrence import local_today

logger = logging.getLogger(__name__)


class CarryForwardLimitExceeded(RuntimeError):
    def __init__(self, account_id: int, months: int, limit: int) -> None:
        super().__init__(
            f"Carry-forward for account {account_id} spans {months} months "
            f"(limit {limit})"
        )
        self.account_id = account_id
        self.months = months
        self.limit = limit


class SnapshotStore:
    """Persisted opening balances keyed by (account, year, month)."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get_record(
        self, account_id: int, year: int, month: int
    ) -> Optional[MonthlyAccountBalance]:
        return self.session.scalar(
            select(MonthlyAccountBalance).where(
                MonthlyAccountBalance.user_id == self.user_id,
                MonthlyAccountBalance.account_id == account_id,
                MonthlyAccountBalance.year == year,
                MonthlyAccountBalance.month == month,
            )
        )

    def get(self, account_id: int, year: int, month: int) -> Optional[int]:
        record = self.get_record(account_id, year, month)
        if record is None:
            return None
        return int(record.balance)

    def list_for_account(self, account_id: int) -> list[MonthlyAccountBalance]:
        stmt = (
            select(MonthlyAccountBalance)
            .where(
                MonthlyAccountBalance.user_id == self.user_id,
                MonthlyAccountBalance.account_id == account_id,
            )
            .order_by(MonthlyAccountBalance.year, MonthlyAccountBalance.month)
        )
        return self.session.scalars(stmt).all()

    def nearest_before(
        self, account_id: int, ym: YearMonth
    ) -> Optional[MonthlyAccountBalance]:
        """Latest snapshot strictly before ``ym``."""
        stmt = (
            select(MonthlyAccountBalance)
            .where(
                MonthlyAccountBalance.user_id == self.user_id,
                MonthlyAccountBalance.account_id == account_id,
                or_(
                    MonthlyAccountBalance.year < ym.year,
                    (MonthlyAccountBalance.year == ym.year)
                    & (MonthlyAccountBalance.month < ym.month),
                ),
            )
            .order_by(
                MonthlyAccountBalance.year.desc(), MonthlyAccountBalance.month.desc()
            )
            .limit(1)
        )
        return self.session.scalar(stmt)

    def upsert(self, account_id: int, year: int, month: int, balance: int) -> None:
        YearMonth(year, month)
        existing = self.get_record(account_id, year, month)
        if existing is not None:
            existing.balance = balance
            self.session.flush()
            return

        values = {
            "user_id": self.user_id,
            "account_id": account_id,
            "year": year,
            "month": month,
            "balance": balance,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            # A concurrent request may have inserted the same key since the check.
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(MonthlyAccountBalance).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["account_id", "year", "month"],
                set_={"balance": stmt.excluded.balance},
            )
            self.session.execute(stmt)
        else:
            self.session.add(MonthlyAccountBalance(**values))
        self.session.flush()

    def insert_if_missing(
        self, account_id: int, year: int, month: int, balance: int
    ) -> bool:
        if self.get_record(account_id, year, month) is not None:
            return False

        values = {
            "user_id": self.user_id,
            "account_id": account_id,
            "year": year,
            "month": month,
            "balance": balance,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = (
                insert(MonthlyAccountBalance)
                .values(**values)
                .on_conflict_do_nothing(
                    index_elements=["account_id", "year", "month"]
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return bool(result.rowcount)
        self.session.add(MonthlyAccountBalance(**values))
        self.session.flush()
        return True

    def delete_after(self, year: int, month: int) -> int:
        YearMonth(year, month)
        ids = self.session.scalars(
            select(MonthlyAccountBalance.id).where(
                MonthlyAccountBalance.user_id == self.user_id,
                or_(
                    MonthlyAccountBalance.year > year,
                    (MonthlyAccountBalance.year == year)
                    & (MonthlyAccountBalance.month > month),
                ),
            )
        ).all()
        if not ids:
            return 0
        self.session.execute(
            delete(MonthlyAccountBalance)
            .where(MonthlyAccountBalance.id.in_(ids))
            .execution_options(synchronize_session="evaluate")
        )
        return len(ids)


class SnapshotInvalidator:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = SnapshotStore(session, user_id)

    def invalidate_from(self, year: int, month: int) -> int:
        """Drop every snapshot strictly after (year, month)."""
        deleted = self.store.delete_after(year, month)
        logger.info(
            f"snapshot_invalidate: user_id={self.user_id} after={YearMonth(year, month)} "
            f"deleted={deleted}"
        )
        return deleted

    def invalidate_for_dates(self, *dates: date) -> int:
        if not dates:
            return 0
        boundary = YearMonth.from_date(min(dates))
        return self.invalidate_from(boundary.year, boundary.month)


class BalanceSource(str, Enum):
    snapshot = "snapshot"
    live = "live"
    carry_forward = "carry_forward"
    fallback = "fallback"


@dataclass(frozen=True)
class OpeningBalance:
    balance: int
    source: BalanceSource
    anchor: Optional[YearMonth] = None
    months_walked: int = 0


class CarryForwardResolver:
    """Derives a month's opening balance from the nearest earlier snapshot.

    Resolution order:

    1. a snapshot stored for the month itself;
    2. the account's live balance when the month is the current one;
    3. the nearest earlier snapshot, walked forward month by month;
    4. the live balance as a last resort when no history exists.

    Months after the current one walk forward from the live balance unless a
    snapshot at or after the current month is closer. This holds even for an
    account with no snapshots at all, so the last-resort live balance applies
    only to past months; a future month adds the projected net change of every
    month between. Resolution never writes.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        today: Optional[date] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today or local_today()
        self.settings = settings or get_settings()
        self.store = SnapshotStore(session, user_id)
        self.reader = LedgerReader(session, user_id)

    @property
    def current_month(self) -> YearMonth:
        return YearMonth.from_date(self.today)

    def resolve_opening_balance(self, account: Account, year: int, month: int) -> int:
        return self.resolve(account, YearMonth(year, month)).balance

    def resolve(self, account: Account, target: YearMonth) -> OpeningBalance:
        snapshot = self.store.get(account.id, target.year, target.month)
        if snapshot is not None:
            return OpeningBalance(snapshot, BalanceSource.snapshot, anchor=target)

        current = self.current_month
        live = int(account.current_balance)
        if target == current:
            return OpeningBalance(live, BalanceSource.live, anchor=current)

        record = self.store.nearest_before(account.id, target)
        anchor: Optional[YearMonth] = None
        balance = 0
        if record is not None:
            anchor = YearMonth(record.year, record.month)
            balance = int(record.balance)
        if target > current and (anchor is None or anchor < current):
            anchor = current
            balance = live

        if anchor is None:
            logger.info(
                f"carry_forward_fallback: account_id={account.id} target={target} "
                f"reason=no_anchor"
            )
            return OpeningBalance(live, BalanceSource.fallback)

        distance = anchor.months_until(target)
        if distance > self.settings.max_carry_forward_months:
            raise CarryForwardLimitExceeded(
                account.id, distance, self.settings.max_carry_forward_months
            )
        if distance > self.settings.carry_forward_warn_months:
            logger.warning(
                f"carry_forward_long_walk: account_id={account.id} "
                f"anchor={anchor} target={target} months={distance}"
            )

        walked = 0
        for cursor in anchor.iter_until(target):
            balance += self.reader.net_change_for_account_and_month(
                account.id, cursor.year, cursor.month
            )
            walked += 1

        logger.debug(
            f"carry_forward: account_id={account.id} anchor={anchor} "
            f"target={target} months={walked} balance={balance}"
        )
        return OpeningBalance(
            balance, BalanceSource.carry_forward, anchor=anchor, months_walked=walked
        )


@dataclass(frozen=True)
class RecordResult:
    success: bool
    error: Optional[str] = None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        return payload


class MonthlyBalanceRecorder:
    """Copies live account balances into month-opening snapshots."""

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.store = SnapshotStore(session, user_id)

    def _accounts(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.sort_order, Account.id)
        )
        return self.session.scalars(stmt).all()

    def record_monthly_balances(self, year: int, month: int) -> RecordResult:
        try:
            ym = YearMonth(year, month)
        except ValueError as exc:
            return RecordResult(False, str(exc))
        try:
            accounts = self._accounts()
            for account in accounts:
                self.store.upsert(
                    account.id, ym.year, ym.month, int(account.current_balance)
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"record_monthly_balances_failed: user_id={self.user_id} month={ym}"
            )
            return RecordResult(False, f"Failed to record monthly balances: {exc}")
        logger.info(
            f"record_monthly_balances: user_id={self.user_id} month={ym} "
            f"accounts={len(accounts)}"
        )
        return RecordResult(True)

    def in_window(self, today: date) -> bool:
        return today.day <= self.settings.snapshot_window_days

    def ensure_recorded(self, today: date) -> int:
        """Create missing snapshots for the current month near its start.

        Existing snapshots are left untouched. Returns how many were created.
        """
        if not self.in_window(today):
            return 0
        ym = YearMonth.from_date(today)
        created = 0
        for account in self._accounts():
            if self.store.insert_if_missing(
                account.id, ym.year, ym.month, int(account.current_balance)
            ):
                created += 1
        if created:
            logger.info(
                f"snapshot_warm: user_id={self.user_id} month={ym} created={created}"
            )
        return created
