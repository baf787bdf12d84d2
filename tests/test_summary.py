from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from balances import BalanceSource, SnapshotStore
from config import Settings
from database import Base
from models import (
    Account,
    OneTimeTransaction,
    RecurringTransaction,
    TransactionKind,
    TransactionType,
)
from schemas import MonthlySummaryOut
from services import AccountNotFound, SummaryService

TODAY = date(2026, 10, 17)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings() -> Settings:
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        timezone="Asia/Tokyo",
        csrf_secret="test-secret",
        snapshot_window_days=3,
        carry_forward_warn_months=120,
        max_carry_forward_months=1200,
    )


def seed(session):
    bank = Account(name="Bank", current_balance=100_000, sort_order=0)
    wallet = Account(name="Wallet", current_balance=5_000, sort_order=1)
    session.add_all([bank, wallet])
    session.flush()
    session.add_all(
        [
            RecurringTransaction(
                account_id=bank.id,
                name="Salary",
                default_amount=300_000,
                type=TransactionType.income,
                day_of_month=25,
            ),
            RecurringTransaction(
                account_id=bank.id,
                name="Rent",
                default_amount=90_000,
                type=TransactionType.expense,
                day_of_month=27,
            ),
            RecurringTransaction(
                account_id=None,
                name="Unassigned",
                default_amount=1_000,
                type=TransactionType.expense,
                day_of_month=1,
            ),
            OneTimeTransaction(
                account_id=wallet.id,
                name="Coffee",
                amount=600,
                type=TransactionType.expense,
                transaction_date=date(2024, 3, 4),
            ),
            OneTimeTransaction(
                account_id=bank.id,
                name="Gift",
                amount=10_000,
                type=TransactionType.income,
                transaction_date=date(2024, 3, 2),
            ),
        ]
    )
    store = SnapshotStore(session, 1)
    store.upsert(bank.id, 2024, 3, 200_000)
    store.upsert(wallet.id, 2024, 3, 3_000)
    session.commit()
    return bank, wallet


def test_monthly_summary_totals_and_running_balances():
    session = make_session()
    bank, wallet = seed(session)

    summary = SummaryService(session, settings=make_settings()).monthly_summary(
        2024, 3, today=TODAY
    )
    assert (summary.year, summary.month) == (2024, 3)
    assert summary.total_income == 310_000
    assert summary.total_expense == 90_600
    assert summary.net_balance == 219_400
    assert summary.total_opening_balance == 203_000
    assert summary.total_end_of_month_balance == 203_000 + 219_400

    by_name = {a.name: a for a in summary.accounts}
    assert list(by_name) == ["Bank", "Wallet"]

    bank_summary = by_name["Bank"]
    assert bank_summary.opening_balance_source == BalanceSource.snapshot
    assert [t.name for t in bank_summary.transactions] == ["Gift", "Salary", "Rent"]
    assert [t.running_balance for t in bank_summary.transactions] == [
        210_000,
        510_000,
        420_000,
    ]
    assert bank_summary.end_of_month_balance == 420_000
    assert bank_summary.net_change == 220_000

    wallet_summary = by_name["Wallet"]
    assert wallet_summary.end_of_month_balance == 2_400
    assert wallet_summary.transactions[0].kind == TransactionKind.one_time


def test_next_month_opens_where_previous_closed():
    session = make_session()
    bank, _ = seed(session)
    service = SummaryService(session, settings=make_settings())

    march = service.monthly_summary(2024, 3, today=TODAY)
    april = service.monthly_summary(2024, 4, today=TODAY)
    for closed, opened in zip(march.accounts, april.accounts):
        assert opened.opening_balance == closed.end_of_month_balance
        assert opened.opening_balance_source == BalanceSource.carry_forward

    account = service.account_summary(bank.id, 2024, 4, today=TODAY)
    assert account.opening_balance == 420_000
    assert service.resolve_opening_balance(bank.id, 2024, 4, today=TODAY) == 420_000


def test_summary_for_month_without_activity():
    session = make_session()
    session.add(Account(name="Empty", current_balance=700))
    session.commit()

    summary = SummaryService(session, settings=make_settings()).monthly_summary(
        2025, 1, today=TODAY
    )
    assert summary.total_income == 0
    assert summary.total_expense == 0
    assert summary.accounts[0].opening_balance == 700
    assert summary.accounts[0].end_of_month_balance == 700
    assert summary.accounts[0].transactions == []


def test_account_summary_unknown_account():
    session = make_session()
    with pytest.raises(AccountNotFound):
        SummaryService(session, settings=make_settings()).account_summary(
            1, 2024, 1, today=TODAY
        )


def test_summary_serializes_through_output_model():
    session = make_session()
    seed(session)
    summary = SummaryService(session, settings=make_settings()).monthly_summary(
        2024, 3, today=TODAY
    )

    payload = MonthlySummaryOut.model_validate(summary).model_dump(mode="json")
    assert payload["net_balance"] == 219_400
    bank = payload["accounts"][0]
    assert bank["name"] == "Bank"
    assert bank["opening_balance_source"] == "snapshot"
    assert bank["net_change"] == 220_000
    gift = bank["transactions"][0]
    assert gift["date"] == "2024-03-02"
    assert gift["kind"] == "one_time"
    assert gift["type"] == "income"
