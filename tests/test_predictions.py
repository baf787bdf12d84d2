from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from balances import SnapshotStore
from config import Settings
from database import Base
from models import (
    Account,
    MonthlyAccountBalance,
    OneTimeTransaction,
    RecurringTransaction,
    TransactionType,
)
from schemas import SavingsPredictionOut
from services import AccountNotFound, PredictionService, RecurringTransactionService

TODAY = date(2026, 10, 17)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite+pysqlite:///:memory:",
        timezone="Asia/Tokyo",
        csrf_secret="test-secret",
        snapshot_window_days=3,
        carry_forward_warn_months=120,
        max_carry_forward_months=1200,
    )
    values.update(overrides)
    return Settings(**values)


def seed(session):
    bank = Account(name="Bank", current_balance=100_000, sort_order=0)
    wallet = Account(name="Wallet", current_balance=5_000, sort_order=1)
    session.add_all([bank, wallet])
    session.flush()
    salary = RecurringTransaction(
        account_id=bank.id,
        name="Salary",
        default_amount=300_000,
        type=TransactionType.income,
        day_of_month=25,
    )
    session.add_all(
        [
            salary,
            RecurringTransaction(
                account_id=bank.id,
                name="Rent",
                default_amount=90_000,
                type=TransactionType.expense,
                day_of_month=27,
            ),
            OneTimeTransaction(
                account_id=wallet.id,
                name="Bonus",
                amount=50_000,
                type=TransactionType.income,
                transaction_date=date(2026, 12, 10),
            ),
        ]
    )
    session.commit()
    return bank, wallet, salary


def test_monthly_predictions_walk_from_live_balance():
    session = make_session()
    bank, wallet, _ = seed(session)

    service = PredictionService(session, settings=make_settings())
    predictions = service.monthly_predictions(3, today=TODAY)
    assert [p.period for p in predictions] == ["1month", "2months", "3months"]
    assert [p.date for p in predictions] == [
        date(2026, 11, 1),
        date(2026, 12, 1),
        date(2027, 1, 1),
    ]
    assert [p.accounts[bank.id] for p in predictions] == [
        310_000,
        520_000,
        730_000,
    ]
    assert [p.accounts[wallet.id] for p in predictions] == [5_000, 5_000, 55_000]
    assert [p.amount for p in predictions] == [315_000, 525_000, 785_000]


def test_horizon_predictions_pick_fixed_offsets():
    session = make_session()
    bank, _, _ = seed(session)

    service = PredictionService(session, settings=make_settings())
    horizons = service.horizon_predictions(today=TODAY)
    assert [(p.period, p.months) for p in horizons] == [
        ("1month", 1),
        ("3months", 3),
        ("6months", 6),
        ("12months", 12),
    ]
    assert horizons[-1].date == date(2027, 10, 1)
    assert horizons[-1].accounts[bank.id] == 100_000 + 12 * 210_000


def test_predictions_follow_recurring_overrides_and_ignore_old_snapshots():
    session = make_session()
    bank, _, salary = seed(session)
    SnapshotStore(session, 1).upsert(bank.id, 2025, 1, 1)
    session.commit()
    RecurringTransactionService(session).set_amount_for_month(salary.id, 2026, 11, 0)

    service = PredictionService(session, settings=make_settings())
    predictions = service.monthly_predictions(2, today=TODAY)
    assert predictions[0].accounts[bank.id] == 310_000
    assert predictions[1].accounts[bank.id] == 310_000 - 90_000


def test_account_predictions_cover_each_horizon():
    session = make_session()
    _, wallet, _ = seed(session)

    service = PredictionService(session, settings=make_settings())
    predictions = service.account_predictions(wallet.id, today=TODAY)
    assert [p.months for p in predictions] == [1, 3, 6, 12]
    assert [p.amount for p in predictions] == [5_000, 55_000, 55_000, 55_000]
    assert all(p.accounts == {wallet.id: p.amount} for p in predictions)

    with pytest.raises(AccountNotFound):
        service.account_predictions(9999, today=TODAY)


def test_prediction_range_is_bounded():
    session = make_session()
    service = PredictionService(session, settings=make_settings())
    with pytest.raises(ValueError):
        service.monthly_predictions(0, today=TODAY)
    with pytest.raises(ValueError):
        service.monthly_predictions(121, today=TODAY)
    assert service.monthly_predictions(1, today=TODAY)[0].amount == 0


def test_predictions_degrade_to_live_balance_past_the_cap():
    session = make_session()
    bank, wallet, _ = seed(session)

    service = PredictionService(
        session, settings=make_settings(max_carry_forward_months=2)
    )
    predictions = service.monthly_predictions(3, today=TODAY)
    assert predictions[1].accounts[bank.id] == 520_000
    assert predictions[2].accounts[bank.id] == 100_000
    assert predictions[2].accounts[wallet.id] == 5_000


def test_predictions_never_write_snapshots_and_serialize():
    session = make_session()
    seed(session)

    service = PredictionService(session, settings=make_settings())
    predictions = service.monthly_predictions(12, today=TODAY)
    count = session.scalar(select(func.count()).select_from(MonthlyAccountBalance))
    assert count == 0

    out = SavingsPredictionOut.model_validate(predictions[0])
    payload = out.model_dump(mode="json")
    assert payload["period"] == "1month"
    assert payload["date"] == "2026-11-01"
    assert payload["amount"] == 315_000
