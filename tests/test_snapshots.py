from datetime import date

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from balances import (
    BalanceSource,
    MonthlyBalanceRecorder,
    SnapshotInvalidator,
    SnapshotStore,
)
from config import Settings
from database import Base
from models import Account, MonthlyAccountBalance, RecurringTransaction, TransactionType
from services import MonthlyBalanceService, SummaryService


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


def snapshot_months(session, account_id: int) -> list[tuple[int, int]]:
    rows = SnapshotStore(session, 1).list_for_account(account_id)
    return [(r.year, r.month) for r in rows]


def test_record_monthly_balances_is_idempotent():
    session = make_session()
    main = Account(name="Main", current_balance=12_000)
    cash = Account(name="Cash", current_balance=-500)
    session.add_all([main, cash])
    session.commit()

    recorder = MonthlyBalanceRecorder(session, 1, settings=make_settings())
    assert recorder.record_monthly_balances(2025, 3).success
    assert recorder.record_monthly_balances(2025, 3).success

    store = SnapshotStore(session, 1)
    assert store.get(main.id, 2025, 3) == 12_000
    assert store.get(cash.id, 2025, 3) == -500
    count = session.scalar(select(func.count()).select_from(MonthlyAccountBalance))
    assert count == 2


def test_record_overwrites_with_current_live_balance():
    session = make_session()
    account = Account(name="Main", current_balance=1_000)
    session.add(account)
    session.commit()

    service = MonthlyBalanceService(session, settings=make_settings())
    service.record_monthly_balances(2025, 3)
    account.current_balance = 2_500
    session.commit()
    service.record_monthly_balances(2025, 3)

    assert SnapshotStore(session, 1).get(account.id, 2025, 3) == 2_500


def test_record_rejects_invalid_month():
    session = make_session()
    recorder = MonthlyBalanceRecorder(session, 1, settings=make_settings())
    result = recorder.record_monthly_balances(2025, 13)
    assert result.success is False
    assert "Month" in result.error
    assert result.as_dict()["success"] is False


def test_invalidation_drops_later_months_and_summary_recomputes():
    session = make_session()
    account = Account(name="Main", current_balance=99_999)
    session.add(account)
    session.flush()
    session.add(
        RecurringTransaction(
            account_id=account.id,
            name="Allowance",
            default_amount=100,
            type=TransactionType.income,
            day_of_month=1,
        )
    )
    store = SnapshotStore(session, 1)
    for month in range(1, 7):
        store.upsert(account.id, 2024, month, 1_000 + 100 * (month - 1))
    session.commit()

    service = MonthlyBalanceService(session, settings=make_settings())
    assert service.invalidate_future_monthly_balances(2024, 3) == 3
    assert snapshot_months(session, account.id) == [(2024, 1), (2024, 2), (2024, 3)]
    assert store.get(account.id, 2024, 3) == 1_200

    summary = SummaryService(session, settings=make_settings()).monthly_summary(
        2024, 5, today=date(2026, 10, 17)
    )
    result = summary.accounts[0]
    assert result.opening_balance == 1_400
    assert result.opening_balance_source == BalanceSource.carry_forward
    assert snapshot_months(session, account.id) == [(2024, 1), (2024, 2), (2024, 3)]


def test_invalidation_crosses_year_boundary():
    session = make_session()
    account = Account(name="Main", current_balance=0)
    session.add(account)
    session.flush()
    store = SnapshotStore(session, 1)
    for year, month in [(2023, 11), (2023, 12), (2024, 1), (2025, 2)]:
        store.upsert(account.id, year, month, 0)
    session.commit()

    deleted = SnapshotInvalidator(session, 1).invalidate_from(2023, 12)
    session.commit()
    assert deleted == 2
    assert snapshot_months(session, account.id) == [(2023, 11), (2023, 12)]


def test_ensure_recorded_only_inside_window_and_never_overwrites():
    session = make_session()
    main = Account(name="Main", current_balance=3_000)
    cash = Account(name="Cash", current_balance=400)
    session.add_all([main, cash])
    session.flush()
    store = SnapshotStore(session, 1)
    store.upsert(main.id, 2026, 11, 1_234)
    session.commit()

    recorder = MonthlyBalanceRecorder(session, 1, settings=make_settings())
    assert recorder.ensure_recorded(date(2026, 11, 4)) == 0
    assert store.get(cash.id, 2026, 11) is None

    assert recorder.ensure_recorded(date(2026, 11, 2)) == 1
    assert recorder.ensure_recorded(date(2026, 11, 3)) == 0
    session.commit()
    assert store.get(main.id, 2026, 11) == 1_234
    assert store.get(cash.id, 2026, 11) == 400


def test_summary_warms_current_month_snapshots():
    session = make_session()
    account = Account(name="Main", current_balance=8_000)
    session.add(account)
    session.commit()

    summary = SummaryService(session, settings=make_settings()).monthly_summary(
        2026, 11, today=date(2026, 11, 1)
    )
    assert SnapshotStore(session, 1).get(account.id, 2026, 11) == 8_000
    assert summary.accounts[0].opening_balance_source == BalanceSource.snapshot


def test_set_opening_balance_invalidates_later_months():
    session = make_session()
    account = Account(name="Main", current_balance=0)
    session.add(account)
    session.flush()
    store = SnapshotStore(session, 1)
    for month in range(1, 5):
        store.upsert(account.id, 2024, month, 10)
    session.commit()

    MonthlyBalanceService(session, settings=make_settings()).set_opening_balance(
        account.id, 2024, 2, 5_000
    )
    assert snapshot_months(session, account.id) == [(2024, 1), (2024, 2)]
    assert store.get(account.id, 2024, 2) == 5_000


def test_upsert_overwrites_row_inserted_after_lookup(monkeypatch):
    session = make_session()
    account = Account(name="Main", current_balance=0)
    session.add(account)
    session.commit()

    store = SnapshotStore(session, 1)
    store.upsert(account.id, 2025, 6, 1_000)
    session.commit()

    # Another request inserted the row between the lookup and the write.
    monkeypatch.setattr(store, "get_record", lambda *args: None)
    store.upsert(account.id, 2025, 6, 2_500)
    session.commit()

    balances = session.scalars(select(MonthlyAccountBalance.balance)).all()
    assert balances == [2_500]


def test_insert_if_missing_keeps_row_inserted_after_lookup(monkeypatch):
    session = make_session()
    account = Account(name="Main", current_balance=0)
    session.add(account)
    session.commit()

    store = SnapshotStore(session, 1)
    store.upsert(account.id, 2025, 6, 1_000)
    session.commit()

    monkeypatch.setattr(store, "get_record", lambda *args: None)
    assert store.insert_if_missing(account.id, 2025, 6, 9_999) is False
    session.commit()

    balances = session.scalars(select(MonthlyAccountBalance.balance)).all()
    assert balances == [1_000]
