from datetime import date, datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurringTransaction, RecurringTransactionAmount
from periods import YearMonth


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def occurrence_date(rule: RecurringTransaction, ym: YearMonth) -> date:
    """Date a recurring item shows on within ``ym``.

    Days past the end of a short month snap to its last day. The date only
    orders entries; every recurring item counts once per month regardless.
    """
    return ym.clamp_day(rule.day_of_month)


def effective_amount(
    rule: RecurringTransaction, overrides: dict[int, int]
) -> int:
    override = overrides.get(rule.id)
    if override is not None:
        return override
    return rule.default_amount


def overrides_for_month(
    session: Session, rule_ids: Iterable[int], ym: YearMonth
) -> dict[int, int]:
    ids = list(rule_ids)
    if not ids:
        return {}
    rows = session.execute(
        select(
            RecurringTransactionAmount.recurring_transaction_id,
            RecurringTransactionAmount.amount,
        ).where(
            RecurringTransactionAmount.recurring_transaction_id.in_(ids),
            RecurringTransactionAmount.year == ym.year,
            RecurringTransactionAmount.month == ym.month,
        )
    ).all()
    return {row[0]: int(row[1]) for row in rows}


def override_for_month(
    session: Session, rule_id: int, ym: YearMonth
) -> Optional[int]:
    return overrides_for_month(session, [rule_id], ym).get(rule_id)
