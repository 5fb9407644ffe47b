"""
Ledger repository: read-only aggregate queries over the cash-flow ledger.

Every statement is composed with SQLAlchemy Core and every caller-supplied
value travels as a bound parameter. Result rows are mapped into the frozen
dataclasses below before they leave this module, so services never touch raw
driver rows.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional
import logging
import os

from sqlalchemy import Float, String, bindparam, case, cast, func, literal, select
from sqlalchemy.orm import Session

from database import CashFlowRecord, CashFlowSnapshot
from metrics import to_decimal

logger = logging.getLogger(__name__)

# Rows from banks matching this pattern always get the rate-based interest.
SPECIAL_BANK_PATTERN = os.getenv("SPECIAL_BANK_PATTERN", "%ZBJ%")
UNKNOWN_FUND = "unknown"
DAYS_IN_YEAR = 365.0
FUND_LIMIT = 50
ISSUE_LIMIT = 20

PERIOD_UNITS = ("day", "week", "month", "quarter", "year")


def resolve_period(period: Optional[str], default: str) -> str:
    """Normalise a period name; anything outside PERIOD_UNITS maps to default."""
    candidate = (period or "").strip().lower()
    return candidate if candidate in PERIOD_UNITS else default


# ── Typed rows ───────────────────────────────────────────────────
@dataclass(frozen=True)
class InterestTotals:
    total_interest: Decimal
    total_model_interest: Decimal


@dataclass(frozen=True)
class TrendRow:
    bucket: datetime
    fund_no: str
    deposit: Decimal
    interest_earned: Decimal
    transaction_count: int
    avg_interest_rate_pct: Decimal
    cumulative_deposit: Decimal
    cumulative_interest: Decimal
    previous_deposit: Optional[Decimal]
    first_deposit: Optional[Decimal]


@dataclass(frozen=True)
class CashFlowRow:
    bucket: datetime
    avg_principal: Decimal
    avg_simple_interest: Decimal
    avg_interest_earned: Decimal
    avg_model_interest_earned: Decimal
    avg_tlref_interest_earned: Decimal
    avg_model_rate: Decimal
    avg_tlref_rate: Decimal
    record_count: int


@dataclass(frozen=True)
class GroupTotal:
    key: str
    record_count: int
    total_amount: Decimal


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    raise TypeError(f"Unexpected bucket value: {value!r}")


def _optional_decimal(value) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


# ── Statement builders ───────────────────────────────────────────
def _bucket(column, unit: str):
    # unit is always one of PERIOD_UNITS; rendered inline so that the SELECT
    # and GROUP BY expressions are identical for PostgreSQL.
    return func.date_trunc(literal(unit, literal_execute=True), column)


def _scope_filters(fund_no: Optional[str], issue_no: Optional[str]) -> list:
    R = CashFlowRecord
    conditions = []
    if fund_no:
        conditions.append(cast(R.fund_no, String) == bindparam("fund_no", fund_no))
    if issue_no:
        conditions.append(cast(R.issue_no, String) == bindparam("issue_no", issue_no))
    return conditions


def build_interest_totals_query(
    institution: str,
    interest_rate: float,
    fund_no: Optional[str] = None,
    issue_no: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    bank_pattern: str = SPECIAL_BANK_PATTERN,
):
    """
    Real vs. model interest totals for closed cycles of one institution.

    interest_rate is in percent. Real interest is the rate-based simple
    interest for special-pattern banks, otherwise the stored interest (or the
    same formula when nothing is stored). Model interest compounds the daily
    rate over the elapsed days for every row.
    """
    R = CashFlowRecord
    rate = interest_rate / 100.0
    compound = (1 + rate / DAYS_IN_YEAR) ** DAYS_IN_YEAR - 1

    rate_param = bindparam("model_rate", rate, type_=Float)
    compound_param = bindparam("model_compound", compound, type_=Float)
    days = R.return_date - R.start_date

    simple_interest = R.principal * rate_param * days / DAYS_IN_YEAR
    model_interest = R.principal * func.power(compound_param + 1, days / DAYS_IN_YEAR) - R.principal
    real_interest = case(
        (R.bank_name.like(bindparam("bank_pattern", bank_pattern)), simple_interest),
        (R.interest_amount == 0, simple_interest),
        else_=R.interest_amount,
    )

    conditions = [
        R.total_return > 0,
        R.institution == bindparam("institution", institution),
        R.bank_name.isnot(None),
    ]
    if start_date:
        conditions.append(R.start_date >= bindparam("start_date_from", start_date))
    if end_date:
        conditions.append(R.start_date <= bindparam("start_date_to", end_date))
    conditions.extend(_scope_filters(fund_no, issue_no))

    return select(
        func.sum(real_interest).label("total_interest"),
        func.sum(model_interest).label("total_model_interest"),
    ).where(*conditions)


def build_trends_query(
    institution: str,
    period: str,
    from_date: date,
    to_date: date,
    limit: int,
    fund_no: Optional[str] = None,
    issue_no: Optional[str] = None,
):
    """Per (bucket, fund) deposit/interest totals with running sums, newest first."""
    R = CashFlowRecord
    bucket = _bucket(R.start_date, resolve_period(period, "week"))
    fund_label = func.coalesce(cast(R.fund_no, String), UNKNOWN_FUND)

    conditions = [
        R.institution == bindparam("institution", institution),
        R.start_date >= bindparam("from_date", from_date),
        R.start_date <= bindparam("to_date", to_date),
        R.start_date.isnot(None),
        func.coalesce(R.principal, 0) > 0,
    ]
    conditions.extend(_scope_filters(fund_no, issue_no))

    totals = (
        select(
            bucket.label("bucket"),
            fund_label.label("fund_no"),
            func.sum(func.coalesce(R.principal, 0)).label("deposit"),
            func.sum(func.coalesce(R.interest_amount, 0)).label("interest_earned"),
            func.count().label("transaction_count"),
            (func.avg(func.coalesce(R.interest_rate, 0)) * 100).label("avg_interest_rate_pct"),
        )
        .where(*conditions)
        .group_by(bucket, fund_label)
        .cte("bucket_totals")
    )

    per_fund = dict(partition_by=totals.c.fund_no, order_by=totals.c.bucket)
    running = dict(per_fund, rows=(None, 0))

    return (
        select(
            totals.c.bucket,
            totals.c.fund_no,
            totals.c.deposit,
            totals.c.interest_earned,
            totals.c.transaction_count,
            totals.c.avg_interest_rate_pct,
            func.sum(totals.c.deposit).over(**running).label("cumulative_deposit"),
            func.sum(totals.c.interest_earned).over(**running).label("cumulative_interest"),
            func.lag(totals.c.deposit).over(**per_fund).label("previous_deposit"),
            func.first_value(totals.c.deposit).over(**running).label("first_deposit"),
        )
        .where(totals.c.bucket.isnot(None))
        .order_by(totals.c.bucket.desc())
        .limit(limit)
    )


def build_cash_flow_query(period: str, limit: int):
    """Per-bucket averages over the cash-flow snapshot table, newest first."""
    S = CashFlowSnapshot
    bucket = _bucket(S.snapshot_date, resolve_period(period, "month"))

    def avg(column):
        return func.avg(func.coalesce(column, 0))

    return (
        select(
            bucket.label("bucket"),
            avg(S.principal).label("avg_principal"),
            avg(S.simple_interest).label("avg_simple_interest"),
            avg(S.interest_earned).label("avg_interest_earned"),
            avg(S.model_interest_earned).label("avg_model_interest_earned"),
            avg(S.tlref_interest_earned).label("avg_tlref_interest_earned"),
            avg(S.model_rate).label("avg_model_rate"),
            avg(S.tlref_rate).label("avg_tlref_rate"),
            func.count().label("record_count"),
        )
        .where(S.snapshot_date.isnot(None), S.principal > 0)
        .group_by(bucket)
        .order_by(bucket.desc())
        .limit(limit)
    )


def _group_totals(key_column):
    R = CashFlowRecord
    return select(
        key_column.label("key"),
        func.count().label("record_count"),
        func.sum(func.coalesce(R.principal, 0)).label("total_amount"),
    )


def build_institutions_query():
    R = CashFlowRecord
    return (
        _group_totals(R.institution)
        .where(R.institution.isnot(None), R.institution != "")
        .group_by(R.institution)
        .order_by(R.institution)
    )


def build_funds_query(institution: str):
    R = CashFlowRecord
    return (
        _group_totals(R.fund_no)
        .where(R.institution == bindparam("institution", institution), R.fund_no.isnot(None))
        .group_by(R.fund_no)
        .order_by(R.fund_no)
        .limit(FUND_LIMIT)
    )


def build_issues_query(institution: str, fund_no: str):
    R = CashFlowRecord
    return (
        _group_totals(R.issue_no)
        .where(
            R.institution == bindparam("institution", institution),
            cast(R.fund_no, String) == bindparam("fund_no", fund_no),
            R.issue_no.isnot(None),
            R.principal > 0,
        )
        .group_by(R.issue_no)
        .order_by(R.issue_no)
        .limit(ISSUE_LIMIT)
    )


# ── Fetchers ─────────────────────────────────────────────────────
def fetch_interest_totals(db: Session, institution: str, interest_rate: float,
                          fund_no: Optional[str] = None, issue_no: Optional[str] = None,
                          start_date: Optional[date] = None,
                          end_date: Optional[date] = None) -> InterestTotals:
    stmt = build_interest_totals_query(
        institution, interest_rate, fund_no=fund_no, issue_no=issue_no,
        start_date=start_date, end_date=end_date,
    )
    row = db.execute(stmt).one()
    return InterestTotals(
        total_interest=to_decimal(row.total_interest),
        total_model_interest=to_decimal(row.total_model_interest),
    )


def fetch_trend_rows(db: Session, institution: str, period: str,
                     from_date: date, to_date: date, limit: int,
                     fund_no: Optional[str] = None,
                     issue_no: Optional[str] = None) -> List[TrendRow]:
    stmt = build_trends_query(
        institution, period, from_date, to_date, limit,
        fund_no=fund_no, issue_no=issue_no,
    )
    return [
        TrendRow(
            bucket=_as_datetime(row.bucket),
            fund_no=str(row.fund_no) if row.fund_no is not None else UNKNOWN_FUND,
            deposit=to_decimal(row.deposit),
            interest_earned=to_decimal(row.interest_earned),
            transaction_count=int(row.transaction_count or 0),
            avg_interest_rate_pct=to_decimal(row.avg_interest_rate_pct),
            cumulative_deposit=to_decimal(row.cumulative_deposit),
            cumulative_interest=to_decimal(row.cumulative_interest),
            previous_deposit=_optional_decimal(row.previous_deposit),
            first_deposit=_optional_decimal(row.first_deposit),
        )
        for row in db.execute(stmt).all()
    ]


def fetch_cash_flow_rows(db: Session, period: str, limit: int) -> List[CashFlowRow]:
    return [
        CashFlowRow(
            bucket=_as_datetime(row.bucket),
            avg_principal=to_decimal(row.avg_principal),
            avg_simple_interest=to_decimal(row.avg_simple_interest),
            avg_interest_earned=to_decimal(row.avg_interest_earned),
            avg_model_interest_earned=to_decimal(row.avg_model_interest_earned),
            avg_tlref_interest_earned=to_decimal(row.avg_tlref_interest_earned),
            avg_model_rate=to_decimal(row.avg_model_rate),
            avg_tlref_rate=to_decimal(row.avg_tlref_rate),
            record_count=int(row.record_count or 0),
        )
        for row in db.execute(build_cash_flow_query(period, limit)).all()
    ]


def _fetch_group_totals(db: Session, stmt) -> List[GroupTotal]:
    return [
        GroupTotal(
            key=str(row.key),
            record_count=int(row.record_count or 0),
            total_amount=to_decimal(row.total_amount),
        )
        for row in db.execute(stmt).all()
    ]


def fetch_institutions(db: Session) -> List[GroupTotal]:
    return _fetch_group_totals(db, build_institutions_query())


def fetch_funds(db: Session, institution: str) -> List[GroupTotal]:
    return _fetch_group_totals(db, build_funds_query(institution))


def fetch_issues(db: Session, institution: str, fund_no: str) -> List[GroupTotal]:
    return _fetch_group_totals(db, build_issues_query(institution, fund_no))
