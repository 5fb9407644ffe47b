# tests/integration/test_ledger_postgres.py
import os
import time
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, exc, text
from sqlalchemy.orm import sessionmaker

from analysis_service import calculate_analysis
from database import Base, CashFlowRecord, CashFlowSnapshot
from ledger_repository import DAYS_IN_YEAR
from schemas import AnalysisRequest, CashFlowRequest, TrendsRequest
from trend_service import get_cash_flow, get_trends

pytestmark = pytest.mark.integration

TEST_SCHEMA = "nakit_akis_it"
TODAY = date(2024, 6, 15)


@pytest.fixture(scope="module")
def db_engine():
    """
    An engine bound to a throwaway schema on the database named by
    TEST_DATABASE_URL. The schema is dropped when the module finishes.
    """
    db_url = os.getenv("TEST_DATABASE_URL")
    if not db_url:
        pytest.skip("TEST_DATABASE_URL is not set")

    admin = create_engine(db_url)
    timeout = 30
    start_time = time.time()
    while True:
        try:
            with admin.begin() as connection:
                connection.execute(text(f"DROP SCHEMA IF EXISTS {TEST_SCHEMA} CASCADE"))
                connection.execute(text(f"CREATE SCHEMA {TEST_SCHEMA}"))
            break
        except exc.OperationalError:
            if time.time() - start_time > timeout:
                pytest.fail(f"Database did not become connectable within {timeout} seconds.")
            time.sleep(2)

    engine = create_engine(db_url, connect_args={"options": f"-csearch_path={TEST_SCHEMA}"})
    Base.metadata.create_all(engine)
    yield engine

    engine.dispose()
    with admin.begin() as connection:
        connection.execute(text(f"DROP SCHEMA IF EXISTS {TEST_SCHEMA} CASCADE"))
    admin.dispose()


@pytest.fixture
def db(db_engine):
    """A session over freshly truncated ledger tables."""
    with db_engine.begin() as connection:
        connection.execute(text("TRUNCATE TABLE nakit_akis, cash_flow_analysis RESTART IDENTITY"))
    session = sessionmaker(bind=db_engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


def ledger_row(**overrides) -> CashFlowRecord:
    fields = dict(
        institution="BANKA_A",
        fund_no="F1",
        issue_no="1",
        bank_name="Merkez Bank",
        start_date=date(2023, 1, 1),
        return_date=date(2024, 1, 1),
        principal=Decimal("1000"),
        interest_rate=Decimal("0.15"),
        interest_amount=Decimal("100"),
        total_return=Decimal("1100"),
    )
    fields.update(overrides)
    return CashFlowRecord(**fields)


def snapshot(day: date, principal: str, earned: str = "50", model: str = "40", tlref: str = "45") -> CashFlowSnapshot:
    return CashFlowSnapshot(
        snapshot_date=day,
        principal=Decimal(principal),
        simple_interest=Decimal("30"),
        interest_earned=Decimal(earned),
        model_interest_earned=Decimal(model),
        tlref_interest_earned=Decimal(tlref),
        model_rate=Decimal("0.4"),
        tlref_rate=Decimal("0.45"),
    )


def seed(db, rows):
    db.add_all(rows)
    db.commit()


def model_interest(principal: float, rate: float, days: int) -> float:
    compound = (1 + rate / DAYS_IN_YEAR) ** DAYS_IN_YEAR - 1
    return principal * (1 + compound) ** (days / DAYS_IN_YEAR) - principal


# ── Interest totals ──────────────────────────────────────────────
def test_interest_totals_use_stored_interest_or_formula(db):
    # 365-day cycles: five with stored interest, five falling back to the formula
    rows = [ledger_row() for _ in range(5)] + [ledger_row(interest_amount=Decimal("0")) for _ in range(5)]
    # excluded: open cycle, other institution
    rows.append(ledger_row(total_return=Decimal("0"), interest_amount=Decimal("999")))
    rows.append(ledger_row(institution="BANKA_B", interest_amount=Decimal("999")))
    seed(db, rows)

    result = calculate_analysis(db, AnalysisRequest(interest_rate=15, institution="BANKA_A")).value

    expected_model = 10 * model_interest(1000, 0.15, 365)
    assert float(result.total_interest) == pytest.approx(5 * 100 + 5 * 150)
    assert float(result.total_model_interest) == pytest.approx(expected_model)
    assert float(result.difference_pct) == pytest.approx((1250 - expected_model) / expected_model * 100)


def test_special_bank_rows_always_use_rate_formula(db):
    seed(db, [ledger_row(bank_name="ZBJ Katilim", interest_amount=Decimal("500"))])

    result = calculate_analysis(db, AnalysisRequest(interest_rate=10, institution="BANKA_A")).value

    assert float(result.total_interest) == pytest.approx(100)


def test_interest_totals_fund_and_issue_filters(db):
    seed(db, [
        ledger_row(fund_no="F1", issue_no="1"),
        ledger_row(fund_no="F1", issue_no="2"),
        ledger_row(fund_no="F2", issue_no="1"),
    ])

    by_fund = calculate_analysis(db, AnalysisRequest(interest_rate=15, institution="BANKA_A", fund_no="F1")).value
    by_issue = calculate_analysis(
        db, AnalysisRequest(interest_rate=15, institution="BANKA_A", fund_no="F1", issue_no="2"),
    ).value

    assert float(by_fund.total_interest) == pytest.approx(200)
    assert float(by_issue.total_interest) == pytest.approx(100)


# ── Trends ───────────────────────────────────────────────────────
def weekly_rows():
    mondays = [date(2024, 5, 6) + timedelta(weeks=i) for i in range(4)]
    return [
        ledger_row(fund_no=fund, start_date=day, return_date=day + timedelta(days=30),
                   principal=Decimal("1000"), interest_amount=Decimal("10"))
        for fund in ("F1", "F2")
        for day in mondays
    ]


def test_weekly_trends_accumulate_per_fund(db):
    seed(db, weekly_rows())

    points = get_trends(db, TrendsRequest(institution="BANKA_A", period="week", limit=50), today=TODAY).value

    assert len(points) == 8
    assert [p.date for p in points] == sorted((p.date for p in points), reverse=True)
    for fund in ("F1", "F2"):
        series = sorted((p for p in points if p.fund_no == fund), key=lambda p: p.date)
        assert [p.date.date() for p in series] == [date(2024, 5, 6) + timedelta(weeks=i) for i in range(4)]
        assert [p.cumulative_deposit for p in series] == [Decimal(1000 * (i + 1)) for i in range(4)]
        assert series[-1].cumulative_deposit == 4 * series[-1].deposit
        assert series[-1].cumulative_interest == Decimal("40")
        assert all(p.growth_pct == 0 for p in series)
        assert all(p.avg_interest_rate == Decimal("15") for p in series)


def test_weekly_trends_filter_by_fund(db):
    seed(db, weekly_rows())

    points = get_trends(
        db, TrendsRequest(institution="BANKA_A", fund_no="F2", limit=50), today=TODAY,
    ).value

    assert len(points) == 4
    assert {p.fund_no for p in points} == {"F2"}


def test_trends_outside_window_are_ignored(db):
    seed(db, [ledger_row(start_date=date(2023, 1, 2))])

    assert get_trends(db, TrendsRequest(institution="BANKA_A"), today=TODAY).value == []


# ── Cash flow ────────────────────────────────────────────────────
def test_cash_flow_skips_zero_principal_rows(db):
    seed(db, [
        snapshot(date(2024, 5, 3), "1000"),
        snapshot(date(2024, 5, 17), "1000"),
        snapshot(date(2024, 5, 20), "0", earned="0"),
        snapshot(date(2024, 4, 10), "0", earned="0"),
    ])

    points = get_cash_flow(db, CashFlowRequest(period="month")).value

    assert len(points) == 1
    point = points[0]
    assert point.date.date() == date(2024, 5, 1)
    assert point.record_count == 2
    assert point.avg_principal == Decimal("1000")
    assert point.simple_yield_pct == Decimal("5")
    assert point.simple_vs_model_pct == Decimal("25")


# ── Repeatability ────────────────────────────────────────────────
def test_same_query_twice_gives_same_result(db):
    seed(db, weekly_rows())
    request = AnalysisRequest(interest_rate=15, institution="BANKA_A")
    trends = TrendsRequest(institution="BANKA_A", period="week", limit=50)

    first = calculate_analysis(db, request).value
    second = calculate_analysis(db, request).value
    assert (first.total_interest, first.total_model_interest) == (second.total_interest, second.total_model_interest)
    assert get_trends(db, trends, today=TODAY).value == get_trends(db, trends, today=TODAY).value
