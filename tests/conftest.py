# tests/conftest.py
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from schemas import TrendPoint


def compile_pg(stmt):
    """Compiles a statement for PostgreSQL, expanding inline-rendered literals."""
    return stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"render_postcompile": True})


def row(**fields) -> SimpleNamespace:
    """A driver row stand-in supporting attribute access."""
    return SimpleNamespace(**fields)


def result_with(one=None, all_rows=None) -> MagicMock:
    """A mock Result whose .one() / .all() return the given rows."""
    result = MagicMock()
    result.one.return_value = one
    result.all.return_value = all_rows if all_rows is not None else []
    return result


def make_trend_point(
    day: datetime,
    cumulative_interest: str = "0",
    growth: str = "0",
    fund_no: str = "F1",
    cumulative_deposit: str = "0",
    transactions: int = 1,
    institution: Optional[str] = "BANKA_A",
) -> TrendPoint:
    return TrendPoint(
        timestamp=int(day.timestamp() * 1000),
        date=day,
        period=day.strftime("%Y-%m-%d"),
        fund_no=fund_no,
        deposit=Decimal("100"),
        cumulative_deposit=Decimal(cumulative_deposit),
        interest_earned=Decimal("1"),
        cumulative_interest=Decimal(cumulative_interest),
        growth_pct=Decimal(growth),
        cumulative_growth_pct=Decimal("0"),
        transaction_count=transactions,
        avg_interest_rate=Decimal("15"),
        institution=institution,
    )


@pytest.fixture
def mock_db() -> MagicMock:
    """A mock SQLAlchemy Session whose execute() returns an empty result by default."""
    session = MagicMock(spec=Session)
    session.execute.return_value = result_with(all_rows=[])
    return session
