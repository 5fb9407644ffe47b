"""
Linear forecast over a trend series.

Projects the last cumulative interest forward by the mean non-zero growth,
one period at a time, with confidence dropping at every step.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from statistics import pstdev
from typing import List

from dateutil.relativedelta import relativedelta

from ledger_repository import resolve_period
from metrics import HUNDRED
from schemas import ForecastPoint, TrendPoint
from trend_service import average_growth

MIN_POINTS = 3

PERIOD_STEPS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": relativedelta(months=1),
    "quarter": relativedelta(months=3),
    "year": relativedelta(years=1),
}


class InsufficientDataError(ValueError):
    """Raised when a series is too short to project."""


def step_confidence(step: int) -> int:
    return max(50 - step * 10, 10)


def build_forecast(points: List[TrendPoint], periods: int, period: str) -> List[ForecastPoint]:
    if len(points) < MIN_POINTS:
        raise InsufficientDataError(
            f"Not enough data to forecast (at least {MIN_POINTS} periods required)"
        )

    ordered = sorted(points, key=lambda p: p.date)
    step = PERIOD_STEPS[resolve_period(period, "week")]
    factor = 1 + average_growth(ordered) / HUNDRED

    current_date: datetime = ordered[-1].date
    current_value: Decimal = ordered[-1].cumulative_interest
    forecasts = []
    for i in range(1, periods + 1):
        current_date = current_date + step
        current_value = current_value * factor
        forecasts.append(ForecastPoint(
            date=current_date,
            period=current_date.strftime("%Y-%m-%d"),
            forecast_cumulative_interest=current_value,
            confidence=step_confidence(i),
        ))
    return forecasts


def forecast_confidence(points: List[TrendPoint]) -> int:
    """Overall confidence from series length and growth volatility."""
    if len(points) < 5:
        return 30
    if len(points) < 10:
        return 50

    growth = [p.growth_pct for p in points if p.growth_pct != 0]
    if not growth:
        return 40

    spread = pstdev(growth)
    if spread < 5:
        return 80
    if spread < 10:
        return 70
    if spread < 20:
        return 60
    return 40
