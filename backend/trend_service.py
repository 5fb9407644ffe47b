"""
Trend service: time-bucketed deposit/interest series for an institution and
the cash-flow yield comparison, plus the summaries, comparisons and realtime
status built on top of them.

Like the analysis service, ledger failures are logged and turned into empty
series tagged as defaulted.
"""

from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ledger_repository import (
    CashFlowRow, TrendRow, fetch_cash_flow_rows, fetch_trend_rows, resolve_period,
)
from metrics import ZERO, growth_pct, mean_nonzero, pct_of, positive_ratio_pct
from schemas import CashFlowPoint, CashFlowRequest, Outcome, TrendPoint, TrendsRequest

logger = logging.getLogger(__name__)

TREND_WINDOW = relativedelta(months=12)
SUMMARY_LIMIT = 50
TOP_FUNDS = 5
REALTIME_DAILY_LIMIT = 7
REALTIME_WEEKLY_LIMIT = 4


def _epoch_ms(moment: datetime) -> int:
    # Naive buckets are UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


# ── Trend series ─────────────────────────────────────────────────
def _trend_point(row: TrendRow, institution: str) -> TrendPoint:
    return TrendPoint(
        timestamp=_epoch_ms(row.bucket),
        date=row.bucket,
        period=row.bucket.strftime("%Y-%m-%d"),
        fund_no=row.fund_no,
        deposit=row.deposit,
        cumulative_deposit=row.cumulative_deposit,
        interest_earned=row.interest_earned,
        cumulative_interest=row.cumulative_interest,
        growth_pct=growth_pct(row.deposit, row.previous_deposit),
        cumulative_growth_pct=growth_pct(row.deposit, row.first_deposit),
        transaction_count=row.transaction_count,
        avg_interest_rate=row.avg_interest_rate_pct,
        institution=institution,
    )


def get_trends(db: Session, request: TrendsRequest,
               today: Optional[date] = None) -> Outcome[List[TrendPoint]]:
    """Newest-first trend points over the trailing twelve months."""
    period = resolve_period(request.period, "week")
    today = today or datetime.now(timezone.utc).date()
    logger.info("Trends requested for %s, period=%s limit=%d", request.institution, period, request.limit)

    try:
        rows = fetch_trend_rows(
            db,
            institution=request.institution,
            period=period,
            from_date=today - TREND_WINDOW,
            to_date=today,
            limit=request.limit,
            fund_no=request.fund_no,
            issue_no=request.issue_no,
        )
    except Exception as exc:
        logger.exception("Trend query failed for %s, returning no points", request.institution)
        db.rollback()
        return Outcome([], defaulted=True, error=str(exc))

    return Outcome([_trend_point(row, request.institution) for row in rows])


# ── Cash flow ────────────────────────────────────────────────────
def _cash_flow_point(row: CashFlowRow, period: str) -> CashFlowPoint:
    principal = row.avg_principal
    earned = row.avg_interest_earned
    model = row.avg_model_interest_earned
    tlref = row.avg_tlref_interest_earned

    if principal > 0:
        vs_model = positive_ratio_pct(earned - model, model)
        vs_tlref = positive_ratio_pct(earned - tlref, tlref)
    else:
        vs_model = vs_tlref = ZERO

    return CashFlowPoint(
        timestamp=_epoch_ms(row.bucket),
        date=row.bucket,
        period=row.bucket.strftime("%Y-%m-%d"),
        avg_principal=principal,
        avg_simple_interest=row.avg_simple_interest,
        avg_interest_earned=earned,
        avg_model_interest_earned=model,
        avg_tlref_interest_earned=tlref,
        avg_model_rate=row.avg_model_rate,
        avg_tlref_rate=row.avg_tlref_rate,
        simple_yield_pct=positive_ratio_pct(earned, principal),
        model_yield_pct=positive_ratio_pct(model, principal),
        tlref_yield_pct=positive_ratio_pct(tlref, principal),
        simple_vs_model_pct=vs_model,
        simple_vs_tlref_pct=vs_tlref,
        record_count=row.record_count,
        period_type=period,
    )


def get_cash_flow(db: Session, request: CashFlowRequest) -> Outcome[List[CashFlowPoint]]:
    """Newest-first per-bucket averages with yield and cross-method performance."""
    period = resolve_period(request.period, "month")
    logger.info("Cash flow requested, period=%s limit=%d", period, request.limit)
    try:
        rows = fetch_cash_flow_rows(db, period=period, limit=request.limit)
    except Exception as exc:
        logger.exception("Cash flow query failed, returning no points")
        db.rollback()
        return Outcome([], defaulted=True, error=str(exc))
    return Outcome([_cash_flow_point(row, period) for row in rows])


# ── Scoring ──────────────────────────────────────────────────────
def average_growth(points: List[TrendPoint]) -> Decimal:
    return mean_nonzero(point.growth_pct for point in points)


def trend_performance_score(points: List[TrendPoint]) -> str:
    if not points:
        return "no data"
    avg = average_growth(points)
    if avg > 15:
        return "excellent"
    if avg > 8:
        return "good"
    if avg > 3:
        return "fair"
    if avg > 0:
        return "weak"
    return "negative"


def latest_growth(points: List[TrendPoint]) -> Decimal:
    """Change of cumulative interest between the two most recent points."""
    if len(points) < 2:
        return ZERO
    current, previous = sorted(points, key=lambda p: p.date, reverse=True)[:2]
    return pct_of(current.cumulative_interest - previous.cumulative_interest,
                  previous.cumulative_interest)


def overall_status(daily_growth: Decimal, weekly_growth: Decimal) -> str:
    if daily_growth > 5 and weekly_growth > 10:
        return "excellent"
    if daily_growth > 0 and weekly_growth > 5:
        return "good"
    if daily_growth > -5 and weekly_growth > 0:
        return "stable"
    if daily_growth > -10 and weekly_growth > -5:
        return "warning"
    return "critical"


def trend_alerts(daily: List[TrendPoint], daily_growth: Decimal,
                 weekly_growth: Decimal, now: datetime) -> List[Dict]:
    alerts = []
    if daily_growth < -10:
        alerts.append({
            "type": "warning",
            "level": "high",
            "message": f"Daily growth {daily_growth:.1f}%, attention needed",
            "timestamp": now,
        })
    if weekly_growth > 20:
        alerts.append({
            "type": "success",
            "level": "info",
            "message": f"Weekly growth {weekly_growth:.1f}%, excellent performance",
            "timestamp": now,
        })
    if len(daily) < 3:
        alerts.append({
            "type": "info",
            "level": "low",
            "message": "Recent days have missing data",
            "timestamp": now,
        })
    return alerts


# ── Insights ─────────────────────────────────────────────────────
def _newest(points: List[TrendPoint]) -> Optional[TrendPoint]:
    return max(points, key=lambda p: p.date) if points else None


def summarize_trends(points: List[TrendPoint], period: str) -> Dict:
    if not points:
        return {"has_data": False}

    by_fund: Dict[str, Dict[str, Decimal]] = defaultdict(
        lambda: {"total_interest": ZERO, "total_deposit": ZERO}
    )
    for point in points:
        by_fund[point.fund_no]["total_interest"] += point.cumulative_interest
        by_fund[point.fund_no]["total_deposit"] += point.cumulative_deposit
    top_funds = sorted(
        ({"fund_no": fund_no, **totals} for fund_no, totals in by_fund.items()),
        key=lambda entry: entry["total_interest"],
        reverse=True,
    )[:TOP_FUNDS]

    return {
        "has_data": True,
        "period": period,
        "point_count": len(points),
        "date_range": {
            "start": min(p.date for p in points),
            "end": max(p.date for p in points),
        },
        "totals": {
            "cumulative_deposit": max(p.cumulative_deposit for p in points),
            "cumulative_interest": max(p.cumulative_interest for p in points),
            "transaction_count": sum(p.transaction_count for p in points),
        },
        "growth": {
            "average": average_growth(points),
            "max": max(p.growth_pct for p in points),
            "min": min(p.growth_pct for p in points),
        },
        "performance_score": trend_performance_score(points),
        "top_funds": top_funds,
    }


def trends_summary(db: Session, institution: str, period: str = "week") -> Outcome[Dict]:
    outcome = get_trends(db, TrendsRequest(institution=institution, period=period, limit=SUMMARY_LIMIT))
    summary = summarize_trends(outcome.value, resolve_period(period, "week"))
    return Outcome(summary, defaulted=outcome.defaulted, error=outcome.error)


def compare_trends(db: Session, requests: List[TrendsRequest]) -> List[Dict]:
    logger.info("Trend comparison for %d institutions", len(requests))
    results = []
    for request in requests:
        points = get_trends(db, request).value
        results.append({
            "institution": request.institution,
            "period": resolve_period(request.period, "week"),
            "point_count": len(points),
            "cumulative_deposit": max((p.cumulative_deposit for p in points), default=ZERO),
            "cumulative_interest": max((p.cumulative_interest for p in points), default=ZERO),
            "average_growth": average_growth(points),
            "performance_score": trend_performance_score(points),
            "latest": _newest(points),
        })
    return results


def realtime_status(db: Session, institution: str) -> Dict:
    daily = get_trends(db, TrendsRequest(
        institution=institution, period="day", limit=REALTIME_DAILY_LIMIT)).value
    weekly = get_trends(db, TrendsRequest(
        institution=institution, period="week", limit=REALTIME_WEEKLY_LIMIT)).value

    daily_growth = latest_growth(daily)
    weekly_growth = latest_growth(weekly)
    now = datetime.now(timezone.utc)
    recent = sorted(daily, key=lambda p: p.date, reverse=True)

    return {
        "last_update": now,
        "institution": institution,
        "daily": {
            "latest": _newest(daily),
            "recent": recent[:2],
            "growth": daily_growth,
        },
        "weekly": {
            "latest": _newest(weekly),
            "points": weekly,
            "growth": weekly_growth,
        },
        "alerts": trend_alerts(daily, daily_growth, weekly_growth, now),
        "status": overall_status(daily_growth, weekly_growth),
    }
