"""
Analysis service: real vs. model interest for one institution, plus the
qualitative labels and recommendations built on the percentage difference.

Failures while talking to the ledger are logged and turned into a zero-valued
result; the returned Outcome carries the flag so callers can tell the two
apart.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List
import logging

from sqlalchemy.orm import Session

from ledger_repository import InterestTotals, fetch_funds, fetch_interest_totals
from metrics import ZERO, pct_of
from schemas import AnalysisRequest, AnalysisResult, Outcome

logger = logging.getLogger(__name__)


# ── Calculation ──────────────────────────────────────────────────
def _build_result(request: AnalysisRequest, totals: InterestTotals) -> AnalysisResult:
    return AnalysisResult(
        total_interest=totals.total_interest,
        total_model_interest=totals.total_model_interest,
        interest_rate=request.interest_rate,
        institution=request.institution,
        fund_no=request.fund_no,
        issue_no=request.issue_no,
        calculated_at=datetime.now(timezone.utc),
    )


def calculate_analysis(db: Session, request: AnalysisRequest) -> Outcome[AnalysisResult]:
    logger.info("Analysis started for %s at %s%%", request.institution, request.interest_rate)
    try:
        totals = fetch_interest_totals(
            db,
            institution=request.institution,
            interest_rate=request.interest_rate,
            fund_no=request.fund_no,
            issue_no=request.issue_no,
            start_date=request.start_date,
            end_date=request.end_date,
        )
    except Exception as exc:
        logger.exception("Analysis failed for %s, returning zero totals", request.institution)
        db.rollback()
        return Outcome(_build_result(request, InterestTotals(ZERO, ZERO)), defaulted=True, error=str(exc))

    result = _build_result(request, totals)
    logger.info(
        "Analysis done for %s: real=%s model=%s diff=%s",
        request.institution, result.total_interest, result.total_model_interest, result.difference,
    )
    return Outcome(result)


def compare_analysis(db: Session, requests: List[AnalysisRequest]) -> List[Outcome[AnalysisResult]]:
    """Evaluate each request in order; one failing entry does not stop the rest."""
    logger.info("Comparison analysis for %d institutions", len(requests))
    return [calculate_analysis(db, request) for request in requests]


# ── Labels ───────────────────────────────────────────────────────
def performance_label(difference_pct: Decimal) -> str:
    if difference_pct > 10:
        return "excellent"
    if difference_pct > 5:
        return "good"
    if difference_pct > 0:
        return "fair"
    if difference_pct > -5:
        return "weak"
    return "poor"


def risk_level(difference_pct: Decimal) -> str:
    magnitude = abs(difference_pct)
    if magnitude < 5:
        return "low"
    if magnitude < 15:
        return "medium"
    return "high"


def interest_efficiency(result: AnalysisResult) -> Decimal:
    """Real interest as a percentage of model interest."""
    return pct_of(result.total_interest, result.total_model_interest)


def recommendations(difference_pct: Decimal) -> List[str]:
    if difference_pct < -10:
        items = [
            "Urgent: review the interest strategy",
            "Update the model interest rate",
        ]
    elif difference_pct < -5:
        items = [
            "Optimise the interest policy",
            "Prepare a performance improvement plan",
        ]
    elif difference_pct < 0:
        items = ["Small performance improvements are possible"]
    elif difference_pct < 5:
        items = [
            "The current strategy can be continued",
            "Keep monitoring performance",
        ]
    else:
        items = [
            "Excellent performance, keep the current strategy",
            "This result can serve as a benchmark for other institutions",
        ]
    items.append("Take a regular analysis report")
    items.append("Track the dashboard for near real-time changes")
    return items


# ── Summary ──────────────────────────────────────────────────────
def analysis_summary(db: Session, request: AnalysisRequest) -> Outcome[Dict]:
    """Analysis plus fund totals for the institution and the derived labels."""
    outcome = calculate_analysis(db, request)
    analysis = outcome.value

    defaulted, error = outcome.defaulted, outcome.error
    try:
        funds = fetch_funds(db, request.institution)
    except Exception as exc:
        logger.exception("Fund lookup failed for %s", request.institution)
        db.rollback()
        funds = []
        defaulted, error = True, error or str(exc)

    total_fund_amount = sum((fund.total_amount for fund in funds), ZERO)
    summary = {
        "analysis": analysis,
        "fund_count": len(funds),
        "total_fund_amount": total_fund_amount,
        "average_fund_amount": total_fund_amount / len(funds) if funds else ZERO,
        "performance": performance_label(analysis.difference_pct),
        "risk_level": risk_level(analysis.difference_pct),
    }
    return Outcome(summary, defaulted=defaulted, error=error)
