"""
Filter variables: institution, fund and issue selectors for the dashboard.
"""

from decimal import Decimal
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from ledger_repository import GroupTotal, fetch_funds, fetch_institutions, fetch_issues
from metrics import ZERO
from schemas import Outcome, VariableOption

logger = logging.getLogger(__name__)


def _records(count: int) -> str:
    return f"{count:,} records"


def _amount(amount: Decimal) -> str:
    return f"₺{amount:,.0f}"


def _options(groups: List[GroupTotal], label: Callable[[GroupTotal], str]) -> List[VariableOption]:
    return [
        VariableOption(
            text=label(group),
            value=group.key,
            record_count=group.record_count,
            total_amount=group.total_amount,
        )
        for group in groups
    ]


def _safe_fetch(db: Session, what: str, fetch, *args) -> Outcome[List[GroupTotal]]:
    try:
        return Outcome(fetch(db, *args))
    except Exception as exc:
        logger.exception("Loading %s failed, returning an empty list", what)
        db.rollback()
        return Outcome([], defaulted=True, error=str(exc))


# ── Selectors ────────────────────────────────────────────────────
def institution_options(db: Session) -> Outcome[List[VariableOption]]:
    groups = _safe_fetch(db, "institutions", fetch_institutions)
    options = _options(
        groups.value, lambda g: f"{g.key} ({_records(g.record_count)} - {_amount(g.total_amount)})"
    )
    logger.info("%d institutions found", len(options))
    return Outcome(options, groups.defaulted, groups.error)


def fund_options(db: Session, institution: str) -> Outcome[List[VariableOption]]:
    groups = _safe_fetch(db, "funds", fetch_funds, institution)
    options = _options(
        groups.value, lambda g: f"Fund {g.key} ({_records(g.record_count)} - {_amount(g.total_amount)})"
    )
    return Outcome(options, groups.defaulted, groups.error)


def issue_options(db: Session, institution: str, fund_no: str) -> Outcome[List[VariableOption]]:
    groups = _safe_fetch(db, "issues", fetch_issues, institution, fund_no)
    options = _options(
        groups.value, lambda g: f"Issue {g.key} ({_records(g.record_count)} - {_amount(g.total_amount)})"
    )
    return Outcome(options, groups.defaulted, groups.error)


def hierarchy(db: Session, institution: Optional[str] = None,
              fund_no: Optional[str] = None) -> Dict:
    """All selector levels in one go; deeper levels load only when the parent is chosen."""
    institutions = _options(
        _safe_fetch(db, "institutions", fetch_institutions).value,
        lambda g: f"{g.key} ({_records(g.record_count)})",
    )

    funds: List[VariableOption] = []
    if institution:
        funds = _options(
            _safe_fetch(db, "funds", fetch_funds, institution).value,
            lambda g: f"Fund {g.key} ({_amount(g.total_amount)})",
        )

    issues: List[VariableOption] = []
    if institution and fund_no:
        issues = _options(
            _safe_fetch(db, "issues", fetch_issues, institution, fund_no).value,
            lambda g: f"Issue {g.key} ({_amount(g.total_amount)})",
        )

    return {
        "institutions": institutions,
        "funds": funds,
        "issues": issues,
        "has_institution": bool(institution),
        "has_fund": bool(fund_no),
        "total_institutions": len(institutions),
        "total_funds": len(funds),
        "total_issues": len(issues),
    }


def filter_stats(db: Session) -> Dict:
    groups = _safe_fetch(db, "institutions", fetch_institutions).value
    total_records = sum(g.record_count for g in groups)
    total_amount = sum((g.total_amount for g in groups), ZERO)

    largest = max(groups, key=lambda g: g.total_amount, default=None)
    most_active = max(groups, key=lambda g: g.record_count, default=None)

    return {
        "institution_count": len(groups),
        "total_records": total_records,
        "total_amount": total_amount,
        "largest_institution": largest.key if largest else None,
        "most_active_institution": most_active.key if most_active else None,
        "average_amount": total_amount / len(groups) if groups else ZERO,
        "average_records": Decimal(total_records) / len(groups) if groups else ZERO,
    }
