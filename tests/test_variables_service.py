# tests/test_variables_service.py
from decimal import Decimal

from sqlalchemy.exc import OperationalError

from conftest import result_with, row
from variables_service import filter_stats, fund_options, hierarchy, institution_options, issue_options


def groups(*entries):
    return result_with(all_rows=[
        row(key=key, record_count=count, total_amount=Decimal(amount)) for key, count, amount in entries
    ])


def test_institution_options_labels(mock_db):
    mock_db.execute.return_value = groups(("BANKA_A", 1234, "5678.4"), ("BANKA_B", 3, "0"))

    outcome = institution_options(mock_db)

    first, second = outcome.value
    assert first.text == "BANKA_A (1,234 records - ₺5,678)"
    assert first.value == "BANKA_A"
    assert first.record_count == 1234
    assert first.total_amount == Decimal("5678.4")
    assert second.text == "BANKA_B (3 records - ₺0)"


def test_fund_and_issue_option_labels(mock_db):
    mock_db.execute.return_value = groups(("12", 4, "10000"))

    assert fund_options(mock_db, "BANKA_A").value[0].text == "Fund 12 (4 records - ₺10,000)"
    assert issue_options(mock_db, "BANKA_A", "12").value[0].text == "Issue 12 (4 records - ₺10,000)"


def test_options_failure_returns_empty(mock_db):
    mock_db.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

    outcome = fund_options(mock_db, "BANKA_A")

    assert outcome.value == []
    assert outcome.defaulted is True
    mock_db.rollback.assert_called_once()


def test_hierarchy_without_selection_only_loads_institutions(mock_db):
    mock_db.execute.return_value = groups(("BANKA_A", 10, "100"))

    data = hierarchy(mock_db)

    assert mock_db.execute.call_count == 1
    assert data["institutions"][0].text == "BANKA_A (10 records)"
    assert data["funds"] == [] and data["issues"] == []
    assert data["has_institution"] is False
    assert data["total_institutions"] == 1


def test_hierarchy_with_institution_and_fund(mock_db):
    mock_db.execute.side_effect = [
        groups(("BANKA_A", 10, "100")),
        groups(("12", 4, "2500"), ("15", 6, "7500")),
        groups(("3", 2, "1200")),
    ]

    data = hierarchy(mock_db, institution="BANKA_A", fund_no="12")

    assert [f.text for f in data["funds"]] == ["Fund 12 (₺2,500)", "Fund 15 (₺7,500)"]
    assert data["issues"][0].text == "Issue 3 (₺1,200)"
    assert data["has_fund"] is True
    assert (data["total_funds"], data["total_issues"]) == (2, 1)


def test_filter_stats(mock_db):
    mock_db.execute.return_value = groups(
        ("BANKA_A", 10, "9000"), ("BANKA_B", 30, "3000"),
    )

    stats = filter_stats(mock_db)

    assert stats["institution_count"] == 2
    assert stats["total_records"] == 40
    assert stats["total_amount"] == Decimal("12000")
    assert stats["largest_institution"] == "BANKA_A"
    assert stats["most_active_institution"] == "BANKA_B"
    assert stats["average_amount"] == Decimal("6000")
    assert stats["average_records"] == Decimal("20")


def test_filter_stats_empty(mock_db):
    stats = filter_stats(mock_db)

    assert stats["institution_count"] == 0
    assert stats["largest_institution"] is None
    assert stats["average_amount"] == 0
