"""
Export service: renders analysis, trend and cash-flow results as XLSX
(openpyxl), PDF (reportlab) or CSV byte streams.

An ExportService is built once at startup from ExportSettings; it holds no
other state.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from io import BytesIO, StringIO
from typing import List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape
import csv
import logging
import os
import re

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from analysis_service import interest_efficiency, performance_label, recommendations, risk_level
from schemas import AnalysisResult, CashFlowPoint, CashFlowRequest, TrendPoint, TrendsRequest

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"
CSV_MEDIA_TYPE = "text/csv"

MONEY_FORMAT = "#,##0.00"
PERCENT_FORMAT = "0.00%"

LEVEL_NAMES = {
    "basic": "Basic summary",
    "detailed": "Detailed analysis",
    "full": "Full report",
}

EXPORT_FORMATS = {
    "analysis": [
        {"value": "pdf", "text": "PDF report", "description": "Printable analysis report"},
        {"value": "excel", "text": "Excel workbook", "description": "For further data analysis"},
    ],
    "trends": [
        {"value": "excel", "text": "Excel workbook", "description": "Trend series"},
        {"value": "csv", "text": "CSV file", "description": "Raw data export"},
    ],
    "cash_flow": [
        {"value": "excel", "text": "Excel workbook", "description": "Cash-flow yield comparison"},
        {"value": "csv", "text": "CSV file", "description": "Raw data export"},
    ],
    "levels": [
        {"value": "basic", "text": LEVEL_NAMES["basic"], "description": "Core analysis results"},
        {"value": "detailed", "text": LEVEL_NAMES["detailed"], "description": "Adds efficiency, performance and risk"},
        {"value": "full", "text": LEVEL_NAMES["full"], "description": "Adds recommendations"},
    ],
}

HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF", size=12)
TITLE_FONT = Font(bold=True, size=16)
SECTION_FONT = Font(bold=True, size=12)

# (label, value, number format)
Row = Tuple[str, object, Optional[str]]


class UnsupportedFormatError(ValueError):
    """Raised for an export format the target does not offer."""


@dataclass(frozen=True)
class ExportSettings:
    report_title: str = "Cash Flow Analysis Report"
    currency_symbol: str = "TRY"
    author: str = "Cash Flow Dashboard"

    @classmethod
    def from_env(cls) -> "ExportSettings":
        return cls(
            report_title=os.getenv("EXPORT_REPORT_TITLE", cls.report_title),
            currency_symbol=os.getenv("EXPORT_CURRENCY_SYMBOL", cls.currency_symbol),
            author=os.getenv("EXPORT_AUTHOR", cls.author),
        )


@dataclass(frozen=True)
class ExportFile:
    content: bytes
    filename: str
    media_type: str


def export_filename(prefix: str, qualifier: str, extension: str,
                    now: Optional[datetime] = None) -> str:
    """<prefix>-<qualifier>-YYYYMMDD-HHMMSS.<extension>, header-safe ASCII."""
    now = now or datetime.now()
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "-", qualifier).strip("-") or "report"
    return f"{prefix}-{safe}-{now:%Y%m%d-%H%M%S}.{extension}"


def _workbook_bytes(wb: Workbook) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class ExportService:
    def __init__(self, settings: ExportSettings):
        self.settings = settings

    # ── Analysis ─────────────────────────────────────────────────
    def _analysis_sections(self, result: AnalysisResult, level: str) -> List[Tuple[str, List[Row]]]:
        parameters: List[Row] = [
            ("Interest rate", f"{result.interest_rate:.2f}%", None),
            ("Institution", result.institution, None),
        ]
        if result.fund_no:
            parameters.append(("Fund", result.fund_no, None))
        if result.issue_no:
            parameters.append(("Issue", result.issue_no, None))

        sections = [
            ("Parameters", parameters),
            ("Results", [
                ("Total interest", result.total_interest, MONEY_FORMAT),
                ("Model interest", result.total_model_interest, MONEY_FORMAT),
                ("Difference", result.difference, MONEY_FORMAT),
                ("Difference %", result.difference_pct / 100, PERCENT_FORMAT),
            ]),
        ]
        if level in ("detailed", "full"):
            sections.append(("Detailed analysis", [
                ("Interest efficiency", interest_efficiency(result) / 100, PERCENT_FORMAT),
                ("Performance", performance_label(result.difference_pct), None),
                ("Risk level", risk_level(result.difference_pct), None),
            ]))
        if level == "full":
            sections.append(("Recommendations", [
                (f"• {item}", None, None) for item in recommendations(result.difference_pct)
            ]))
        return sections

    def analysis_workbook(self, result: AnalysisResult, level: str = "basic") -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = "Cash Flow Analysis"
        ws.column_dimensions["A"].width = 32
        ws.column_dimensions["B"].width = 24

        ws.append([self.settings.report_title])
        ws["A1"].font = TITLE_FONT
        ws.append([f"Report date: {datetime.now():%d/%m/%Y %H:%M}"])
        ws.append([f"Level: {LEVEL_NAMES.get(level, level)}"])

        for title, rows in self._analysis_sections(result, level):
            ws.append([])
            ws.append([title])
            ws.cell(row=ws.max_row, column=1).font = SECTION_FONT
            for label, value, number_format in rows:
                ws.append([label, value])
                if number_format:
                    ws.cell(row=ws.max_row, column=2).number_format = number_format

        return _workbook_bytes(wb)

    def _display(self, value, number_format: Optional[str]) -> str:
        if value is None:
            return ""
        if number_format == MONEY_FORMAT:
            return f"{value:,.2f} {self.settings.currency_symbol}"
        if number_format == PERCENT_FORMAT:
            return f"{value * 100:.2f}%"
        return str(value)

    def analysis_pdf(self, result: AnalysisResult, level: str = "basic") -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=30,
            leftMargin=30,
            topMargin=30,
            bottomMargin=18,
            title=self.settings.report_title,
            author=self.settings.author,
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "ReportTitle",
            parent=styles["Heading1"],
            fontSize=20,
            textColor=colors.HexColor("#4472C4"),
            spaceAfter=12,
            alignment=TA_CENTER,
        )
        subtitle_style = ParagraphStyle(
            "ReportSubtitle",
            parent=styles["Normal"],
            fontSize=10,
            textColor=colors.grey,
            spaceAfter=20,
            alignment=TA_CENTER,
        )

        subtitle = (
            f"Generated on: {datetime.now():%Y-%m-%d %H:%M} | "
            f"{LEVEL_NAMES.get(level, level)} | {result.institution}"
        )
        elements = [
            Paragraph(escape(self.settings.report_title), title_style),
            Paragraph(escape(subtitle), subtitle_style),
            Spacer(1, 0.2 * inch),
        ]

        for title, rows in self._analysis_sections(result, level):
            elements.append(Paragraph(escape(title), styles["Heading2"]))
            table = Table(
                [[label, self._display(value, fmt)] for label, value, fmt in rows],
                colWidths=[3.2 * inch, 3 * inch],
            )
            table.setStyle(TableStyle([
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]))
            elements.append(table)
            elements.append(Spacer(1, 0.2 * inch))

        doc.build(elements)
        return buffer.getvalue()

    def export_analysis(self, result: AnalysisResult, fmt: str, level: str = "basic") -> ExportFile:
        if fmt == "pdf":
            content = self.analysis_pdf(result, level)
            name = export_filename("analysis", result.institution, "pdf")
            media_type = PDF_MEDIA_TYPE
        elif fmt == "excel":
            content = self.analysis_workbook(result, level)
            name = export_filename("analysis", result.institution, "xlsx")
            media_type = XLSX_MEDIA_TYPE
        else:
            raise UnsupportedFormatError("Unsupported format, use 'pdf' or 'excel'")
        logger.info("Analysis export ready: %s (%d bytes)", name, len(content))
        return ExportFile(content, name, media_type)

    def quick_analysis(self, result: AnalysisResult) -> ExportFile:
        content = self.analysis_workbook(result, "basic")
        return ExportFile(content, export_filename("quick-analysis", result.institution, "xlsx"), XLSX_MEDIA_TYPE)

    # ── Tables ───────────────────────────────────────────────────
    def _table_workbook(self, sheet_title: str, heading: str, subtitle: str,
                        headers: Sequence[str], rows: List[list],
                        formats: Sequence[Optional[str]]) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = sheet_title

        ws.append([heading])
        ws["A1"].font = TITLE_FONT
        ws.append([subtitle])
        ws.append([])
        ws.append(list(headers))
        for cell in ws[ws.max_row]:
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT

        for values in rows:
            ws.append(values)
            for column, number_format in enumerate(formats, start=1):
                if number_format:
                    ws.cell(row=ws.max_row, column=column).number_format = number_format

        for column in range(1, len(headers) + 1):
            ws.column_dimensions[get_column_letter(column)].width = 18
        return _workbook_bytes(wb)

    @staticmethod
    def _csv_bytes(preamble: List[str], headers: Sequence[str], rows: List[list]) -> bytes:
        out = StringIO()
        writer = csv.writer(out)
        for line in preamble:
            writer.writerow([line])
        writer.writerow([])
        writer.writerow(headers)
        writer.writerows(rows)
        return out.getvalue().encode("utf-8")

    @staticmethod
    def _fixed(value: Decimal) -> str:
        return f"{value:.2f}"

    # ── Trends ───────────────────────────────────────────────────
    TREND_HEADERS = ("Date", "Fund", "Deposit", "Cumulative deposit", "Interest",
                     "Cumulative interest", "Growth %", "Transactions")

    def trends_workbook(self, points: List[TrendPoint], request: TrendsRequest) -> bytes:
        rows = [
            [p.date.strftime("%d/%m/%Y"), p.fund_no, p.deposit, p.cumulative_deposit,
             p.interest_earned, p.cumulative_interest, p.growth_pct / 100, p.transaction_count]
            for p in points
        ]
        formats = (None, None, MONEY_FORMAT, MONEY_FORMAT, MONEY_FORMAT, MONEY_FORMAT, PERCENT_FORMAT, None)
        return self._table_workbook(
            "Trend Analysis",
            f"Trend analysis - {request.institution}",
            f"Period: {request.period} | Date: {datetime.now():%d/%m/%Y}",
            self.TREND_HEADERS, rows, formats,
        )

    def trends_csv(self, points: List[TrendPoint], request: TrendsRequest) -> bytes:
        rows = [
            [p.date.strftime("%d/%m/%Y"), p.fund_no, self._fixed(p.deposit),
             self._fixed(p.cumulative_deposit), self._fixed(p.interest_earned),
             self._fixed(p.cumulative_interest), self._fixed(p.growth_pct), p.transaction_count]
            for p in points
        ]
        preamble = [
            f"Trend analysis - {request.institution}",
            f"Period: {request.period}",
            f"Date: {datetime.now():%d/%m/%Y %H:%M}",
        ]
        return self._csv_bytes(preamble, self.TREND_HEADERS, rows)

    def export_trends(self, points: List[TrendPoint], request: TrendsRequest, fmt: str) -> ExportFile:
        if fmt == "excel":
            return ExportFile(self.trends_workbook(points, request),
                              export_filename("trend-analysis", request.institution, "xlsx"), XLSX_MEDIA_TYPE)
        if fmt == "csv":
            return ExportFile(self.trends_csv(points, request),
                              export_filename("trend-analysis", request.institution, "csv"), CSV_MEDIA_TYPE)
        raise UnsupportedFormatError("Unsupported format, use 'excel' or 'csv'")

    # ── Cash flow ────────────────────────────────────────────────
    CASH_FLOW_HEADERS = ("Date", "Principal", "Interest earned", "Model interest", "TLREF interest",
                         "Simple yield %", "Model yield %", "TLREF yield %", "Simple vs model %", "Simple vs TLREF %",
                         "Records")

    def cash_flow_workbook(self, points: List[CashFlowPoint], request: CashFlowRequest) -> bytes:
        rows = [
            [p.date.strftime("%d/%m/%Y"), p.avg_principal, p.avg_interest_earned,
             p.avg_model_interest_earned, p.avg_tlref_interest_earned,
             p.simple_yield_pct / 100, p.model_yield_pct / 100, p.tlref_yield_pct / 100,
             p.simple_vs_model_pct / 100, p.simple_vs_tlref_pct / 100, p.record_count]
            for p in points
        ]
        formats = (None, MONEY_FORMAT, MONEY_FORMAT, MONEY_FORMAT, MONEY_FORMAT,
                   PERCENT_FORMAT, PERCENT_FORMAT, PERCENT_FORMAT, PERCENT_FORMAT, PERCENT_FORMAT, None)
        return self._table_workbook(
            "Cash Flow Analysis",
            "Cash flow analysis",
            f"Period: {request.period} | Date: {datetime.now():%d/%m/%Y}",
            self.CASH_FLOW_HEADERS, rows, formats,
        )

    def cash_flow_csv(self, points: List[CashFlowPoint], request: CashFlowRequest) -> bytes:
        rows = [
            [p.date.strftime("%d/%m/%Y"), self._fixed(p.avg_principal), self._fixed(p.avg_interest_earned),
             self._fixed(p.avg_model_interest_earned), self._fixed(p.avg_tlref_interest_earned),
             self._fixed(p.simple_yield_pct), self._fixed(p.model_yield_pct), self._fixed(p.tlref_yield_pct),
             self._fixed(p.simple_vs_model_pct), self._fixed(p.simple_vs_tlref_pct), p.record_count]
            for p in points
        ]
        preamble = [
            "Cash flow analysis",
            f"Period: {request.period}",
            f"Date: {datetime.now():%d/%m/%Y %H:%M}",
        ]
        return self._csv_bytes(preamble, self.CASH_FLOW_HEADERS, rows)

    def export_cash_flow(self, points: List[CashFlowPoint], request: CashFlowRequest, fmt: str) -> ExportFile:
        if fmt == "excel":
            return ExportFile(self.cash_flow_workbook(points, request),
                              export_filename("cash-flow-analysis", request.period, "xlsx"), XLSX_MEDIA_TYPE)
        if fmt == "csv":
            return ExportFile(self.cash_flow_csv(points, request),
                              export_filename("cash-flow-analysis", request.period, "csv"), CSV_MEDIA_TYPE)
        raise UnsupportedFormatError("Unsupported format, use 'excel' or 'csv'")
