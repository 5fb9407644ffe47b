"""
Cash Flow Dashboard: FastAPI Backend
Endpoints: interest analysis, trends, cash-flow yields, filter variables, exports
"""

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from datetime import datetime, timezone
from typing import Optional, List, Any
from sqlalchemy.orm import Session
import logging
import os

from database import get_db, check_connection, database_label
from schemas import (
    AnalysisRequest, TrendsRequest, CashFlowRequest, ExportRequest, HealthCheck,
)
from forecast import InsufficientDataError, build_forecast, forecast_confidence
from export_service import (
    EXPORT_FORMATS, ExportFile, ExportService, ExportSettings, UnsupportedFormatError,
)
import analysis_service
import trend_service
import variables_service

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
FORECAST_HISTORY = 20
FORECAST_WARNING = (
    "These projections are a simple extrapolation of past data. "
    "Do not use them for investment decisions."
)

# ── App ──────────────────────────────────────────────────────────
app = FastAPI(title="Cash Flow Dashboard API", version=API_VERSION)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

export_service = ExportService(ExportSettings.from_env())


# ── Startup ──────────────────────────────────────────────────────
@app.on_event("startup")
async def startup_event():
    logger.info("Database reachable at %s: %s", database_label(), check_connection())


# ── Envelope ─────────────────────────────────────────────────────
def _envelope(data: Any, message: str, count: Optional[int] = None, success: bool = True) -> dict:
    if count is None:
        if isinstance(data, list):
            count = len(data)
        else:
            count = 0 if data is None else 1
    return {
        "success": success,
        "message": message,
        "data": data,
        "count": count,
        "timestamp": datetime.now(timezone.utc),
    }


def _rejection(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(_envelope(None, message, count=0, success=False)),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _rejection(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.info("Rejected request to %s: %s", request.url.path, problems)
    return _rejection(400, f"Invalid request: {problems}")


@app.exception_handler(InsufficientDataError)
async def insufficient_data_handler(request: Request, exc: InsufficientDataError):
    return _rejection(400, str(exc))


@app.exception_handler(UnsupportedFormatError)
async def unsupported_format_handler(request: Request, exc: UnsupportedFormatError):
    return _rejection(400, str(exc))


def _file_response(export: ExportFile) -> Response:
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


# ═══════════════════════════════════════════════════════════════
#  ANALYSIS ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.post("/api/analysis/calculate")
def calculate_analysis(request: AnalysisRequest, db: Session = Depends(get_db)):
    result = analysis_service.calculate_analysis(db, request).value
    return _envelope(result, "Analysis calculated")


@app.get("/api/analysis/simple")
def simple_analysis(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    interest_rate: float = Query(..., alias="faizOrani", gt=0, le=100),
    fund_no: Optional[str] = Query(None, alias="fonNo"),
    issue_no: Optional[str] = Query(None, alias="ihracNo"),
    db: Session = Depends(get_db),
):
    """Analysis from query parameters only, no date bounds."""
    request = AnalysisRequest(
        institution=institution, interest_rate=interest_rate,
        fund_no=fund_no, issue_no=issue_no,
    )
    return _envelope(analysis_service.calculate_analysis(db, request).value, "Simple analysis completed")


@app.post("/api/analysis/compare")
def compare_analysis(requests: List[AnalysisRequest], db: Session = Depends(get_db)):
    results = [outcome.value for outcome in analysis_service.compare_analysis(db, requests)]
    return _envelope(results, f"{len(results)} institutions compared")


@app.get("/api/analysis/summary")
def analysis_summary(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    interest_rate: float = Query(..., alias="faizOrani", gt=0, le=100),
    db: Session = Depends(get_db),
):
    request = AnalysisRequest(institution=institution, interest_rate=interest_rate)
    return _envelope(analysis_service.analysis_summary(db, request).value, "Analysis summary ready")


# ═══════════════════════════════════════════════════════════════
#  TREND ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.post("/api/trends/data")
def trends_data(request: TrendsRequest, db: Session = Depends(get_db)):
    points = trend_service.get_trends(db, request).value
    return _envelope(points, f"{len(points)} trend points loaded")


@app.get("/api/trends/simple")
def trends_simple(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    period: str = "week",
    fund_no: Optional[str] = Query(None, alias="fonNo"),
    issue_no: Optional[str] = Query(None, alias="ihracNo"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    request = TrendsRequest(
        institution=institution, period=period, limit=limit,
        fund_no=fund_no, issue_no=issue_no,
    )
    points = trend_service.get_trends(db, request).value
    return _envelope(points, f"{len(points)} trend points loaded")


@app.post("/api/trends/cash-flow")
def cash_flow(request: CashFlowRequest, db: Session = Depends(get_db)):
    points = trend_service.get_cash_flow(db, request).value
    return _envelope(points, f"{len(points)} cash flow points loaded")


@app.get("/api/trends/cash-flow")
def cash_flow_simple(
    period: str = "month",
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    points = trend_service.get_cash_flow(db, CashFlowRequest(period=period, limit=limit)).value
    return _envelope(points, f"{len(points)} cash flow points loaded")


@app.get("/api/trends/summary")
def trends_summary(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    period: str = "week",
    db: Session = Depends(get_db),
):
    summary = trend_service.trends_summary(db, institution, period).value
    if not summary["has_data"]:
        return _envelope(summary, "No trend data found", count=0)
    return _envelope(summary, "Trend summary ready")


@app.post("/api/trends/compare")
def trends_compare(requests: List[TrendsRequest], db: Session = Depends(get_db)):
    results = trend_service.compare_trends(db, requests)
    return _envelope(results, f"{len(results)} institutions compared")


@app.get("/api/trends/forecast")
def trends_forecast(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    period: str = "week",
    forecast_periods: int = Query(4, alias="forecastPeriods", ge=1, le=52),
    db: Session = Depends(get_db),
):
    """Linear projection of cumulative interest from the latest trend points."""
    request = TrendsRequest(institution=institution, period=period, limit=FORECAST_HISTORY)
    history = trend_service.get_trends(db, request).value
    forecast = build_forecast(history, forecast_periods, period)

    data = {
        "historical": sorted(history, key=lambda p: p.date),
        "forecast": forecast,
        "method": "Linear Regression",
        "confidence": forecast_confidence(history),
        "warning": FORECAST_WARNING,
    }
    return _envelope(data, f"{len(forecast)} periods forecast", count=len(history) + len(forecast))


@app.get("/api/trends/realtime")
def trends_realtime(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    db: Session = Depends(get_db),
):
    return _envelope(trend_service.realtime_status(db, institution), "Realtime trend status ready")


# ═══════════════════════════════════════════════════════════════
#  FILTER VARIABLES
# ═══════════════════════════════════════════════════════════════

@app.get("/api/variables/kaynak-kurulus")
@app.get("/api/variables/institutions", include_in_schema=False)
def variables_institutions(db: Session = Depends(get_db)):
    options = variables_service.institution_options(db).value
    return _envelope(options, f"{len(options)} institutions found")


@app.get("/api/variables/fonlar")
@app.get("/api/variables/funds", include_in_schema=False)
def variables_funds(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    db: Session = Depends(get_db),
):
    options = variables_service.fund_options(db, institution).value
    return _envelope(options, f"{len(options)} funds found")


@app.get("/api/variables/ihraclar")
@app.get("/api/variables/issues", include_in_schema=False)
def variables_issues(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    fund_no: str = Query(..., alias="fonNo", min_length=1),
    db: Session = Depends(get_db),
):
    options = variables_service.issue_options(db, institution, fund_no).value
    return _envelope(options, f"{len(options)} issues found")


@app.get("/api/variables/hierarchy")
def variables_hierarchy(
    institution: Optional[str] = Query(None, alias="kaynakKurulus"),
    fund_no: Optional[str] = Query(None, alias="fonNo"),
    db: Session = Depends(get_db),
):
    data = variables_service.hierarchy(db, institution, fund_no)
    count = data["total_institutions"] + data["total_funds"] + data["total_issues"]
    return _envelope(data, "Filter hierarchy ready", count=count)


@app.get("/api/variables/stats")
def variables_stats(db: Session = Depends(get_db)):
    return _envelope(variables_service.filter_stats(db), "Filter statistics ready")


# ═══════════════════════════════════════════════════════════════
#  EXPORTS
# ═══════════════════════════════════════════════════════════════

@app.post("/api/export/analysis")
def export_analysis(req: ExportRequest, db: Session = Depends(get_db)):
    logger.info("Export requested: %s %s (%s)", req.analysis.institution, req.format, req.level)
    result = analysis_service.calculate_analysis(db, req.analysis).value
    return _file_response(export_service.export_analysis(result, req.format, req.level))


@app.post("/api/export/trends")
def export_trends(
    request: TrendsRequest,
    fmt: str = Query("excel", alias="format"),
    db: Session = Depends(get_db),
):
    points = trend_service.get_trends(db, request).value
    if not points:
        raise HTTPException(status_code=400, detail="No trend data to export")
    return _file_response(export_service.export_trends(points, request, fmt.lower()))


@app.post("/api/export/cash-flow")
def export_cash_flow(
    request: CashFlowRequest,
    fmt: str = Query("excel", alias="format"),
    db: Session = Depends(get_db),
):
    points = trend_service.get_cash_flow(db, request).value
    if not points:
        raise HTTPException(status_code=400, detail="No cash flow data to export")
    return _file_response(export_service.export_cash_flow(points, request, fmt.lower()))


@app.get("/api/export/quick-excel")
def export_quick_excel(
    institution: str = Query(..., alias="kaynakKurulus", min_length=1),
    interest_rate: float = Query(..., alias="faizOrani", gt=0, le=100),
    fund_no: Optional[str] = Query(None, alias="fonNo"),
    issue_no: Optional[str] = Query(None, alias="ihracNo"),
    db: Session = Depends(get_db),
):
    request = AnalysisRequest(
        institution=institution, interest_rate=interest_rate,
        fund_no=fund_no, issue_no=issue_no,
    )
    result = analysis_service.calculate_analysis(db, request).value
    return _file_response(export_service.quick_analysis(result))


@app.get("/api/export/formats")
async def export_formats():
    return _envelope(EXPORT_FORMATS, "Export formats listed", count=1)


# ═══════════════════════════════════════════════════════════════
#  HEALTH
# ═══════════════════════════════════════════════════════════════

@app.get("/health", response_model=HealthCheck)
def health():
    connected = check_connection()
    return HealthCheck(
        status="healthy" if connected else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
        details={
            "database": "connected" if connected else "unreachable",
            "database_url": database_label(),
        },
    )


@app.get("/")
async def root():
    return {"message": f"Cash Flow Dashboard API v{API_VERSION}", "docs": "/docs"}
