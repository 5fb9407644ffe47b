"""
Pydantic request and response models for the dashboard API.

Attributes are English; the JSON names are the camelCase names the dashboard
frontend already speaks (``kaynakKurulus``, ``toplamFaizTutari``...). Request
bodies accept either form. Monetary and percentage values are Decimal
internally and serialize to plain JSON numbers.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, computed_field

from metrics import pct_of

Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# ── Requests ─────────────────────────────────────────────────────
class AnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interest_rate: float = Field(..., gt=0, le=100, alias="faizOrani")   # percent, 15.0 == 15%
    institution: str = Field(..., min_length=1, alias="kaynakKurulus")
    fund_no: Optional[str] = Field(None, alias="fonNo")
    issue_no: Optional[str] = Field(None, alias="ihracNo")
    start_date: Optional[date] = Field(None, alias="baslangicTarihi")
    end_date: Optional[date] = Field(None, alias="bitisTarihi")


class TrendsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    institution: str = Field(..., min_length=1, alias="kaynakKurulus")
    fund_no: Optional[str] = Field(None, alias="fonNo")
    issue_no: Optional[str] = Field(None, alias="ihracNo")
    period: str = "week"
    limit: int = Field(100, ge=1, le=1000)


class CashFlowRequest(BaseModel):
    period: str = "month"
    limit: int = Field(100, ge=1, le=1000)


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    level: Literal["basic", "detailed", "full"] = "basic"
    format: Literal["pdf", "excel"] = "pdf"
    analysis: AnalysisRequest = Field(..., alias="analysisData")


# ── Results ──────────────────────────────────────────────────────
class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_interest: Amount = Field(serialization_alias="toplamFaizTutari")
    total_model_interest: Amount = Field(serialization_alias="toplamModelFaizTutari")
    interest_rate: float = Field(serialization_alias="faizOrani")
    institution: str = Field(serialization_alias="kaynakKurulus")
    fund_no: Optional[str] = Field(None, serialization_alias="fonNo")
    issue_no: Optional[str] = Field(None, serialization_alias="ihracNo")
    calculated_at: datetime = Field(serialization_alias="calculatedAt")

    @computed_field(alias="farkTutari")
    @property
    def difference(self) -> Amount:
        return self.total_interest - self.total_model_interest

    @computed_field(alias="farkYuzdesi")
    @property
    def difference_pct(self) -> Amount:
        return pct_of(self.difference, self.total_model_interest)


class TrendPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int                 # bucket start, epoch milliseconds
    date: datetime = Field(serialization_alias="tarih")
    period: str                    # YYYY-MM-DD
    fund_no: str = Field(serialization_alias="fonNo")
    deposit: Amount = Field(serialization_alias="haftalikMevduat")
    cumulative_deposit: Amount = Field(serialization_alias="kumulatifMevduat")
    interest_earned: Amount = Field(serialization_alias="haftalikFaizKazanci")
    cumulative_interest: Amount = Field(serialization_alias="kumulatifFaizKazanci")
    growth_pct: Amount = Field(serialization_alias="haftalikBuyumeYuzde")
    cumulative_growth_pct: Amount = Field(serialization_alias="kumulatifBuyumeYuzde")
    transaction_count: int = Field(serialization_alias="haftalikIslemSayisi")
    avg_interest_rate: Amount = Field(serialization_alias="ortalamaPaizOrani")
    institution: str = Field(serialization_alias="kaynakKurulus")


class CashFlowPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    date: datetime = Field(serialization_alias="tarih")
    period: str
    avg_principal: Amount = Field(serialization_alias="totalAnapara")
    avg_simple_interest: Amount = Field(serialization_alias="avgBasitFaiz")
    avg_interest_earned: Amount = Field(serialization_alias="totalFaizKazanci")
    avg_model_interest_earned: Amount = Field(serialization_alias="totalModelFaizKazanci")
    avg_tlref_interest_earned: Amount = Field(serialization_alias="totalTlrefKazanci")
    avg_model_rate: Amount = Field(serialization_alias="avgModelNemaOrani")
    avg_tlref_rate: Amount = Field(serialization_alias="avgTlrefFaiz")
    simple_yield_pct: Amount = Field(serialization_alias="basitFaizYieldPercentage")
    model_yield_pct: Amount = Field(serialization_alias="modelFaizYieldPercentage")
    tlref_yield_pct: Amount = Field(serialization_alias="tlrefFaizYieldPercentage")
    simple_vs_model_pct: Amount = Field(serialization_alias="basitVsModelPerformance")
    simple_vs_tlref_pct: Amount = Field(serialization_alias="basitVsTlrefPerformance")
    record_count: int = Field(serialization_alias="recordCount")
    period_type: str = Field(serialization_alias="periodType")


class VariableOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    value: str
    record_count: Optional[int] = Field(None, serialization_alias="recordCount")
    total_amount: Optional[Amount] = Field(None, serialization_alias="totalAmount")


class ForecastPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: datetime = Field(serialization_alias="tarih")
    period: str
    forecast_cumulative_interest: Amount = Field(serialization_alias="forecastKumulatifFaiz")
    forecast_type: str = Field("Linear Projection", serialization_alias="forecastType")
    confidence: int


class HealthCheck(BaseModel):
    status: str
    timestamp: datetime
    version: str
    details: Dict[str, Any] = {}


# ── Service outcome ──────────────────────────────────────────────
T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    A service result plus a flag telling whether it was computed or defaulted
    after a swallowed failure. The HTTP layer only looks at ``value``.
    """
    value: T
    defaulted: bool = False
    error: Optional[str] = None
