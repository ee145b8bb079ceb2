"""
Statistics Schemas
Request payloads reported by internal services and enriched response views
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docstats.config import STATISTICS_SOURCES
from docstats.models.entities import (
    COST_COMPONENTS,
    TIME_COMPONENTS,
    COST_TOTAL_TOLERANCE,
    TIME_TOTAL_TOLERANCE,
    DOCUMENTS_OVER_FILES_MARGIN,
)

SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

TIMESTAMP_MAX_AGE = timedelta(hours=24)
TIMESTAMP_MAX_FUTURE = timedelta(minutes=5)

# Active ISO 4217 currency codes
ISO_4217_CODES = frozenset("""
AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB
BRL BSD BTN BWP BYN BZD CAD CDF CHF CLP CNY COP CRC CUP CVE CZK DJF DKK DOP
DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD HNL HTG HUF
IDR ILS INR IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD KZT LAK
LBP LKR LRD LSL LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MYR MZN
NAD NGN NIO NOK NPR NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF
SAR SBD SCR SDG SEK SGD SHP SLE SOS SRD SSP STN SVC SYP SZL THB TJS TMT TND
TOP TRY TTD TWD TZS UAH UGX USD UYU UZS VES VND VUV WST XAF XCD XOF XPF YER
ZAR ZMW ZWL
""".split())


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class CostsStatistics(BaseModel):
    """Costs reported in the given currency"""
    model_config = ConfigDict(allow_inf_nan=False)

    claude_api: Optional[float] = Field(None, ge=0)
    storage: Optional[float] = Field(None, ge=0)
    compute: Optional[float] = Field(None, ge=0)
    bandwidth: Optional[float] = Field(None, ge=0)
    total: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper()
        if v not in ISO_4217_CODES:
            raise ValueError(f"{v} is not an ISO 4217 currency code")
        return v


class PerformanceStatistics(BaseModel):
    """Phase durations in seconds"""
    model_config = ConfigDict(allow_inf_nan=False)

    generation_time: Optional[float] = Field(None, ge=0)
    processing_time: Optional[float] = Field(None, ge=0)
    interview_time: Optional[float] = Field(None, ge=0)
    export_time: Optional[float] = Field(None, ge=0)
    total_time: Optional[float] = Field(None, ge=0)
    queue_wait_time: Optional[float] = Field(None, ge=0)


class UsageStatistics(BaseModel):
    documents_generated: Optional[int] = Field(None, ge=0)
    files_processed: Optional[int] = Field(None, ge=0)
    tokens_used: Optional[int] = Field(None, ge=0)
    api_calls_count: Optional[int] = Field(None, ge=0)
    storage_size: Optional[int] = Field(None, ge=0)  # bytes
    export_count: Optional[int] = Field(None, ge=0)


class StatisticsMetadataUpdate(BaseModel):
    """Context about the reporting service"""
    model_config = ConfigDict(allow_inf_nan=False)

    source: Optional[str] = None
    timestamp: Optional[datetime] = None
    version: Optional[str] = None
    batch_id: Optional[str] = Field(None, min_length=1, max_length=50)
    confidence: Optional[float] = Field(None, ge=0, le=1)

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in STATISTICS_SOURCES:
            raise ValueError(f"Unknown statistics source: {v}")
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not SEMVER_PATTERN.match(v):
            raise ValueError("Version must follow semantic versioning format (x.y.z)")
        return v


@dataclass
class ValidationReport:
    valid: bool
    errors: List[str] = field(default_factory=list)


class UpdateStatisticsRequest(BaseModel):
    """Partial statistics update; every block and field is optional"""
    costs: Optional[CostsStatistics] = None
    performance: Optional[PerformanceStatistics] = None
    usage: Optional[UsageStatistics] = None
    metadata: Optional[StatisticsMetadataUpdate] = None

    def to_update_fields(self) -> Dict[str, Any]:
        """Only the keys the caller actually sent"""
        return self.model_dump(exclude_unset=True)

    def validate_costs_coherence(self) -> bool:
        if not self.costs or not self.costs.total:
            return True
        calculated = sum((getattr(self.costs, name) or 0) for name in COST_COMPONENTS)
        return abs(self.costs.total - calculated) <= COST_TOTAL_TOLERANCE

    def validate_performance_coherence(self) -> bool:
        if not self.performance or not self.performance.total_time:
            return True
        calculated = sum((getattr(self.performance, name) or 0) for name in TIME_COMPONENTS)
        return self.performance.total_time >= calculated - TIME_TOTAL_TOLERANCE

    def validate_usage_coherence(self) -> bool:
        if not self.usage:
            return True
        docs = self.usage.documents_generated
        files = self.usage.files_processed
        exports = self.usage.export_count

        if docs and files and docs > files + DOCUMENTS_OVER_FILES_MARGIN:
            return False
        if exports and docs and exports > docs:
            return False
        return True

    def validate_timestamp(self, now: Optional[datetime] = None) -> bool:
        if not self.metadata or not self.metadata.timestamp:
            return True
        timestamp = self.metadata.timestamp
        if timestamp.tzinfo is not None:
            timestamp = timestamp.replace(tzinfo=None) - timestamp.utcoffset()
        age = (now or datetime.utcnow()) - timestamp
        return -TIMESTAMP_MAX_FUTURE <= age <= TIMESTAMP_MAX_AGE

    def validate_coherence(self, now: Optional[datetime] = None) -> ValidationReport:
        """Business coherence checks across fields"""
        errors = []
        if not self.validate_costs_coherence():
            errors.append("Costs total is inconsistent with sum of components")
        if not self.validate_performance_coherence():
            errors.append("Performance total time is inconsistent with sum of components")
        if not self.validate_usage_coherence():
            errors.append("Usage statistics contain logical inconsistencies")
        if not self.validate_timestamp(now):
            errors.append("Timestamp is too old or in the future")
        return ValidationReport(valid=not errors, errors=errors)


class PartialStatisticsUpdate(BaseModel):
    """Fast-path update: each sent block replaces the stored block as-is"""
    costs: Optional[CostsStatistics] = None
    performance: Optional[PerformanceStatistics] = None
    usage: Optional[UsageStatistics] = None
    metadata: Optional[StatisticsMetadataUpdate] = None

    def to_update_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class SearchCriteria(BaseModel):
    """Conjunctive filters for statistics search"""
    model_config = ConfigDict(allow_inf_nan=False)

    min_total_cost: Optional[float] = Field(None, ge=0)
    max_total_cost: Optional[float] = Field(None, ge=0)
    min_documents: Optional[int] = Field(None, ge=0)
    max_performance_time: Optional[float] = Field(None, ge=0)
    data_freshness_minutes: Optional[int] = Field(None, ge=0)
    sources: Optional[List[str]] = None


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class CostBreakdownView(BaseModel):
    claude_api_percentage: float = 0.0
    storage_percentage: float = 0.0
    compute_percentage: float = 0.0
    bandwidth_percentage: float = 0.0


class CostsView(BaseModel):
    claude_api: Optional[float] = None
    storage: Optional[float] = None
    compute: Optional[float] = None
    bandwidth: Optional[float] = None
    total: float = 0.0
    currency: str = "USD"
    cost_per_document: Optional[float] = None
    cost_per_hour: Optional[float] = None
    breakdown: CostBreakdownView
    trend: str = "stable"


class EfficiencyView(BaseModel):
    documents_per_hour: float = 0.0
    tokens_per_second: float = 0.0
    processing_efficiency: float = 0.0
    resource_utilization: float = 0.0


class PerformanceView(BaseModel):
    generation_time: Optional[float] = None
    processing_time: Optional[float] = None
    interview_time: Optional[float] = None
    export_time: Optional[float] = None
    queue_wait_time: Optional[float] = None
    total_time: float = 0.0
    average_document_time: Optional[float] = None
    efficiency: EfficiencyView
    bottlenecks: List[str] = []
    benchmark: str


class ActivityPatternView(BaseModel):
    peak_usage_hour: Optional[int] = None
    usage_frequency: str = "occasional"
    preferred_formats: List[str] = []
    average_session_duration: float = 0.0


class UsageView(BaseModel):
    documents_generated: Optional[int] = None
    files_processed: Optional[int] = None
    tokens_used: Optional[int] = None
    api_calls_count: Optional[int] = None
    storage_size: Optional[int] = None
    export_count: Optional[int] = None
    tokens_per_document: Optional[int] = None
    storage_efficiency: float = 0.0
    activity_pattern: ActivityPatternView
    resource_intensity: str


class KeyMetric(BaseModel):
    name: str
    value: str
    unit: str
    status: str  # good, warning


class SummaryView(BaseModel):
    total_cost: str
    total_time: str
    efficiency: float
    status: str  # optimal, good, needs_attention
    key_metrics: List[KeyMetric] = []
    recommendations: List[str] = []


class ConsistencyView(BaseModel):
    valid: bool
    issues: List[str] = []


class MetadataView(BaseModel):
    last_updated: Optional[datetime] = None
    data_freshness: int = 0  # minutes
    completeness: float = 0.0
    sources: List[str] = []
    version: str
    generated_at: datetime
    missing_fields: List[str] = []
    estimated_fields: List[str] = []
    quality_score: Optional[float] = None
    batch_id: Optional[str] = None
    confidence: Optional[float] = None
    consistency: ConsistencyView


class StatisticsResponse(BaseModel):
    """Project statistics enriched with read-time derived values"""
    project_id: str
    costs: CostsView
    performance: PerformanceView
    usage: UsageView
    summary: SummaryView
    metadata: MetadataView


class GlobalStatisticsResponse(BaseModel):
    total_projects: int = 0
    total_costs: float = 0.0
    total_documents: int = 0
    average_quality_score: float = 0.0
    source_distribution: Dict[str, int] = {}


class CleanupResponse(BaseModel):
    deleted_count: int
    retention_days: int


class DeleteResponse(BaseModel):
    project_id: str
    deleted: bool


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    dependencies: Dict[str, str]


# ============================================================================
# FORMATTING
# ============================================================================

def format_duration(seconds: float) -> str:
    """Human readable duration, e.g. ``1h 2m 3s``. Negative values count as 0."""
    safe_seconds = max(0, seconds)
    hours = int(safe_seconds // 3600)
    minutes = int((safe_seconds % 3600) // 60)
    secs = int(safe_seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_currency(amount: float) -> str:
    return f"${amount:.2f}"
