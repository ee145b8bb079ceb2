"""
Project Statistics Entity
In-memory snapshot of one project's statistics with merge and derivation rules

Partial updates are merged over the stored state, then every derived field
(cost total and breakdown, total time and bottlenecks, usage ratios and
resource intensity, metadata freshness) is recomputed from the merged values.
"""

import math
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Mapping, Optional
from uuid import UUID

from docstats.config import BOTTLENECK_THRESHOLDS, RESOURCE_INTENSITY_LIMITS

COST_COMPONENTS = ("claude_api", "storage", "compute", "bandwidth")
TIME_COMPONENTS = (
    "generation_time",
    "processing_time",
    "interview_time",
    "export_time",
    "queue_wait_time",
)

COST_TOTAL_TOLERANCE = 0.01  # 1 cent
TIME_TOTAL_TOLERANCE = 0.1  # 100ms
DOCUMENTS_OVER_FILES_MARGIN = 10


class JSONRecord:
    """
    Sparse JSON-backed record.

    Unknown keys are dropped on load and unset (None) fields are omitted
    on dump, so a stored blob only ever contains known keys.
    """

    # field name -> nested record class
    _nested: ClassVar[Dict[str, type]] = {}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]):
        record = cls()
        if data:
            record.apply(data)
        return record

    def apply(self, partial: Mapping[str, Any]) -> None:
        """Shallow merge: every known key in ``partial`` overwrites the current value"""
        known = {f.name for f in fields(self)}
        for key, value in partial.items():
            if key not in known:
                continue
            nested_cls = self._nested.get(key)
            if nested_cls is not None and isinstance(value, Mapping):
                value = nested_cls.from_dict(value)
            elif isinstance(value, list):
                value = list(value)
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if is_dataclass(value):
                value = value.to_dict()
            elif isinstance(value, list):
                value = list(value)
            data[f.name] = value
        return data


@dataclass
class CostBreakdown(JSONRecord):
    claude_api_percentage: float = 0.0
    storage_percentage: float = 0.0
    compute_percentage: float = 0.0
    bandwidth_percentage: float = 0.0


@dataclass
class CostsData(JSONRecord):
    """Monetary amounts; total and breakdown are derived"""
    claude_api: Optional[float] = None
    storage: Optional[float] = None
    compute: Optional[float] = None
    bandwidth: Optional[float] = None
    total: Optional[float] = None
    currency: Optional[str] = None
    cost_per_document: Optional[float] = None
    cost_per_hour: Optional[float] = None
    trend: Optional[str] = None
    breakdown: Optional[CostBreakdown] = None

    _nested: ClassVar[Dict[str, type]] = {"breakdown": CostBreakdown}


@dataclass
class EfficiencyData(JSONRecord):
    documents_per_hour: Optional[float] = None
    tokens_per_second: Optional[float] = None
    processing_efficiency: Optional[float] = None
    resource_utilization: Optional[float] = None


@dataclass
class PerformanceData(JSONRecord):
    """Phase durations in seconds; total_time and bottlenecks are derived"""
    generation_time: Optional[float] = None
    processing_time: Optional[float] = None
    interview_time: Optional[float] = None
    export_time: Optional[float] = None
    queue_wait_time: Optional[float] = None
    total_time: Optional[float] = None
    average_document_time: Optional[float] = None
    efficiency: Optional[EfficiencyData] = None
    bottlenecks: Optional[List[str]] = None
    benchmark: Optional[str] = None

    _nested: ClassVar[Dict[str, type]] = {"efficiency": EfficiencyData}


@dataclass
class ActivityPattern(JSONRecord):
    peak_usage_hour: Optional[int] = None
    usage_frequency: Optional[str] = None
    preferred_formats: Optional[List[str]] = None
    average_session_duration: Optional[float] = None


@dataclass
class UsageData(JSONRecord):
    """Functional counters; ratios and resource_intensity are derived"""
    documents_generated: Optional[int] = None
    files_processed: Optional[int] = None
    tokens_used: Optional[int] = None
    api_calls_count: Optional[int] = None
    storage_size: Optional[int] = None
    export_count: Optional[int] = None
    tokens_per_document: Optional[int] = None
    storage_efficiency: Optional[float] = None
    activity_pattern: Optional[ActivityPattern] = None
    resource_intensity: Optional[str] = None

    _nested: ClassVar[Dict[str, type]] = {"activity_pattern": ActivityPattern}


@dataclass
class StatisticsMetadata(JSONRecord):
    sources: Optional[List[str]] = None
    version: Optional[str] = None
    batch_id: Optional[str] = None
    confidence: Optional[float] = None
    timestamp: Optional[str] = None
    data_freshness: Optional[float] = None
    completeness: Optional[float] = None
    missing_fields: Optional[List[str]] = None
    estimated_fields: Optional[List[str]] = None
    quality_score: Optional[float] = None


@dataclass
class ConsistencyReport:
    valid: bool
    issues: List[str] = field(default_factory=list)


# ============================================================================
# DERIVATIONS
# ============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def sum_cost_components(costs: CostsData) -> float:
    return sum((getattr(costs, name) or 0) for name in COST_COMPONENTS)


def sum_time_components(performance: PerformanceData) -> float:
    return sum((getattr(performance, name) or 0) for name in TIME_COMPONENTS)


def compute_cost_breakdown(costs: CostsData) -> CostBreakdown:
    """Component share of the total, in percent. All zeros when total is 0."""
    total = costs.total or 0
    if total == 0:
        return CostBreakdown()
    return CostBreakdown(
        claude_api_percentage=(costs.claude_api or 0) / total * 100,
        storage_percentage=(costs.storage or 0) / total * 100,
        compute_percentage=(costs.compute or 0) / total * 100,
        bandwidth_percentage=(costs.bandwidth or 0) / total * 100,
    )


def identify_bottlenecks(performance: PerformanceData) -> List[str]:
    times = {
        "generation": performance.generation_time,
        "processing": performance.processing_time,
        "interview": performance.interview_time,
        "export": performance.export_time,
        "queue_wait": performance.queue_wait_time,
    }
    return [
        phase for phase, seconds in times.items()
        if (seconds or 0) > BOTTLENECK_THRESHOLDS[phase]
    ]


def compute_tokens_per_document(usage: UsageData) -> Optional[int]:
    """None unless both counters are present and documents > 0"""
    tokens = usage.tokens_used
    docs = usage.documents_generated
    if tokens is None or not docs or docs <= 0:
        return None
    return _round_half_up(tokens / docs)


def compute_storage_efficiency(usage: UsageData) -> float:
    """Bytes per document; documents default to 1 so this is always defined"""
    docs = usage.documents_generated or 1
    return (usage.storage_size or 0) / docs


def determine_resource_intensity(usage: UsageData) -> str:
    points = sum(
        1 for name, limit in RESOURCE_INTENSITY_LIMITS.items()
        if (getattr(usage, name) or 0) > limit
    )
    if points >= 3:
        return "intensive"
    if points >= 1:
        return "moderate"
    return "light"


# ============================================================================
# ENTITY
# ============================================================================

@dataclass
class ProjectStatisticsEntity:
    """Authoritative snapshot of one project's statistics"""

    project_id: Optional[UUID] = None
    id: Optional[UUID] = None
    costs: CostsData = field(default_factory=CostsData)
    performance: PerformanceData = field(default_factory=PerformanceData)
    usage: UsageData = field(default_factory=UsageData)
    metadata: StatisticsMetadata = field(default_factory=StatisticsMetadata)
    last_updated: Optional[datetime] = None
    version: int = 0

    def merge_costs(self, partial: Optional[Mapping[str, Any]]) -> None:
        """Merge cost keys, then recompute total and breakdown.

        A caller-supplied ``total`` is always overwritten by the component sum.
        """
        if partial is None:
            return
        self.costs.apply(partial)
        self.costs.total = sum_cost_components(self.costs)
        self.costs.breakdown = compute_cost_breakdown(self.costs)

    def merge_performance(self, partial: Optional[Mapping[str, Any]]) -> None:
        if partial is None:
            return
        partial = dict(partial)
        new_efficiency = partial.pop("efficiency", None)
        self.performance.apply(partial)
        if new_efficiency is not None:
            if self.performance.efficiency is None:
                self.performance.efficiency = EfficiencyData()
            self.performance.efficiency.apply(new_efficiency)

        self.performance.total_time = sum_time_components(self.performance)
        self.performance.bottlenecks = identify_bottlenecks(self.performance)

    def merge_usage(self, partial: Optional[Mapping[str, Any]]) -> None:
        if partial is None:
            return
        partial = dict(partial)
        new_pattern = partial.pop("activity_pattern", None)
        self.usage.apply(partial)
        if new_pattern is not None:
            if self.usage.activity_pattern is None:
                self.usage.activity_pattern = ActivityPattern()
            self.usage.activity_pattern.apply(new_pattern)

        self.usage.tokens_per_document = compute_tokens_per_document(self.usage)
        self.usage.storage_efficiency = compute_storage_efficiency(self.usage)
        self.usage.resource_intensity = determine_resource_intensity(self.usage)

    def update_metadata(self, partial: Optional[Mapping[str, Any]]) -> None:
        """Merge metadata; a reported ``source`` is added to ``sources``"""
        if partial is None:
            return
        partial = dict(partial)
        source = partial.pop("source", None)
        timestamp = partial.pop("timestamp", None)
        self.metadata.apply(partial)

        if source:
            sources = list(self.metadata.sources or [])
            if source not in sources:
                sources.append(source)
            self.metadata.sources = sources
        if timestamp is not None:
            self.metadata.timestamp = (
                timestamp.isoformat() if isinstance(timestamp, datetime) else str(timestamp)
            )

        self.metadata.data_freshness = 0

    def validate_consistency(self) -> ConsistencyReport:
        """Check the soft invariants. Never raises."""
        issues = []

        if self.costs.total is not None:
            if abs(self.costs.total - sum_cost_components(self.costs)) > COST_TOTAL_TOLERANCE:
                issues.append("Cost total is inconsistent with the sum of its components")

        if self.performance.total_time is not None:
            if self.performance.total_time < sum_time_components(self.performance) - TIME_TOTAL_TOLERANCE:
                issues.append("Total time is lower than the sum of phase times")

        docs = self.usage.documents_generated
        exports = self.usage.export_count
        files = self.usage.files_processed

        if docs is not None and exports is not None and exports > docs:
            issues.append("Export count cannot exceed documents generated")

        if docs is not None and files is not None and docs > files + DOCUMENTS_OVER_FILES_MARGIN:
            issues.append("Documents generated exceed files processed by more than the allowed margin")

        return ConsistencyReport(valid=not issues, issues=issues)

    def calculate_data_quality_score(self) -> float:
        """Score data quality 0-100 and store it in metadata.quality_score"""
        score = 100.0

        if not self.costs.total and not self.costs.claude_api:
            score -= 20
        if not self.performance.total_time and not self.performance.generation_time:
            score -= 20
        if not self.usage.documents_generated:
            score -= 15

        score -= len(self.validate_consistency().issues) * 10

        freshness = self.metadata.data_freshness
        if freshness and freshness > 60:
            score -= min(20, freshness / 60 * 5)

        score = round(min(100.0, max(0.0, score)), 2)
        self.metadata.quality_score = score
        return score
