"""
Statistics Service
Orchestrates repository, cache and entity merge; builds enriched read views
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from docstats.config import (
    EFFICIENCY_BENCHMARKS,
    STATISTICS_FORMAT_VERSION,
    Settings,
)
from docstats.exceptions import StatisticsValidationError
from docstats.models import ProjectStatisticsEntity
from docstats.models.entities import (
    compute_cost_breakdown,
    compute_storage_efficiency,
    compute_tokens_per_document,
    determine_resource_intensity,
    identify_bottlenecks,
)
from docstats.repositories import StatisticsRepository
from docstats.schemas import (
    GlobalStatisticsResponse,
    HealthResponse,
    PartialStatisticsUpdate,
    SearchCriteria,
    StatisticsResponse,
    SummaryView,
    UpdateStatisticsRequest,
    format_currency,
    format_duration,
)
from docstats.schemas.statistics import (
    ActivityPatternView,
    ConsistencyView,
    CostBreakdownView,
    CostsView,
    EfficiencyView,
    KeyMetric,
    MetadataView,
    PerformanceView,
    UsageView,
)
from docstats.services.statistics_cache import StatisticsCache

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0

# weight of each essential field in the completeness score
COMPLETENESS_WEIGHTS = (
    ("costs", "total", 25),
    ("performance", "total_time", 25),
    ("usage", "documents_generated", 25),
    ("usage", "tokens_used", 15),
    ("costs", "claude_api", 10),
)


def _bounded_ratio_score(benchmark: float, actual: float) -> float:
    return min(100.0, max(0.0, benchmark / actual * 100))


def _from_cache(model, cached, key: str):
    """Cached view, or None on a miss or an entry that no longer fits the schema"""
    if cached is None:
        return None
    try:
        return model.model_validate(cached)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed cache entry {key}: {e.error_count()} validation errors")
        return None


class StatisticsService:
    """Service for reporting and serving project statistics"""

    def __init__(
        self,
        repository: StatisticsRepository,
        cache: StatisticsCache,
        settings: Settings,
    ):
        self.repository = repository
        self.cache = cache
        self.settings = settings

    # =========================================================================
    # WRITES
    # =========================================================================

    async def update_statistics(
        self,
        project_id: Union[UUID, str],
        request: UpdateStatisticsRequest,
    ) -> StatisticsResponse:
        """
        Merge a statistics report into the stored state of a project.

        Coherence problems are logged in advisory mode and rejected with
        StatisticsValidationError in strict mode.
        """
        logger.debug(f"Updating statistics for project {project_id}")

        report = request.validate_coherence()
        if not report.valid:
            if self.settings.strict_validation:
                raise StatisticsValidationError(
                    f"Incoherent statistics for project {project_id}",
                    errors=report.errors,
                )
            logger.warning(
                f"Statistics validation warnings for project {project_id}: "
                f"{'; '.join(report.errors)}"
            )

        entity = await self.repository.upsert(project_id, request.to_update_fields())
        await self.cache.invalidate_project(project_id)

        response = self.entity_to_response(entity)
        await self.cache.set_project(project_id, response.model_dump(mode="json"))

        logger.info(
            f"Statistics updated for project {project_id} - "
            f"cost: {response.costs.total}, documents: {response.usage.documents_generated}, "
            f"efficiency: {response.summary.efficiency:.1f}%"
        )
        return response

    async def partial_update_statistics(
        self,
        project_id: Union[UUID, str],
        request: PartialStatisticsUpdate,
    ) -> Optional[StatisticsResponse]:
        """Overwrite whole blocks without recomputing stored derived fields"""
        logger.debug(f"Partial statistics update for project {project_id}")

        entity = await self.repository.partial_update(project_id, request.to_update_fields())
        await self.cache.invalidate_project(project_id)
        if entity is None:
            return None

        response = self.entity_to_response(entity)
        await self.cache.set_project(project_id, response.model_dump(mode="json"))
        return response

    async def delete_statistics(self, project_id: Union[UUID, str]) -> bool:
        deleted = await self.repository.delete_by_project_id(project_id)
        if deleted:
            await self.cache.invalidate_project(project_id)
            logger.info(f"Statistics deleted for project {project_id}")
        return deleted

    async def cleanup_old_statistics(self, retention_days: Optional[int] = None) -> int:
        retention_days = retention_days or self.settings.STATISTICS_RETENTION_DAYS
        deleted = await self.repository.cleanup_old_statistics(retention_days)
        if deleted:
            await self.cache.invalidate_global()
        logger.info(f"Cleaned up {deleted} statistics records older than {retention_days} days")
        return deleted

    # =========================================================================
    # READS
    # =========================================================================

    async def get_statistics(self, project_id: Union[UUID, str]) -> Optional[StatisticsResponse]:
        """Cache-aside read; None when the project has no statistics"""
        response = _from_cache(
            StatisticsResponse, await self.cache.get_project(project_id), f"for project {project_id}"
        )
        if response is not None:
            logger.debug(f"Statistics cache hit for project {project_id}")
            return response

        entity = await self.repository.find_by_project_id(project_id)
        if entity is None:
            return None

        response = self.entity_to_response(entity)
        await self.cache.set_project(project_id, response.model_dump(mode="json"))
        return response

    async def get_summary(self, project_id: Union[UUID, str]) -> Optional[SummaryView]:
        summary = _from_cache(
            SummaryView, await self.cache.get_summary(project_id), f"for project summary {project_id}"
        )
        if summary is not None:
            return summary

        entity = await self.repository.find_by_project_id(project_id)
        if entity is None:
            return None

        summary = self.entity_to_response(entity).summary
        await self.cache.set_summary(project_id, summary.model_dump(mode="json"))
        return summary

    async def get_multiple_statistics(
        self,
        project_ids: Sequence[Union[UUID, str]],
    ) -> Dict[str, StatisticsResponse]:
        """Only projects with statistics appear in the returned mapping"""
        results: Dict[str, StatisticsResponse] = {}
        misses = []

        for project_id in project_ids:
            cached = _from_cache(
                StatisticsResponse, await self.cache.get_project(project_id), f"for project {project_id}"
            )
            if cached is not None:
                results[str(project_id)] = cached
            else:
                misses.append(project_id)

        if misses:
            entities = await self.repository.find_many_by_project_ids(misses)
            for project_id, entity in entities.items():
                response = self.entity_to_response(entity)
                results[str(project_id)] = response
                await self.cache.set_project(project_id, response.model_dump(mode="json"))

        logger.debug(f"Found statistics for {len(results)}/{len(project_ids)} projects")
        return results

    async def search_statistics(self, criteria: SearchCriteria) -> List[StatisticsResponse]:
        entities = await self.repository.find_by_criteria(criteria)
        return [self.entity_to_response(entity) for entity in entities]

    async def get_global_statistics(self) -> GlobalStatisticsResponse:
        cached = _from_cache(GlobalStatisticsResponse, await self.cache.get_global(), "for global statistics")
        if cached is not None:
            return cached

        statistics = GlobalStatisticsResponse(**await self.repository.get_global_statistics())
        await self.cache.set_global(statistics.model_dump(mode="json"))
        return statistics

    async def check_health(self) -> HealthResponse:
        dependencies = {}
        status = "healthy"

        try:
            await self.repository.ping()
            dependencies["database"] = "healthy"
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database health check failed: {e}")
            dependencies["database"] = "unhealthy"
            status = "unhealthy"

        if await self.cache.ping():
            dependencies["cache"] = "healthy"
        else:
            dependencies["cache"] = "unhealthy"
            if status == "healthy":
                status = "degraded"

        return HealthResponse(status=status, timestamp=datetime.utcnow(), dependencies=dependencies)

    # =========================================================================
    # READ-TIME VIEW
    # =========================================================================

    def entity_to_response(
        self,
        entity: ProjectStatisticsEntity,
        now: Optional[datetime] = None,
    ) -> StatisticsResponse:
        """Enrich a stored snapshot with values that are never persisted"""
        now = now or datetime.utcnow()
        costs = entity.costs
        performance = entity.performance
        usage = entity.usage
        metadata = entity.metadata

        total_cost = costs.total or 0
        total_time = performance.total_time or 0
        docs = usage.documents_generated or 0
        tokens = usage.tokens_used or 0

        breakdown = compute_cost_breakdown(costs)
        bottlenecks = identify_bottlenecks(performance)
        tokens_per_document = compute_tokens_per_document(usage)
        processing_efficiency = self._processing_efficiency(entity)
        cost_per_document = total_cost / docs if total_cost and docs > 0 else None

        costs_view = CostsView(
            claude_api=costs.claude_api,
            storage=costs.storage,
            compute=costs.compute,
            bandwidth=costs.bandwidth,
            total=total_cost,
            currency=costs.currency or "USD",
            cost_per_document=cost_per_document,
            cost_per_hour=total_cost / (total_time / 3600) if total_cost and total_time > 0 else None,
            breakdown=CostBreakdownView(**breakdown.to_dict()),
            trend="stable",
        )

        pattern = usage.activity_pattern
        performance_view = PerformanceView(
            generation_time=performance.generation_time,
            processing_time=performance.processing_time,
            interview_time=performance.interview_time,
            export_time=performance.export_time,
            queue_wait_time=performance.queue_wait_time,
            total_time=total_time,
            average_document_time=total_time / docs if total_time and docs > 0 else None,
            efficiency=EfficiencyView(
                documents_per_hour=docs / (total_time / 3600) if docs and total_time > 0 else 0.0,
                tokens_per_second=tokens / total_time if tokens and total_time > 0 else 0.0,
                processing_efficiency=processing_efficiency,
                resource_utilization=self._resource_utilization(docs, tokens),
            ),
            bottlenecks=bottlenecks,
            benchmark=self._benchmark(total_time, usage.documents_generated),
        )

        usage_view = UsageView(
            documents_generated=usage.documents_generated,
            files_processed=usage.files_processed,
            tokens_used=usage.tokens_used,
            api_calls_count=usage.api_calls_count,
            storage_size=usage.storage_size,
            export_count=usage.export_count,
            tokens_per_document=tokens_per_document,
            storage_efficiency=compute_storage_efficiency(usage),
            activity_pattern=ActivityPatternView(
                peak_usage_hour=pattern.peak_usage_hour if pattern else None,
                usage_frequency=(pattern and pattern.usage_frequency) or "occasional",
                preferred_formats=(pattern and pattern.preferred_formats) or ["markdown", "pdf"],
                average_session_duration=(
                    pattern.average_session_duration
                    if pattern and pattern.average_session_duration is not None
                    else total_time
                ),
            ),
            resource_intensity=determine_resource_intensity(usage),
        )

        efficiency = self._global_efficiency(entity, cost_per_document, tokens_per_document)
        summary = SummaryView(
            total_cost=format_currency(total_cost),
            total_time=format_duration(total_time),
            efficiency=efficiency,
            status=self._overall_status(efficiency),
            key_metrics=self._key_metrics(entity),
            recommendations=self._recommendations(
                entity, cost_per_document, breakdown.claude_api_percentage,
                processing_efficiency, bottlenecks, tokens_per_document,
            ),
        )

        consistency = entity.validate_consistency()
        metadata_view = MetadataView(
            last_updated=entity.last_updated,
            data_freshness=self._data_freshness(entity.last_updated, now),
            completeness=self._completeness(entity),
            sources=metadata.sources or [],
            version=STATISTICS_FORMAT_VERSION,
            generated_at=now,
            missing_fields=self._missing_fields(entity),
            estimated_fields=["costs.breakdown"] if costs.total and costs.breakdown is None else [],
            quality_score=metadata.quality_score,
            batch_id=metadata.batch_id,
            confidence=metadata.confidence,
            consistency=ConsistencyView(valid=consistency.valid, issues=consistency.issues),
        )

        return StatisticsResponse(
            project_id=str(entity.project_id),
            costs=costs_view,
            performance=performance_view,
            usage=usage_view,
            summary=summary,
            metadata=metadata_view,
        )

    # =========================================================================
    # SCORING HELPERS
    # =========================================================================

    @staticmethod
    def _processing_efficiency(entity: ProjectStatisticsEntity) -> float:
        """Share of total time not spent waiting in queue, in percent"""
        total_time = entity.performance.total_time or 0
        if total_time <= 0:
            return 0.0
        wait_time = entity.performance.queue_wait_time or 0
        return (total_time - wait_time) / total_time * 100

    @staticmethod
    def _resource_utilization(docs: int, tokens: int) -> float:
        score = 50
        if docs > 0:
            score += 20
        if tokens > 5000:
            score += 15
        if tokens > 10000:
            score += 15
        return float(min(100, score))

    @staticmethod
    def _benchmark(total_time: float, docs: Optional[int]) -> str:
        time_per_document = total_time / (docs or 1)
        if time_per_document < 60:
            return "faster"
        if time_per_document < 120:
            return "average"
        return "slower"

    def _global_efficiency(
        self,
        entity: ProjectStatisticsEntity,
        cost_per_document: Optional[float],
        tokens_per_document: Optional[int],
    ) -> float:
        """Unweighted mean of the cost, performance and usage scores"""
        docs = entity.usage.documents_generated or 0
        total_time = entity.performance.total_time or 0

        cost_score = NEUTRAL_SCORE
        if cost_per_document and docs:
            cost_score = _bounded_ratio_score(EFFICIENCY_BENCHMARKS["cost_per_document"], cost_per_document)

        performance_score = NEUTRAL_SCORE
        if total_time and docs:
            performance_score = _bounded_ratio_score(
                EFFICIENCY_BENCHMARKS["time_per_document"], total_time / docs
            )

        usage_score = NEUTRAL_SCORE
        if tokens_per_document and docs:
            usage_score = _bounded_ratio_score(EFFICIENCY_BENCHMARKS["tokens_per_document"], tokens_per_document)

        return (cost_score + performance_score + usage_score) / 3

    @staticmethod
    def _overall_status(efficiency: float) -> str:
        if efficiency >= 90:
            return "optimal"
        if efficiency >= 70:
            return "good"
        return "needs_attention"

    @staticmethod
    def _recommendations(
        entity: ProjectStatisticsEntity,
        cost_per_document: Optional[float],
        api_percentage: float,
        processing_efficiency: float,
        bottlenecks: List[str],
        tokens_per_document: Optional[int],
    ) -> List[str]:
        recommendations = []

        if cost_per_document and cost_per_document > EFFICIENCY_BENCHMARKS["cost_per_document"]:
            recommendations.append("Consider optimizing prompt length to reduce API costs")
        if api_percentage > 80:
            recommendations.append("API costs are high - review prompt efficiency")
        if processing_efficiency < 70:
            recommendations.append("File processing could be optimized for better performance")
        if "queue_wait" in bottlenecks:
            recommendations.append("Consider upgrading to reduce queue wait times")
        if tokens_per_document and tokens_per_document > 4000:
            recommendations.append(
                "Document generation uses many tokens - consider template optimization"
            )
        if not entity.usage.export_count:
            recommendations.append("Generated documents haven't been exported yet")

        return recommendations

    @staticmethod
    def _key_metrics(entity: ProjectStatisticsEntity) -> List[KeyMetric]:
        metrics = []
        total_cost = entity.costs.total
        total_time = entity.performance.total_time

        if total_cost:
            metrics.append(KeyMetric(
                name="Total Cost",
                value=f"{total_cost:.2f}",
                unit=entity.costs.currency or "USD",
                status="good" if total_cost < 10 else "warning",
            ))
        if total_time:
            metrics.append(KeyMetric(
                name="Total Time",
                value=str(int(total_time / 60 + 0.5)),
                unit="min",
                status="good" if total_time < 600 else "warning",
            ))
        return metrics

    @staticmethod
    def _data_freshness(last_updated: Optional[datetime], now: datetime) -> int:
        """Minutes since the last write"""
        if last_updated is None:
            return 0
        if last_updated.tzinfo is not None:
            last_updated = last_updated.replace(tzinfo=None) - last_updated.utcoffset()
        return max(0, round((now - last_updated).total_seconds() / 60))

    @staticmethod
    def _completeness(entity: ProjectStatisticsEntity) -> float:
        max_score = sum(weight for _, _, weight in COMPLETENESS_WEIGHTS)
        score = sum(
            weight for block, name, weight in COMPLETENESS_WEIGHTS
            if getattr(getattr(entity, block), name) is not None
        )
        return score / max_score * 100

    @staticmethod
    def _missing_fields(entity: ProjectStatisticsEntity) -> List[str]:
        missing = []
        if not entity.costs.total:
            missing.append("costs.total")
        if not entity.performance.total_time:
            missing.append("performance.total_time")
        if not entity.usage.documents_generated:
            missing.append("usage.documents_generated")
        return missing
