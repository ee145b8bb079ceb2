"""
Tests for the statistics service: orchestration, cache-aside and read-time view.
"""

import json
import logging
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from docstats.exceptions import StatisticsValidationError
from docstats.models import ProjectStatisticsEntity, ProjectStatus
from docstats.schemas import PartialStatisticsUpdate, SearchCriteria, UpdateStatisticsRequest
from docstats.services import StatisticsCache, StatisticsService
from docstats.utils import CacheService
from tests.conftest import make_settings
from tests.test_repository import _set_last_updated


def _request(**blocks) -> UpdateStatisticsRequest:
    return UpdateStatisticsRequest(**blocks)


class TestUpdateStatistics:
    @pytest.mark.asyncio
    async def test_create_then_merge(self, service):
        project_id = uuid4()
        created = await service.update_statistics(project_id, _request(
            costs={"claude_api": 10, "storage": 2, "total": 12},
            usage={"documents_generated": 3},
        ))
        assert created.project_id == str(project_id)
        assert created.costs.total == 12
        assert created.costs.breakdown.claude_api_percentage == pytest.approx(83.33, abs=0.01)

        merged = await service.update_statistics(project_id, _request(costs={"storage": 5}))
        assert merged.costs.total == 15
        assert merged.costs.claude_api == 10
        assert merged.usage.documents_generated == 3

    @pytest.mark.asyncio
    async def test_read_after_write_is_never_stale(self, service):
        project_id = uuid4()
        await service.update_statistics(project_id, _request(costs={"claude_api": 1, "total": 1}))
        assert (await service.get_statistics(project_id)).costs.total == 1

        await service.update_statistics(project_id, _request(costs={"claude_api": 4}))
        assert (await service.get_statistics(project_id)).costs.total == 4

    @pytest.mark.asyncio
    async def test_response_written_to_cache(self, service, fake_redis):
        project_id = uuid4()
        await service.update_statistics(project_id, _request(usage={"documents_generated": 2}))

        cached = json.loads(fake_redis.store[f"test:stats:project:{project_id}"])
        assert cached["usage"]["documents_generated"] == 2

    @pytest.mark.asyncio
    async def test_advisory_mode_logs_and_persists(self, service, caplog):
        project_id = uuid4()
        with caplog.at_level(logging.WARNING):
            response = await service.update_statistics(project_id, _request(
                usage={"documents_generated": 2, "export_count": 5},
            ))
        assert response.usage.export_count == 5
        assert "Usage statistics contain logical inconsistencies" in caplog.text

    @pytest.mark.asyncio
    async def test_strict_mode_rejects(self, repository, statistics_cache):
        service = StatisticsService(
            repository, statistics_cache, make_settings(STATISTICS_VALIDATION_MODE="strict")
        )
        project_id = uuid4()
        with pytest.raises(StatisticsValidationError) as exc_info:
            await service.update_statistics(project_id, _request(costs={"claude_api": 1, "total": 9}))

        assert exc_info.value.errors == ["Costs total is inconsistent with sum of components"]
        assert await repository.find_by_project_id(project_id) is None

    @pytest.mark.asyncio
    async def test_cache_outage_does_not_fail_writes(self, repository, settings):
        client = AsyncMock()
        client.get.side_effect = ConnectionError("down")
        client.setex.side_effect = ConnectionError("down")
        client.delete.side_effect = ConnectionError("down")
        service = StatisticsService(
            repository, StatisticsCache(CacheService("test", client=client), settings), settings
        )

        project_id = uuid4()
        await service.update_statistics(project_id, _request(costs={"claude_api": 3, "total": 3}))
        assert (await service.get_statistics(project_id)).costs.total == 3


class TestReads:
    @pytest.mark.asyncio
    async def test_missing_project_is_none(self, service):
        assert await service.get_statistics(uuid4()) is None
        assert await service.get_summary(uuid4()) is None

    @pytest.mark.asyncio
    async def test_cache_hit_is_returned_verbatim(self, service, statistics_cache):
        project_id = uuid4()
        response = await service.update_statistics(project_id, _request(costs={"claude_api": 1}))
        payload = response.model_dump(mode="json")
        payload["costs"]["total"] = 99.0
        await statistics_cache.set_project(project_id, payload)

        assert (await service.get_statistics(project_id)).costs.total == 99.0

    @pytest.mark.asyncio
    async def test_malformed_cache_entries_are_misses(self, service, fake_redis, caplog):
        project_id = uuid4()
        await service.update_statistics(project_id, _request(costs={"claude_api": 2, "total": 2}))
        fake_redis.store[f"test:stats:project:{project_id}"] = json.dumps({"costs": "corrupted"})
        fake_redis.store[f"test:stats:summary:{project_id}"] = json.dumps({"efficiency": "high"})
        fake_redis.store["test:stats:global"] = json.dumps({"total_projects": "many"})

        with caplog.at_level(logging.WARNING):
            assert (await service.get_statistics(project_id)).costs.total == 2
            assert (await service.get_multiple_statistics([project_id]))[str(project_id)].costs.total == 2
            assert (await service.get_summary(project_id)).total_cost == "$2.00"
            assert (await service.get_global_statistics()).total_projects == 1
        assert "Ignoring malformed cache entry" in caplog.text

        # the repaired views replace the malformed entries
        cached = json.loads(fake_redis.store[f"test:stats:project:{project_id}"])
        assert cached["costs"]["total"] == 2
        assert json.loads(fake_redis.store["test:stats:global"])["total_projects"] == 1

    @pytest.mark.asyncio
    async def test_summary_cached_under_summary_key(self, service, fake_redis):
        project_id = uuid4()
        await service.update_statistics(project_id, _request(costs={"claude_api": 2, "total": 2}))

        summary = await service.get_summary(project_id)
        assert summary.total_cost == "$2.00"
        assert f"test:stats:summary:{project_id}" in fake_redis.store
        assert fake_redis.ttls[f"test:stats:summary:{project_id}"] == 60

    @pytest.mark.asyncio
    async def test_batch_is_partial(self, service, fake_redis):
        a, b, c = uuid4(), uuid4(), uuid4()
        await service.update_statistics(a, _request(usage={"documents_generated": 1}))
        await service.update_statistics(b, _request(usage={"documents_generated": 2}))
        fake_redis.store.pop(f"test:stats:project:{b}")

        results = await service.get_multiple_statistics([a, b, c])
        assert set(results) == {str(a), str(b)}
        assert results[str(b)].usage.documents_generated == 2
        assert f"test:stats:project:{b}" in fake_redis.store

    @pytest.mark.asyncio
    async def test_search_returns_views(self, service):
        project_id = uuid4()
        await service.update_statistics(project_id, _request(costs={"claude_api": 8, "total": 8}))

        results = await service.search_statistics(SearchCriteria(min_total_cost=5))
        assert [r.project_id for r in results] == [str(project_id)]


class TestWrites:
    @pytest.mark.asyncio
    async def test_partial_update(self, service):
        project_id = uuid4()
        assert await service.partial_update_statistics(
            project_id, PartialStatisticsUpdate(costs={"total": 1})
        ) is None

        await service.update_statistics(project_id, _request(costs={"claude_api": 2}))
        response = await service.partial_update_statistics(
            project_id, PartialStatisticsUpdate(costs={"claude_api": 7, "total": 7})
        )
        assert response.costs.total == 7
        assert (await service.get_statistics(project_id)).costs.total == 7

    @pytest.mark.asyncio
    async def test_delete_invalidates_cache(self, service, fake_redis):
        project_id = uuid4()
        await service.update_statistics(project_id, _request(costs={"claude_api": 2}))

        assert await service.delete_statistics(project_id) is True
        assert f"test:stats:project:{project_id}" not in fake_redis.store
        assert await service.get_statistics(project_id) is None
        assert await service.delete_statistics(project_id) is False

    @pytest.mark.asyncio
    async def test_global_cached_and_invalidated_by_writes(self, service, fake_redis):
        first = await service.get_global_statistics()
        assert first.total_projects == 0
        assert "test:stats:global" in fake_redis.store

        await service.update_statistics(uuid4(), _request(costs={"claude_api": 2, "total": 2}))
        assert "test:stats:global" not in fake_redis.store
        assert (await service.get_global_statistics()).total_projects == 1

    @pytest.mark.asyncio
    async def test_cleanup_invalidates_global(self, service, repository, db, create_project, fake_redis):
        project_id = await create_project(ProjectStatus.ARCHIVED)
        await repository.upsert(project_id, {"usage": {"documents_generated": 1}})
        await _set_last_updated(db, project_id, datetime.utcnow() - timedelta(days=200))
        await service.get_global_statistics()

        assert await service.cleanup_old_statistics() == 1
        assert "test:stats:global" not in fake_redis.store


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, service):
        health = await service.check_health()
        assert health.status == "healthy"
        assert health.dependencies == {"database": "healthy", "cache": "healthy"}

    @pytest.mark.asyncio
    async def test_cache_down_is_degraded(self, repository, settings):
        client = AsyncMock()
        client.ping.side_effect = OSError("unreachable")
        service = StatisticsService(
            repository, StatisticsCache(CacheService("test", client=client), settings), settings
        )
        health = await service.check_health()
        assert health.status == "degraded"
        assert health.dependencies["cache"] == "unhealthy"


class TestReadTimeView:
    NOW = datetime(2024, 6, 1, 12, 0, 0)

    @pytest.fixture
    def entity(self):
        entity = ProjectStatisticsEntity(
            project_id=uuid4(),
            last_updated=self.NOW - timedelta(minutes=30),
        )
        entity.merge_costs({"claude_api": 10, "storage": 2})
        entity.merge_performance({"generation_time": 240, "queue_wait_time": 60})
        entity.merge_usage({"documents_generated": 3, "files_processed": 3, "tokens_used": 15000})
        entity.calculate_data_quality_score()
        return entity

    def test_costs_view(self, service, entity):
        costs = service.entity_to_response(entity, now=self.NOW).costs
        assert costs.cost_per_document == pytest.approx(4.0)
        assert costs.cost_per_hour == pytest.approx(144.0)
        assert costs.currency == "USD"
        assert costs.trend == "stable"

    def test_performance_view(self, service, entity):
        performance = service.entity_to_response(entity, now=self.NOW).performance
        assert performance.average_document_time == pytest.approx(100.0)
        assert performance.efficiency.documents_per_hour == pytest.approx(36.0)
        assert performance.efficiency.tokens_per_second == pytest.approx(50.0)
        assert performance.efficiency.processing_efficiency == pytest.approx(80.0)
        assert performance.efficiency.resource_utilization == 100
        assert performance.bottlenecks == ["generation", "queue_wait"]
        assert performance.benchmark == "average"

    def test_usage_view(self, service, entity):
        usage = service.entity_to_response(entity, now=self.NOW).usage
        assert usage.tokens_per_document == 5000
        assert usage.storage_efficiency == 0
        assert usage.resource_intensity == "moderate"
        assert usage.activity_pattern.usage_frequency == "occasional"
        assert usage.activity_pattern.preferred_formats == ["markdown", "pdf"]
        assert usage.activity_pattern.average_session_duration == 300

    def test_summary(self, service, entity):
        summary = service.entity_to_response(entity, now=self.NOW).summary
        # cost 100 (capped), performance 100 (capped), usage 60
        assert summary.efficiency == pytest.approx(86.667, rel=1e-3)
        assert summary.status == "good"
        assert summary.total_cost == "$12.00"
        assert summary.total_time == "5m"
        assert summary.recommendations == [
            "API costs are high - review prompt efficiency",
            "Consider upgrading to reduce queue wait times",
            "Document generation uses many tokens - consider template optimization",
            "Generated documents haven't been exported yet",
        ]
        assert [(m.name, m.value, m.status) for m in summary.key_metrics] == [
            ("Total Cost", "12.00", "warning"),
            ("Total Time", "5", "good"),
        ]

    def test_total_cost_metric_uses_reported_currency(self, service, entity):
        entity.costs.currency = "EUR"
        summary = service.entity_to_response(entity, now=self.NOW).summary
        assert [(m.name, m.unit) for m in summary.key_metrics] == [
            ("Total Cost", "EUR"),
            ("Total Time", "min"),
        ]

    def test_metadata(self, service, entity):
        metadata = service.entity_to_response(entity, now=self.NOW).metadata
        assert metadata.data_freshness == 30
        assert metadata.completeness == 100
        assert metadata.missing_fields == []
        assert metadata.estimated_fields == []
        assert metadata.version == "1.0.0"
        assert metadata.generated_at == self.NOW
        assert metadata.consistency.valid

    def test_sparse_entity_uses_neutral_scores(self, service):
        entity = ProjectStatisticsEntity(project_id=uuid4(), last_updated=self.NOW)
        response = service.entity_to_response(entity, now=self.NOW)

        assert response.summary.efficiency == 50
        assert response.summary.status == "needs_attention"
        assert response.summary.total_cost == "$0.00"
        assert response.summary.total_time == "0s"
        assert response.summary.key_metrics == []
        assert response.metadata.completeness == 0
        assert response.metadata.missing_fields == [
            "costs.total",
            "performance.total_time",
            "usage.documents_generated",
        ]
        assert response.performance.benchmark == "faster"

    def test_supplied_total_without_breakdown_is_estimated(self, service):
        entity = ProjectStatisticsEntity(project_id=uuid4(), last_updated=self.NOW)
        entity.costs.total = 12
        metadata = service.entity_to_response(entity, now=self.NOW).metadata
        assert metadata.estimated_fields == ["costs.breakdown"]
