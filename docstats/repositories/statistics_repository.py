"""
Statistics Repository
Read-modify-write persistence of project statistics on JSON columns

Writes are optimistic: each row carries a ``version`` that must still match
when the merged state is written back, otherwise the merge is redone on a
fresh read. Creation uses INSERT ... ON CONFLICT DO NOTHING so two services
reporting the first statistics of a project at once cannot both insert.
"""

import json
import logging
from collections import Counter
from dataclasses import is_dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docstats.config import STATISTICS_SOURCES
from docstats.exceptions import (
    ConcurrencyConflictError,
    PersistenceError,
    UnsupportedCriteriaError,
)
from docstats.models import (
    CostsData,
    PerformanceData,
    Project,
    ProjectStatistics,
    ProjectStatisticsEntity,
    ProjectStatus,
    StatisticsMetadata,
    UsageData,
)
from docstats.schemas import SearchCriteria

logger = logging.getLogger(__name__)

statistics_table = ProjectStatistics.__table__

_DROP = object()


def _to_plain(value: Any) -> Any:
    """Reduce a value to JSON-compatible data, or _DROP if it has no JSON form"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if is_dataclass(value) and hasattr(value, "to_dict"):
        return _to_plain(value.to_dict())
    if isinstance(value, Mapping):
        plain = {}
        for key, item in value.items():
            key = str(key)
            # dunder keys never belong in a statistics blob
            if key.startswith("__"):
                continue
            item = _to_plain(item)
            if item is not _DROP:
                plain[key] = item
        return plain
    if isinstance(value, (list, tuple)):
        return [item for item in (_to_plain(v) for v in value) if item is not _DROP]
    return _DROP


def sanitize_json_data(data: Any) -> Dict[str, Any]:
    """Deep-copy a payload through a plain JSON round trip before persisting"""
    if data is None:
        return {}
    plain = _to_plain(data)
    if not isinstance(plain, dict):
        return {}
    return json.loads(json.dumps(plain))


def _as_uuid(value: Union[UUID, str]) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class StatisticsRepository:
    """
    Database operations for project statistics.
    Rows are converted to ProjectStatisticsEntity on the way out.
    """

    def __init__(self, db: AsyncSession, max_retries: int = 5):
        self.db = db
        self.max_retries = max_retries

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _insert(self):
        """Dialect insert supporting ON CONFLICT"""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(statistics_table)
        if dialect == "sqlite":
            return sqlite.insert(statistics_table)
        raise PersistenceError(f"Statistics upsert is not supported on {dialect}")

    async def _select_one(self, *criteria) -> Optional[ProjectStatistics]:
        result = await self.db.execute(
            select(ProjectStatistics)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _fail(self, operation: str, error: Exception) -> PersistenceError:
        await self.db.rollback()
        return PersistenceError(f"Statistics {operation} failed: {error}")

    def _to_entity(self, row: ProjectStatistics) -> ProjectStatisticsEntity:
        entity = ProjectStatisticsEntity(
            project_id=row.project_id,
            id=row.id,
            costs=CostsData.from_dict(row.costs),
            performance=PerformanceData.from_dict(row.performance),
            usage=UsageData.from_dict(row.usage),
            metadata=StatisticsMetadata.from_dict(row.stats_metadata),
            last_updated=row.last_updated,
            version=row.version or 0,
        )
        if row.last_updated is not None:
            # whole minutes since the last write
            age = datetime.utcnow() - row.last_updated
            entity.metadata.data_freshness = max(0, int(age.total_seconds() // 60))
        quality_score = entity.calculate_data_quality_score()
        logger.debug(
            f"Converted statistics entity for project {row.project_id}, quality score: {quality_score}"
        )
        return entity

    @staticmethod
    def _row_values(entity: ProjectStatisticsEntity) -> Dict[str, Any]:
        return {
            "costs": sanitize_json_data(entity.costs),
            "performance": sanitize_json_data(entity.performance),
            "usage": sanitize_json_data(entity.usage),
            "metadata": sanitize_json_data(entity.metadata),
            "last_updated": datetime.utcnow(),
        }

    @staticmethod
    def _new_entity(project_id: UUID, fields: Mapping[str, Any]) -> ProjectStatisticsEntity:
        """First write for a project: blocks are stored as supplied"""
        entity = ProjectStatisticsEntity(project_id=project_id)
        entity.costs = CostsData.from_dict(fields.get("costs"))
        entity.performance = PerformanceData.from_dict(fields.get("performance"))
        entity.usage = UsageData.from_dict(fields.get("usage"))
        entity.update_metadata(fields.get("metadata") or {})
        entity.calculate_data_quality_score()
        return entity

    @staticmethod
    def _merged_entity(
        entity: ProjectStatisticsEntity,
        fields: Mapping[str, Any],
    ) -> ProjectStatisticsEntity:
        entity.merge_costs(fields.get("costs"))
        entity.merge_performance(fields.get("performance"))
        entity.merge_usage(fields.get("usage"))
        entity.update_metadata(fields.get("metadata") or {})
        entity.calculate_data_quality_score()
        return entity

    async def _insert_if_absent(self, entity: ProjectStatisticsEntity) -> bool:
        values = self._row_values(entity)
        values.update(id=uuid4(), project_id=entity.project_id, version=1)
        stmt = (
            self._insert()
            .values(**values)
            .on_conflict_do_nothing(index_elements=["project_id"])
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def _compare_and_swap(self, entity: ProjectStatisticsEntity, expected_version: int) -> bool:
        values = self._row_values(entity)
        values["version"] = expected_version + 1
        stmt = (
            update(statistics_table)
            .where(
                statistics_table.c.project_id == entity.project_id,
                statistics_table.c.version == expected_version,
            )
            .values(**values)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    # =========================================================================
    # WRITES
    # =========================================================================

    async def upsert(
        self,
        project_id: Union[UUID, str],
        update_fields: Mapping[str, Any],
    ) -> ProjectStatisticsEntity:
        """
        Create or merge statistics for a project.

        Raises:
            ConcurrencyConflictError: if every attempt lost a concurrent write
            PersistenceError: on any other datastore failure
        """
        project_id = _as_uuid(project_id)
        logger.debug(f"Upserting statistics for project {project_id}")

        for attempt in range(1, self.max_retries + 1):
            try:
                row = await self._select_one(ProjectStatistics.project_id == project_id)
                if row is None:
                    entity = self._new_entity(project_id, update_fields)
                    written = await self._insert_if_absent(entity)
                else:
                    entity = self._merged_entity(self._to_entity(row), update_fields)
                    written = await self._compare_and_swap(entity, row.version)
            except SQLAlchemyError as e:
                logger.exception(f"Failed to upsert statistics for project {project_id}")
                raise await self._fail("upsert", e) from e

            if written:
                break
            logger.warning(
                f"Concurrent statistics write for project {project_id}, "
                f"retrying ({attempt}/{self.max_retries})"
            )
        else:
            raise ConcurrencyConflictError(
                f"Statistics for project {project_id} changed concurrently "
                f"{self.max_retries} times, giving up"
            )

        stored = await self.find_by_project_id(project_id)
        logger.debug(f"Statistics upserted successfully for project {project_id}")
        return stored

    async def partial_update(
        self,
        project_id: Union[UUID, str],
        fields: Mapping[str, Any],
    ) -> Optional[ProjectStatisticsEntity]:
        """
        Overwrite the sent blocks directly, without merging.

        Derived values (totals, breakdown, bottlenecks, ratios) are NOT
        recalculated on this path. Returns None when the project has no
        statistics yet.
        """
        project_id = _as_uuid(project_id)
        logger.debug(f"Partial update for project {project_id}")

        values = {}
        for block in ("costs", "performance", "usage"):
            if fields.get(block) is not None:
                values[block] = sanitize_json_data(fields[block])
        if fields.get("metadata") is not None:
            scratch = ProjectStatisticsEntity()
            scratch.update_metadata(fields["metadata"])
            values["metadata"] = sanitize_json_data(scratch.metadata)

        if not values:
            return await self.find_by_project_id(project_id)

        try:
            result = await self.db.execute(
                update(statistics_table)
                .where(statistics_table.c.project_id == project_id)
                .values(
                    **values,
                    version=statistics_table.c.version + 1,
                    last_updated=datetime.utcnow(),
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.exception(f"Failed to partially update statistics for project {project_id}")
            raise await self._fail("partial update", e) from e

        if result.rowcount == 0:
            logger.debug(f"No statistics found for partial update of project {project_id}")
            return None

        return await self.find_by_project_id(project_id)

    async def delete_by_project_id(self, project_id: Union[UUID, str]) -> bool:
        """True if a row existed and was removed"""
        project_id = _as_uuid(project_id)
        logger.debug(f"Deleting statistics for project {project_id}")

        try:
            result = await self.db.execute(
                delete(statistics_table).where(statistics_table.c.project_id == project_id)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.exception(f"Failed to delete statistics for project {project_id}")
            raise await self._fail("deletion", e) from e

        deleted = result.rowcount > 0
        if not deleted:
            logger.debug(f"No statistics to delete for project {project_id}")
        return deleted

    async def cleanup_old_statistics(self, retention_days: int = 90) -> int:
        """Delete stale statistics of archived or deleted projects"""
        logger.debug(f"Cleaning up statistics older than {retention_days} days")
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        retired_projects = select(Project.id).where(
            Project.status.in_([ProjectStatus.ARCHIVED, ProjectStatus.DELETED])
        )

        try:
            result = await self.db.execute(
                delete(statistics_table).where(
                    statistics_table.c.last_updated < cutoff,
                    statistics_table.c.project_id.in_(retired_projects),
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.exception("Failed to cleanup old statistics")
            raise await self._fail("cleanup", e) from e

        logger.debug(f"Cleaned up {result.rowcount} old statistics records")
        return result.rowcount

    # =========================================================================
    # READS
    # =========================================================================

    async def find_by_project_id(self, project_id: Union[UUID, str]) -> Optional[ProjectStatisticsEntity]:
        project_id = _as_uuid(project_id)
        logger.debug(f"Finding statistics for project {project_id}")
        try:
            row = await self._select_one(ProjectStatistics.project_id == project_id)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to find statistics for project {project_id}")
            raise await self._fail("retrieval", e) from e

        if row is None:
            logger.debug(f"No statistics found for project {project_id}")
            return None
        return self._to_entity(row)

    async def find_by_id(self, statistics_id: Union[UUID, str]) -> Optional[ProjectStatisticsEntity]:
        statistics_id = _as_uuid(statistics_id)
        try:
            row = await self._select_one(ProjectStatistics.id == statistics_id)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to find statistics by ID {statistics_id}")
            raise await self._fail("retrieval by ID", e) from e
        return self._to_entity(row) if row else None

    async def find_many_by_project_ids(
        self,
        project_ids: Sequence[Union[UUID, str]],
    ) -> Dict[UUID, ProjectStatisticsEntity]:
        """Only projects that have statistics appear in the result"""
        if not project_ids:
            return {}
        ids = [_as_uuid(pid) for pid in project_ids]
        logger.debug(f"Finding statistics for {len(ids)} projects")

        try:
            result = await self.db.execute(
                select(ProjectStatistics)
                .where(ProjectStatistics.project_id.in_(ids))
                .execution_options(populate_existing=True)
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.exception("Failed to find statistics for multiple projects")
            raise await self._fail("batch retrieval", e) from e

        statistics = {row.project_id: self._to_entity(row) for row in rows}
        logger.debug(f"Found statistics for {len(statistics)}/{len(ids)} projects")
        return statistics

    async def find_by_criteria(self, criteria: SearchCriteria) -> List[ProjectStatisticsEntity]:
        """Entities matching every given criterion, most recently updated first"""
        logger.debug(f"Finding statistics by criteria {criteria.model_dump(exclude_none=True)}")

        if (
            criteria.min_total_cost is not None
            and criteria.max_total_cost is not None
            and criteria.min_total_cost > criteria.max_total_cost
        ):
            raise UnsupportedCriteriaError("min_total_cost cannot be greater than max_total_cost")

        unknown_sources = [s for s in criteria.sources or [] if s not in STATISTICS_SOURCES]
        if unknown_sources:
            raise UnsupportedCriteriaError(
                f"Unknown statistics sources: {', '.join(unknown_sources)}"
            )

        conditions = []
        total_cost = ProjectStatistics.costs["total"].as_float()
        if criteria.min_total_cost is not None:
            conditions.append(total_cost >= criteria.min_total_cost)
        if criteria.max_total_cost is not None:
            conditions.append(total_cost <= criteria.max_total_cost)
        if criteria.min_documents is not None:
            conditions.append(
                ProjectStatistics.usage["documents_generated"].as_integer() >= criteria.min_documents
            )
        if criteria.max_performance_time is not None:
            conditions.append(
                ProjectStatistics.performance["total_time"].as_float() <= criteria.max_performance_time
            )
        if criteria.data_freshness_minutes is not None:
            cutoff = datetime.utcnow() - timedelta(minutes=criteria.data_freshness_minutes)
            conditions.append(ProjectStatistics.last_updated >= cutoff)

        stmt = select(ProjectStatistics).order_by(ProjectStatistics.last_updated.desc())
        if conditions:
            stmt = stmt.where(*conditions)

        try:
            result = await self.db.execute(stmt.execution_options(populate_existing=True))
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.exception("Failed to find statistics by criteria")
            raise await self._fail("search", e) from e

        entities = [self._to_entity(row) for row in rows]

        # metadata.sources is a JSON list; any-of matching is done here
        if criteria.sources:
            wanted = set(criteria.sources)
            entities = [e for e in entities if wanted & set(e.metadata.sources or [])]

        return entities

    async def get_global_statistics(self) -> Dict[str, Any]:
        """Platform-wide totals; zeros for an empty dataset"""
        logger.debug("Computing global statistics")
        total_cost = ProjectStatistics.costs["total"].as_float()

        try:
            result = await self.db.execute(
                select(
                    func.count(ProjectStatistics.id),
                    func.coalesce(func.sum(total_cost), 0),
                    func.coalesce(
                        func.sum(ProjectStatistics.usage["documents_generated"].as_integer()), 0
                    ),
                ).where(total_cost.is_not(None))
            )
            total_projects, total_costs, total_documents = result.one()

            rows_result = await self.db.execute(
                select(ProjectStatistics).execution_options(populate_existing=True)
            )
            rows = rows_result.scalars().all()
        except SQLAlchemyError as e:
            logger.exception("Failed to compute global statistics")
            raise await self._fail("global computation", e) from e

        distribution = Counter()
        quality_scores = []
        for row in rows:
            for source in (row.stats_metadata or {}).get("sources") or []:
                distribution[source] += 1
            if (row.costs or {}).get("total") is not None:
                # scored at read time so staleness counts
                quality_scores.append(self._to_entity(row).metadata.quality_score)

        avg_quality = sum(quality_scores) / len(quality_scores) if quality_scores else 0.0
        return {
            "total_projects": int(total_projects or 0),
            "total_costs": float(total_costs or 0),
            "total_documents": int(total_documents or 0),
            "average_quality_score": float(avg_quality),
            "source_distribution": dict(distribution),
        }

    async def ping(self) -> None:
        """Round trip to the database; raises on failure"""
        await self.db.execute(text("SELECT 1"))
