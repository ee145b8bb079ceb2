"""
Tests for the periodic statistics cleanup task.
"""

from docstats.exceptions import PersistenceError
from docstats.workers.tasks import maintenance_tasks


def test_cleanup_reports_deleted_count(monkeypatch):
    seen = []

    async def fake_cleanup(retention_days):
        seen.append(retention_days)
        return 3

    monkeypatch.setattr(maintenance_tasks, "_cleanup", fake_cleanup)
    result = maintenance_tasks.cleanup_old_statistics.run(45)

    assert seen == [45]
    assert result["success"] is True
    assert result["deleted_count"] == 3
    assert result["retention_days"] == 45
    assert "timestamp" in result


def test_cleanup_defaults_retention(monkeypatch):
    async def fake_cleanup(retention_days):
        return retention_days

    monkeypatch.setattr(maintenance_tasks, "_cleanup", fake_cleanup)
    assert maintenance_tasks.cleanup_old_statistics.run()["retention_days"] == 90


def test_cleanup_failure_returns_error(monkeypatch):
    async def failing_cleanup(retention_days):
        raise PersistenceError("Statistics cleanup failed: database is locked")

    monkeypatch.setattr(maintenance_tasks, "_cleanup", failing_cleanup)
    result = maintenance_tasks.cleanup_old_statistics.run(30)

    assert result == {"error": "Statistics cleanup failed: database is locked"}


def test_beat_schedule_registered():
    from docstats.workers.celery_app import celery_app

    entry = celery_app.conf.beat_schedule["cleanup-old-statistics"]
    assert entry["task"] == "docstats.workers.tasks.maintenance_tasks.cleanup_old_statistics"
