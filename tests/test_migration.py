"""
Tests for the legacy statistics schema upgrade.
"""

import pytest

from docstats.models import CostsData, UsageData
from migrations.upgrade_legacy_statistics_schema import (
    _rename_columns,
    _rewrite_rows,
    snake_case,
    snake_case_keys,
    upgrade_row,
)


class RecordingCursor:
    """psycopg2 cursor double answering column lookups and recording statements"""

    def __init__(self, columns=(), rows=()):
        self.columns = set(columns)
        self.rows = list(rows)
        self.statements = []
        self._result = []

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        if "information_schema.columns" in sql:
            self._result = [("text",)] if params in self.columns else []
        elif sql.strip().startswith("SELECT id"):
            self._result = self.rows
        else:
            self._result = []

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class TestKeyConversion:
    @pytest.mark.parametrize("name, expected", [
        ("claudeApi", "claude_api"),
        ("claudeApiPercentage", "claude_api_percentage"),
        ("apiCallsCount", "api_calls_count"),
        ("documents_generated", "documents_generated"),
        ("total", "total"),
    ])
    def test_snake_case(self, name, expected):
        assert snake_case(name) == expected

    def test_nested_keys_converted_values_kept(self):
        usage = {
            "documentsGenerated": 5,
            "activityPattern": {"peakHours": [9, 14], "preferredFormats": ["pdf", "docxExport"]},
        }
        assert snake_case_keys(usage) == {
            "documents_generated": 5,
            "activity_pattern": {"peak_hours": [9, 14], "preferred_formats": ["pdf", "docxExport"]},
        }


class TestUpgradeRow:
    def test_legacy_row_becomes_readable(self):
        costs, performance, usage, metadata = upgrade_row(
            {"claudeApi": 15.5, "total": 15.5, "breakdown": {"claudeApiPercentage": 100}},
            {"generationTime": 30, "totalTime": 40},
            {"documentsGenerated": 5, "_metadata": {"qualityScore": 90, "sources": ["export-service"]}},
            None,
        )

        assert costs == {"claude_api": 15.5, "total": 15.5, "breakdown": {"claude_api_percentage": 100}}
        assert performance == {"generation_time": 30, "total_time": 40}
        assert usage == {"documents_generated": 5}
        assert metadata == {"quality_score": 90, "sources": ["export-service"]}

        # the records pick the converted keys up instead of dropping them
        assert CostsData.from_dict(costs).claude_api == 15.5
        assert UsageData.from_dict(usage).documents_generated == 5

    def test_existing_metadata_column_wins(self):
        _, _, _, metadata = upgrade_row(
            {}, {}, {"_metadata": {"batchId": "old", "version": "1.0.0"}}, {"batch_id": "new"}
        )
        assert metadata == {"batch_id": "new", "version": "1.0.0"}

    def test_current_row_is_unchanged(self):
        current = ({"total": 1}, {"total_time": 2}, {"documents_generated": 3}, {"sources": []})
        assert upgrade_row(*current) == current


class TestMigrationSteps:
    def test_renames_only_legacy_columns(self):
        cursor = RecordingCursor(columns={
            ("project_statistics", "projectId"),
            ("project_statistics", "lastUpdated"),
            ("projects", "created_at"),
            ("projects", "updated_at"),
        })
        _rename_columns(cursor)

        renames = [sql for sql, _ in cursor.statements if sql.startswith("ALTER TABLE")]
        assert renames == [
            'ALTER TABLE project_statistics RENAME COLUMN "projectId" TO project_id',
            'ALTER TABLE project_statistics RENAME COLUMN "lastUpdated" TO last_updated',
        ]

    def test_rewrites_only_legacy_rows(self):
        cursor = RecordingCursor(rows=[
            ("legacy", {"claudeApi": 1}, {}, {"_metadata": {"batchId": "b"}}, {}),
            ("current", {"claude_api": 1}, {}, {}, {}),
        ])
        _rewrite_rows(cursor)

        updates = [params for sql, params in cursor.statements if sql.startswith("UPDATE")]
        assert len(updates) == 1
        costs, performance, usage, metadata, row_id = updates[0]
        assert row_id == "legacy"
        assert costs.adapted == {"claude_api": 1}
        assert usage.adapted == {}
        assert metadata.adapted == {"batch_id": "b"}
