"""
Migration: Upgrade the legacy statistics schema
Legacy tables used camelCase columns ("projectId", "lastUpdated", "createdAt",
"updatedAt"), TEXT ids, camelCase keys inside the JSON blobs, and kept
metadata inside the usage JSON under the "_metadata" key. This script renames
the columns, converts the ids to uuid, adds the metadata and version columns
and rewrites every statistics row to snake_case keys.

Ids that are not valid UUIDs make the cast fail; the whole migration is then
rolled back and nothing is changed.

Usage:
    python migrations/upgrade_legacy_statistics_schema.py
"""

import os
import re
import sys

import psycopg2
from psycopg2.extras import Json
from urllib.parse import urlparse

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

COLUMN_RENAMES = [
    ("projects", "createdAt", "created_at"),
    ("projects", "updatedAt", "updated_at"),
    ("project_statistics", "projectId", "project_id"),
    ("project_statistics", "lastUpdated", "last_updated"),
]

UUID_COLUMNS = [
    ("projects", "id"),
    ("project_statistics", "id"),
    ("project_statistics", "project_id"),
]


def snake_case(name):
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def snake_case_keys(value):
    """Rename every dict key to snake_case, leaving values untouched"""
    if isinstance(value, dict):
        return {snake_case(key): snake_case_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [snake_case_keys(item) for item in value]
    return value


def upgrade_row(costs, performance, usage, metadata):
    """
    Rewrite one statistics row to the current layout.

    Metadata found under usage["_metadata"] is folded into the metadata
    column; keys already present in the column win.
    """
    usage = dict(usage or {})
    legacy_metadata = usage.pop("_metadata", None) or {}
    merged_metadata = snake_case_keys(legacy_metadata)
    merged_metadata.update(snake_case_keys(metadata or {}))
    return (
        snake_case_keys(costs or {}),
        snake_case_keys(performance or {}),
        snake_case_keys(usage),
        merged_metadata,
    )


def _load_database_url():
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    env_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
    if os.path.exists(env_path):
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line.startswith("DATABASE_URL="):
                    return line.split("=", 1)[1].strip()
    return None


def _column_type(cursor, table, column):
    cursor.execute("""
        SELECT data_type
        FROM information_schema.columns
        WHERE table_name = %s AND column_name = %s
    """, (table, column))
    row = cursor.fetchone()
    return row[0] if row else None


def _rename_columns(cursor):
    for table, old, new in COLUMN_RENAMES:
        if _column_type(cursor, table, old) is None:
            print(f"Column {table}.{old} not found. Skipping rename.")
            continue
        if _column_type(cursor, table, new) is not None:
            print(f"Column {table}.{new} already exists. Skipping rename.")
            continue
        print(f"Renaming {table}.\"{old}\" to {new}...")
        cursor.execute(f'ALTER TABLE {table} RENAME COLUMN "{old}" TO {new}')


def _convert_ids_to_uuid(cursor):
    pending = [
        (table, column) for table, column in UUID_COLUMNS
        if _column_type(cursor, table, column) != "uuid"
    ]
    if not pending:
        print("Id columns are already uuid. Skipping conversion.")
        return

    # the foreign key pins both sides to the same type
    cursor.execute('ALTER TABLE project_statistics DROP CONSTRAINT IF EXISTS "project_statistics_projectId_fkey"')
    cursor.execute("ALTER TABLE project_statistics DROP CONSTRAINT IF EXISTS project_statistics_project_id_fkey")

    for table, column in pending:
        print(f"Converting {table}.{column} to uuid...")
        cursor.execute(f"ALTER TABLE {table} ALTER COLUMN {column} TYPE uuid USING {column}::uuid")

    cursor.execute("""
        ALTER TABLE project_statistics
        ADD CONSTRAINT project_statistics_project_id_fkey
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    """)


def _rename_status_type(cursor):
    cursor.execute("SELECT 1 FROM pg_type WHERE typname = 'ProjectStatus'")
    if cursor.fetchone() is None:
        print("Type 'ProjectStatus' not found. Skipping rename.")
        return
    print("Renaming type \"ProjectStatus\" to projectstatus...")
    cursor.execute('ALTER TYPE "ProjectStatus" RENAME TO projectstatus')


def _add_columns(cursor):
    if _column_type(cursor, "project_statistics", "metadata") is not None:
        print("Column 'metadata' already exists. Skipping column creation.")
    else:
        print("Adding 'metadata' column to 'project_statistics'...")
        cursor.execute("""
            ALTER TABLE project_statistics
            ADD COLUMN metadata JSONB NOT NULL DEFAULT '{}'::jsonb
        """)

    if _column_type(cursor, "project_statistics", "version") is not None:
        print("Column 'version' already exists. Skipping column creation.")
    else:
        print("Adding 'version' column to 'project_statistics'...")
        cursor.execute("""
            ALTER TABLE project_statistics
            ADD COLUMN version INTEGER NOT NULL DEFAULT 1
        """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS ix_project_statistics_last_updated
        ON project_statistics (last_updated)
    """)


def _rewrite_rows(cursor):
    print("Rewriting statistics JSON to snake_case keys...")
    cursor.execute("SELECT id, costs, performance, usage, metadata FROM project_statistics")
    rows = cursor.fetchall()

    rewritten = 0
    for row_id, costs, performance, usage, metadata in rows:
        current = (costs or {}, performance or {}, usage or {}, metadata or {})
        upgraded = upgrade_row(*current)
        if upgraded == current:
            continue
        cursor.execute("""
            UPDATE project_statistics
            SET costs = %s, performance = %s, usage = %s, metadata = %s,
                version = version + 1
            WHERE id = %s
        """, (*(Json(block) for block in upgraded), row_id))
        rewritten += 1

    print(f"Rewrote {rewritten} of {len(rows)} rows.")


def run_migration():
    database_url = _load_database_url()
    if not database_url:
        print("ERROR: DATABASE_URL not configured")
        return False

    print("Connecting to database...")
    parsed = urlparse(database_url)
    conn = psycopg2.connect(
        host=parsed.hostname,
        port=parsed.port or 5432,
        user=parsed.username,
        password=parsed.password,
        dbname=parsed.path.lstrip("/").split("?")[0],
        sslmode=os.environ.get("DATABASE_SSLMODE", "prefer"),
    )

    try:
        cursor = conn.cursor()
        _rename_columns(cursor)
        _convert_ids_to_uuid(cursor)
        _rename_status_type(cursor)
        _add_columns(cursor)
        _rewrite_rows(cursor)

        conn.commit()
        print("Migration completed successfully!")
        return True

    except psycopg2.Error as e:
        print(f"ERROR: {e}")
        conn.rollback()
        return False
    finally:
        conn.close()


if __name__ == "__main__":
    success = run_migration()
    sys.exit(0 if success else 1)
