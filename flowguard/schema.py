"""Database schema definitions for the FlowGuard artifact store."""

import logging
import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

ISSUE_COLUMNS = (
    "issue_id, verification_id, position, severity, category, file, line, message, "
    "suggestion, code, spec_requirement_id, fix_suggestion_json, resolution"
)

# Keyed by position: rule-supplied issue ids are not guaranteed unique
ISSUES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS verification_issues (
    issue_id TEXT NOT NULL,
    verification_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    severity TEXT NOT NULL CHECK(severity IN ('Critical', 'High', 'Medium', 'Low')),
    category TEXT NOT NULL CHECK(category IN ('security', 'performance', 'style', 'logic', 'documentation', 'testing', 'architecture')),
    file TEXT NOT NULL,
    line INTEGER,
    message TEXT NOT NULL,
    suggestion TEXT,
    code TEXT,
    spec_requirement_id TEXT,
    fix_suggestion_json TEXT,
    resolution TEXT NOT NULL DEFAULT 'open' CHECK(resolution IN ('open', 'fixed', 'ignored')),
    PRIMARY KEY (verification_id, position),
    FOREIGN KEY (verification_id) REFERENCES verifications(verification_id) ON DELETE CASCADE
);
"""

CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Specifications, one per spec id
CREATE TABLE IF NOT EXISTS specs (
    spec_id TEXT PRIMARY KEY,
    epic_id TEXT NOT NULL,
    title TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('draft', 'in_review', 'approved', 'archived')),
    author TEXT NOT NULL,
    tags_json TEXT NOT NULL DEFAULT '[]',
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Verification runs
CREATE TABLE IF NOT EXISTS verifications (
    verification_id TEXT PRIMARY KEY,
    epic_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    diff_source_json TEXT NOT NULL,
    analysis_json TEXT NOT NULL,
    passed BOOLEAN NOT NULL,
    total_issues INTEGER NOT NULL DEFAULT 0,
    issue_counts_json TEXT NOT NULL,
    recommendation TEXT NOT NULL,
    approval_status TEXT NOT NULL CHECK(approval_status IN ('approved', 'approved_with_conditions', 'changes_requested', 'pending'))
);

-- Issues found by a verification, kept in report order
""" + ISSUES_TABLE_SQL + """

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_specs_epic_id ON specs(epic_id);
CREATE INDEX IF NOT EXISTS idx_verifications_epic_id ON verifications(epic_id);
CREATE INDEX IF NOT EXISTS idx_verifications_created_at ON verifications(created_at);
CREATE INDEX IF NOT EXISTS idx_issues_verification_id ON verification_issues(verification_id);
CREATE INDEX IF NOT EXISTS idx_issues_issue_id ON verification_issues(verification_id, issue_id);
CREATE INDEX IF NOT EXISTS idx_issues_severity ON verification_issues(severity);
"""


async def initialize_database(db: aiosqlite.Connection) -> None:
    """Initialize database schema and apply migrations."""
    try:
        await db.execute("PRAGMA foreign_keys = ON")

        current_version = await get_schema_version(db)
        if current_version == 1:
            await _migrate_issues_to_position_key(db)

        await db.executescript(CREATE_TABLES_SQL)

        if current_version < SCHEMA_VERSION:
            await db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,)
            )
            await db.commit()
            logger.info(f"Database schema initialized to version {SCHEMA_VERSION}")
        else:
            logger.debug(f"Database schema already at version {current_version}")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def _migrate_issues_to_position_key(db: aiosqlite.Connection) -> None:
    """Rebuild version 1 issue rows, keyed by (verification_id, issue_id), under the position key."""
    await db.executescript(
        "ALTER TABLE verification_issues RENAME TO verification_issues_v1;"
        + ISSUES_TABLE_SQL
        + f"INSERT INTO verification_issues ({ISSUE_COLUMNS}) "
        f"SELECT {ISSUE_COLUMNS} FROM verification_issues_v1;"
        "DROP TABLE verification_issues_v1;"
    )
    logger.info("Migrated verification_issues to schema version 2")


async def get_schema_version(db: aiosqlite.Connection) -> int:
    """Get current schema version."""
    try:
        async with db.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0
    except aiosqlite.Error:
        return 0
