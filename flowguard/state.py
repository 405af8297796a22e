"""Artifact storage for FlowGuard specs and verifications using SQLite."""

import logging
import json
from datetime import datetime
from typing import Optional, List, Dict, Any
from pathlib import Path
import aiosqlite

from .schema import initialize_database
from .models import (
    Spec, Verification, VerificationIssue, VerificationSummary,
    DiffSource, DiffAnalysis, FixSuggestion,
)
from .exceptions import (
    SpecNotFoundError, VerificationNotFoundError, DatabaseError, StorageError,
)

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Persists specs and verification records in a SQLite database."""

    def __init__(self, db_path: str):
        """Initialize artifact store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.db:
            await self.db.close()
            self.db = None

    async def _initialize(self):
        """Initialize database connection and schema."""
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self.db = await aiosqlite.connect(self.db_path)
            self.db.row_factory = aiosqlite.Row
            await initialize_database(self.db)
            logger.info(f"Artifact store initialized with database: {self.db_path}")
        except Exception as e:
            logger.error(f"Failed to initialize artifact store: {e}")
            raise DatabaseError("Failed to initialize database", e)

    # Spec Management

    async def save_spec(self, spec: Spec) -> Spec:
        """Insert or replace a spec."""
        try:
            await self.db.execute(
                """INSERT INTO specs (
                    spec_id, epic_id, title, status, author, tags_json,
                    content, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(spec_id) DO UPDATE SET
                    epic_id = excluded.epic_id,
                    title = excluded.title,
                    status = excluded.status,
                    author = excluded.author,
                    tags_json = excluded.tags_json,
                    content = excluded.content,
                    updated_at = excluded.updated_at""",
                (
                    spec.id, spec.epic_id, spec.title, spec.status, spec.author,
                    json.dumps(spec.tags), spec.content,
                    spec.created_at.isoformat(), spec.updated_at.isoformat(),
                )
            )
            await self.db.commit()
            logger.info(f"Saved spec {spec.id} (epic {spec.epic_id})")
            return spec
        except Exception as e:
            logger.error(f"Failed to save spec {spec.id}: {e}")
            raise DatabaseError(f"Failed to save spec {spec.id}", e)

    async def load_spec(self, spec_id: str) -> Spec:
        """Get spec by ID.

        Raises:
            SpecNotFoundError: If no spec has this ID
        """
        try:
            async with self.db.execute(
                "SELECT * FROM specs WHERE spec_id = ?", (spec_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            logger.error(f"Failed to load spec {spec_id}: {e}")
            raise DatabaseError(f"Failed to load spec {spec_id}", e)

        if row is None:
            raise SpecNotFoundError(spec_id)
        return self._row_to_spec(row)

    async def list_specs(self, epic_id: Optional[str] = None) -> List[Spec]:
        """List specs, optionally restricted to one epic."""
        try:
            if epic_id:
                query = "SELECT * FROM specs WHERE epic_id = ? ORDER BY created_at"
                params = (epic_id,)
            else:
                query = "SELECT * FROM specs ORDER BY created_at"
                params = ()

            async with self.db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_spec(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list specs: {e}")
            raise DatabaseError("Failed to list specs", e)

    async def import_spec_file(self, path: str) -> Spec:
        """Import a markdown spec with YAML frontmatter from disk."""
        try:
            text = Path(path).read_text(encoding='utf-8')
        except OSError as e:
            raise StorageError(f"Cannot read spec file {path}: {e}")

        spec = Spec.from_markdown(text)
        return await self.save_spec(spec)

    @staticmethod
    def _row_to_spec(row: aiosqlite.Row) -> Spec:
        data = dict(row)
        return Spec(
            id=data['spec_id'],
            epic_id=data['epic_id'],
            title=data['title'],
            status=data['status'],
            author=data['author'],
            tags=json.loads(data['tags_json']),
            content=data['content'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
        )

    # Verification Management

    async def save_verification(self, verification: Verification) -> Verification:
        """Insert or replace a verification and its issues."""
        summary = verification.summary
        try:
            await self.db.execute(
                """INSERT INTO verifications (
                    verification_id, epic_id, created_at, diff_source_json,
                    analysis_json, passed, total_issues, issue_counts_json,
                    recommendation, approval_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(verification_id) DO UPDATE SET
                    epic_id = excluded.epic_id,
                    diff_source_json = excluded.diff_source_json,
                    analysis_json = excluded.analysis_json,
                    passed = excluded.passed,
                    total_issues = excluded.total_issues,
                    issue_counts_json = excluded.issue_counts_json,
                    recommendation = excluded.recommendation,
                    approval_status = excluded.approval_status""",
                (
                    verification.id,
                    verification.epic_id,
                    verification.created_at.isoformat(),
                    verification.diff_source.model_dump_json(),
                    verification.analysis.model_dump_json(),
                    summary.passed,
                    summary.total_issues,
                    json.dumps(summary.issue_counts),
                    summary.recommendation,
                    summary.approval_status,
                )
            )

            await self.db.execute(
                "DELETE FROM verification_issues WHERE verification_id = ?",
                (verification.id,)
            )
            await self.db.executemany(
                """INSERT INTO verification_issues (
                    issue_id, verification_id, position, severity, category, file,
                    line, message, suggestion, code, spec_requirement_id,
                    fix_suggestion_json, resolution
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        issue.id, verification.id, position, issue.severity,
                        issue.category, issue.file, issue.line, issue.message,
                        issue.suggestion, issue.code, issue.spec_requirement_id,
                        issue.fix_suggestion.model_dump_json() if issue.fix_suggestion else None,
                        issue.resolution,
                    )
                    for position, issue in enumerate(verification.issues)
                ]
            )
            await self.db.commit()
            logger.info(
                f"Saved verification {verification.id}",
                extra={'epic_id': verification.epic_id, 'issues': len(verification.issues)}
            )
            return verification
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to save verification {verification.id}: {e}")
            raise DatabaseError(f"Failed to save verification {verification.id}", e)

    async def load_verification(self, verification_id: str) -> Verification:
        """Get verification by ID.

        Raises:
            VerificationNotFoundError: If no verification has this ID
        """
        try:
            async with self.db.execute(
                "SELECT * FROM verifications WHERE verification_id = ?",
                (verification_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                issue_rows = []
            else:
                issue_rows = await self._fetch_issue_rows(verification_id)
        except Exception as e:
            logger.error(f"Failed to load verification {verification_id}: {e}")
            raise DatabaseError(f"Failed to load verification {verification_id}", e)

        if row is None:
            raise VerificationNotFoundError(verification_id)
        return self._row_to_verification(row, issue_rows)

    async def list_verifications(
        self,
        epic_id: Optional[str] = None,
        limit: int = 50
    ) -> List[Verification]:
        """List verifications newest first, optionally for one epic."""
        try:
            if epic_id:
                query = "SELECT * FROM verifications WHERE epic_id = ? ORDER BY created_at DESC LIMIT ?"
                params = (epic_id, limit)
            else:
                query = "SELECT * FROM verifications ORDER BY created_at DESC LIMIT ?"
                params = (limit,)

            async with self.db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

            verifications = []
            for row in rows:
                issue_rows = await self._fetch_issue_rows(row['verification_id'])
                verifications.append(self._row_to_verification(row, issue_rows))
            return verifications
        except Exception as e:
            logger.error(f"Failed to list verifications: {e}")
            raise DatabaseError("Failed to list verifications", e)

    async def delete_verification(self, verification_id: str) -> bool:
        """Delete a verification and its issues. Returns False if it did not exist."""
        try:
            await self.db.execute(
                "DELETE FROM verification_issues WHERE verification_id = ?",
                (verification_id,)
            )
            cursor = await self.db.execute(
                "DELETE FROM verifications WHERE verification_id = ?",
                (verification_id,)
            )
            await self.db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted verification {verification_id}")
            return deleted
        except Exception as e:
            logger.error(f"Failed to delete verification {verification_id}: {e}")
            raise DatabaseError(f"Failed to delete verification {verification_id}", e)

    async def _fetch_issue_rows(self, verification_id: str) -> List[aiosqlite.Row]:
        async with self.db.execute(
            "SELECT * FROM verification_issues WHERE verification_id = ? ORDER BY position",
            (verification_id,)
        ) as cursor:
            return list(await cursor.fetchall())

    @staticmethod
    def _row_to_issue(row: aiosqlite.Row) -> VerificationIssue:
        data: Dict[str, Any] = dict(row)
        fix_json = data.get('fix_suggestion_json')
        return VerificationIssue(
            id=data['issue_id'],
            severity=data['severity'],
            category=data['category'],
            file=data['file'],
            line=data['line'],
            message=data['message'],
            suggestion=data['suggestion'],
            code=data['code'],
            spec_requirement_id=data['spec_requirement_id'],
            fix_suggestion=FixSuggestion.model_validate_json(fix_json) if fix_json else None,
            resolution=data['resolution'],
        )

    @classmethod
    def _row_to_verification(
        cls,
        row: aiosqlite.Row,
        issue_rows: List[aiosqlite.Row]
    ) -> Verification:
        data = dict(row)
        return Verification(
            id=data['verification_id'],
            epic_id=data['epic_id'],
            created_at=datetime.fromisoformat(data['created_at']),
            diff_source=DiffSource.model_validate_json(data['diff_source_json']),
            analysis=DiffAnalysis.model_validate_json(data['analysis_json']),
            issues=[cls._row_to_issue(r) for r in issue_rows],
            summary=VerificationSummary(
                passed=bool(data['passed']),
                total_issues=data['total_issues'],
                issue_counts=json.loads(data['issue_counts_json']),
                recommendation=data['recommendation'],
                approval_status=data['approval_status'],
            ),
        )
