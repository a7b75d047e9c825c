"""Scan persistence: upsert the scan row and replace its issues, keyed by scan id."""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import PersistenceError
from app.models import GithubRepo, SecurityIssue, SecurityScan
from app.schemas.findings import NormalizedFinding
from app.schemas.scan import ScanJob, ScanReport

if TYPE_CHECKING:
    from app.core.database import SessionFactory

logger = logging.getLogger(__name__)

# Error text stored on failed scans is truncated to this many characters.
MAX_ERROR_CHARS = 4000


def _issue_row(scan_id: str, finding: NormalizedFinding) -> dict[str, Any]:
    return {
        "scan_id": scan_id,
        "tool": finding.tool,
        "severity": finding.severity,
        "title": finding.title,
        "description": finding.description,
        "file_path": finding.file_path,
        "line_start": finding.line_start,
        "line_end": finding.line_end,
        "code": finding.code,
        "recommendation": finding.recommendation,
        "cwe": finding.cwe or None,
        "owasp": finding.owasp or None,
        "status": "open",
    }


class ScanStore:
    """
    Reads and writes scan records. Every write is idempotent for a scan id, so a
    redelivered job overwrites its own row and issues instead of duplicating them.
    """

    def __init__(self, session_factory: "SessionFactory", clock: Callable[[], datetime] | None = None) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to {action}: {e}", cause=e) from e
        finally:
            db.close()

    def _upsert_scan(self, db: Session, values: dict[str, Any]) -> None:
        stmt = pg_insert(SecurityScan).values(**values)
        updates = {k: stmt.excluded[k] for k in values if k != "scan_id"}
        db.execute(stmt.on_conflict_do_update(index_elements=["scan_id"], set_=updates))

    def mark_running(self, job: ScanJob) -> None:
        """Record the scan as running; resets counters and errors of any earlier attempt."""
        with self._session(f"mark scan {job.scan_id} running") as db:
            self._upsert_scan(
                db,
                {
                    "scan_id": job.scan_id,
                    "repo_id": job.repo_id,
                    "branch": job.branch,
                    "status": "running",
                    "tools_used": None,
                    "scan_duration": None,
                    "total_issues": 0,
                    "critical_count": 0,
                    "high_count": 0,
                    "medium_count": 0,
                    "low_count": 0,
                    "info_count": 0,
                    "error": None,
                    "completed_at": None,
                },
            )
        logger.info("Scan %s marked running", job.scan_id)

    def save_report(self, report: ScanReport) -> None:
        """Persist a completed scan and replace its issues in one transaction."""
        summary = report.summary
        with self._session(f"save scan {report.scan_id}") as db:
            self._upsert_scan(
                db,
                {
                    "scan_id": report.scan_id,
                    "repo_id": report.repo_id,
                    "branch": report.branch,
                    "status": "completed",
                    "tools_used": list(report.tools_used),
                    "scan_duration": report.duration_ms,
                    "total_issues": summary.total,
                    "critical_count": summary.critical,
                    "high_count": summary.high,
                    "medium_count": summary.medium,
                    "low_count": summary.low,
                    "info_count": summary.info,
                    "error": None,
                    "completed_at": report.completed_at,
                },
            )
            db.execute(delete(SecurityIssue).where(SecurityIssue.scan_id == report.scan_id))
            if report.findings:
                db.execute(
                    insert(SecurityIssue),
                    [_issue_row(report.scan_id, f) for f in report.findings],
                )
        logger.info(
            "Scan %s saved with %d issues",
            report.scan_id,
            summary.total,
            extra={"scan_id": report.scan_id, "total_issues": summary.total},
        )

    def mark_failed(self, scan_id: str, error: str, job: ScanJob | None = None) -> None:
        """
        Record the failure marker. Issues from an earlier attempt are removed.
        When the job is known the row is upserted, otherwise only an existing row
        is updated.
        """
        message = (error or "unknown error")[:MAX_ERROR_CHARS]
        with self._session(f"mark scan {scan_id} failed") as db:
            failed_values = {
                "status": "failed",
                "error": message,
                "completed_at": self._clock(),
                "total_issues": 0,
                "critical_count": 0,
                "high_count": 0,
                "medium_count": 0,
                "low_count": 0,
                "info_count": 0,
            }
            if job is not None:
                self._upsert_scan(
                    db,
                    {"scan_id": scan_id, "repo_id": job.repo_id, "branch": job.branch, **failed_values},
                )
            else:
                db.query(SecurityScan).filter(SecurityScan.scan_id == scan_id).update(
                    failed_values, synchronize_session=False
                )
            db.execute(delete(SecurityIssue).where(SecurityIssue.scan_id == scan_id))
        logger.info("Scan %s marked failed", scan_id)

    def installation_for_repo(self, repo_id: int) -> str | None:
        """GitHub App installation linked to the repository record, if any."""
        with self._session(f"look up installation for repo {repo_id}") as db:
            installation_id = db.execute(
                select(GithubRepo.installation_id).where(GithubRepo.id == repo_id)
            ).scalar_one_or_none()
        return installation_id or None
