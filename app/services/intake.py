"""
Job intake: one push-daemon delivery in, one acknowledge/retry decision out.

A delivery moves through received -> acquiring_credential -> scanning ->
persisting_result -> acknowledged; any step can end in failed. The outcome is
persisted before the acknowledgement is decided, and every write is keyed by
scan id, so a redelivered message simply redoes the same scan.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ValidationError

from app.core.errors import JobValidationError, PersistenceError, ScanWorkerError
from app.schemas.scan import ScanJob, ScanReport
from app.services.credentials import CredentialProvider
from app.services.orchestrator import ScanOrchestrator
from app.services.scan_store import ScanStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

JobState = Literal[
    "received",
    "acquiring_credential",
    "scanning",
    "persisting_result",
    "acknowledged",
    "failed",
]


class JobOutcome(BaseModel):
    """Terminal result of one delivery."""

    scan_id: str | None = None
    state: JobState
    acknowledge: bool
    error: str | None = None
    retryable: bool = False
    report: ScanReport | None = None


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "Invalid job payload: " + "; ".join(parts)


def parse_job(payload: Any) -> ScanJob:
    """Validate a delivery body into a ScanJob; anything malformed is a JobValidationError."""
    if not isinstance(payload, dict):
        raise JobValidationError("Invalid job payload: body must be a JSON object")
    try:
        return ScanJob.model_validate(payload)
    except ValidationError as e:
        raise JobValidationError(_validation_message(e), cause=e) from e


class JobProcessor:
    """Drives one delivery through the scan pipeline and decides its acknowledgement."""

    def __init__(
        self,
        settings: "Settings",
        orchestrator: ScanOrchestrator,
        store: ScanStore,
        credentials: CredentialProvider | None = None,
    ) -> None:
        self._settings = settings
        self._orchestrator = orchestrator
        self._store = store
        self._credentials = credentials

    async def process(self, payload: Any) -> JobOutcome:
        state: JobState = "received"
        job: ScanJob | None = None
        scan_id = payload.get("scanId") if isinstance(payload, dict) else None
        start = time.perf_counter()
        try:
            job = parse_job(payload)
            scan_id = job.scan_id
            logger.info("Processing scan job %s for repo %s@%s", job.scan_id, job.repo_id, job.branch)
            self._store.mark_running(job)

            state = "acquiring_credential"
            token = await self._resolve_token(job)

            state = "scanning"
            report = await self._orchestrator.run_scan(job, token)

            state = "persisting_result"
            self._store.save_report(report)
        except Exception as e:
            return self._fail(scan_id, job, state, e)

        logger.info(
            "Scan job %s acknowledged",
            report.scan_id,
            extra={
                "scan_id": report.scan_id,
                "total_issues": report.summary.total,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return JobOutcome(
            scan_id=report.scan_id,
            state="acknowledged",
            acknowledge=True,
            report=report,
        )

    async def _resolve_token(self, job: ScanJob) -> str | None:
        """Job token, then the job's installation, then the repository's installation, then none."""
        if job.token is not None:
            logger.info("Scan %s: using token supplied with the job", job.scan_id)
            return job.token.get_secret_value()

        installation_id = job.installation_id
        if installation_id is None:
            installation_id = self._store.installation_for_repo(job.repo_id)
        if installation_id is None:
            logger.info("Scan %s: no installation linked, downloading unauthenticated", job.scan_id)
            return None
        if self._credentials is None:
            logger.warning(
                "Scan %s: installation %s is linked but GitHub App credentials are not "
                "configured; downloading unauthenticated",
                job.scan_id,
                installation_id,
            )
            return None

        credential = await self._credentials.get_token(installation_id)
        return credential.token

    def _fail(self, scan_id: Any, job: ScanJob | None, state: JobState, error: Exception) -> JobOutcome:
        if isinstance(error, ScanWorkerError):
            message = error.message
            retryable = error.retryable
            logger.error("Scan job %s failed while %s: %s", scan_id, state, message)
        else:
            message = f"Unexpected error: {error}"
            retryable = True
            logger.exception("Scan job %s failed while %s", scan_id, state)

        persisted = True
        if isinstance(scan_id, str) and scan_id:
            try:
                self._store.mark_failed(scan_id, message, job)
            except PersistenceError as e:
                persisted = False
                logger.error("Failed to record failure of scan %s: %s", scan_id, e.message)

        acknowledge = persisted and not retryable and self._settings.ACK_PERMANENT_FAILURES
        return JobOutcome(
            scan_id=scan_id if isinstance(scan_id, str) else None,
            state="failed",
            acknowledge=acknowledge,
            error=message,
            retryable=retryable,
        )
