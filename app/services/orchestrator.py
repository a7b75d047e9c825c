"""
Scan orchestration: acquire the repository, fan out to every enabled engine
concurrently, aggregate what they report, and always give the storage back.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from app.core.errors import AcquisitionError, OrchestrationError
from app.schemas.scan import ScanJob, ScanReport
from app.services.normalize import severity_breakdown, strip_scan_root, summarize_findings
from app.services.repo_acquirer import RepoAcquirer, RepositoryHandle
from app.services.scanners import ScannerAdapter, ScannerRun, build_scanners

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanOrchestrator:
    """Runs one scan job end to end and returns its ScanReport."""

    def __init__(
        self,
        settings: "Settings",
        acquirer: RepoAcquirer | None = None,
        scanners: Sequence[ScannerAdapter] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._acquirer = acquirer or RepoAcquirer(settings)
        self._scanners = list(scanners) if scanners is not None else build_scanners(settings)
        self._clock = clock

    def enabled_scanners(self, job: ScanJob) -> list[ScannerAdapter]:
        """Adapters in fixed order, minus the job's skipTools and SKIP_TOOLS."""
        skipped = set(job.skip_tools) | set(self._settings.SKIP_TOOLS)
        return [s for s in self._scanners if s.tool not in skipped]

    async def run_scan(self, job: ScanJob, token: str | None = None) -> ScanReport:
        """
        Acquire, scan and aggregate. Raises AcquisitionError when the repository
        cannot be prepared and OrchestrationError for anything else that stops
        the run. Engine failures never raise; they become empty tool runs.
        """
        if not job.repo_url or not job.repo_url.strip():
            raise OrchestrationError(f"Scan {job.scan_id}: repository URL is empty", retryable=False)

        started_at = self._clock()
        start = time.perf_counter()
        scanners = self.enabled_scanners(job)
        logger.info(
            "Starting security scan %s for repo %s@%s with %d tools",
            job.scan_id,
            job.repo_id,
            job.branch,
            len(scanners),
        )

        handle = await self._acquirer.acquire(job.repo_url, job.branch, token)
        watchdog = self._arm_watchdog(job.scan_id, handle)
        try:
            runs = await asyncio.gather(
                *(self._run_scanner(scanner, handle) for scanner in scanners)
            )
            report = self._aggregate(job, handle, scanners, runs, started_at, start)
        except (AcquisitionError, OrchestrationError):
            raise
        except Exception as e:
            logger.exception("Security scan %s failed: %s", job.scan_id, e)
            raise OrchestrationError(f"Security scan failed: {e}", cause=e) from e
        finally:
            watchdog.cancel()
            await asyncio.to_thread(handle.release)

        logger.info(
            "Security scan %s completed: %d issues found",
            job.scan_id,
            report.summary.total,
            extra={
                "scan_id": job.scan_id,
                "duration_ms": report.duration_ms,
                "total_issues": report.summary.total,
                "tools_used": report.tools_used,
            },
        )
        return report

    def _arm_watchdog(self, scan_id: str, handle: RepositoryHandle) -> asyncio.TimerHandle:
        limit = self._settings.SCAN_WATCHDOG_SEC
        loop = asyncio.get_running_loop()

        def force_release() -> None:
            # Engines still running are left alone; only the storage is reclaimed.
            logger.error(
                "Scan %s exceeded %.0fs; force-releasing %s",
                scan_id,
                limit,
                handle.work_dir,
            )
            loop.run_in_executor(None, handle.release)

        return loop.call_later(limit, force_release)

    async def _run_scanner(self, scanner: ScannerAdapter, handle: RepositoryHandle) -> ScannerRun:
        try:
            return await scanner.run(handle.root_path)
        except Exception as e:
            logger.error("%s scan failed: %s", scanner.tool, e, extra={"tool": scanner.tool})
            return ScannerRun(tool=scanner.tool, status="failed", detail=str(e) or type(e).__name__)

    def _aggregate(
        self,
        job: ScanJob,
        handle: RepositoryHandle,
        scanners: Sequence[ScannerAdapter],
        runs: Sequence[ScannerRun],
        started_at: datetime,
        start: float,
    ) -> ScanReport:
        collected = [finding for run in runs if run.status == "completed" for finding in run.findings]
        findings = strip_scan_root(collected, [handle.root_path, handle.work_dir])
        summary = summarize_findings(findings)

        for tool, counts in severity_breakdown(findings).items():
            logger.info(
                "%s: %d critical, %d high, %d medium, %d low, %d info",
                tool,
                counts.critical,
                counts.high,
                counts.medium,
                counts.low,
                counts.info,
            )

        return ScanReport(
            scan_id=job.scan_id,
            repo_id=job.repo_id,
            branch=job.branch,
            started_at=started_at,
            completed_at=self._clock(),
            duration_ms=int((time.perf_counter() - start) * 1000),
            tools_attempted=[s.tool for s in scanners],
            tools_used=[run.tool for run in runs if run.status == "completed"],
            tool_runs=[run.to_tool_run() for run in runs],
            findings=findings,
            summary=summary,
        )
