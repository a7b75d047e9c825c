"""Unit tests for scan orchestration: fan-out isolation, aggregation, watchdog and cleanup."""

import asyncio
import sys
import tempfile
import threading
import unittest
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import AsyncMock

from app.core.config import Settings
from app.core.errors import AcquisitionError, OrchestrationError
from app.schemas.findings import NormalizedFinding
from app.schemas.scan import ScanJob
from app.services.orchestrator import ScanOrchestrator
from app.services.repo_acquirer import RepositoryHandle
from app.services.scanners import GitleaksAdapter, ScannerRun


def _job(**overrides: object) -> ScanJob:
    data = {
        "scanId": "scan-1",
        "repoId": 7,
        "repoUrl": "https://github.com/acme/widgets.git",
        "branch": "main",
    }
    data.update(overrides)
    return ScanJob.model_validate(data)


@dataclass
class _RecordingHandle(RepositoryHandle):
    """Remembers which threads ran release()."""

    release_threads: list[int] = field(default_factory=list)

    def release(self) -> None:
        self.release_threads.append(threading.get_ident())
        super().release()


class _StubAcquirer:
    """Creates a real job directory so cleanup can be asserted."""

    def __init__(self, base: Path) -> None:
        self.base = base
        self.handles: list[RepositoryHandle] = []
        self.calls: list[tuple[str, str, str | None]] = []

    async def acquire(self, repo_url: str, branch: str, token: str | None = None) -> RepositoryHandle:
        self.calls.append((repo_url, branch, token))
        work_dir = self.base / f"repo-{len(self.handles)}"
        (work_dir / "repo").mkdir(parents=True)
        handle = _RecordingHandle(root_path=work_dir / "repo", work_dir=work_dir)
        self.handles.append(handle)
        return handle


class _StubScanner:
    def __init__(self, tool: str, severities: tuple[str, ...] = (), status: str = "completed") -> None:
        self.tool = tool
        self.severities = severities
        self.status = status
        self.roots: list[Path] = []

    async def run(self, root: Path) -> ScannerRun:
        self.roots.append(root)
        if self.status != "completed":
            return ScannerRun(tool=self.tool, status=self.status, detail="not installed")
        findings = [
            NormalizedFinding(
                tool=self.tool,
                severity=severity,
                title=f"{self.tool}-{i}",
                file_path=f"{root}/src/file{i}.py",
            )
            for i, severity in enumerate(self.severities)
        ]
        return ScannerRun(tool=self.tool, status="completed", findings=findings, duration_ms=5)


class _ExplodingScanner:
    tool = "checkov"

    async def run(self, root: Path) -> ScannerRun:
        raise RuntimeError("checkov crashed")


class _SlowScanner:
    """Outlives the watchdog and records whether the storage was still there."""

    tool = "trivy"

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.root_existed_after_delay: bool | None = None

    async def run(self, root: Path) -> ScannerRun:
        await asyncio.sleep(self.delay)
        self.root_existed_after_delay = root.exists()
        return ScannerRun(tool=self.tool, status="completed")


class _HangingGitleaks(GitleaksAdapter):
    """Real bounded child process that never finishes within its timeout."""

    def locate(self) -> str | None:
        return sys.executable

    def build_command(self, binary: str, root: Path) -> list[str]:
        return [binary, "-c", "import time; time.sleep(30)"]


class _OrchestratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.acquirer = _StubAcquirer(self.base)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _orchestrator(self, scanners: list, **settings: object) -> ScanOrchestrator:
        return ScanOrchestrator(
            Settings(SCAN_WORK_DIR=str(self.base), **settings),
            acquirer=self.acquirer,
            scanners=scanners,
        )


class TestAdapterIsolation(_OrchestratorTestCase):
    """One adapter failing never aborts the others."""

    def test_one_raises_three_succeed(self) -> None:
        scanners = [
            _StubScanner("semgrep", ("high", "low")),
            _StubScanner("gitleaks", ("critical",)),
            _ExplodingScanner(),
            _StubScanner("trivy", ("medium", "info", "info")),
        ]
        report = asyncio.run(self._orchestrator(scanners).run_scan(_job()))

        self.assertEqual(report.tools_attempted, ["semgrep", "gitleaks", "checkov", "trivy"])
        self.assertEqual(report.tools_used, ["semgrep", "gitleaks", "trivy"])
        self.assertEqual(
            [f.title for f in report.findings],
            ["semgrep-0", "semgrep-1", "gitleaks-0", "trivy-0", "trivy-1", "trivy-2"],
        )
        failed = [run for run in report.tool_runs if run.tool == "checkov"][0]
        self.assertEqual(failed.status, "failed")
        self.assertEqual(failed.finding_count, 0)
        self.assertIn("checkov crashed", failed.detail)

        summary = report.summary
        self.assertEqual(summary.total, 6)
        self.assertEqual(summary.total, len(report.findings))
        self.assertEqual(
            summary.total,
            summary.critical + summary.high + summary.medium + summary.low + summary.info,
        )
        self.assertEqual(summary.info, 2)

    def test_all_tools_unavailable_still_completes(self) -> None:
        scanners = [
            _StubScanner(tool, status="unavailable")
            for tool in ("semgrep", "opengrep", "gitleaks", "checkov", "trivy")
        ]
        report = asyncio.run(self._orchestrator(scanners).run_scan(_job()))
        self.assertEqual(report.tools_used, [])
        self.assertEqual(report.summary.total, 0)
        self.assertEqual(report.findings, [])
        self.assertEqual(len(report.tool_runs), 5)
        self.assertTrue(all(run.status == "unavailable" for run in report.tool_runs))

    def test_timed_out_engine_contributes_nothing(self) -> None:
        scanners = [
            _StubScanner("semgrep", ("high",)),
            _HangingGitleaks(timeout_sec=0.3),
            _StubScanner("trivy", ("low", "info")),
        ]
        report = asyncio.run(self._orchestrator(scanners).run_scan(_job()))

        self.assertEqual(report.tools_attempted, ["semgrep", "gitleaks", "trivy"])
        self.assertEqual(report.tools_used, ["semgrep", "trivy"])
        timed_out = [run for run in report.tool_runs if run.tool == "gitleaks"][0]
        self.assertEqual(timed_out.status, "timed_out")
        self.assertEqual(timed_out.finding_count, 0)
        self.assertEqual([f.tool for f in report.findings], ["semgrep", "trivy", "trivy"])
        self.assertEqual(report.summary.total, 3)
        self.assertFalse(self.acquirer.handles[0].work_dir.exists())


class TestAggregation(_OrchestratorTestCase):
    def test_paths_relative_to_repository_root(self) -> None:
        scanners = [_StubScanner("semgrep", ("high",))]
        report = asyncio.run(self._orchestrator(scanners).run_scan(_job()))
        work_dir = str(self.acquirer.handles[0].work_dir)
        for finding in report.findings:
            self.assertEqual(finding.file_path, "src/file0.py")
            self.assertNotIn(work_dir, finding.file_path)
            self.assertFalse(finding.file_path.startswith("/"))

    def test_report_metadata(self) -> None:
        report = asyncio.run(self._orchestrator([_StubScanner("semgrep", ("low",))]).run_scan(_job()))
        self.assertEqual(report.scan_id, "scan-1")
        self.assertEqual(report.repo_id, 7)
        self.assertEqual(report.branch, "main")
        self.assertLessEqual(report.started_at, report.completed_at)
        self.assertGreaterEqual(report.duration_ms, 0)

    def test_skipped_tools_not_attempted(self) -> None:
        scanners = [_StubScanner(t, ("low",)) for t in ("semgrep", "gitleaks", "trivy")]
        orchestrator = self._orchestrator(scanners, SKIP_TOOLS=["gitleaks"])
        report = asyncio.run(orchestrator.run_scan(_job(skipTools=["trivy"])))
        self.assertEqual(report.tools_attempted, ["semgrep"])
        self.assertEqual(scanners[1].roots, [])
        self.assertEqual(scanners[2].roots, [])

    def test_token_passed_to_acquirer(self) -> None:
        asyncio.run(self._orchestrator([]).run_scan(_job(), token="ghs_x"))
        self.assertEqual(self.acquirer.calls, [("https://github.com/acme/widgets.git", "main", "ghs_x")])


class TestCleanup(_OrchestratorTestCase):
    """Job storage is gone after every outcome."""

    def test_removed_after_success(self) -> None:
        asyncio.run(self._orchestrator([_StubScanner("semgrep", ("low",))]).run_scan(_job()))
        handle = self.acquirer.handles[0]
        self.assertTrue(handle.released)
        self.assertFalse(handle.work_dir.exists())

    def test_removed_after_orchestration_error(self) -> None:
        class _BrokenScanner:
            tool = "semgrep"

            async def run(self, root: Path) -> object:
                return object()

        with self.assertRaises(OrchestrationError):
            asyncio.run(self._orchestrator([_BrokenScanner()]).run_scan(_job()))
        self.assertFalse(self.acquirer.handles[0].work_dir.exists())

    def test_watchdog_force_releases_storage(self) -> None:
        slow = _SlowScanner(delay=0.5)
        orchestrator = self._orchestrator([slow], SCAN_WATCHDOG_SEC=0.1)
        report = asyncio.run(orchestrator.run_scan(_job()))
        self.assertFalse(slow.root_existed_after_delay)
        self.assertFalse(self.acquirer.handles[0].work_dir.exists())
        self.assertEqual(report.tools_used, ["trivy"])

    def test_release_runs_off_the_event_loop(self) -> None:
        loop_thread = threading.get_ident()
        asyncio.run(self._orchestrator([_StubScanner("semgrep", ("low",))]).run_scan(_job()))
        handle = self.acquirer.handles[0]
        self.assertFalse(handle.work_dir.exists())
        self.assertEqual(len(handle.release_threads), 1)
        self.assertNotIn(loop_thread, handle.release_threads)

    def test_watchdog_release_runs_off_the_event_loop(self) -> None:
        loop_thread = threading.get_ident()
        slow = _SlowScanner(delay=0.5)
        asyncio.run(self._orchestrator([slow], SCAN_WATCHDOG_SEC=0.1).run_scan(_job()))
        handle = self.acquirer.handles[0]
        self.assertFalse(slow.root_existed_after_delay)
        self.assertEqual(len(handle.release_threads), 2)
        self.assertNotIn(loop_thread, handle.release_threads)

    def test_watchdog_does_not_fire_for_fast_runs(self) -> None:
        slow = _SlowScanner(delay=0.01)
        asyncio.run(self._orchestrator([slow], SCAN_WATCHDOG_SEC=30).run_scan(_job()))
        self.assertTrue(slow.root_existed_after_delay)


class TestOrchestrationErrors(_OrchestratorTestCase):
    def test_empty_repo_url(self) -> None:
        self.acquirer.acquire = AsyncMock()
        with self.assertRaises(OrchestrationError):
            asyncio.run(self._orchestrator([]).run_scan(_job(repoUrl="  ")))
        self.acquirer.acquire.assert_not_called()

    def test_acquisition_error_propagates(self) -> None:
        self.acquirer.acquire = AsyncMock(
            side_effect=AcquisitionError("HTML page", reason=AcquisitionError.HTML_RESPONSE)
        )
        with self.assertRaises(AcquisitionError) as ctx:
            asyncio.run(self._orchestrator([_StubScanner("semgrep")]).run_scan(_job()))
        self.assertEqual(ctx.exception.reason, AcquisitionError.HTML_RESPONSE)


if __name__ == "__main__":
    unittest.main()
