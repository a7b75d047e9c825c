"""Common contract for scanning-engine adapters.

An adapter turns "run engine X over a directory" into a ScannerRun: it checks
the binary is installed, runs it as a bounded child process, and parses its
native JSON into NormalizedFinding objects. run() never raises; every engine
problem becomes an empty run with a status and a logged diagnostic.
"""

import json
import logging
import shutil
import time
from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from app.core.errors import AdapterError, ToolOutputLimitError, ToolTimeoutError
from app.schemas.findings import NormalizedFinding, ToolName
from app.schemas.scan import ToolRun, ToolRunStatus
from app.services.scanners.process import run_bounded_process

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

# Remediation text by coarse finding category, used when an engine has none.
RECOMMENDATIONS: dict[str, str] = {
    "injection": "Use parameterized queries or prepared statements to prevent injection attacks.",
    "xss": "Sanitize and escape user input before rendering. Use a templating engine with auto-escaping.",
    "crypto": "Use industry-standard cryptographic libraries. Avoid deprecated algorithms like MD5 or SHA1.",
    "infrastructure": "Follow infrastructure security best practices. Review cloud provider security documentation.",
    "secret": "Immediately rotate this secret and remove it from version control history. Use environment variables or secret management services.",
    "default": "Review the code and apply security best practices. Consult OWASP guidelines for specific recommendations.",
}


def recommendation_for_category(category: str | None) -> str:
    """Map an engine's free-form category onto a remediation template."""
    c = (category or "").lower()
    if "injection" in c:
        return RECOMMENDATIONS["injection"]
    if "xss" in c or "cross-site-scripting" in c:
        return RECOMMENDATIONS["xss"]
    if "crypto" in c:
        return RECOMMENDATIONS["crypto"]
    return RECOMMENDATIONS["default"]


def dependency_recommendation(package: str, installed: str | None, fixed: str | None) -> str:
    """Upgrade advice for an outdated dependency."""
    if fixed:
        return f"Update {package} from {installed or 'the installed version'} to {fixed}"
    return f"No fix available yet for {package}. Monitor for updates."


@dataclass
class ScannerRun:
    """What one adapter contributed to a scan."""

    tool: ToolName
    status: ToolRunStatus
    findings: list[NormalizedFinding] = field(default_factory=list)
    duration_ms: int = 0
    detail: str | None = None

    def to_tool_run(self) -> ToolRun:
        return ToolRun(
            tool=self.tool,
            status=self.status,
            finding_count=len(self.findings),
            duration_ms=self.duration_ms,
            detail=self.detail,
        )


class ScannerAdapter(ABC):
    """One external scanning engine behind the "run over a directory" capability."""

    tool: ToolName
    binary: str
    display_name: str
    # None accepts any exit code (engines that exit non-zero when they find something).
    accepted_exit_codes: Collection[int] | None = (0,)

    def __init__(self, timeout_sec: float = 600.0, max_output_bytes: int = 10 * 1024 * 1024) -> None:
        self.timeout_sec = timeout_sec
        self.max_output_bytes = max_output_bytes

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ScannerAdapter":
        return cls(
            timeout_sec=settings.TOOL_TIMEOUT_SEC,
            max_output_bytes=settings.TOOL_MAX_OUTPUT_BYTES,
        )

    def locate(self) -> str | None:
        """Absolute path of the engine binary, or None when not installed."""
        return shutil.which(self.binary)

    def is_available(self) -> bool:
        return self.locate() is not None

    @abstractmethod
    def build_command(self, binary: str, root: Path) -> list[str]:
        """argv for scanning root."""

    @abstractmethod
    def parse(self, payload: Any) -> list[NormalizedFinding]:
        """Convert the engine's decoded JSON into findings, in emission order."""

    def decode(self, stdout: bytes) -> Any:
        """Decode stdout as JSON; empty output means no findings."""
        text = stdout.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        return json.loads(text)

    async def run(self, root: Path) -> ScannerRun:
        """Scan root. Never raises; failures produce an empty ScannerRun."""
        start = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        binary = self.locate()
        if binary is None:
            logger.warning("%s not installed, skipping scan", self.display_name)
            return ScannerRun(tool=self.tool, status="unavailable", detail="not installed")

        try:
            output = await run_bounded_process(
                self.build_command(binary, root),
                cwd=root,
                timeout=self.timeout_sec,
                max_output_bytes=self.max_output_bytes,
                accepted_exit_codes=self.accepted_exit_codes,
            )
        except ToolTimeoutError as e:
            logger.warning(
                "%s scan was terminated after %.0fs. Skipping %s results.",
                self.display_name,
                self.timeout_sec,
                self.display_name,
            )
            return ScannerRun(
                tool=self.tool, status="timed_out", duration_ms=elapsed_ms(), detail=e.message
            )
        except ToolOutputLimitError as e:
            logger.warning("%s output too large, skipping results: %s", self.display_name, e.message)
            return ScannerRun(tool=self.tool, status="failed", duration_ms=elapsed_ms(), detail=e.message)
        except AdapterError as e:
            logger.error("%s scan failed: %s", self.display_name, e.message)
            return ScannerRun(tool=self.tool, status="failed", duration_ms=elapsed_ms(), detail=e.message)

        try:
            findings = self.parse(self.decode(output.stdout))
        except Exception as e:
            logger.error(
                "%s: failed to parse output (%s). stdout starts with: %r; stderr: %s",
                self.display_name,
                e,
                output.stdout[:500],
                output.stderr_tail[:500],
            )
            return ScannerRun(
                tool=self.tool,
                status="failed",
                duration_ms=elapsed_ms(),
                detail=f"unparseable output: {e}",
            )

        duration_ms = elapsed_ms()
        logger.info(
            "%s completed: %d issues found",
            self.display_name,
            len(findings),
            extra={"tool": self.tool, "finding_count": len(findings), "duration_ms": duration_ms},
        )
        return ScannerRun(tool=self.tool, status="completed", findings=findings, duration_ms=duration_ms)
