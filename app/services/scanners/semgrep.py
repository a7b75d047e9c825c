"""Semgrep and OpenGrep adapters (OpenGrep is a Semgrep fork with the same JSON output)."""

from pathlib import Path
from typing import TYPE_CHECKING, Any

from app.schemas.findings import NormalizedFinding, SeverityLevel
from app.services.scanners.base import ScannerAdapter, recommendation_for_category

if TYPE_CHECKING:
    from app.core.config import Settings

DEFAULT_RULESET = "p/trailofbits"

_SEVERITY_MAP: dict[str, SeverityLevel] = {
    "error": "critical",
    "critical": "critical",
    "warning": "high",
    "info": "medium",
}


def map_semgrep_severity(severity: str | None) -> SeverityLevel:
    """ERROR -> critical, WARNING -> high, INFO -> medium, anything else -> low."""
    return _SEVERITY_MAP.get((severity or "").strip().lower(), "low")


class SemgrepAdapter(ScannerAdapter):
    tool = "semgrep"
    binary = "semgrep"
    display_name = "Semgrep"
    # 1 = findings reported with --error; 2+ = engine failure.
    accepted_exit_codes = (0, 1)

    def __init__(
        self,
        timeout_sec: float = 600.0,
        max_output_bytes: int = 10 * 1024 * 1024,
        ruleset: str = DEFAULT_RULESET,
    ) -> None:
        super().__init__(timeout_sec=timeout_sec, max_output_bytes=max_output_bytes)
        self.ruleset = ruleset

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SemgrepAdapter":
        return cls(
            timeout_sec=settings.TOOL_TIMEOUT_SEC,
            max_output_bytes=settings.TOOL_MAX_OUTPUT_BYTES,
            ruleset=settings.SEMGREP_RULESET,
        )

    def build_command(self, binary: str, root: Path) -> list[str]:
        return [binary, f"--config={self.ruleset}", "--json", "--quiet", str(root)]

    def parse(self, payload: Any) -> list[NormalizedFinding]:
        if not payload:
            return []
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        findings: list[NormalizedFinding] = []
        for result in payload.get("results") or []:
            extra = result.get("extra") or {}
            metadata = extra.get("metadata") or {}
            start = result.get("start") or {}
            end = result.get("end") or {}
            findings.append(
                NormalizedFinding(
                    tool=self.tool,
                    severity=map_semgrep_severity(extra.get("severity")),
                    title=result.get("check_id") or "unknown-rule",
                    description=extra.get("message") or "",
                    file_path=result.get("path") or "",
                    line_start=start.get("line") or 1,
                    line_end=end.get("line"),
                    cwe=metadata.get("cwe"),
                    owasp=metadata.get("owasp"),
                    recommendation=recommendation_for_category(_category(metadata)),
                )
            )
        return findings


class OpengrepAdapter(SemgrepAdapter):
    tool = "opengrep"
    binary = "opengrep"
    display_name = "OpenGrep"


def _category(metadata: dict[str, Any]) -> str | None:
    category = metadata.get("category")
    if isinstance(category, list):
        return " ".join(str(c) for c in category)
    return category
