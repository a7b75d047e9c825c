"""Checkov adapter: infrastructure-as-code misconfigurations."""

from pathlib import Path
from typing import Any

from app.schemas.findings import NormalizedFinding, SeverityLevel
from app.services.scanners.base import RECOMMENDATIONS, ScannerAdapter

OWASP_SECURITY_MISCONFIGURATION = "A05:2021-Security Misconfiguration"

# Checked in this order against the check's severity or class name.
_SEVERITY_KEYWORDS: tuple[tuple[str, SeverityLevel], ...] = (
    ("CRITICAL", "critical"),
    ("HIGH", "high"),
    ("MEDIUM", "medium"),
    ("LOW", "low"),
)


def map_checkov_severity(severity: str | None, check_class: str | None) -> SeverityLevel:
    """
    Use the check's own severity when the platform supplied one, otherwise
    look for a severity keyword in check_class. Unknown defaults to medium:
    a failed policy check is a real misconfiguration even when unrated.
    """
    for text in (severity, check_class):
        upper = (text or "").upper()
        for keyword, level in _SEVERITY_KEYWORDS:
            if keyword in upper:
                return level
    return "medium"


class CheckovAdapter(ScannerAdapter):
    tool = "checkov"
    binary = "checkov"
    display_name = "Checkov"
    # Exits 1 when any check fails.
    accepted_exit_codes = None

    def build_command(self, binary: str, root: Path) -> list[str]:
        return [binary, "--directory", str(root), "--output", "json", "--quiet", "--compact"]

    def parse(self, payload: Any) -> list[NormalizedFinding]:
        if not payload:
            return []
        # One object for a single framework, a list when several ran.
        reports = payload if isinstance(payload, list) else [payload]
        findings: list[NormalizedFinding] = []
        for report in reports:
            if not isinstance(report, dict):
                continue
            results = report.get("results") or {}
            for check in results.get("failed_checks") or []:
                line_range = check.get("file_line_range") or []
                line_start = line_range[0] if len(line_range) > 0 else 1
                line_end = line_range[1] if len(line_range) > 1 else None
                resource = check.get("resource") or "unknown resource"
                findings.append(
                    NormalizedFinding(
                        tool=self.tool,
                        severity=map_checkov_severity(check.get("severity"), check.get("check_class")),
                        title=check.get("check_name") or check.get("check_id") or "unknown-check",
                        description=f"Infrastructure misconfiguration detected in {resource}",
                        file_path=check.get("file_path") or "",
                        line_start=line_start or 0,
                        line_end=line_end,
                        recommendation=check.get("guideline") or RECOMMENDATIONS["infrastructure"],
                        owasp=[OWASP_SECURITY_MISCONFIGURATION],
                    )
                )
        return findings
