"""Gitleaks adapter: committed secrets. Every leaked secret is reported as critical."""

from pathlib import Path
from typing import Any

from app.schemas.findings import NormalizedFinding
from app.services.scanners.base import RECOMMENDATIONS, ScannerAdapter

OWASP_CRYPTOGRAPHIC_FAILURES = "A02:2021-Cryptographic Failures"


def mask_secret(secret: str | None) -> str:
    """Keep the first and last four characters; short secrets are fully hidden."""
    if not secret or len(secret) <= 8:
        return "***"
    return f"{secret[:4]}***{secret[-4:]}"


class GitleaksAdapter(ScannerAdapter):
    tool = "gitleaks"
    binary = "gitleaks"
    display_name = "Gitleaks"
    # Exits 1 when leaks are found.
    accepted_exit_codes = None

    def build_command(self, binary: str, root: Path) -> list[str]:
        return [
            binary,
            "detect",
            "--source",
            str(root),
            "--report-format",
            "json",
            "--report-path",
            "/dev/stdout",
            "--no-git",
            "--no-banner",
        ]

    def parse(self, payload: Any) -> list[NormalizedFinding]:
        if not payload:
            return []
        if not isinstance(payload, list):
            raise ValueError(f"expected a JSON array, got {type(payload).__name__}")
        findings: list[NormalizedFinding] = []
        for leak in payload:
            rule_id = leak.get("RuleID") or "unknown"
            findings.append(
                NormalizedFinding(
                    tool=self.tool,
                    severity="critical",
                    title=f"Secret Detected: {rule_id}",
                    description=leak.get("Description") or "",
                    file_path=leak.get("File") or "",
                    line_start=leak.get("StartLine") or 1,
                    line_end=leak.get("EndLine"),
                    code=mask_secret(leak.get("Secret")),
                    recommendation=RECOMMENDATIONS["secret"],
                    owasp=[OWASP_CRYPTOGRAPHIC_FAILURES],
                )
            )
        return findings
