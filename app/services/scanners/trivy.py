"""Trivy adapter: known vulnerabilities in dependency manifests and lockfiles."""

import logging
from pathlib import Path
from typing import Any

from app.schemas.findings import NormalizedFinding, SeverityLevel
from app.services.scanners.base import ScannerAdapter, dependency_recommendation

logger = logging.getLogger(__name__)

OWASP_VULNERABLE_COMPONENTS = "A06:2021-Vulnerable and Outdated Components"

_SEVERITY_MAP: dict[str, SeverityLevel] = {
    "CRITICAL": "critical",
    "HIGH": "high",
    "MEDIUM": "medium",
    "LOW": "low",
}


def map_trivy_severity(severity: str | None) -> SeverityLevel:
    """Trivy's own scale; UNKNOWN and anything unrecognized become info."""
    return _SEVERITY_MAP.get((severity or "").strip().upper(), "info")


class TrivyAdapter(ScannerAdapter):
    tool = "trivy"
    binary = "trivy"
    display_name = "Trivy"

    def build_command(self, binary: str, root: Path) -> list[str]:
        return [
            binary,
            "fs",
            "--format",
            "json",
            "--quiet",
            "--scanners",
            "vuln",
            "--skip-dirs",
            "node_modules,.git",
            str(root),
        ]

    def parse(self, payload: Any) -> list[NormalizedFinding]:
        if not payload:
            logger.info("Trivy returned empty output, no vulnerabilities found")
            return []
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        results = payload.get("Results")
        if not isinstance(results, list):
            # Clean scans may omit Results entirely.
            logger.info(
                "Trivy scan completed with no Results (schema version %s)",
                payload.get("SchemaVersion"),
            )
            return []
        findings: list[NormalizedFinding] = []
        for result in results:
            target = result.get("Target") or ""
            for vuln in result.get("Vulnerabilities") or []:
                package = vuln.get("PkgName") or "unknown package"
                vuln_id = vuln.get("VulnerabilityID") or "UNKNOWN"
                findings.append(
                    NormalizedFinding(
                        tool=self.tool,
                        severity=map_trivy_severity(vuln.get("Severity")),
                        title=f"{vuln_id}: {package}",
                        description=vuln.get("Title") or vuln.get("Description") or "",
                        file_path=target,
                        # Dependency findings have no line; point at the manifest's first line.
                        line_start=1,
                        recommendation=dependency_recommendation(
                            package,
                            vuln.get("InstalledVersion"),
                            vuln.get("FixedVersion"),
                        ),
                        cwe=vuln.get("CweIDs"),
                        owasp=[OWASP_VULNERABLE_COMPONENTS],
                    )
                )
        return findings
