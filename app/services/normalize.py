"""Aggregate per-engine findings into report form: relative paths and severity counts."""

import os
from collections.abc import Iterable, Sequence

from app.schemas.findings import SEVERITY_ORDER, NormalizedFinding
from app.schemas.scan import SeveritySummary


def _root_variants(scan_roots: Iterable[str | os.PathLike[str]]) -> list[str]:
    """Each root as given and resolved (e.g. /tmp vs /private/tmp), longest first."""
    variants: set[str] = set()
    for root in scan_roots:
        raw = os.fspath(root).replace("\\", "/").rstrip("/")
        if not raw:
            continue
        variants.add(raw)
        variants.add(os.path.realpath(raw).replace("\\", "/").rstrip("/"))
    # Longest first so a nested root is removed before its parent.
    return sorted(variants, key=len, reverse=True)


def relativize_path(file_path: str, scan_roots: Iterable[str | os.PathLike[str]]) -> str:
    """
    Strip every occurrence of the acquisition roots from file_path and make it relative.

    Engines report paths absolute (semgrep, gitleaks), root-anchored with a
    leading slash (checkov) or already relative (trivy); all end up relative
    to the repository root.
    """
    path = (file_path or "").replace("\\", "/")
    for root in _root_variants(scan_roots):
        path = path.replace(root + "/", "").replace(root, "")
    path = path.lstrip("/")
    while path.startswith("./"):
        path = path[2:]
    return path


def strip_scan_root(
    findings: Sequence[NormalizedFinding],
    scan_roots: Iterable[str | os.PathLike[str]],
) -> list[NormalizedFinding]:
    """Return copies of findings whose file_path no longer mentions the temp roots."""
    roots = list(scan_roots)
    result: list[NormalizedFinding] = []
    for finding in findings:
        cleaned = relativize_path(finding.file_path, roots)
        if cleaned == finding.file_path:
            result.append(finding)
        else:
            result.append(finding.model_copy(update={"file_path": cleaned}))
    return result


def summarize_findings(findings: Sequence[NormalizedFinding]) -> SeveritySummary:
    """Count findings per severity. total always equals len(findings)."""
    counts = {level: 0 for level in SEVERITY_ORDER}
    for finding in findings:
        counts[finding.severity] += 1
    return SeveritySummary(**counts, total=len(findings))


def severity_breakdown(
    findings: Sequence[NormalizedFinding],
) -> dict[str, SeveritySummary]:
    """Per-tool severity summaries, keyed by tool in first-seen order."""
    by_tool: dict[str, list[NormalizedFinding]] = {}
    for finding in findings:
        by_tool.setdefault(finding.tool, []).append(finding)
    return {tool: summarize_findings(items) for tool, items in by_tool.items()}
