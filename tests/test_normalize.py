"""Unit tests for aggregation helpers: path relativizing and severity counts."""

import os
import tempfile
import unittest

from app.schemas.findings import NormalizedFinding
from app.services.normalize import (
    relativize_path,
    severity_breakdown,
    strip_scan_root,
    summarize_findings,
)


def _finding(**overrides: object) -> NormalizedFinding:
    data = {"tool": "semgrep", "severity": "high", "title": "rule", "file_path": "src/app.py"}
    data.update(overrides)
    return NormalizedFinding(**data)


class TestRelativizePath(unittest.TestCase):
    """file_path never keeps the acquisition root."""

    def test_absolute_path_under_root(self) -> None:
        self.assertEqual(
            relativize_path("/work/.temp/repo-abc/repo/src/app.py", ["/work/.temp/repo-abc/repo"]),
            "src/app.py",
        )

    def test_root_anchored_checkov_path(self) -> None:
        self.assertEqual(relativize_path("/main.tf", ["/work/repo-abc/repo"]), "main.tf")

    def test_already_relative_path_unchanged(self) -> None:
        self.assertEqual(relativize_path("package-lock.json", ["/work/repo-abc"]), "package-lock.json")

    def test_dot_slash_prefix_removed(self) -> None:
        self.assertEqual(relativize_path("./src/a.py", ["/work/repo-abc"]), "src/a.py")

    def test_nested_root_removed_before_parent(self) -> None:
        roots = ["/work/repo-abc", "/work/repo-abc/repo"]
        self.assertEqual(relativize_path("/work/repo-abc/repo/lib/x.js", roots), "lib/x.js")

    def test_root_embedded_in_message_like_path(self) -> None:
        self.assertEqual(
            relativize_path("/work/repo-abc/a.py:/work/repo-abc/b.py", ["/work/repo-abc"]),
            "a.py:b.py",
        )

    def test_resolved_root_also_stripped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            link = os.path.join(tmp, "link")
            target = os.path.join(tmp, "target")
            os.mkdir(target)
            os.symlink(target, link)
            resolved = os.path.realpath(target)
            self.assertEqual(relativize_path(f"{resolved}/src/a.py", [link]), "src/a.py")

    def test_empty_path(self) -> None:
        self.assertEqual(relativize_path("", ["/work"]), "")


class TestStripScanRoot(unittest.TestCase):
    """strip_scan_root returns copies and keeps order."""

    def test_rewrites_only_affected_findings(self) -> None:
        clean = _finding(file_path="README.md")
        dirty = _finding(file_path="/tmp/job/repo/app.py", tool="gitleaks", severity="critical")
        result = strip_scan_root([dirty, clean], ["/tmp/job/repo"])
        self.assertEqual([f.file_path for f in result], ["app.py", "README.md"])
        self.assertIs(result[1], clean)
        self.assertEqual(dirty.file_path, "/tmp/job/repo/app.py")


class TestSummarizeFindings(unittest.TestCase):
    """total equals the number of findings and the sum of per-severity counts."""

    def test_counts(self) -> None:
        findings = [
            _finding(severity="critical"),
            _finding(severity="critical"),
            _finding(severity="medium"),
            _finding(severity="info"),
        ]
        summary = summarize_findings(findings)
        self.assertEqual(summary.critical, 2)
        self.assertEqual(summary.high, 0)
        self.assertEqual(summary.medium, 1)
        self.assertEqual(summary.info, 1)
        self.assertEqual(summary.total, 4)
        self.assertEqual(
            summary.total,
            summary.critical + summary.high + summary.medium + summary.low + summary.info,
        )

    def test_empty(self) -> None:
        self.assertEqual(summarize_findings([]).total, 0)

    def test_breakdown_per_tool(self) -> None:
        findings = [
            _finding(tool="trivy", severity="low"),
            _finding(tool="semgrep", severity="high"),
            _finding(tool="trivy", severity="high"),
        ]
        breakdown = severity_breakdown(findings)
        self.assertEqual(list(breakdown), ["trivy", "semgrep"])
        self.assertEqual(breakdown["trivy"].total, 2)
        self.assertEqual(breakdown["trivy"].low, 1)
        self.assertEqual(breakdown["semgrep"].high, 1)


if __name__ == "__main__":
    unittest.main()
