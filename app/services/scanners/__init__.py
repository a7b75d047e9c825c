"""Scanning-engine adapters and the registry the orchestrator fans out over."""

from typing import TYPE_CHECKING

from app.services.scanners.base import ScannerAdapter, ScannerRun
from app.services.scanners.checkov import CheckovAdapter
from app.services.scanners.gitleaks import GitleaksAdapter
from app.services.scanners.semgrep import OpengrepAdapter, SemgrepAdapter
from app.services.scanners.trivy import TrivyAdapter

if TYPE_CHECKING:
    from app.core.config import Settings

# Same order as app.schemas.findings.ALL_TOOLS.
ADAPTER_CLASSES: tuple[type[ScannerAdapter], ...] = (
    SemgrepAdapter,
    OpengrepAdapter,
    GitleaksAdapter,
    CheckovAdapter,
    TrivyAdapter,
)


def build_scanners(settings: "Settings") -> list[ScannerAdapter]:
    """One configured adapter per supported engine."""
    return [cls.from_settings(settings) for cls in ADAPTER_CLASSES]


def installed_tools(scanners: list[ScannerAdapter]) -> dict[str, bool]:
    """Engine name -> whether its binary is on PATH."""
    return {scanner.tool: scanner.is_available() for scanner in scanners}


__all__ = [
    "ADAPTER_CLASSES",
    "CheckovAdapter",
    "GitleaksAdapter",
    "OpengrepAdapter",
    "ScannerAdapter",
    "ScannerRun",
    "SemgrepAdapter",
    "TrivyAdapter",
    "build_scanners",
    "installed_tools",
]
