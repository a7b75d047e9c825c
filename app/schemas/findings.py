"""Pydantic schema for normalized findings produced by the scanning engines."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Reusable severity levels for validation and type safety across schemas.
SeverityLevel = Literal["critical", "high", "medium", "low", "info"]

# Most severe first.
SEVERITY_ORDER: tuple[SeverityLevel, ...] = ("critical", "high", "medium", "low", "info")

ToolName = Literal["semgrep", "opengrep", "gitleaks", "checkov", "trivy"]

# Fixed fan-out order; findings are concatenated in this order.
ALL_TOOLS: tuple[ToolName, ...] = ("semgrep", "opengrep", "gitleaks", "checkov", "trivy")


class NormalizedFinding(BaseModel):
    """One security observation from one engine, in the engine-independent shape."""

    model_config = ConfigDict(frozen=True)

    tool: ToolName = Field(..., description="Engine that produced the finding.")
    severity: SeverityLevel = Field(
        ...,
        description="Severity level: critical, high, medium, low, or info.",
    )
    title: str = Field(..., min_length=1, description="Rule, check or advisory identifier.")
    description: str = Field(default="", description="Human-readable description.")
    file_path: str = Field(
        default="",
        description="Path relative to the repository root once aggregated.",
    )
    line_start: int = Field(default=1, ge=0)
    line_end: int | None = Field(default=None, ge=0)
    code: str | None = Field(
        default=None,
        description="Snippet for the finding; secrets are masked.",
    )
    recommendation: str | None = None
    cwe: list[str] = Field(default_factory=list)
    owasp: list[str] = Field(default_factory=list)

    @field_validator("cwe", "owasp", mode="before")
    @classmethod
    def coerce_tag_list(cls, v: object) -> list[str]:
        """Engines emit tags as a single string, a list, or nothing."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v if item is not None and str(item).strip()]
        return [str(v)]
