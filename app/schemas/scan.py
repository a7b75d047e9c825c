"""Pydantic schemas for scan jobs, per-tool runs and the consolidated scan report."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from app.schemas.findings import NormalizedFinding, ToolName

ToolRunStatus = Literal["completed", "unavailable", "timed_out", "failed"]


class ScanJob(BaseModel):
    """
    One queued scan request as delivered by the push daemon.

    Wire names are camelCase (scanId, repoId, repoUrl, ...); snake_case is
    accepted too. Immutable once parsed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    scan_id: str = Field(..., alias="scanId", min_length=1, max_length=100)
    repo_id: int = Field(..., alias="repoId")
    repo_url: str = Field(..., alias="repoUrl")
    branch: str = Field(..., min_length=1, max_length=255)
    token: SecretStr | None = None
    installation_id: str | None = Field(default=None, alias="installationId")
    skip_tools: list[ToolName] = Field(default_factory=list, alias="skipTools")

    @field_validator("scan_id", "branch")
    @classmethod
    def strip_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must be non-empty")
        return v.strip()

    @field_validator("token", mode="before")
    @classmethod
    def empty_token_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("installation_id", mode="before")
    @classmethod
    def coerce_installation_id(cls, v: object) -> str | None:
        if v is None:
            return None
        if isinstance(v, bool):
            raise ValueError("installationId must be a string or integer")
        s = str(v).strip()
        return s or None


class SeveritySummary(BaseModel):
    """Finding counts per severity plus the total."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    total: int = 0


class ToolRun(BaseModel):
    """Outcome of one engine for one scan."""

    tool: ToolName
    status: ToolRunStatus
    finding_count: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    detail: str | None = None


class ScanReport(BaseModel):
    """Consolidated result of one scan run. The only artifact a run produces."""

    scan_id: str
    repo_id: int
    branch: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int = Field(..., ge=0)
    tools_attempted: list[ToolName] = Field(default_factory=list)
    tools_used: list[ToolName] = Field(
        default_factory=list,
        description="Tools whose run completed and contributed to the findings.",
    )
    tool_runs: list[ToolRun] = Field(default_factory=list)
    findings: list[NormalizedFinding] = Field(default_factory=list)
    summary: SeveritySummary = Field(default_factory=SeveritySummary)


class JobAckResponse(BaseModel):
    """Body returned to the push daemon for a delivery."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    scan_id: str | None = Field(default=None, serialization_alias="scanId")
    state: str
    error: str | None = None
    total_issues: int | None = Field(default=None, serialization_alias="totalIssues")
