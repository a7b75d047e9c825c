"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.github import GithubAppInstallation, GithubRepo
from app.models.security_scan import SecurityIssue, SecurityScan

__all__ = [
    "Base",
    "GithubAppInstallation",
    "GithubRepo",
    "SecurityIssue",
    "SecurityScan",
]
