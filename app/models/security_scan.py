"""ORM models for scan records and the findings attached to them."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY

from app.models.base import Base


class SecurityScan(Base):
    """
    One row per scan id. Written with upserts so a redelivered job overwrites
    its own record instead of appending a second one.

    status: 'running', 'completed' or 'failed'
    """

    __tablename__ = "security_scans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(String(100), nullable=False, unique=True)
    repo_id = Column(Integer, nullable=False, index=True)
    branch = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="running", server_default="running")
    tools_used = Column(ARRAY(Text), nullable=True)
    scan_duration = Column(Integer, nullable=True)  # milliseconds
    total_issues = Column(Integer, nullable=False, default=0, server_default="0")
    critical_count = Column(Integer, nullable=False, default=0, server_default="0")
    high_count = Column(Integer, nullable=False, default=0, server_default="0")
    medium_count = Column(Integer, nullable=False, default=0, server_default="0")
    low_count = Column(Integer, nullable=False, default=0, server_default="0")
    info_count = Column(Integer, nullable=False, default=0, server_default="0")
    error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)


class SecurityIssue(Base):
    """A persisted NormalizedFinding, keyed by the scan that produced it."""

    __tablename__ = "security_issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(
        String(100),
        ForeignKey("security_scans.scan_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tool = Column(String(20), nullable=False)
    severity = Column(String(20), nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False)
    line_start = Column(Integer, nullable=False)
    line_end = Column(Integer, nullable=True)
    code = Column(Text, nullable=True)
    recommendation = Column(Text, nullable=True)
    cwe = Column(ARRAY(Text), nullable=True)
    owasp = Column(ARRAY(Text), nullable=True)
    status = Column(String(20), nullable=False, default="open", server_default="open")
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
