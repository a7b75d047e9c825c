"""ORM models for GitHub App installations and the repositories linked to them."""

from sqlalchemy import Column, DateTime, Integer, String, Text, func

from app.models.base import Base


class GithubAppInstallation(Base):
    """
    Installation of the GitHub App on an account or organization.

    access_token / token_expires_at hold the most recently minted installation
    token; the credential provider reuses it until it is close to expiry.
    """

    __tablename__ = "github_app_installations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    installation_id = Column(String(100), nullable=False, unique=True, index=True)
    account_login = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class GithubRepo(Base):
    """Repository known to the service; installation_id is set for App-connected repos."""

    __tablename__ = "github_repos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    github_id = Column(Text, nullable=False)
    full_name = Column(Text, nullable=False)
    installation_id = Column(String(100), nullable=True, index=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
