"""
Alembic environment for the scan worker schema.

The worker owns security_scans and security_issues and keeps GitHub App
installation tokens and repository links in github_app_installations and
github_repos. The database may be shared with other services, so autogenerate
only considers those four tables.
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

os.environ.setdefault("APP_ENV", "dev")
from app.core.config import settings
from app.models import Base, GithubAppInstallation, GithubRepo, SecurityIssue, SecurityScan

SCAN_WORKER_TABLES = frozenset(
    model.__tablename__ for model in (SecurityScan, SecurityIssue, GithubAppInstallation, GithubRepo)
)

config = context.config
# alembic.ini may omit the logging sections; fileConfig raises KeyError then.
if config.config_file_name is not None:
    try:
        fileConfig(config.config_file_name)
    except KeyError:
        pass

target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    """Skip tables (and their indexes) that belong to other services."""
    if type_ == "table":
        return name in SCAN_WORKER_TABLES
    table = getattr(obj, "table", None)
    if table is not None:
        return table.name in SCAN_WORKER_TABLES
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the scan schema as SQL without connecting."""
    _configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply the scan schema against DATABASE_URL from the worker settings."""
    engine = create_engine(settings.DATABASE_URL, poolclass=NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
