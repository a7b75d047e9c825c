"""Shared dependencies: the job processor and its collaborators, built once per process."""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.services.credentials import CredentialProvider, DatabaseCredentialStore
from app.services.intake import JobProcessor
from app.services.orchestrator import ScanOrchestrator
from app.services.repo_acquirer import RepoAcquirer
from app.services.scan_store import ScanStore
from app.services.scanners import ScannerAdapter, build_scanners

logger = logging.getLogger(__name__)


@lru_cache
def get_scanners() -> tuple[ScannerAdapter, ...]:
    return tuple(build_scanners(get_settings()))


@lru_cache
def get_job_processor() -> JobProcessor:
    """Wire the pipeline from settings. Without GITHUB_APP_ID jobs run unauthenticated unless they carry a token."""
    settings = get_settings()
    credentials = None
    if settings.GITHUB_APP_ID:
        credentials = CredentialProvider(settings, DatabaseCredentialStore(SessionLocal))
    else:
        logger.warning("GITHUB_APP_ID not set; installation tokens are disabled")
    orchestrator = ScanOrchestrator(
        settings,
        acquirer=RepoAcquirer(settings),
        scanners=get_scanners(),
    )
    return JobProcessor(
        settings,
        orchestrator=orchestrator,
        store=ScanStore(SessionLocal),
        credentials=credentials,
    )
