"""
CLI entrypoint for the work-directory sweep. The worker also sweeps on its own
while running; use this from cron when it is stopped or SWEEP_ENABLED=false:

  python -m app.sweep

Or hourly: 0 * * * * cd /path/to/repo-scan-worker && .venv/bin/python -m app.sweep
"""

import logging
import sys
from pathlib import Path

from app.core.config import get_settings
from app.services.repo_acquirer import sweep_stale_workdirs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Remove job directories older than SWEEP_MAX_AGE_SEC."""
    settings = get_settings()
    base_dir = Path(settings.SCAN_WORK_DIR).resolve()
    try:
        removed = sweep_stale_workdirs(base_dir, settings.SWEEP_MAX_AGE_SEC)
        logger.info("Sweep completed: base_dir=%s, entries_removed=%s", base_dir, removed)
        return 0
    except Exception as e:
        logger.exception("Sweep failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
