"""HTTP routes: job delivery at the root, health under /health."""

from fastapi import APIRouter

from app.api import health, jobs

router = APIRouter()
router.include_router(jobs.router, tags=["jobs"])
router.include_router(health.router, prefix="/health", tags=["health"])
