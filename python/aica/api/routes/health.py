"""Liveness route.

GET /health is public and never touches the database, so load balancers
can poll it while the database is down.
"""

from fastapi import APIRouter

from aica import __version__
from aica.schemas.health import HealthOut

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    return HealthOut(version=__version__).model_dump()
