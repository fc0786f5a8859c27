import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from config import settings
from services.sync_runtime import SyncRuntime, get_runtime
from tasks.scheduler import get_scheduler_status

router = APIRouter(tags=["health-check"])
logger = logging.getLogger(__name__)


@router.get("/healthz")
def liveness():
    return {"status": "ok", "scheduler": get_scheduler_status()}


@router.get("/readyz")
async def readiness(runtime: SyncRuntime = Depends(get_runtime)):
    """Ready only while Zammad answers its health check in time"""
    reachable = await runtime.zammad.health_check(
        timeout=settings.readiness_timeout
    )
    if not reachable:
        logger.warning("Readiness check failed: Zammad unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "zammad": False},
        )
    return {"status": "ready", "zammad": True}
