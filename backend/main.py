import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import settings
from database import close_db, init_db
from routers import health, relay, webhooks
from services.sync_runtime import build_runtime
from tasks.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _handle_loop_exception(loop, context) -> None:
    """Unhandled task failures are fatal; the supervisor restarts us"""
    error = context.get("exception")
    logger.critical(
        f"Unhandled error in event loop: {context.get('message')}",
        exc_info=error,
    )
    logging.shutdown()
    os._exit(1)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    init_db()
    runtime = build_runtime()
    app.state.runtime = runtime

    if not os.getenv("TESTING"):
        asyncio.get_running_loop().set_exception_handler(
            _handle_loop_exception
        )
        runtime.spawn(runtime.discord.set_presence("ok"), name="presence")
        runtime.spawn(
            runtime.reconciler.run_pass(), name="initial-reconcile"
        )
        start_scheduler(runtime)
    logger.info("✓ Application startup")

    yield

    stop_scheduler()
    drained = await runtime.drain()
    if not drained:
        logger.warning("Shutting down with queued tasks still running")
    await runtime.aclose()
    close_db()
    logger.info("✓ Application shutdown")


app = FastAPI(
    title="Zammad Discord Bridge",
    version="1.0.0",
    description="Keeps Discord ticket threads in sync with Zammad",
    ignore_trailing_slash=True,
    redoc_url="/api/redoc",
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(relay.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port)
