"""
Background jobs for the sync engine

- reconcile: full diff between Zammad and the thread mappings
- health: Zammad reachability check with alert/recovery notices
- prune: hourly cleanup of the delivery and article ledgers
"""

import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from services.sync_runtime import SyncRuntime
from utils.clock import utcnow

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def reconcile(runtime: SyncRuntime) -> None:
    try:
        await runtime.reconciler.run_pass()
    except Exception as e:
        logger.error(f"Reconciliation pass crashed: {e}", exc_info=True)


async def check_health(runtime: SyncRuntime) -> None:
    try:
        await runtime.health.check()
    except Exception as e:
        logger.error(f"Health check crashed: {e}", exc_info=True)


def prune_ledgers(runtime: SyncRuntime) -> dict:
    """Drop processed deliveries and old synced-article rows"""
    now = utcnow()
    deliveries = runtime.store.prune_deliveries(
        now - timedelta(hours=settings.webhook_delivery_retention_hours)
    )
    articles = runtime.store.prune_synced_articles(
        now - timedelta(days=settings.synced_article_retention_days)
    )
    logger.info(
        f"Pruned {deliveries} webhook deliveries and "
        f"{articles} synced articles"
    )
    return {"deliveries": deliveries, "articles": articles}


def start_scheduler(runtime: SyncRuntime) -> None:
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        func=reconcile,
        args=[runtime],
        trigger=IntervalTrigger(seconds=settings.reconcile_interval_seconds),
        id="reconcile",
        name="Reconcile Zammad tickets with Discord threads",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        func=check_health,
        args=[runtime],
        trigger=IntervalTrigger(
            seconds=settings.health_check_interval_seconds
        ),
        id="health",
        name="Zammad health check",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        func=prune_ledgers,
        args=[runtime],
        trigger=IntervalTrigger(hours=1),
        id="prune",
        name="Prune webhook delivery and synced article ledgers",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"✓ Scheduler started (reconcile every "
        f"{settings.reconcile_interval_seconds}s, health every "
        f"{settings.health_check_interval_seconds}s, prune hourly)"
    )


def stop_scheduler() -> None:
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    if scheduler is None:
        return {"running": False, "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": (
                job.next_run_time.isoformat()
                if job.next_run_time else None
            ),
        })
    return {"running": scheduler.running, "jobs": jobs}
