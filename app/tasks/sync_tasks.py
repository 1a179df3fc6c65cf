import logging

from app.tasks import celery_app
from app.services.sync.orchestrator import SyncReason, get_orchestrator
from app.utils.async_celery import run_async

logger = logging.getLogger(__name__)


async def _sync_window(reason: str):
    states = await get_orchestrator().sync_window(reason)
    return [state.to_dict() for state in states]


async def _sync_today(reason: str):
    state = await get_orchestrator().sync_today(reason)
    return state.to_dict()


async def _repair_tick():
    state = await get_orchestrator().run_repair_tick()
    return state.to_dict() if state else {"skipped": True, "reason": "outside repair window"}


async def _sync_date(date_str: str, reason: str):
    state = await get_orchestrator().sync_date(date_str, reason)
    return state.to_dict()


async def _clean_resync(date_str: str, confirm: bool, dry_run: bool):
    return await get_orchestrator().clean_resync(date_str, confirm=confirm, dry_run=dry_run)


@celery_app.task(name="app.tasks.sync_tasks.sync_window")
def sync_window(reason: str = SyncReason.FULL_DAILY.value):
    """Celery task: Sync yesterday, today and tomorrow."""
    return run_async(_sync_window(reason))


@celery_app.task(name="app.tasks.sync_tasks.sync_today")
def sync_today(reason: str = SyncReason.LIVE_CATCHUP.value):
    """Celery task: Sync today's bulletin."""
    return run_async(_sync_today(reason))


@celery_app.task(name="app.tasks.sync_tasks.repair_tick")
def repair_tick():
    """Celery task: Repair sync for today, only inside the post-midnight window."""
    return run_async(_repair_tick())


@celery_app.task(name="app.tasks.sync_tasks.sync_date")
def sync_date(date_str: str, reason: str = SyncReason.MANUAL_TRIGGER.value):
    """Celery task: Sync one bulletin date."""
    return run_async(_sync_date(date_str, reason))


@celery_app.task(name="app.tasks.sync_tasks.clean_resync")
def clean_resync(date_str: str, confirm: bool = False, dry_run: bool = False):
    """Celery task: Delete one day's matches and resync it."""
    logger.warning(f"Clean resync requested for {date_str} (dry_run={dry_run})")
    return run_async(_clean_resync(date_str, confirm, dry_run))
