from collections import defaultdict

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_ready, worker_shutdown

from app.config import get_settings
from app.services.sync.scheduler import TODAY, Cadence, build_cadences

settings = get_settings()

celery_app = Celery(
    "matchsync_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks.sync_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Crontab hours below are reference-local (TSI)
    timezone=settings.scheduler_timezone,
    enable_utc=True,
)


def _task_for(cadence: Cadence) -> str:
    if cadence.guard is not None:
        return "app.tasks.sync_tasks.repair_tick"
    if cadence.scope == TODAY:
        return "app.tasks.sync_tasks.sync_today"
    return "app.tasks.sync_tasks.sync_window"


def build_beat_schedule(cadences: list[Cadence]) -> dict[str, dict]:
    """Beat entries for every non-startup cadence."""
    schedule = {}
    for cadence in cadences:
        if cadence.is_startup:
            continue
        entry = {"task": _task_for(cadence), "kwargs": {"reason": cadence.reason.value}}
        if cadence.guard is not None:
            entry["kwargs"] = {}

        if cadence.interval_seconds is not None:
            schedule[cadence.name] = {**entry, "schedule": float(cadence.interval_seconds)}
            continue

        hours_by_minute = defaultdict(list)
        for hour, minute in cadence.daily_times:
            hours_by_minute[minute].append(hour)
        for minute, hours in sorted(hours_by_minute.items()):
            name = cadence.name if len(hours_by_minute) == 1 else f"{cadence.name}-{minute:02d}"
            schedule[name] = {
                **entry,
                "schedule": crontab(hour=",".join(str(h) for h in sorted(hours)), minute=minute),
            }
    return schedule


if settings.sync_scheduler_backend == "celery":
    celery_app.conf.beat_schedule = build_beat_schedule(build_cadences(settings))
else:
    celery_app.conf.beat_schedule = {}


@worker_ready.connect
def schedule_startup_sync(sender=None, **kwargs):
    """Startup window sync a few seconds after the worker comes up."""
    if settings.sync_scheduler_backend != "celery":
        return
    for cadence in build_cadences(settings):
        if cadence.is_startup:
            celery_app.send_task(
                "app.tasks.sync_tasks.sync_window",
                kwargs={"reason": cadence.reason.value},
                countdown=cadence.startup_delay_seconds,
            )


@worker_shutdown.connect
def close_shared_loop(sender=None, **kwargs):
    from app.utils.async_celery import cleanup_event_loop

    cleanup_event_loop()
