"""Background scheduler that runs the nudge notification processor on an interval"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from app.config import settings
from app.dependencies import get_notification_processor
from app.utils.monitoring import StructuredLogger
import asyncio


scheduler = AsyncIOScheduler()

NUDGE_JOB_ID = "process_due_nudges"


async def process_due_nudges_job():
    """Wrapper for the notification processor with error handling"""
    try:
        processor = get_notification_processor()
        # The processor does blocking I/O; keep it off the event loop
        stats = await asyncio.to_thread(processor.process_due_nudges)
        if stats.errors:
            StructuredLogger.log_event(
                "scheduler_nudge_errors",
                f"Nudge job finished with {stats.errors} errors",
                metadata=stats.to_response(),
                level="WARNING",
            )
        return stats
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "process_due_nudges_job"},
        )
        return None


def start_scheduler():
    """Start the background scheduler"""
    if scheduler.running:
        return

    # One instance at a time; missed runs collapse into one
    scheduler.add_job(
        process_due_nudges_job,
        trigger=IntervalTrigger(minutes=settings.NUDGE_CHECK_INTERVAL_MINUTES),
        id=NUDGE_JOB_ID,
        name="Send push notifications for due nudges",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()

    nudge_job = scheduler.get_job(NUDGE_JOB_ID)

    StructuredLogger.log_event(
        "scheduler_initialized",
        "Background scheduler started",
        metadata={
            "interval_minutes": settings.NUDGE_CHECK_INTERVAL_MINUTES,
            "next_nudge_check": str(nudge_job.next_run_time) if nudge_job else None,
        },
    )


def shutdown_scheduler():
    """Shutdown the background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        StructuredLogger.log_event(
            "scheduler_shutdown",
            "Background scheduler stopped",
        )
