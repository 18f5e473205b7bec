"""One-shot maintenance: stamp notification_sent=false onto legacy pending nudges"""
from app.repositories.nudge_repository import NudgeStore
from app.utils.monitoring import StructuredLogger


def backfill_notification_sent_field(store: NudgeStore) -> int:
    """
    Set notification_sent=false on pending nudges that predate the column.

    Safe to re-run: rows that already carry the field are not touched, so a
    second run reports zero.
    """
    updated = store.backfill_notification_sent()
    StructuredLogger.log_event(
        "nudge_backfill_complete",
        f"Backfilled {updated} nudges with notification_sent=false",
        metadata={"updated": updated},
    )
    return updated
