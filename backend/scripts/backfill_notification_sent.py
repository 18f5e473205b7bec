#!/usr/bin/env python3
"""One-shot backfill: set notification_sent=false on legacy pending nudges"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


def main():
    print("=" * 60)
    print("Nudge notification_sent Backfill")
    print("=" * 60)

    try:
        from app.dependencies import get_nudge_store
        from app.services.backfill import backfill_notification_sent_field

        store = get_nudge_store()
    except Exception as e:
        print(f"❌ ERROR connecting to the nudge store: {str(e)}")
        return 1

    try:
        updated = backfill_notification_sent_field(store)
    except Exception as e:
        print(f"❌ ERROR running backfill: {str(e)}")
        return 1

    print(f"\n✅ Updated {updated} nudges")
    if updated == 0:
        print("   Nothing to do, every pending nudge already has the field")
    return 0


if __name__ == "__main__":
    sys.exit(main())
