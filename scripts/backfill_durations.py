"""
Backfill `videos.duration` for rows saved before the duration was known (duration = 0).

Reason:
- Search/playlist results do not always carry `contentDetails`, and early imports stored 0.
- Analytics and playlist stats read `duration`, so unknown lengths skew progress and totals.

It walks users one by one and asks the YouTube `videos` endpoint for 50 ids per call.
A failed chunk is logged and skipped; running the script again picks up what is left.

Usage:
  YOUTUBE_API_KEY=... python scripts/backfill_durations.py [--user-id N]
"""

import argparse
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app import create_app
from app_services import get_youtube_api, update_missing_durations
from models import Video, db
from youtube import QuotaExceededError


def backfill(user_ids: list[int], api) -> dict:
    updated = total = 0
    for user_id in user_ids:
        try:
            result = update_missing_durations(api, user_id=user_id)
        except QuotaExceededError as e:
            print("quota exceeded, stopping at user", user_id, e)
            break
        updated += result["updated"]
        total += result["total"]
        if result["total"]:
            print(f"user={user_id} -> updated {result['updated']}/{result['total']}")
    return {"updated": updated, "total": total}


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Fill in missing video durations from YouTube")
    parser.add_argument("--user-id", type=int, help="only backfill this user")
    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        query = db.session.query(Video.user_id).filter(Video.duration == 0).distinct()
        if args.user_id:
            query = query.filter(Video.user_id == args.user_id)
        user_ids = sorted(row.user_id for row in query)
        if not user_ids:
            print("No videos with missing duration.")
            return

        result = backfill(user_ids, get_youtube_api())
        remaining = Video.query.filter(Video.duration == 0).count()
        print(f"Done. start_missing={result['total']}, updated={result['updated']}, remaining={remaining}")


if __name__ == "__main__":
    main()
