"""学习统计读取：每次读取时从观看历史重算连续天数并回写，再拼上周活跃和频道分布。"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from models import UserAnalytics, Video, WatchHistory, db, utcnow

from .errors import InternalError
from .streaks import active_days, compute_streaks, top_categories, weekly_activity

logger = logging.getLogger(__name__)

ACTIVITY_WINDOW_DAYS = 7
TOP_CATEGORY_LIMIT = 5


def get_or_create_analytics(user_id: int) -> UserAnalytics:
    """取用户统计行，没有就按默认值建一行（只 flush，不提交）。"""
    analytics = UserAnalytics.query.filter_by(user_id=user_id).first()
    if analytics is None:
        analytics = UserAnalytics(user_id=user_id)
        db.session.add(analytics)
        db.session.flush()
    return analytics


def serialize_analytics(analytics: UserAnalytics) -> dict:
    return {
        "user_id": analytics.user_id,
        "total_watch_time": analytics.total_watch_time or 0,
        "videos_completed": analytics.videos_completed or 0,
        "current_streak": analytics.current_streak or 0,
        "longest_streak": analytics.longest_streak or 0,
        "last_watch_date": analytics.last_watch_date.isoformat() if analytics.last_watch_date else None,
    }


def get_analytics(
    user_id: int,
    *,
    now: datetime | None = None,
    activity_days: int = ACTIVITY_WINDOW_DAYS,
    top_limit: int = TOP_CATEGORY_LIMIT,
    keep_until_midnight: bool = False,
) -> dict:
    """返回统计总览：总时长/完成数/连续天数 + weekly_activity + top_categories。

    连续天数会写回 user_analytics（读路径不要求事务一致，读到稍旧的值可以接受）。
    """
    now = now or utcnow()
    try:
        analytics = get_or_create_analytics(user_id)

        rows = (
            db.session.query(WatchHistory.watched_at, WatchHistory.watch_time)
            .filter(WatchHistory.user_id == user_id)
            .all()
        )
        entries = [(r.watched_at, r.watch_time) for r in rows]

        streaks = compute_streaks(
            active_days(ts for ts, _ in entries),
            now.date(),
            keep_until_midnight=keep_until_midnight,
        )
        analytics.current_streak = streaks.current
        analytics.longest_streak = streaks.longest
        db.session.commit()

        video_rows = db.session.query(Video.channel, Video.duration).filter(Video.user_id == user_id).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("analytics read failed: user=%s", user_id)
        raise InternalError("读取学习统计失败") from exc

    payload = serialize_analytics(analytics)
    payload["weekly_activity"] = weekly_activity(entries, now=now, days=activity_days)
    payload["top_categories"] = top_categories(
        [(r.channel, r.duration) for r in video_rows], limit=top_limit
    )
    return payload
