"""观看时长记账：把播放器定期上报的秒数落到 历史 / 视频进度 / 用户统计 三张表。

一次上报在同一个事务里完成：
1) 校验秒数（> 0，单次最多 12 小时）
2) 锁住视频行并校验归属
3) 合并窗口内已有历史 -> 累加并刷新 watched_at；否则新建一条
4) 按该视频累计观看秒数重算 progress / completed
5) upsert 用户统计（总时长、完成数只在“未完成 -> 完成”时 +1）
任何一步失败整体回滚，调用方拿到 InternalError。
"""

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from models import UserAnalytics, Video, WatchHistory, db, utcnow

from .errors import InternalError, InvalidInput, NotFound

logger = logging.getLogger(__name__)

# 默认策略（和 Config 中同名配置一致）
MERGE_WINDOW_SECONDS = 60 * 60
MAX_REPORT_SECONDS = 12 * 60 * 60
COMPLETION_THRESHOLD = 95


def normalize_watch_time(seconds, *, max_seconds: int = MAX_REPORT_SECONDS) -> int:
    """校验并规整上报秒数：必须是正数，超过上限截断，四舍五入到整秒。

    只存整秒：小数在每次上报时各自四舍五入（1.5 + 1.5 记为 2 + 2 = 4 秒），
    所以“历史总和 = 上报总和”只对整秒上报成立，播放器应按整秒上报。
    """
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise InvalidInput("watch_time 必须是数字")
    if math.isnan(seconds) or seconds <= 0:
        raise InvalidInput("watch_time 必须大于 0")
    seconds = min(seconds, max_seconds)
    value = int(math.floor(seconds + 0.5))
    if value < 1:
        raise InvalidInput("watch_time 不足 1 秒")
    return value


def compute_progress(total_watch_time: int, duration: int, previous: int = 0) -> int:
    """累计观看秒数 / 时长 -> 0~100 的整数百分比；时长未知时保持原值。"""
    if not duration or duration <= 0:
        return previous
    total = max(0, int(total_watch_time))
    # 整数运算的四舍五入：floor(total * 100 / duration + 0.5)
    percent = (total * 200 + duration) // (2 * duration)
    return min(100, percent)


def _coerce_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def report_watch_time(
    user_id: int,
    video_id,
    seconds,
    *,
    now: datetime | None = None,
    merge_window: int = MERGE_WINDOW_SECONDS,
    max_seconds: int = MAX_REPORT_SECONDS,
    completion_threshold: int = COMPLETION_THRESHOLD,
) -> WatchHistory:
    """记录一次观看上报，返回合并/新建后的历史记录。

    Raises:
        InvalidInput: 秒数不合法（不写库）
        NotFound: 视频不存在或不属于该用户
        InternalError: 事务失败（已回滚）
    """
    watch_time = normalize_watch_time(seconds, max_seconds=max_seconds)
    vid = _coerce_id(video_id)
    if vid is None:
        raise NotFound("视频不存在")

    now = now or utcnow()
    try:
        # 锁住视频行：同一视频的并发上报在这里串行化，避免重复建历史/重复计完成数。
        # 之后的读都用加锁读 + populate_existing：拿到的是最新已提交的值，
        # 而不是请求开头（load_user）建立的快照或 session 里缓存的旧对象。
        video = (
            db.session.query(Video)
            .filter(Video.id == vid)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if video is None or video.user_id != user_id:
            db.session.rollback()
            raise NotFound("视频不存在")

        cutoff = now - timedelta(seconds=merge_window)
        entry = (
            WatchHistory.query.filter(
                WatchHistory.user_id == user_id,
                WatchHistory.video_id == video.id,
                WatchHistory.watched_at > cutoff,
            )
            .order_by(WatchHistory.watched_at.desc())
            .with_for_update()
            .populate_existing()
            .first()
        )
        if entry is not None:
            entry.watch_time = (entry.watch_time or 0) + watch_time
            entry.watched_at = now
        else:
            entry = WatchHistory(user_id=user_id, video_id=video.id, watch_time=watch_time, watched_at=now)
            db.session.add(entry)
        db.session.flush()

        # 逐行加锁读再求和（聚合函数不能和 FOR UPDATE 一起用）
        rows = (
            db.session.query(WatchHistory.watch_time)
            .filter(WatchHistory.video_id == video.id)
            .with_for_update()
            .all()
        )
        total = sum(r.watch_time or 0 for r in rows)

        was_completed = bool(video.completed)
        progress = compute_progress(total, video.duration or 0, video.progress or 0)
        # 完成状态是单向的：已完成的视频不会因为进度回落而取消
        is_completed = was_completed or progress >= completion_threshold
        just_completed = is_completed and not was_completed
        video.progress = progress
        video.completed = is_completed

        analytics = (
            db.session.query(UserAnalytics)
            .filter(UserAnalytics.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if analytics is None:
            analytics = UserAnalytics(
                user_id=user_id,
                total_watch_time=watch_time,
                videos_completed=1 if is_completed else 0,
                current_streak=1,
                longest_streak=1,
                last_watch_date=now,
            )
            db.session.add(analytics)
        else:
            analytics.total_watch_time = (analytics.total_watch_time or 0) + watch_time
            if just_completed:
                analytics.videos_completed = (analytics.videos_completed or 0) + 1
            analytics.last_watch_date = now

        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("watch time report failed: user=%s video=%s", user_id, vid)
        raise InternalError("记录观看时长失败") from exc

    if just_completed:
        logger.info("video completed: user=%s video=%s progress=%s", user_id, vid, progress)
    return entry
