"""连续学习天数 & 活跃度统计（纯函数，不碰数据库）

统计口径：
- 活跃日：watched_at 换算成 UTC 日期后去重
- 当前连续：从 today 开始逐天往前数，遇到第一个空档就停
- 最长连续：活跃日升序扫描，日期差恰好为 1 的最长一段；且不小于当前连续
- 周活跃：最近 N 天内的记录按日期分桶，累加观看秒数和次数
- 频道分布：按频道名（缺失记为 Unknown）累加时长和视频数，取前 N
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, NamedTuple

ONE_DAY = timedelta(days=1)
UNKNOWN_CHANNEL = "Unknown"


class StreakStats(NamedTuple):
    current: int
    longest: int


def to_utc_date(ts: datetime) -> date:
    """带时区的时间先转 UTC；naive 时间按已经是 UTC 处理。"""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.date()


def active_days(timestamps: Iterable[datetime]) -> set[date]:
    return {to_utc_date(ts) for ts in timestamps if ts is not None}


def compute_streaks(days: set[date], today: date, *, keep_until_midnight: bool = False) -> StreakStats:
    """根据活跃日集合计算当前连续天数和历史最长连续天数。

    Args:
        days: 有观看记录的日期集合
        today: 统计基准日（UTC）
        keep_until_midnight: 为 True 时，今天还没看也保留截至昨天的连续天数
    """
    if not days:
        return StreakStats(0, 0)

    current = 0
    cursor = today
    if keep_until_midnight and cursor not in days:
        cursor -= ONE_DAY
    while cursor in days:
        current += 1
        cursor -= ONE_DAY

    longest = 0
    run = 0
    prev = None
    for day in sorted(days):
        if prev is not None and (day - prev).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        prev = day

    return StreakStats(current, max(longest, current))


def weekly_activity(entries: Iterable[tuple[datetime, int]], *, now: datetime, days: int = 7) -> list[dict]:
    """最近 `days` 天的每日观看统计，按日期升序。

    entries 为 (watched_at, watch_time) 二元组；窗口下界为 now - days（含）。
    """
    since = now - timedelta(days=days)
    buckets: dict[str, dict] = {}
    for watched_at, watch_time in entries:
        if watched_at is None or watched_at < since:
            continue
        key = to_utc_date(watched_at).isoformat()
        bucket = buckets.setdefault(key, {"date": key, "watch_time": 0, "count": 0})
        bucket["watch_time"] += int(watch_time or 0)
        bucket["count"] += 1
    return [buckets[k] for k in sorted(buckets)]


def top_categories(videos: Iterable[tuple[str | None, int | None]], *, limit: int = 5) -> list[dict]:
    """按频道聚合 (channel, duration)，总时长降序取前 limit 个（同分保持首次出现顺序）。"""
    stats: dict[str, dict] = {}
    for channel, duration in videos:
        name = channel or UNKNOWN_CHANNEL
        item = stats.setdefault(name, {"name": name, "total_time": 0, "count": 0})
        item["total_time"] += int(duration or 0)
        item["count"] += 1
    ranked = sorted(stats.values(), key=lambda x: x["total_time"], reverse=True)
    return ranked[: max(0, limit)]
