"""核心业务模块

包含：
- report_watch_time: 观看时长记账（历史合并 + 进度/完成 + 用户统计）
- get_analytics: 学习统计读取（连续天数、周活跃、频道分布）
- compute_streaks 等: 纯函数统计工具
- cached_search: YouTube 搜索结果缓存
- rebuild_analytics: 批处理脚本
"""

from .errors import TrackerError, InvalidInput, NotFound, Forbidden, InternalError
from .streaks import StreakStats, active_days, compute_streaks, weekly_activity, top_categories
from .watch_accounting import report_watch_time, normalize_watch_time, compute_progress
from .analytics import get_analytics, get_or_create_analytics, serialize_analytics

__all__ = [
    "TrackerError",
    "InvalidInput",
    "NotFound",
    "Forbidden",
    "InternalError",
    "StreakStats",
    "active_days",
    "compute_streaks",
    "weekly_activity",
    "top_categories",
    "report_watch_time",
    "normalize_watch_time",
    "compute_progress",
    "get_analytics",
    "get_or_create_analytics",
    "serialize_analytics",
]
