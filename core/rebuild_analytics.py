"""批量处理脚本：用观看历史重算所有用户的 user_analytics

使用方法：
    python -m core.rebuild_analytics [--dry-run]

功能：
1. 按用户汇总 watch_history：总观看秒数、最后观看时间、活跃日
2. 重新计算当前/最长连续天数
3. 完成数 = 该用户 completed 的视频数
4. 写回 user_analytics（没有就新建）
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from flask import Flask
from sqlalchemy import func

from config import Config
from models import User, UserAnalytics, Video, WatchHistory, db, utcnow
from core.streaks import active_days, compute_streaks


def create_app():
    """创建 Flask 应用上下文"""
    app = Flask(__name__)
    app.config.from_object(Config)
    db.init_app(app)
    return app


def rebuild_user_analytics(user_id: int, *, now: datetime | None = None, keep_until_midnight: bool = False) -> UserAnalytics:
    """重算单个用户的统计行（调用方负责 commit）。"""
    now = now or utcnow()

    total, last_watch = (
        db.session.query(
            func.coalesce(func.sum(WatchHistory.watch_time), 0),
            func.max(WatchHistory.watched_at),
        )
        .filter(WatchHistory.user_id == user_id)
        .one()
    )
    timestamps = [
        row.watched_at
        for row in db.session.query(WatchHistory.watched_at).filter(WatchHistory.user_id == user_id)
    ]
    streaks = compute_streaks(active_days(timestamps), now.date(), keep_until_midnight=keep_until_midnight)
    completed = Video.query.filter_by(user_id=user_id, completed=True).count()

    analytics = UserAnalytics.query.filter_by(user_id=user_id).first()
    if analytics is None:
        analytics = UserAnalytics(user_id=user_id)
        db.session.add(analytics)

    analytics.total_watch_time = int(total or 0)
    analytics.videos_completed = completed
    analytics.current_streak = streaks.current
    analytics.longest_streak = streaks.longest
    analytics.last_watch_date = last_watch
    return analytics


def rebuild_all(dry_run: bool = False, *, keep_until_midnight: bool = False) -> int:
    """
    重算所有用户的统计数据

    Args:
        dry_run: 如果为 True，只打印不写库
    Returns:
        处理的用户数
    """
    user_ids = [row.id for row in db.session.query(User.id).order_by(User.id)]
    print(f"开始重算 {len(user_ids)} 个用户的学习统计...")
    print(f"试运行模式: {dry_run}")
    print("-" * 50)

    for user_id in user_ids:
        analytics = rebuild_user_analytics(user_id, keep_until_midnight=keep_until_midnight)
        print(
            f"  user={user_id} total={analytics.total_watch_time}s "
            f"completed={analytics.videos_completed} "
            f"streak={analytics.current_streak}/{analytics.longest_streak}"
        )

    if dry_run:
        db.session.rollback()
    else:
        db.session.commit()

    print("-" * 50)
    print(f"完成：{len(user_ids)} 个用户")
    return len(user_ids)


def main(argv=None):
    parser = argparse.ArgumentParser(description="用观看历史重算 user_analytics")
    parser.add_argument("--dry-run", action="store_true", help="只打印不写库")
    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        db.create_all()
        rebuild_all(
            dry_run=args.dry_run,
            keep_until_midnight=app.config.get("STREAK_KEEP_UNTIL_MIDNIGHT", False),
        )


if __name__ == "__main__":
    main()
