"""数据模型定义：封装所有与数据库表对应的 SQLAlchemy ORM 类。

时间字段统一存 UTC（naive datetime），连续学习天数按 UTC 日期计算。
"""

from datetime import datetime, timezone

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    """当前 UTC 时间（去掉 tzinfo，和数据库里的值保持同一口径）。"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(UserMixin, db.Model):
    """用户账户表：仅存储基本资料和密码哈希。"""

    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    account = db.Column(db.String(50), unique=True, index=True, nullable=False)
    username = db.Column(db.String(100))
    password = db.Column(db.String(255))
    email = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)


class Video(db.Model):
    """用户收藏到学习库里的 YouTube 视频：展示信息 + 个人学习进度。"""

    __tablename__ = 'videos'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True, nullable=False)

    # 平台侧信息
    youtube_id = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    channel = db.Column(db.String(255))
    thumbnail = db.Column(db.String(500))
    description = db.Column(db.Text)
    duration = db.Column(db.Integer, nullable=False, default=0)  # 秒，0 表示未知

    # 学习进度
    progress = db.Column(db.Integer, nullable=False, default=0)  # 0-100
    completed = db.Column(db.Boolean, nullable=False, default=False)
    in_library = db.Column(db.Boolean, nullable=False, default=True)  # 软删除标记

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    notes = db.relationship(
        'Note', backref='video', cascade='all, delete-orphan', order_by='Note.timestamp'
    )
    history = db.relationship('WatchHistory', backref='video', cascade='all, delete-orphan')
    playlist_items = db.relationship('PlaylistVideo', backref='video', cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'youtube_id', name='uq_user_youtube_video'),
    )


class WatchHistory(db.Model):
    """观看历史：一段连续观看（合并窗口内的多次上报累加到同一行）。"""

    __tablename__ = 'watch_history'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    video_id = db.Column(db.Integer, db.ForeignKey('videos.id'), nullable=False)
    watch_time = db.Column(db.Integer, nullable=False, default=0)  # 秒
    watched_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        db.Index('ix_history_user_video_time', 'user_id', 'video_id', 'watched_at'),
    )


class UserAnalytics(db.Model):
    """学习统计缓存：可随时由 watch_history 重新计算。"""

    __tablename__ = 'user_analytics'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    total_watch_time = db.Column(db.Integer, nullable=False, default=0)
    videos_completed = db.Column(db.Integer, nullable=False, default=0)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    last_watch_date = db.Column(db.DateTime)


class Note(db.Model):
    """时间戳笔记：挂在视频的某一秒上。"""

    __tablename__ = 'notes'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True, nullable=False)
    video_id = db.Column(db.Integer, db.ForeignKey('videos.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.Integer, nullable=False, default=0)  # 视频内第几秒
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Playlist(db.Model):
    """学习清单：用户自建或从 YouTube 播放列表导入。"""

    __tablename__ = 'playlists'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        'PlaylistVideo',
        backref='playlist',
        cascade='all, delete-orphan',
        order_by='PlaylistVideo.position',
    )


class PlaylistVideo(db.Model):
    __tablename__ = 'playlist_videos'
    id = db.Column(db.Integer, primary_key=True)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id'), nullable=False)
    video_id = db.Column(db.Integer, db.ForeignKey('videos.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint('playlist_id', 'video_id', name='uq_playlist_video'),
    )


class UserPreferences(db.Model):
    """通知偏好：首次读取时按默认值创建。"""

    __tablename__ = 'user_preferences'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    daily_reminders = db.Column(db.Boolean, nullable=False, default=True)
    weekly_reports = db.Column(db.Boolean, nullable=False, default=True)
    new_features = db.Column(db.Boolean, nullable=False, default=False)


class VideoSearch(db.Model):
    """YouTube 搜索结果缓存：按规范化后的关键词存一份，过期后重新拉取。"""

    __tablename__ = 'video_searches'
    id = db.Column(db.Integer, primary_key=True)
    keyword = db.Column(db.String(255), unique=True, nullable=False)
    results = db.Column(db.JSON, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
