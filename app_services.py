"""业务/工具函数集合（为了减少文件数量集中在一个模块里）。

阅读提示（可读性优先）：
1) 这个文件只放“可复用”的函数：参数清洗、序列化、简单校验、少量 DB 操作封装等。
2) 路由层（`app_routes.py`）只做 request/response/权限控制，不要塞复杂业务逻辑。
3) 观看记账和统计是核心逻辑，放在 `core/`；这里不重复实现。
4) 本文件从上到下按“通用 -> 业务”的顺序排：
   - 常量与约定
   - API 响应 / DB 提交
   - 参数清洗
   - 账号/密码
   - 视频（查询/序列化/收藏/补时长）
   - 观看历史
   - 笔记
   - 学习清单（播放列表）
   - 用户资料/偏好
   - YouTube 客户端
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app, jsonify
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from core.errors import Forbidden, InternalError, InvalidInput, NotFound
from models import (
    Note,
    Playlist,
    PlaylistVideo,
    User,
    UserPreferences,
    Video,
    WatchHistory,
    db,
    utcnow,
)
from youtube.utils import build_video_url, extract_playlist_id, extract_video_id

# ============================================================
# 1) 常量与约定（尽量集中，便于改动）
# ============================================================

PASSWORD_HASH_METHOD = "pbkdf2:sha256:260000"
PASSWORD_SALT_LENGTH = 8  # keep hash length within DB column limits

HISTORY_LIMIT = 50
PLAYLIST_IMPORT_LIMIT = 50
USERNAME_MAX_LENGTH = 100
PREFERENCE_FIELDS = ("daily_reminders", "weekly_reports", "new_features")


# ============================================================
# 2) 通用：API 响应 / DB 提交
# ============================================================


def api_ok(msg: str = "OK", *, code: int = 200, **extra):
    """统一成功返回结构：{code,msg,...}"""
    return jsonify({"code": code, "msg": msg, **extra})


def api_error(msg: str, *, code: int = 400, http_status: int = 400, **extra):
    """统一失败返回结构：({code,msg,...}, http_status)"""
    return jsonify({"code": code, "msg": msg, **extra}), http_status


def commit_or_rollback(session) -> bool:
    """提交事务；遇到 IntegrityError 自动回滚并返回 False。"""
    try:
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        return False


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


# ============================================================
# 3) 通用：参数清洗
# ============================================================


def clamp_int(value: int, *, lo: int, hi: int) -> int:
    """把整数夹在 [lo, hi] 之间（防止前端乱传参数）。"""
    return max(lo, min(int(value), hi))


def parse_id(value) -> int | None:
    """路径/JSON 里的 id 统一转 int；转不了返回 None。"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_non_negative_int(value, *, field: str, default: int | None = None) -> int:
    """数字参数（秒数等）：允许 int/float/数字字符串，必须 >= 0。"""
    if value is None or value == "":
        if default is not None:
            return default
        raise InvalidInput(f"缺少 {field}")
    if isinstance(value, bool):
        raise InvalidInput(f"{field} 必须是数字")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} 必须是数字") from None
    if number != number or number < 0:
        raise InvalidInput(f"{field} 不能为负数")
    return int(number)


# ============================================================
# 4) 账号/密码（注册/登录用）
# ============================================================


def is_hashed_password(value: str) -> bool:
    """粗略判断字符串看起来是否像 Werkzeug 的密码哈希。"""
    return isinstance(value, str) and value.count("$") >= 2


def hash_password(password: str) -> str:
    """生成密码哈希；统一算法与 salt 长度。"""
    return generate_password_hash(password, method=PASSWORD_HASH_METHOD, salt_length=PASSWORD_SALT_LENGTH)


def verify_password(stored: str, candidate: str) -> bool:
    """安全校验密码；遇到坏数据返回 False（不抛异常）。"""
    if not stored or not candidate or not is_hashed_password(stored):
        return False
    try:
        return check_password_hash(stored, candidate)
    except ValueError:
        return False


def default_nickname(account: str) -> str:
    """注册时兜底昵称生成：user_xxxx（取账号后 4 位）。"""
    account = (account or "").strip()
    if not account:
        return "user"
    suffix = account[-4:] if len(account) >= 4 else account
    return f"user_{suffix}"


def account_exists(account: str, exclude_user_id: int | None = None) -> bool:
    """账号查重（账号作为唯一登录凭证）。"""
    if not account:
        return False
    query = User.query.filter_by(account=account)
    if exclude_user_id:
        query = query.filter(User.id != exclude_user_id)
    return db.session.query(query.exists()).scalar()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "account": user.account,
        "username": user.username or default_nickname(user.account),
        "email": user.email or "",
        "created_at": _iso(user.created_at),
    }


# ============================================================
# 5) 视频：查询 / 序列化 / 收藏 / 补时长
# ============================================================


def serialize_video(v: Video, *, with_notes: bool = False) -> dict:
    """统一前端视频结构（多接口复用）。"""
    data = {
        "id": v.id,
        "youtube_id": v.youtube_id,
        "title": v.title,
        "channel": v.channel or "",
        "thumbnail": v.thumbnail or "",
        "description": v.description or "",
        "duration": v.duration or 0,
        "progress": v.progress or 0,
        "completed": bool(v.completed),
        "in_library": bool(v.in_library),
        "link": build_video_url(v.youtube_id),
        "created_at": _iso(v.created_at),
        "updated_at": _iso(v.updated_at),
    }
    if with_notes:
        data["notes"] = [serialize_note(n, with_video=False) for n in v.notes]
    return data


def video_brief(v: Video) -> dict:
    """笔记/历史里附带的精简视频信息。"""
    return {
        "id": v.id,
        "title": v.title,
        "youtube_id": v.youtube_id,
        "thumbnail": v.thumbnail or "",
        "channel": v.channel or "",
    }


def get_owned_video(user_id: int, video_id) -> Video | None:
    """按 id 取视频，并校验归属；不存在或不属于该用户都返回 None。"""
    vid = parse_id(video_id)
    if vid is None:
        return None
    video = db.session.get(Video, vid)
    if video is None or video.user_id != user_id:
        return None
    return video


def list_library(user_id: int) -> list[Video]:
    return (
        Video.query.filter_by(user_id=user_id, in_library=True)
        .order_by(Video.updated_at.desc(), Video.id.desc())
        .all()
    )


def save_video(user_id: int, data: dict) -> tuple[Video, bool]:
    """收藏视频到学习库；已存在则恢复 in_library。返回 (video, 是否新建)。"""
    youtube_id = (data.get("youtube_id") or "").strip()
    title = (data.get("title") or "").strip()
    if not youtube_id or not title:
        raise InvalidInput("缺少 youtube_id 或 title")

    existing = Video.query.filter_by(user_id=user_id, youtube_id=youtube_id).first()
    if existing:
        if not existing.in_library:
            existing.in_library = True
            db.session.commit()
        return existing, False

    video = Video(
        user_id=user_id,
        youtube_id=youtube_id,
        title=title,
        description=data.get("description") or "",
        thumbnail=data.get("thumbnail") or "",
        channel=data.get("channel") or "",
        duration=parse_non_negative_int(data.get("duration"), field="duration", default=0),
        in_library=True,
    )
    db.session.add(video)
    if not commit_or_rollback(db.session):
        # 并发收藏同一个视频：唯一约束兜底，返回已有那条
        existing = Video.query.filter_by(user_id=user_id, youtube_id=youtube_id).first()
        if existing is None:
            raise InternalError("保存视频失败")
        return existing, False
    return video, True


def add_video_by_url(user_id: int, video_url: str, api) -> Video:
    """粘贴 YouTube 链接收藏：解析 ID -> 拉元数据 -> 入库。"""
    youtube_id = extract_video_id(video_url)
    if not youtube_id:
        raise InvalidInput("无效的 YouTube 链接")

    existing = Video.query.filter_by(user_id=user_id, youtube_id=youtube_id).first()
    if existing and existing.in_library:
        raise InvalidInput("视频已添加")

    meta = api.get_video(youtube_id)
    if not meta:
        raise NotFound("YouTube 上找不到该视频")

    if existing:
        existing.in_library = True
        existing.title = meta["title"] or existing.title
        existing.duration = meta["duration"] or existing.duration
        db.session.commit()
        return existing

    video = Video(
        user_id=user_id,
        youtube_id=youtube_id,
        title=meta["title"] or youtube_id,
        description=meta["description"],
        thumbnail=meta["thumbnail"],
        channel=meta["channel"],
        duration=meta["duration"],
        in_library=True,
    )
    db.session.add(video)
    if not commit_or_rollback(db.session):
        raise InvalidInput("视频已添加")
    return video


def update_video(video: Video, data: dict) -> Video:
    """手动修改进度/完成状态（不影响用户统计）。"""
    if "progress" in data and data["progress"] is not None:
        progress = data["progress"]
        if isinstance(progress, bool) or not isinstance(progress, (int, float)):
            raise InvalidInput("progress 必须是数字")
        video.progress = clamp_int(progress, lo=0, hi=100)
    if "completed" in data and data["completed"] is not None:
        if not isinstance(data["completed"], bool):
            raise InvalidInput("completed 必须是布尔值")
        video.completed = data["completed"]
    db.session.commit()
    return video


def delete_video(video: Video) -> None:
    """硬删除：历史/笔记/清单条目随 ORM 级联一起删。"""
    db.session.delete(video)
    db.session.commit()


def clear_library(user_id: int) -> int:
    """清空学习库（软删除），返回影响条数。"""
    count = Video.query.filter_by(user_id=user_id, in_library=True).update(
        {Video.in_library: False}, synchronize_session=False
    )
    db.session.commit()
    return count


def update_missing_durations(api, user_id: int | None = None) -> dict:
    """给 duration == 0 的视频补时长（每 50 个一组请求）。user_id 为 None 时处理全部用户。"""
    query = Video.query.filter(Video.duration == 0)
    if user_id is not None:
        query = query.filter(Video.user_id == user_id)
    videos = query.all()
    if not videos:
        return {"updated": 0, "total": 0}

    durations = api.get_durations(sorted({v.youtube_id for v in videos}))
    updated = 0
    for video in videos:
        duration = durations.get(video.youtube_id)
        if duration:
            video.duration = duration
            updated += 1
    db.session.commit()
    return {"updated": updated, "total": len(videos)}


# ============================================================
# 6) 观看历史
# ============================================================


def serialize_history_entry(entry: WatchHistory, *, with_video: bool = False) -> dict:
    data = {
        "id": entry.id,
        "user_id": entry.user_id,
        "video_id": entry.video_id,
        "watch_time": entry.watch_time or 0,
        "watched_at": _iso(entry.watched_at),
    }
    if with_video and entry.video is not None:
        data["video"] = serialize_video(entry.video)
    return data


def list_history(user_id: int, *, limit: int = HISTORY_LIMIT) -> list[WatchHistory]:
    return (
        WatchHistory.query.filter_by(user_id=user_id)
        .order_by(WatchHistory.watched_at.desc(), WatchHistory.id.desc())
        .limit(limit)
        .all()
    )


def delete_history_entry(user_id: int, entry_id) -> None:
    hid = parse_id(entry_id)
    entry = db.session.get(WatchHistory, hid) if hid is not None else None
    if entry is None:
        raise NotFound("记录不存在")
    if entry.user_id != user_id:
        raise Forbidden("无权删除该记录")
    db.session.delete(entry)
    db.session.commit()


def clear_history(user_id: int) -> int:
    count = WatchHistory.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return count


# ============================================================
# 7) 笔记
# ============================================================


def serialize_note(note: Note, *, with_video: bool = True) -> dict:
    data = {
        "id": note.id,
        "video_id": note.video_id,
        "content": note.content,
        "timestamp": note.timestamp or 0,
        "created_at": _iso(note.created_at),
        "updated_at": _iso(note.updated_at),
    }
    if with_video and note.video is not None:
        data["video"] = video_brief(note.video)
    return data


def get_owned_note(user_id: int, note_id) -> Note | None:
    nid = parse_id(note_id)
    note = db.session.get(Note, nid) if nid is not None else None
    if note is None or note.user_id != user_id:
        return None
    return note


def list_notes(user_id: int, video_id=None) -> list[Note]:
    query = Note.query.filter_by(user_id=user_id)
    if video_id not in (None, ""):
        vid = parse_id(video_id)
        if vid is None:
            return []
        query = query.filter(Note.video_id == vid)
    return query.order_by(Note.created_at.desc(), Note.id.desc()).all()


def _clean_note_content(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise InvalidInput("笔记内容不能为空")
    return content.strip()


def create_note(user_id: int, video_id, content, timestamp) -> Note:
    """给自己的视频加一条时间戳笔记。"""
    text = _clean_note_content(content)
    seconds = parse_non_negative_int(timestamp, field="timestamp")
    video = get_owned_video(user_id, video_id)
    if video is None:
        raise NotFound("视频不存在")
    note = Note(user_id=user_id, video_id=video.id, content=text, timestamp=seconds)
    db.session.add(note)
    db.session.commit()
    return note


def update_note(note: Note, content) -> Note:
    note.content = _clean_note_content(content)
    db.session.commit()
    return note


def delete_note(note: Note) -> None:
    db.session.delete(note)
    db.session.commit()


# ============================================================
# 8) 学习清单（播放列表）
# ============================================================


def serialize_playlist(playlist: Playlist, *, with_videos: bool = True) -> dict:
    """清单 + 统计：视频数 / 已完成数 / 总时长。"""
    videos = [item.video for item in playlist.items if item.video is not None]
    data = {
        "id": playlist.id,
        "name": playlist.name,
        "description": playlist.description or "",
        "created_at": _iso(playlist.created_at),
        "updated_at": _iso(playlist.updated_at),
        "total_videos": len(videos),
        "completed_videos": sum(1 for v in videos if v.completed),
        "total_duration": sum(v.duration or 0 for v in videos),
    }
    if with_videos:
        data["videos"] = [
            {"position": item.position, **serialize_video(item.video)}
            for item in playlist.items
            if item.video is not None
        ]
    return data


def get_owned_playlist(user_id: int, playlist_id) -> Playlist | None:
    pid = parse_id(playlist_id)
    playlist = db.session.get(Playlist, pid) if pid is not None else None
    if playlist is None or playlist.user_id != user_id:
        return None
    return playlist


def list_playlists(user_id: int) -> list[Playlist]:
    return Playlist.query.filter_by(user_id=user_id).order_by(Playlist.updated_at.desc(), Playlist.id.desc()).all()


def create_playlist(user_id: int, name, description=None) -> Playlist:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("清单名称不能为空")
    playlist = Playlist(user_id=user_id, name=name.strip(), description=description or "")
    db.session.add(playlist)
    db.session.commit()
    return playlist


def update_playlist(playlist: Playlist, data: dict) -> Playlist:
    if "name" in data:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidInput("清单名称不能为空")
        playlist.name = name.strip()
    if "description" in data:
        playlist.description = data.get("description") or ""
    db.session.commit()
    return playlist


def delete_playlist(playlist: Playlist) -> None:
    """只删清单和条目，视频本身保留在学习库。"""
    db.session.delete(playlist)
    db.session.commit()


def add_video_to_playlist(playlist: Playlist, video: Video) -> bool:
    """追加到清单末尾；已在清单里返回 False。"""
    if any(item.video_id == video.id for item in playlist.items):
        return False
    next_position = (
        db.session.query(func.coalesce(func.max(PlaylistVideo.position), -1))
        .filter(PlaylistVideo.playlist_id == playlist.id)
        .scalar()
        + 1
    )
    playlist.items.append(PlaylistVideo(video_id=video.id, position=next_position))
    playlist.updated_at = utcnow()
    return commit_or_rollback(db.session)


def remove_video_from_playlist(playlist: Playlist, video_id) -> bool:
    vid = parse_id(video_id)
    item = next((i for i in playlist.items if i.video_id == vid), None)
    if item is None:
        return False
    playlist.items.remove(item)
    playlist.updated_at = utcnow()
    db.session.commit()
    return True


def import_playlist(user_id: int, playlist_url: str, api, *, name: str | None = None, limit: int = PLAYLIST_IMPORT_LIMIT) -> Playlist:
    """从 YouTube 播放列表导入：最多 limit 个视频，已收藏的视频直接复用。"""
    playlist_id = extract_playlist_id(playlist_url)
    if not playlist_id:
        raise InvalidInput("无效的 YouTube 播放列表链接")

    items = api.get_playlist_items(playlist_id)
    if not items:
        raise InvalidInput("播放列表为空或无法访问")

    picked: list[dict] = []
    seen: set[str] = set()
    for item in items:
        yid = item.get("youtube_id")
        if not yid or yid in seen:
            continue
        seen.add(yid)
        picked.append(item)
        if len(picked) >= limit:
            break

    ids = [item["youtube_id"] for item in picked]
    durations = api.get_durations(ids)
    existing = {v.youtube_id: v for v in Video.query.filter(Video.user_id == user_id, Video.youtube_id.in_(ids)).all()}

    playlist = Playlist(
        user_id=user_id,
        name=(name or "").strip() or f"Playlist - {utcnow():%Y-%m-%d}",
        description=f"Imported from YouTube - {playlist_id}",
    )
    db.session.add(playlist)

    for position, item in enumerate(picked):
        yid = item["youtube_id"]
        video = existing.get(yid)
        if video is None:
            video = Video(
                user_id=user_id,
                youtube_id=yid,
                title=item.get("title") or yid,
                description=item.get("description") or "",
                thumbnail=item.get("thumbnail") or "",
                channel=item.get("channel") or "",
                duration=durations.get(yid, 0),
                in_library=True,
            )
            db.session.add(video)
        else:
            video.in_library = True
            if not video.duration and durations.get(yid):
                video.duration = durations[yid]
        playlist.items.append(PlaylistVideo(video=video, position=position))

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[PLAYLIST_IMPORT] %s", playlist_id)
        raise InternalError("导入播放列表失败") from exc
    return playlist


# ============================================================
# 9) 用户资料 / 偏好
# ============================================================


def update_profile(user: User, username) -> User:
    if not isinstance(username, str) or not username.strip():
        raise InvalidInput("昵称不能为空")
    if len(username) > USERNAME_MAX_LENGTH:
        raise InvalidInput(f"昵称过长（最多 {USERNAME_MAX_LENGTH} 个字符）")
    user.username = username.strip()
    db.session.commit()
    return user


def serialize_preferences(prefs: UserPreferences) -> dict:
    return {"user_id": prefs.user_id, **{f: bool(getattr(prefs, f)) for f in PREFERENCE_FIELDS}}


def get_or_create_preferences(user_id: int) -> UserPreferences:
    prefs = UserPreferences.query.filter_by(user_id=user_id).first()
    if prefs is None:
        prefs = UserPreferences(user_id=user_id)
        db.session.add(prefs)
        if not commit_or_rollback(db.session):
            prefs = UserPreferences.query.filter_by(user_id=user_id).first()
    return prefs


def update_preferences(user_id: int, data: dict) -> UserPreferences:
    """只接受布尔值字段；一个有效字段都没有时报错。"""
    updates = {f: data[f] for f in PREFERENCE_FIELDS if isinstance(data.get(f), bool)}
    if not updates:
        raise InvalidInput("没有可更新的偏好设置")
    prefs = get_or_create_preferences(user_id)
    for field, value in updates.items():
        setattr(prefs, field, value)
    db.session.commit()
    return prefs


# ============================================================
# 10) YouTube 客户端
# ============================================================


def get_youtube_api():
    """每个 app 复用一个客户端（共享带重试的 requests 会话）。"""
    from youtube import YouTubeAPI

    client = current_app.extensions.get("youtube_api")
    if client is None:
        client = YouTubeAPI(current_app.config.get("YOUTUBE_API_KEY", ""))
        current_app.extensions["youtube_api"] = client
    return client
