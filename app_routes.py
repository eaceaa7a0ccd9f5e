"""路由层（Blueprint）全集（为了减少文件数量集中在一个模块里）。

阅读提示（可读性优先）：
1) 这个文件只做“薄路由”：取参数 -> 登录态/归属校验 -> 调用 `app_services.py` / `core` -> 返回 JSON。
2) 观看记账、统计重算在 `core/`；其余可复用逻辑在 `app_services.py`。
3) 从上到下按“用户访问路径”排序：
   - 认证（/login /register /logout）
   - API：视频（/api/videos ...）
   - API：观看历史（/api/history）
   - API：学习统计（/api/analytics）
   - API：笔记（/api/notes）
   - API：学习清单（/api/playlists）
   - API：YouTube 搜索（/api/youtube/search）
   - API：用户（/api/user/profile /api/user/preferences）
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import current_user, login_required, login_user, logout_user

from core import get_analytics, report_watch_time
from core.errors import Forbidden, InternalError, InvalidInput, NotFound, TrackerError
from core.search_cache import cached_search, clear_expired
from models import User, db
from youtube.utils import parse_bool
from youtube.youtube_api import MissingAPIKeyError, QuotaExceededError, YouTubeAPIError

import app_services as svc


# 对外暴露 2 个 Blueprint + limiter，`app.py` 会负责注册。
__all__ = ["auth_bp", "api_bp", "limiter"]


auth_bp = Blueprint("auth", __name__)
api_bp = Blueprint("api", __name__, url_prefix="/api")


def limiter_key_func():
    """限流键：登录用户按用户 ID，匿名按 IP。"""
    if current_user and current_user.is_authenticated:
        return str(current_user.id)
    return get_remote_address()


limiter = Limiter(key_func=limiter_key_func)


def _search_rate_limit() -> str:
    return current_app.config.get("SEARCH_RATE_LIMIT", "10 per minute")


def _payload() -> dict:
    """JSON 优先，兼容表单提交。JSON 必须是对象（数组/标量直接 400）。"""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    if data is not None:
        raise InvalidInput("请求体必须是 JSON 对象")
    return request.form.to_dict()


# ============================================================
# 0) 错误映射（业务异常 -> HTTP）
# ============================================================


_STATUS_BY_ERROR = (
    (InvalidInput, 400),
    (Forbidden, 403),
    (NotFound, 404),
    (InternalError, 500),
)


@api_bp.app_errorhandler(TrackerError)
def handle_tracker_error(exc: TrackerError):
    status = next((s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return svc.api_error(exc.message or "请求失败", code=status, http_status=status)


@api_bp.errorhandler(QuotaExceededError)
def handle_quota_error(exc):
    current_app.logger.warning("[YOUTUBE] quota exceeded: %s", exc)
    return svc.api_error("YouTube API 配额已用完，请稍后再试", code=503, http_status=503)


@api_bp.errorhandler(MissingAPIKeyError)
def handle_missing_key(exc):
    current_app.logger.error("[YOUTUBE] %s", exc)
    return svc.api_error("未配置 YouTube API Key", code=503, http_status=503)


@api_bp.errorhandler(YouTubeAPIError)
def handle_youtube_error(exc):
    current_app.logger.error("[YOUTUBE] %s", exc)
    return svc.api_error("YouTube 接口请求失败", code=502, http_status=502)


# ============================================================
# 1) 认证（Auth）
# ============================================================


@auth_bp.post("/login")
def login():
    """登录：账号 + 密码（只认哈希过的密码）。"""
    data = _payload()
    account = (data.get("account") or "").strip()
    password = data.get("password")
    if not account or not password:
        return svc.api_error("请输入账号和密码")

    user = User.query.filter_by(account=account).first()
    if user and svc.verify_password(user.password, password):
        login_user(user, remember=parse_bool(data.get("remember")))
        return svc.api_ok("登录成功", user=svc.serialize_user(user))
    return svc.api_error("账号或密码错误", code=401, http_status=401)


@auth_bp.post("/register")
def register():
    data = _payload()
    account = (data.get("account") or "").strip()
    password = data.get("password")
    if not account or not password:
        return svc.api_error("请输入账号和密码")
    if svc.account_exists(account):
        return svc.api_error("账号已存在", code=409, http_status=409)

    username = (data.get("username") or "").strip()[: svc.USERNAME_MAX_LENGTH]
    new_user = User(
        account=account,
        username=username or svc.default_nickname(account),
        password=svc.hash_password(password),
        email=(data.get("email") or "").strip() or None,
    )
    db.session.add(new_user)
    if not svc.commit_or_rollback(db.session):
        return svc.api_error("账号已存在", code=409, http_status=409)
    return svc.api_ok("注册成功", code=201, user=svc.serialize_user(new_user)), 201


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return svc.api_ok("已退出登录")


# ============================================================
# 2) API：视频（学习库）
# ============================================================


def _owned_video_or_404(video_id):
    video = svc.get_owned_video(current_user.id, video_id)
    if video is None:
        raise NotFound("视频不存在")
    return video


@api_bp.get("/videos")
@login_required
def list_videos():
    """学习库：in_library 的视频（带笔记）。"""
    videos = svc.list_library(current_user.id)
    return jsonify([svc.serialize_video(v, with_notes=True) for v in videos])


@api_bp.post("/videos")
@login_required
def save_video():
    """收藏视频（前端已有元数据）；已存在则恢复到学习库。"""
    video, created = svc.save_video(current_user.id, _payload())
    return jsonify(svc.serialize_video(video)), 201 if created else 200


@api_bp.post("/videos/url")
@login_required
def add_video_by_url():
    """粘贴链接收藏：服务端去 YouTube 拉元数据。"""
    url = (_payload().get("url") or "").strip()
    if not url:
        raise InvalidInput("缺少视频链接")
    video = svc.add_video_by_url(current_user.id, url, svc.get_youtube_api())
    current_app.logger.info("[VIDEO_ADD] user=%s youtube_id=%s", current_user.id, video.youtube_id)
    return jsonify(svc.serialize_video(video)), 201


@api_bp.get("/videos/<int:video_id>")
@login_required
def get_video(video_id: int):
    return jsonify(svc.serialize_video(_owned_video_or_404(video_id), with_notes=True))


@api_bp.patch("/videos/<int:video_id>")
@login_required
def update_video(video_id: int):
    video = svc.update_video(_owned_video_or_404(video_id), _payload())
    return jsonify(svc.serialize_video(video))


@api_bp.delete("/videos/<int:video_id>")
@login_required
def delete_video(video_id: int):
    svc.delete_video(_owned_video_or_404(video_id))
    return svc.api_ok("删除成功")


@api_bp.delete("/videos")
@login_required
def clear_library():
    count = svc.clear_library(current_user.id)
    return svc.api_ok("学习库已清空", count=count)


@api_bp.post("/videos/update-durations")
@login_required
def update_missing_durations():
    """补齐当前用户 duration 为 0 的视频。"""
    result = svc.update_missing_durations(svc.get_youtube_api(), user_id=current_user.id)
    current_app.logger.info("[DURATIONS] user=%s %s", current_user.id, result)
    return svc.api_ok("时长已更新", **result)


# ============================================================
# 3) API：观看历史（History）
# ============================================================


@api_bp.get("/history")
@login_required
def list_history():
    limit = current_app.config.get("HISTORY_LIMIT", svc.HISTORY_LIMIT)
    entries = svc.list_history(current_user.id, limit=limit)
    return jsonify([svc.serialize_history_entry(e, with_video=True) for e in entries])


@api_bp.post("/history")
@login_required
def report_history():
    """播放器定期上报观看秒数。"""
    data = _payload()
    cfg = current_app.config
    try:
        entry = report_watch_time(
            current_user.id,
            data.get("video_id"),
            data.get("watch_time"),
            merge_window=cfg.get("WATCH_MERGE_WINDOW_SECONDS", 3600),
            max_seconds=cfg.get("MAX_WATCH_REPORT_SECONDS", 43200),
            completion_threshold=cfg.get("COMPLETION_THRESHOLD", 95),
        )
    except InternalError:
        current_app.logger.error("[HISTORY_POST] failed: user=%s video=%s", current_user.id, data.get("video_id"))
        raise
    return jsonify(svc.serialize_history_entry(entry)), 201


@api_bp.delete("/history/<int:entry_id>")
@login_required
def delete_history(entry_id: int):
    svc.delete_history_entry(current_user.id, entry_id)
    return svc.api_ok("删除成功")


@api_bp.delete("/history")
@login_required
def clear_history():
    count = svc.clear_history(current_user.id)
    return svc.api_ok("观看历史已清空", count=count)


# ============================================================
# 4) API：学习统计（Analytics）
# ============================================================


@api_bp.get("/analytics")
@login_required
def analytics():
    cfg = current_app.config
    payload = get_analytics(
        current_user.id,
        activity_days=cfg.get("ACTIVITY_WINDOW_DAYS", 7),
        top_limit=cfg.get("TOP_CATEGORY_LIMIT", 5),
        keep_until_midnight=cfg.get("STREAK_KEEP_UNTIL_MIDNIGHT", False),
    )
    return jsonify(payload)


# ============================================================
# 5) API：笔记（Notes）
# ============================================================


def _owned_note_or_404(note_id):
    note = svc.get_owned_note(current_user.id, note_id)
    if note is None:
        raise NotFound("笔记不存在")
    return note


@api_bp.get("/notes")
@login_required
def list_notes():
    notes = svc.list_notes(current_user.id, request.args.get("video_id"))
    return jsonify([svc.serialize_note(n) for n in notes])


@api_bp.post("/notes")
@login_required
def create_note():
    data = _payload()
    note = svc.create_note(current_user.id, data.get("video_id"), data.get("content"), data.get("timestamp"))
    return jsonify(svc.serialize_note(note)), 201


@api_bp.put("/notes/<int:note_id>")
@login_required
def update_note(note_id: int):
    note = svc.update_note(_owned_note_or_404(note_id), _payload().get("content"))
    return jsonify(svc.serialize_note(note))


@api_bp.delete("/notes/<int:note_id>")
@login_required
def delete_note(note_id: int):
    svc.delete_note(_owned_note_or_404(note_id))
    return svc.api_ok("删除成功")


# ============================================================
# 6) API：学习清单（Playlists）
# ============================================================


def _owned_playlist_or_404(playlist_id):
    playlist = svc.get_owned_playlist(current_user.id, playlist_id)
    if playlist is None:
        raise NotFound("清单不存在")
    return playlist


@api_bp.get("/playlists")
@login_required
def list_playlists():
    playlists = svc.list_playlists(current_user.id)
    return jsonify([svc.serialize_playlist(p, with_videos=False) for p in playlists])


@api_bp.post("/playlists")
@login_required
def create_playlist():
    data = _payload()
    playlist = svc.create_playlist(current_user.id, data.get("name"), data.get("description"))
    return jsonify(svc.serialize_playlist(playlist)), 201


@api_bp.get("/playlists/<int:playlist_id>")
@login_required
def get_playlist(playlist_id: int):
    return jsonify(svc.serialize_playlist(_owned_playlist_or_404(playlist_id)))


@api_bp.put("/playlists/<int:playlist_id>")
@login_required
def update_playlist(playlist_id: int):
    playlist = svc.update_playlist(_owned_playlist_or_404(playlist_id), _payload())
    return jsonify(svc.serialize_playlist(playlist))


@api_bp.delete("/playlists/<int:playlist_id>")
@login_required
def delete_playlist(playlist_id: int):
    svc.delete_playlist(_owned_playlist_or_404(playlist_id))
    return svc.api_ok("删除成功")


@api_bp.post("/playlists/<int:playlist_id>/videos")
@login_required
def add_playlist_video(playlist_id: int):
    playlist = _owned_playlist_or_404(playlist_id)
    video = _owned_video_or_404(_payload().get("video_id"))
    if not svc.add_video_to_playlist(playlist, video):
        return svc.api_error("视频已在清单中", code=409, http_status=409)
    return jsonify(svc.serialize_playlist(playlist)), 201


@api_bp.delete("/playlists/<int:playlist_id>/videos/<int:video_id>")
@login_required
def remove_playlist_video(playlist_id: int, video_id: int):
    playlist = _owned_playlist_or_404(playlist_id)
    if not svc.remove_video_from_playlist(playlist, video_id):
        raise NotFound("视频不在清单中")
    return svc.api_ok("移除成功")


@api_bp.post("/playlists/import")
@login_required
def import_playlist():
    """从 YouTube 播放列表链接导入。"""
    data = _payload()
    url = (data.get("url") or "").strip()
    if not url:
        raise InvalidInput("缺少播放列表链接")
    playlist = svc.import_playlist(
        current_user.id,
        url,
        svc.get_youtube_api(),
        name=data.get("name"),
        limit=current_app.config.get("PLAYLIST_IMPORT_LIMIT", svc.PLAYLIST_IMPORT_LIMIT),
    )
    current_app.logger.info("[PLAYLIST_IMPORT] user=%s playlist=%s videos=%d", current_user.id, playlist.id, len(playlist.items))
    return jsonify(svc.serialize_playlist(playlist)), 201


# ============================================================
# 7) API：YouTube 搜索（带缓存 + 限流）
# ============================================================


@api_bp.get("/youtube/search")
@login_required
@limiter.limit(_search_rate_limit)
def youtube_search():
    query = (request.args.get("q") or "").strip()
    if not query:
        raise InvalidInput("请输入搜索关键词")

    api = svc.get_youtube_api()
    try:
        results, hit = cached_search(
            query,
            api.search,
            ttl=current_app.config.get("SEARCH_CACHE_TTL_SECONDS", 24 * 60 * 60),
        )
    except (QuotaExceededError, MissingAPIKeyError):
        raise
    except YouTubeAPIError as exc:
        current_app.logger.error("[YOUTUBE_SEARCH] failed: %s", exc)
        return svc.api_error("搜索失败", code=500, http_status=500)
    return jsonify({"query": query, "cached": hit, "results": results})


@api_bp.delete("/youtube/search/cache")
@login_required
def clear_search_cache():
    count = clear_expired()
    return svc.api_ok("过期缓存已清理", count=count)


# ============================================================
# 8) API：用户（Profile / Preferences）
# ============================================================


@api_bp.get("/user/profile")
@login_required
def get_profile():
    return jsonify(svc.serialize_user(current_user))


@api_bp.patch("/user/profile")
@login_required
def update_profile():
    user = svc.update_profile(current_user, _payload().get("username"))
    return jsonify(svc.serialize_user(user))


@api_bp.get("/user/preferences")
@login_required
def get_preferences():
    return jsonify(svc.serialize_preferences(svc.get_or_create_preferences(current_user.id)))


@api_bp.patch("/user/preferences")
@login_required
def update_preferences():
    data = _payload()
    prefs = svc.update_preferences(current_user.id, data)
    return jsonify(svc.serialize_preferences(prefs))
