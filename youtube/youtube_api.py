"""YouTube Data API v3 客户端：视频详情、关键词搜索、播放列表条目。

只负责请求和字段规整，不碰数据库；缓存/限流在上层处理。
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from youtube.utils import clean_html, parse_iso_duration, pick_thumbnail

logger = logging.getLogger(__name__)

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"
REQUEST_TIMEOUT = 15
MAX_IDS_PER_REQUEST = 50  # videos 接口单次最多 50 个 id
PLAYLIST_MAX_PAGES = 3
QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded", "rateLimitExceeded", "userRateLimitExceeded"}


class YouTubeAPIError(RuntimeError):
    """请求失败或接口返回错误。"""


class QuotaExceededError(YouTubeAPIError):
    """配额用完（403 quotaExceeded 等）。"""


class MissingAPIKeyError(YouTubeAPIError):
    """没有配置 YOUTUBE_API_KEY。"""


def build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(total=3, backoff_factor=1, status_forcelist=[500, 502, 503, 504])
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def chunked(items: List[str], size: int = MAX_IDS_PER_REQUEST) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def normalize_video_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """videos 接口的一条 item -> 统一字段（和 Video 表对齐）。"""
    snippet = item.get("snippet") or {}
    details = item.get("contentDetails") or {}
    return {
        "youtube_id": item.get("id") or "",
        "title": clean_html(snippet.get("title") or ""),
        "description": snippet.get("description") or "",
        "thumbnail": pick_thumbnail(snippet.get("thumbnails")),
        "channel": snippet.get("channelTitle") or "",
        "duration": parse_iso_duration(details.get("duration")),
    }


class YouTubeAPI:
    """轻量客户端；session 可注入（测试里用假 session）。"""

    def __init__(self, api_key: str, session: Optional[requests.Session] = None, *, timeout: int = REQUEST_TIMEOUT):
        self.api_key = (api_key or "").strip()
        self.session = session or build_session()
        self.timeout = timeout

    def request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise MissingAPIKeyError("YouTube API key not configured")

        query = dict(params or {})
        query["key"] = self.api_key
        try:
            resp = self.session.get(f"{YOUTUBE_API_URL}/{path}", params=query, timeout=self.timeout)
        except requests.RequestException as exc:
            raise YouTubeAPIError(f"youtube api request failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if resp.status_code != 200:
            error = payload.get("error") or {}
            reasons = {e.get("reason") for e in error.get("errors") or [] if isinstance(e, dict)}
            message = error.get("message") or getattr(resp, "reason", "") or ""
            if reasons & QUOTA_REASONS or "quota" in message.lower():
                raise QuotaExceededError(f"youtube api quota exceeded: {message}")
            raise YouTubeAPIError(f"youtube api error: {resp.status_code} {message}")
        return payload

    def get_videos(self, video_ids: List[str]) -> List[Dict[str, Any]]:
        """批量取详情（自动按 50 个一组拆分），返回顺序跟随接口。"""
        results: List[Dict[str, Any]] = []
        ids = [v for v in video_ids if v]
        for chunk in chunked(ids):
            payload = self.request("videos", {"part": "snippet,contentDetails", "id": ",".join(chunk)})
            results.extend(normalize_video_item(item) for item in payload.get("items") or [])
        return results

    def get_video(self, video_id: str) -> Optional[Dict[str, Any]]:
        items = self.get_videos([video_id])
        return items[0] if items else None

    def get_durations(self, video_ids: List[str]) -> Dict[str, int]:
        """只取 contentDetails：{youtube_id: 秒数}。某一组失败只记日志并跳过。"""
        durations: Dict[str, int] = {}
        ids = [v for v in video_ids if v]
        for chunk in chunked(ids):
            try:
                payload = self.request("videos", {"part": "contentDetails", "id": ",".join(chunk)})
            except QuotaExceededError:
                raise
            except YouTubeAPIError as exc:
                logger.error("fetch durations failed for chunk of %d: %s", len(chunk), exc)
                continue
            for item in payload.get("items") or []:
                details = item.get("contentDetails") or {}
                durations[item.get("id")] = parse_iso_duration(details.get("duration"))
        return durations

    def search(self, query: str, max_results: int = 10) -> List[Dict[str, Any]]:
        """关键词搜索；search 接口没有时长，再用 videos 接口补齐详情。"""
        payload = self.request(
            "search",
            {"part": "snippet", "q": query, "type": "video", "maxResults": max_results},
        )
        ids = [
            (item.get("id") or {}).get("videoId")
            for item in payload.get("items") or []
            if isinstance(item.get("id"), dict)
        ]
        ids = [v for v in ids if v]
        if not ids:
            return []
        return self.get_videos(ids)

    def get_playlist_items(self, playlist_id: str, *, max_pages: int = PLAYLIST_MAX_PAGES) -> List[Dict[str, Any]]:
        """播放列表条目（每页 50，最多 max_pages 页）；不含时长。"""
        items: List[Dict[str, Any]] = []
        page_token = None
        for _ in range(max_pages):
            params = {"part": "snippet,contentDetails", "playlistId": playlist_id, "maxResults": 50}
            if page_token:
                params["pageToken"] = page_token
            payload = self.request("playlistItems", params)
            page = payload.get("items") or []
            if not page:
                break
            for item in page:
                snippet = item.get("snippet") or {}
                details = item.get("contentDetails") or {}
                video_id = details.get("videoId") or (snippet.get("resourceId") or {}).get("videoId")
                if not video_id:
                    continue
                items.append(
                    {
                        "youtube_id": video_id,
                        "title": clean_html(snippet.get("title") or ""),
                        "description": snippet.get("description") or "",
                        "thumbnail": pick_thumbnail(snippet.get("thumbnails")),
                        "channel": snippet.get("videoOwnerChannelTitle") or snippet.get("channelTitle") or "",
                    }
                )
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        return items
