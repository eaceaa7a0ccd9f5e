import re
from html import unescape
from typing import Any

# watch?v= / youtu.be / embed / v / shorts
VIDEO_URL_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?(?:[^#\s]*&)?v=|youtu\.be/)([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/(?:embed|v|shorts)/([A-Za-z0-9_-]{11})"),
]
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
PLAYLIST_URL_RE = re.compile(r"[?&]list=([A-Za-z0-9_-]+)")
PLAYLIST_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
ISO_DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


def clean_html(text: str) -> str:
    """搜索接口返回的标题里会带 &#39; 之类的实体。"""
    if not text:
        return ""
    return unescape(re.sub(r"<[^>]+>", "", text)).strip()


def extract_video_id(url: str) -> str | None:
    """支持 watch / youtu.be / embed / shorts 链接，或直接给 11 位 ID。"""
    value = (url or "").strip()
    if not value:
        return None
    for pattern in VIDEO_URL_PATTERNS:
        m = pattern.search(value)
        if m:
            return m.group(1)
    if VIDEO_ID_RE.fullmatch(value):
        return value
    return None


def extract_playlist_id(url: str) -> str | None:
    value = (url or "").strip()
    if not value:
        return None
    m = PLAYLIST_URL_RE.search(value)
    if m:
        return m.group(1)
    if "/" not in value and PLAYLIST_ID_RE.fullmatch(value):
        return value
    return None


def parse_iso_duration(duration: Any) -> int:
    """ISO 8601 时长（PT1H2M3S / P1DT2H）转秒数；无法解析返回 0。"""
    if isinstance(duration, int):
        return max(0, duration)
    m = ISO_DURATION_RE.fullmatch(str(duration or "").strip())
    if not m:
        return 0
    days, hours, minutes, seconds = (int(g) if g else 0 for g in m.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def pick_thumbnail(thumbnails: Any) -> str:
    """优先高清封面，依次回退。"""
    if not isinstance(thumbnails, dict):
        return ""
    for size in ("high", "medium", "default"):
        item = thumbnails.get(size)
        if isinstance(item, dict) and item.get("url"):
            return item["url"]
    return ""


def build_video_url(video_id: str) -> str:
    if not video_id:
        return ""
    return f"https://www.youtube.com/watch?v={video_id}"


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    s = str(value).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return default
