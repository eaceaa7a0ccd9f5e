"""YouTube 模块：Data API v3 客户端 + 链接/时长解析工具。

说明：
- 这里保持“轻量”，避免在 import youtube 时拉起 requests 会话等副作用。
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "YouTubeAPI",
    "YouTubeAPIError",
    "QuotaExceededError",
    "MissingAPIKeyError",
    "build_session",
]


def __getattr__(name: str) -> Any:
    """延迟导入 youtube.youtube_api：只用 youtube.utils 时不需要加载客户端。"""
    if name in __all__:
        mod = import_module(".youtube_api", __name__)
        return getattr(mod, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
