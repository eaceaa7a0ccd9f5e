"""YouTube 搜索结果缓存（落在 video_searches 表）。

- 缓存键：关键词 strip + lower
- 命中条件：expires_at > now
- 未命中：调用 fetch(原始关键词) 拉取，再 upsert 缓存
缓存只是加速手段：写缓存失败只记日志，不影响本次返回。
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from models import VideoSearch, db, utcnow

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 60 * 60


def normalize_query(query: str | None) -> str:
    return (query or "").strip().lower()


def get_cached_results(query: str, *, now: datetime | None = None) -> list | None:
    now = now or utcnow()
    cached = VideoSearch.query.filter_by(keyword=normalize_query(query)).first()
    if cached is not None and cached.expires_at > now:
        return cached.results
    return None


def store_results(query: str, results: list, *, now: datetime | None = None, ttl: int = CACHE_TTL_SECONDS) -> None:
    now = now or utcnow()
    key = normalize_query(query)
    expires_at = now + timedelta(seconds=ttl)
    cached = VideoSearch.query.filter_by(keyword=key).first()
    if cached is None:
        db.session.add(VideoSearch(keyword=key, results=results, expires_at=expires_at))
    else:
        cached.results = results
        cached.expires_at = expires_at
        cached.updated_at = now
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("search cache write failed: %s", key, exc_info=True)


def cached_search(
    query: str,
    fetch: Callable[[str], list],
    *,
    now: datetime | None = None,
    ttl: int = CACHE_TTL_SECONDS,
) -> tuple[list, bool]:
    """返回 (results, cache_hit)。fetch 抛出的异常原样向上传。"""
    now = now or utcnow()
    cached = get_cached_results(query, now=now)
    if cached is not None:
        logger.info("[YOUTUBE_SEARCH] cache hit: %s", query)
        return cached, True

    logger.info("[YOUTUBE_SEARCH] cache miss, fetching: %s", query)
    results = fetch(query)
    store_results(query, results, now=now, ttl=ttl)
    return results, False


def clear_expired(*, now: datetime | None = None) -> int:
    """删除过期缓存，返回删除条数。"""
    now = now or utcnow()
    count = VideoSearch.query.filter(VideoSearch.expires_at < now).delete(synchronize_session=False)
    db.session.commit()
    return count
