from datetime import datetime

import pytest

from app import create_app
from config import Config
from models import User, Video, db


class SqliteConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    YOUTUBE_API_KEY = "test-key"
    RATELIMIT_ENABLED = False


@pytest.fixture
def app():
    app = create_app(SqliteConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(account="alice", password="secret123"):
    from app_services import hash_password

    user = User(account=account, username=account, password=hash_password(password))
    db.session.add(user)
    db.session.commit()
    return user


def make_video(user, youtube_id="dQw4w9WgXcQ", *, duration=600, channel="Math Channel", **kwargs):
    video = Video(
        user_id=user.id,
        youtube_id=youtube_id,
        title=kwargs.pop("title", f"video {youtube_id}"),
        channel=channel,
        duration=duration,
        **kwargs,
    )
    db.session.add(video)
    db.session.commit()
    return video


@pytest.fixture
def user(app):
    return make_user()


@pytest.fixture
def logged_in(client, user):
    resp = client.post("/login", json={"account": "alice", "password": "secret123"})
    assert resp.status_code == 200
    return client


class FakeYouTube:
    """替代 YouTubeAPI：只返回预置数据，记录调用次数。"""

    def __init__(self, videos=None, playlist=None):
        self.videos = {v["youtube_id"]: v for v in (videos or [])}
        self.playlist = playlist or []
        self.search_calls = 0

    def get_video(self, video_id):
        return self.videos.get(video_id)

    def get_durations(self, ids):
        return {i: self.videos[i]["duration"] for i in ids if i in self.videos}

    def search(self, query, max_results=10):
        self.search_calls += 1
        return list(self.videos.values())[:max_results]

    def get_playlist_items(self, playlist_id, *, max_pages=3):
        return list(self.playlist)


def yt_video(youtube_id, *, duration=300, title=None, channel="Chan"):
    return {
        "youtube_id": youtube_id,
        "title": title or f"title {youtube_id}",
        "description": "",
        "thumbnail": "",
        "channel": channel,
        "duration": duration,
    }


@pytest.fixture
def fake_youtube(app):
    fake = FakeYouTube()
    app.extensions["youtube_api"] = fake
    return fake


NOW = datetime(2024, 1, 5, 12, 0, 0)
