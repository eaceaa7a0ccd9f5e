import pytest
from sqlalchemy.exc import OperationalError

from app import create_app
from conftest import SqliteConfig, make_user, make_video, yt_video
from models import Note, PlaylistVideo, User, UserAnalytics, Video, VideoSearch, WatchHistory, db
from youtube import QuotaExceededError, YouTubeAPIError


# ---- auth ----


def test_register_login_logout(client, app):
    resp = client.post("/register", json={"account": "carol", "password": "pw123456"})
    assert resp.status_code == 201
    assert resp.get_json()["user"]["username"] == "user_arol"
    assert User.query.filter_by(account="carol").one().password != "pw123456"

    assert client.post("/register", json={"account": "carol", "password": "x"}).status_code == 409
    assert client.post("/login", json={"account": "carol", "password": "wrong"}).status_code == 401

    resp = client.post("/login", data={"account": "carol", "password": "pw123456"})
    assert resp.status_code == 200
    assert client.get("/api/user/profile").get_json()["account"] == "carol"

    assert client.post("/logout").status_code == 200
    assert client.get("/api/user/profile").status_code == 401


def test_unhashed_password_row_cannot_log_in(client, app):
    db.session.add(User(account="legacy", username="legacy", password="plain"))
    db.session.commit()
    assert client.post("/login", json={"account": "legacy", "password": "plain"}).status_code == 401
    assert User.query.filter_by(account="legacy").one().password == "plain"


def test_login_rejects_non_object_json(client):
    resp = client.post("/login", json=["alice", "secret123"])
    assert resp.status_code == 400
    assert resp.get_json()["code"] == 400


def test_api_requires_login(client):
    resp = client.get("/api/analytics")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == 401


# ---- history ----


def test_post_history_records_watch_time(logged_in, user):
    video = make_video(user, duration=200)
    resp = logged_in.post("/api/history", json={"video_id": video.id, "watch_time": 100})
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["video_id"] == video.id
    assert body["watch_time"] == 100

    resp = logged_in.post("/api/history", json={"video_id": video.id, "watch_time": 95})
    assert resp.get_json()["id"] == body["id"]
    assert resp.get_json()["watch_time"] == 195

    refreshed = logged_in.get(f"/api/videos/{video.id}").get_json()
    assert refreshed["progress"] == 98
    assert refreshed["completed"] is True

    stats = logged_in.get("/api/analytics").get_json()
    assert stats["total_watch_time"] == 195
    assert stats["videos_completed"] == 1
    assert stats["current_streak"] == 1


@pytest.mark.parametrize("watch_time", [0, -3, "60", None, True])
def test_post_history_rejects_bad_watch_time(logged_in, user, watch_time):
    video = make_video(user)
    resp = logged_in.post("/api/history", json={"video_id": video.id, "watch_time": watch_time})
    assert resp.status_code == 400
    assert WatchHistory.query.count() == 0
    assert UserAnalytics.query.count() == 0


@pytest.mark.parametrize("body", [[1, 30], 30, "watch", None])
def test_post_history_rejects_non_object_body(logged_in, user, body):
    make_video(user)
    resp = logged_in.post("/api/history", json=body)
    assert resp.status_code == 400
    assert WatchHistory.query.count() == 0


def test_post_history_storage_failure_returns_500(logged_in, user, monkeypatch):
    video = make_video(user, duration=100)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("lost connection"))

    monkeypatch.setattr(db.session(), "commit", broken_commit)
    resp = logged_in.post("/api/history", json={"video_id": video.id, "watch_time": 99})
    monkeypatch.undo()

    assert resp.status_code == 500
    assert resp.get_json()["code"] == 500
    assert WatchHistory.query.count() == 0
    assert UserAnalytics.query.count() == 0
    assert video.completed is False


def test_post_history_unknown_or_foreign_video(logged_in, user):
    other = make_user("bob")
    foreign = make_video(other, "abcdefghijk")
    assert logged_in.post("/api/history", json={"video_id": 999, "watch_time": 10}).status_code == 404
    assert logged_in.post("/api/history", json={"video_id": foreign.id, "watch_time": 10}).status_code == 404


def test_list_delete_and_clear_history(logged_in, user):
    video = make_video(user)
    logged_in.post("/api/history", json={"video_id": video.id, "watch_time": 10})
    history = logged_in.get("/api/history").get_json()
    assert len(history) == 1
    assert history[0]["video"]["youtube_id"] == video.youtube_id

    other = make_user("bob")
    foreign_entry = WatchHistory(user_id=other.id, video_id=make_video(other, "abcdefghijk").id, watch_time=5)
    db.session.add(foreign_entry)
    db.session.commit()

    assert logged_in.delete(f"/api/history/{foreign_entry.id}").status_code == 403
    assert logged_in.delete("/api/history/12345").status_code == 404
    assert logged_in.delete(f"/api/history/{history[0]['id']}").status_code == 200

    logged_in.post("/api/history", json={"video_id": video.id, "watch_time": 10})
    resp = logged_in.delete("/api/history")
    assert resp.get_json()["count"] == 1
    assert WatchHistory.query.filter_by(user_id=user.id).count() == 0


# ---- videos ----


def test_save_video_and_restore_soft_deleted(logged_in, user):
    payload = {"youtube_id": "dQw4w9WgXcQ", "title": "Intro", "duration": 300}
    resp = logged_in.post("/api/videos", json=payload)
    assert resp.status_code == 201
    video_id = resp.get_json()["id"]

    assert logged_in.delete("/api/videos").get_json()["count"] == 1
    assert logged_in.get("/api/videos").get_json() == []

    resp = logged_in.post("/api/videos", json=payload)
    assert resp.status_code == 200
    assert resp.get_json()["id"] == video_id
    assert resp.get_json()["in_library"] is True

    assert logged_in.post("/api/videos", json={"title": "no id"}).status_code == 400


def test_add_video_by_url(logged_in, fake_youtube):
    fake_youtube.videos["dQw4w9WgXcQ"] = yt_video("dQw4w9WgXcQ", duration=212, title="Song")
    resp = logged_in.post("/api/videos/url", json={"url": "https://youtu.be/dQw4w9WgXcQ"})
    assert resp.status_code == 201
    assert resp.get_json()["duration"] == 212
    assert resp.get_json()["title"] == "Song"

    assert logged_in.post("/api/videos/url", json={"url": "https://youtu.be/dQw4w9WgXcQ"}).status_code == 400
    assert logged_in.post("/api/videos/url", json={"url": "https://example.com"}).status_code == 400
    assert logged_in.post("/api/videos/url", json={"url": "https://youtu.be/zzzzzzzzzzz"}).status_code == 404


def test_patch_video_does_not_touch_analytics(logged_in, user):
    video = make_video(user)
    resp = logged_in.patch(f"/api/videos/{video.id}", json={"progress": 150, "completed": True})
    assert resp.status_code == 200
    assert resp.get_json()["progress"] == 100
    assert resp.get_json()["completed"] is True
    assert UserAnalytics.query.count() == 0

    assert logged_in.patch(f"/api/videos/{video.id}", json={"completed": "yes"}).status_code == 400


def test_delete_video_cascades(logged_in, user):
    video = make_video(user)
    logged_in.post("/api/history", json={"video_id": video.id, "watch_time": 10})
    logged_in.post("/api/notes", json={"video_id": video.id, "content": "hi", "timestamp": 3})
    playlist_id = logged_in.post("/api/playlists", json={"name": "p"}).get_json()["id"]
    logged_in.post(f"/api/playlists/{playlist_id}/videos", json={"video_id": video.id})

    video_id = video.id
    assert logged_in.delete(f"/api/videos/{video_id}").status_code == 200
    assert db.session.get(Video, video_id) is None
    assert WatchHistory.query.count() == 0
    assert Note.query.count() == 0
    assert PlaylistVideo.query.count() == 0


def test_other_users_video_is_hidden(logged_in):
    other = make_user("bob")
    foreign = make_video(other, "abcdefghijk")
    assert logged_in.get(f"/api/videos/{foreign.id}").status_code == 404
    assert logged_in.delete(f"/api/videos/{foreign.id}").status_code == 404


def test_update_missing_durations(logged_in, user, fake_youtube):
    make_video(user, "aaaaaaaaaaa", duration=0)
    make_video(user, "bbbbbbbbbbb", duration=0)
    fake_youtube.videos["aaaaaaaaaaa"] = yt_video("aaaaaaaaaaa", duration=90)
    resp = logged_in.post("/api/videos/update-durations")
    assert resp.get_json()["updated"] == 1
    assert resp.get_json()["total"] == 2
    assert Video.query.filter_by(youtube_id="aaaaaaaaaaa").one().duration == 90


# ---- notes ----


def test_note_crud(logged_in, user):
    video = make_video(user)
    resp = logged_in.post("/api/notes", json={"video_id": video.id, "content": " key idea ", "timestamp": 42})
    assert resp.status_code == 201
    note = resp.get_json()
    assert note["content"] == "key idea"
    assert note["video"]["title"] == video.title

    assert logged_in.post("/api/notes", json={"video_id": video.id, "content": "x", "timestamp": -1}).status_code == 400
    assert logged_in.post("/api/notes", json={"video_id": video.id, "content": "  ", "timestamp": 1}).status_code == 400
    assert logged_in.post("/api/notes", json={"video_id": 999, "content": "x", "timestamp": 1}).status_code == 404

    assert len(logged_in.get(f"/api/notes?video_id={video.id}").get_json()) == 1
    assert logged_in.get("/api/notes?video_id=999").get_json() == []

    resp = logged_in.put(f"/api/notes/{note['id']}", json={"content": "updated"})
    assert resp.get_json()["content"] == "updated"
    assert logged_in.delete(f"/api/notes/{note['id']}").status_code == 200
    assert logged_in.delete(f"/api/notes/{note['id']}").status_code == 404


# ---- playlists ----


def test_playlist_crud_and_stats(logged_in, user):
    v1 = make_video(user, "aaaaaaaaaaa", duration=100, completed=True)
    v2 = make_video(user, "bbbbbbbbbbb", duration=50)

    resp = logged_in.post("/api/playlists", json={"name": "Calculus", "description": "ch1"})
    assert resp.status_code == 201
    pid = resp.get_json()["id"]
    assert logged_in.post("/api/playlists", json={"name": ""}).status_code == 400

    assert logged_in.post(f"/api/playlists/{pid}/videos", json={"video_id": v1.id}).status_code == 201
    assert logged_in.post(f"/api/playlists/{pid}/videos", json={"video_id": v2.id}).status_code == 201
    assert logged_in.post(f"/api/playlists/{pid}/videos", json={"video_id": v2.id}).status_code == 409

    detail = logged_in.get(f"/api/playlists/{pid}").get_json()
    assert detail["total_videos"] == 2
    assert detail["completed_videos"] == 1
    assert detail["total_duration"] == 150
    assert [v["position"] for v in detail["videos"]] == [0, 1]

    listing = logged_in.get("/api/playlists").get_json()
    assert listing[0]["total_videos"] == 2
    assert "videos" not in listing[0]

    assert logged_in.put(f"/api/playlists/{pid}", json={"name": "Calc I"}).get_json()["name"] == "Calc I"
    assert logged_in.delete(f"/api/playlists/{pid}/videos/{v1.id}").status_code == 200
    assert logged_in.delete(f"/api/playlists/{pid}/videos/{v1.id}").status_code == 404
    assert logged_in.delete(f"/api/playlists/{pid}").status_code == 200
    assert Video.query.count() == 2


def test_import_playlist(logged_in, user, fake_youtube):
    existing = make_video(user, "aaaaaaaaaaa", duration=0, in_library=False)
    fake_youtube.videos = {
        "aaaaaaaaaaa": yt_video("aaaaaaaaaaa", duration=100),
        "bbbbbbbbbbb": yt_video("bbbbbbbbbbb", duration=200),
    }
    fake_youtube.playlist = [
        yt_video("aaaaaaaaaaa"),
        yt_video("bbbbbbbbbbb"),
        yt_video("bbbbbbbbbbb"),
    ]

    resp = logged_in.post(
        "/api/playlists/import",
        json={"url": "https://www.youtube.com/playlist?list=PLtest", "name": "Imported"},
    )
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["name"] == "Imported"
    assert body["total_videos"] == 2
    assert body["total_duration"] == 300
    assert existing.in_library is True
    assert Video.query.filter_by(user_id=user.id).count() == 2

    assert logged_in.post("/api/playlists/import", json={"url": "https://youtu.be/x"}).status_code == 400


# ---- search ----


def test_search_uses_cache(logged_in, fake_youtube):
    fake_youtube.videos = {"aaaaaaaaaaa": yt_video("aaaaaaaaaaa")}
    first = logged_in.get("/api/youtube/search?q=Calculus").get_json()
    second = logged_in.get("/api/youtube/search?q=calculus").get_json()
    assert first["cached"] is False
    assert second["cached"] is True
    assert second["results"] == first["results"]
    assert fake_youtube.search_calls == 1
    assert logged_in.get("/api/youtube/search?q=").status_code == 400
    assert logged_in.delete("/api/youtube/search/cache").get_json()["count"] == 0


def test_search_errors_map_to_status(logged_in, fake_youtube, monkeypatch):
    def quota(query, max_results=10):
        raise QuotaExceededError("quota")

    def broken(query, max_results=10):
        raise YouTubeAPIError("boom")

    monkeypatch.setattr(fake_youtube, "search", quota)
    assert logged_in.get("/api/youtube/search?q=a").status_code == 503
    monkeypatch.setattr(fake_youtube, "search", broken)
    assert logged_in.get("/api/youtube/search?q=b").status_code == 500
    assert VideoSearch.query.count() == 0


class LimitedConfig(SqliteConfig):
    RATELIMIT_ENABLED = True
    SEARCH_RATE_LIMIT = "3 per minute"


def test_search_is_rate_limited():
    app = create_app(LimitedConfig)
    with app.app_context():
        db.create_all()
        make_user()
        app.extensions["youtube_api"] = _StaticSearch()
        client = app.test_client()
        client.post("/login", json={"account": "alice", "password": "secret123"})
        codes = [client.get(f"/api/youtube/search?q=q{i}").status_code for i in range(4)]
        db.session.remove()
        db.drop_all()
    assert codes == [200, 200, 200, 429]


class _StaticSearch:
    def search(self, query, max_results=10):
        return []


# ---- user ----


def test_profile_update(logged_in):
    resp = logged_in.patch("/api/user/profile", json={"username": "Alice L."})
    assert resp.get_json()["username"] == "Alice L."
    assert logged_in.patch("/api/user/profile", json={"username": ""}).status_code == 400
    assert logged_in.patch("/api/user/profile", json={"username": "x" * 101}).status_code == 400


def test_preferences_default_and_update(logged_in):
    prefs = logged_in.get("/api/user/preferences").get_json()
    assert prefs["daily_reminders"] is True
    assert prefs["weekly_reports"] is True
    assert prefs["new_features"] is False

    resp = logged_in.patch("/api/user/preferences", json={"new_features": True, "daily_reminders": "no"})
    assert resp.get_json()["new_features"] is True
    assert resp.get_json()["daily_reminders"] is True
    assert logged_in.patch("/api/user/preferences", json={"weekly_reports": "off"}).status_code == 400
    assert logged_in.patch("/api/user/preferences", json=[True]).status_code == 400
