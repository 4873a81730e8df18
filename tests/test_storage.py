"""
Tests for the SQLite video store
"""

import pytest

from storage import VideoStore


@pytest.fixture
def store(tmp_path):
    return VideoStore(tmp_path / "db" / "codestream.db")


def save_video(store, name, kind="video", data=b"\x00\x01video"):
    return store.save(kind, {
        "filename": name,
        "original_filename": "hello.py",
        "language": "python",
        "duration": 4.5,
        "mime_type": "video/mp4",
        "theme": "Ocean",
    }, data)


class TestVideoStore:

    def test_save_and_get(self, store):
        record_id = save_video(store, "code-stream-hello.mp4")
        record = store.get(record_id)
        assert record.kind == "video"
        assert record.filename == "code-stream-hello.mp4"
        assert record.duration == 4.5
        assert record.mime_type == "video/mp4"
        assert record.data == b"\x00\x01video"
        assert record.size_bytes == len(b"\x00\x01video")
        # Unknown keys are kept as metadata
        assert record.metadata == {"theme": "Ocean"}

    def test_list_is_newest_first_and_per_kind(self, store):
        first = save_video(store, "a.mp4")
        second = save_video(store, "b.mp4")
        save_video(store, "c.mp4", kind="shorts")

        records = store.list_by_kind("video")
        assert [r.id for r in records] == [second, first]
        assert all(r.data is None for r in records)
        assert [r.filename for r in store.list_by_kind("shorts")] == ["c.mp4"]
        assert store.list_by_kind("fullclip") == []

    def test_list_with_data(self, store):
        save_video(store, "a.mp4", data=b"abc")
        (record,) = store.list_by_kind("video", include_data=True)
        assert record.data == b"abc"

    def test_delete(self, store):
        record_id = save_video(store, "a.mp4")
        assert store.delete(record_id) is True
        assert store.get(record_id) is None
        assert store.delete(record_id) is False

    def test_clear_kind_leaves_other_kinds(self, store):
        save_video(store, "a.mp4")
        save_video(store, "b.mp4")
        avatar_id = store.save("avatar", {"mime_type": "image/png"}, b"png")
        assert store.clear_kind("video") == 2
        assert store.list_by_kind("video") == []
        assert store.get(avatar_id) is not None

    def test_stats(self, store):
        save_video(store, "a.mp4", data=b"12345")
        save_video(store, "b.mp4", kind="fullclip", data=b"123")
        stats = store.stats()
        assert stats["video"] == 1
        assert stats["fullclip"] == 1
        assert stats["shorts"] == 0
        assert stats["total_bytes"] == 8

    def test_default_filename(self, store):
        record_id = store.save("avatar", {"mime_type": "image/png"}, b"png")
        assert store.get(record_id).filename.startswith("avatar-")

    def test_unknown_kind(self, store):
        with pytest.raises(ValueError):
            store.save("podcast", {}, b"")
        with pytest.raises(ValueError):
            store.list_by_kind("podcast")

    def test_to_dict_omits_data_by_default(self, store):
        record = store.get(save_video(store, "a.mp4"))
        assert "data" not in record.to_dict()
        assert record.to_dict(include_data=True)["data"] == record.data

    def test_reopen_keeps_records(self, store):
        record_id = save_video(store, "a.mp4")
        reopened = VideoStore(store.db_path)
        assert reopened.get(record_id).filename == "a.mp4"
