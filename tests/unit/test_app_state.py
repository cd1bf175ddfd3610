"""Unit tests for ApplicationState"""
from unittest.mock import Mock

import pytest

from domain.exceptions import NotFoundError, StorageError
from domain.models import (
    AssetKind,
    AudioTrackRecord,
    ElementImageRecord,
    FrameRecord,
    ReferenceImageRecord,
    VideoRecord,
)
from infrastructure.project_state_store import ProjectStateStore
from services.app_state import ApplicationState


def _frame(record_id, clip_id="clip-1", frame_type="start", created_at="2026-01-01T00:00:00+00:00"):
    return FrameRecord(id=record_id, owner_id=clip_id, url="data:image/png;base64,AAAA",
                       frame_type=frame_type, created_at=created_at)


class TestDocument:
    """Test scene/clip document handling"""

    @pytest.mark.unit
    def test_document_is_persisted_and_reloaded(self, app_state, data_dir, asset_store, active_project):
        """A new session for the same project should see the saved scene graph"""
        app_state.set_global_style("pastel watercolor")

        reopened = ApplicationState(active_project["id"], asset_store, ProjectStateStore(data_dir))

        assert reopened.get_scene("scene-1").who == ["Luna"]
        assert [clip.id for clip in reopened.clips_for_scene("scene-1")] == ["clip-1", "clip-2", "clip-3"]
        assert reopened.global_style == "pastel watercolor"

    @pytest.mark.unit
    def test_add_clip_assigns_order(self, app_state):
        clip = app_state.add_clip("scene-1", title="Clip 4")

        assert clip.order == 3
        assert clip.id.startswith("clip-")

    @pytest.mark.unit
    def test_add_clip_unknown_scene(self, app_state):
        with pytest.raises(NotFoundError):
            app_state.add_clip("missing-scene")

    @pytest.mark.unit
    def test_update_clip(self, app_state):
        clip = app_state.update_clip("clip-2", title="Renamed", end_time=4.0)

        assert clip.title == "Renamed"
        assert app_state.get_clip("clip-2").end_time == 4.0
        assert app_state.update_clip("ghost", title="x") is None

    @pytest.mark.unit
    def test_update_clip_rejects_unknown_field(self, app_state):
        with pytest.raises(AttributeError):
            app_state.update_clip("clip-1", colour="red")

    @pytest.mark.unit
    def test_delete_clip_removes_its_assets(self, app_state, asset_store):
        """Frames and videos owned by the clip go with it"""
        app_state.commit_frame(_frame("f1"))
        app_state.commit_video(VideoRecord(id="v1", owner_id="clip-1", status="complete"))
        app_state.commit_frame(_frame("f2", clip_id="clip-2"))

        assert app_state.delete_clip("clip-1") is True

        assert app_state.get_clip("clip-1") is None
        assert "f1" not in app_state.frames
        assert "v1" not in app_state.videos
        assert asset_store.get_by_owner(AssetKind.FRAME, "clip-1") == []
        assert asset_store.get_by_owner(AssetKind.VIDEO, "clip-1") == []
        assert asset_store.get(AssetKind.FRAME, "f2") is not None
        assert app_state.delete_clip("clip-1") is False


class TestRehydration:
    """Test loading stored assets into the in-memory index"""

    @pytest.mark.unit
    def test_rehydrate_loads_every_kind(self, data_dir, asset_store, active_project):
        # Arrange
        asset_store.put(_frame("f1"))
        asset_store.put(VideoRecord(id="v1", owner_id="clip-1"))
        asset_store.put(ReferenceImageRecord(id="r1"))
        asset_store.put(AudioTrackRecord(id="a1"))
        asset_store.put(ElementImageRecord(id="e1", owner_id="el-1"))
        state = ApplicationState(active_project["id"], asset_store, ProjectStateStore(data_dir))

        # Act
        loaded = state.rehydrate_assets()

        # Assert
        assert loaded is True
        assert state.assets_loaded is True
        assert set(state.frames) == {"f1"}
        assert set(state.videos) == {"v1"}
        assert set(state.references) == {"r1"}
        assert set(state.audio_tracks) == {"a1"}
        assert set(state.element_images) == {"e1"}

    @pytest.mark.unit
    def test_rehydrate_keeps_newer_in_memory_records(self, data_dir, asset_store, active_project):
        """Stored copies must not overwrite records already held in memory"""
        asset_store.put(FrameRecord(id="f1", owner_id="clip-1", url="stored"))
        state = ApplicationState(active_project["id"], asset_store, ProjectStateStore(data_dir))
        state.frames["f1"] = FrameRecord(id="f1", owner_id="clip-1", url="fresh")

        state.rehydrate_assets()

        assert state.frames["f1"].url == "fresh"

    @pytest.mark.unit
    def test_failed_rehydration_leaves_flag_unset(self, data_dir):
        assets = Mock()
        assets.get_all.side_effect = StorageError("disk gone")
        state = ApplicationState("p", assets, ProjectStateStore(data_dir))

        assert state.rehydrate_assets() is False
        assert state.assets_loaded is False


class TestCommits:
    """Test the completion bridge into storage"""

    @pytest.mark.unit
    def test_commit_frame_updates_pointer_and_store(self, app_state, asset_store):
        frame = _frame("f-end", frame_type="end")

        assert app_state.commit_frame(frame) is True

        assert app_state.get_clip("clip-1").end_frame_id == "f-end"
        assert app_state.get_clip("clip-1").start_frame_id is None
        assert asset_store.get(AssetKind.FRAME, "f-end") == frame

    @pytest.mark.unit
    def test_commit_survives_storage_failure(self, app_state):
        """In-memory state stays authoritative if the write fails"""
        app_state.assets = Mock(wraps=app_state.assets)
        app_state.assets.put.side_effect = StorageError("quota exceeded")

        assert app_state.commit_frame(_frame("f1")) is True

        assert "f1" in app_state.frames
        assert app_state.get_clip("clip-1").start_frame_id == "f1"

    @pytest.mark.unit
    def test_commit_after_close_is_discarded(self, app_state, asset_store):
        app_state.close()

        assert app_state.commit_frame(_frame("late")) is False
        assert app_state.commit_video(VideoRecord(id="late-v", owner_id="clip-1")) is False
        assert asset_store.get(AssetKind.FRAME, "late") is None
        assert app_state.save() is False

    @pytest.mark.unit
    def test_commit_refused_once_another_project_is_active(self, app_state, asset_store, active_project):
        """A session keeps writing to its own project or not at all"""
        # Arrange
        active_project["id"] = "project-b"

        # Act
        committed = app_state.commit_frame(_frame("late"))
        added = app_state.add_audio_track(AudioTrackRecord(id="a-late"))

        # Assert
        assert committed is False
        assert added is None
        assert "late" not in app_state.frames
        assert app_state.get_clip("clip-1").start_frame_id is None
        assert asset_store.get_all(AssetKind.FRAME) == []
        assert asset_store.get_all(AssetKind.AUDIO) == []
        active_project["id"] = "project-a"
        assert asset_store.get(AssetKind.FRAME, "late") is None

    @pytest.mark.unit
    def test_commit_for_missing_clip_stores_record(self, app_state, asset_store):
        assert app_state.commit_video(VideoRecord(id="v-orphan", owner_id="gone")) is True
        assert asset_store.get(AssetKind.VIDEO, "v-orphan") is not None

    @pytest.mark.unit
    def test_update_video_status(self, app_state, asset_store):
        app_state.commit_video(VideoRecord(id="v1", owner_id="clip-1", status="generating"))

        assert app_state.update_video_status("v1", "failed", "blocked by safety filter") is True

        assert app_state.videos["v1"].status == "failed"
        assert asset_store.get(AssetKind.VIDEO, "v1").error == "blocked by safety filter"
        assert app_state.update_video_status("ghost", "complete") is False

    @pytest.mark.unit
    def test_begin_video_stores_generating_record_without_linking(self, app_state, asset_store):
        assert app_state.begin_video(VideoRecord(id="v1", owner_id="clip-1")) is True
        app_state.update_video_status("v1", "failed", "busy")

        assert app_state.begin_video(VideoRecord(id="v1", owner_id="clip-1")) is True

        stored = asset_store.get(AssetKind.VIDEO, "v1")
        assert (stored.status, stored.error) == ("generating", None)
        assert app_state.get_clip("clip-1").video_id is None


class TestFrameLookup:

    @pytest.mark.unit
    def test_index_queries_by_clip(self, app_state):
        app_state.commit_frame(_frame("f1"))
        app_state.commit_frame(_frame("f2", clip_id="clip-2"))
        app_state.commit_video(VideoRecord(id="v1", owner_id="clip-2"))

        assert [f.id for f in app_state.frames_for_clip("clip-1")] == ["f1"]
        assert app_state.videos_for_clip("clip-1") == []
        assert [v.id for v in app_state.videos_for_clip("clip-2")] == ["v1"]

    @pytest.mark.unit
    def test_pointer_wins_over_newest(self, app_state):
        app_state.commit_frame(_frame("old", created_at="2026-01-01T00:00:00+00:00"))
        app_state.frames["new"] = _frame("new", created_at="2026-02-01T00:00:00+00:00")

        assert app_state.start_frame_for("clip-1").id == "old"

    @pytest.mark.unit
    def test_falls_back_to_newest_frame(self, app_state):
        app_state.frames["a"] = _frame("a", created_at="2026-01-01T00:00:00+00:00")
        app_state.frames["b"] = _frame("b", created_at="2026-03-01T00:00:00+00:00")

        assert app_state.start_frame_for("clip-1").id == "b"
        assert app_state.end_frame_for("clip-1") is None


class TestUploads:

    @pytest.mark.unit
    def test_add_reference_and_audio(self, app_state, asset_store):
        app_state.add_reference(ReferenceImageRecord(id="r1", name="palette"))
        app_state.add_audio_track(AudioTrackRecord(id="a1", name="score", duration=30.0))

        assert "r1" in app_state.references
        assert asset_store.get(AssetKind.AUDIO, "a1").duration == 30.0

    @pytest.mark.unit
    def test_element_image_requires_known_element(self, app_state):
        with pytest.raises(NotFoundError):
            app_state.add_element_image(ElementImageRecord(id="e1", owner_id="nope"))


class TestMissingGenerationRequests:
    """Test batch request planning"""

    @pytest.mark.unit
    def test_empty_scene_needs_frames_only(self, app_state):
        requests = app_state.missing_generation_requests("scene-1")

        assert {"kind": "frame", "clip_id": "clip-1", "frame_type": "start"} in requests
        assert {"kind": "frame", "clip_id": "clip-3", "frame_type": "end"} in requests
        assert not any(r["kind"] == "video" for r in requests)
        assert len(requests) == 6

    @pytest.mark.unit
    def test_clip_with_start_frame_needs_video(self, app_state):
        app_state.commit_frame(_frame("f1"))

        requests = app_state.missing_generation_requests(mode="videos")

        assert requests == [{"kind": "video", "clip_id": "clip-1"}]

    @pytest.mark.unit
    def test_complete_clip_needs_nothing(self, app_state):
        app_state.commit_frame(_frame("f1"))
        app_state.commit_frame(_frame("f2", frame_type="end"))
        app_state.commit_video(VideoRecord(id="v1", owner_id="clip-1", status="complete"))

        requests = app_state.missing_generation_requests("scene-1")

        assert all(r["clip_id"] != "clip-1" for r in requests)

    @pytest.mark.unit
    def test_unknown_mode(self, app_state):
        with pytest.raises(ValueError):
            app_state.missing_generation_requests(mode="audio")
