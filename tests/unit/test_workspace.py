"""Unit tests for Workspace (session lifecycle across project switches)"""
import json
import threading

import pytest

from domain.exceptions import ProjectError, ProjectNotFoundError
from domain.models import AssetKind, FrameRecord, QueueStatus
from domain.validators import QueuePolicyInput
from infrastructure.config_manager import ConfigManager
from services.workspace import Workspace


@pytest.fixture
def workspace(data_dir, fake_provider, no_sleep):
    workspace = Workspace(data_dir, fake_provider, sleep=no_sleep)
    workspace.open()
    yield workspace
    workspace.close()


def _seed_scene(state, clips=2):
    scene = state.add_scene("Chorus", what="dance", where="warehouse")
    for index in range(clips):
        state.add_clip(scene.id, title=f"Shot {index}")
    return scene


class TestOpen:

    @pytest.mark.unit
    def test_open_creates_first_project(self, workspace):
        projects = workspace.list_projects()

        assert len(projects) == 1
        assert workspace.active_project.id == projects[0].id
        assert workspace.state.project_id == projects[0].id
        assert workspace.state.assets_loaded is True
        assert workspace.state.queue is workspace.queue

    @pytest.mark.unit
    def test_open_migrates_legacy_layout(self, data_dir, fake_provider):
        with open(f"{data_dir}/reelcast-project.json", "w", encoding="utf-8") as f:
            json.dump({"global_style": "vhs"}, f)
        workspace = Workspace(data_dir, fake_provider)

        state = workspace.open()

        try:
            assert workspace.active_project.id == "default"
            assert state.global_style == "vhs"
        finally:
            workspace.close()

    @pytest.mark.unit
    def test_from_config(self, tmp_path, fake_provider):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"data_dir": str(tmp_path / "store"), "max_retries": 0}))

        workspace = Workspace.from_config(ConfigManager(str(path)), fake_provider)

        assert workspace.data_dir == str(tmp_path / "store")
        assert workspace.policy.max_retries == 0


class TestProjectSwitch:
    """Test teardown and reinitialisation on project changes"""

    @pytest.mark.unit
    def test_switch_reloads_state_and_queue(self, workspace):
        # Arrange
        old_state = workspace.state
        old_queue = workspace.queue
        _seed_scene(old_state)

        # Act
        project = workspace.create_and_switch("Second")

        # Assert
        assert workspace.state is not old_state
        assert workspace.queue is not old_queue
        assert old_state.closed
        assert workspace.state.project_id == project.id
        assert workspace.state.document.scenes == []

    @pytest.mark.unit
    def test_assets_are_isolated_between_projects(self, workspace):
        first_id = workspace.active_project.id
        clip = workspace.state.add_clip(_seed_scene(workspace.state, clips=0).id, title="Only")
        workspace.state.commit_frame(FrameRecord(id="f1", owner_id=clip.id, url="data:image/png;base64,AAAA"))

        workspace.create_and_switch("Second")
        assert workspace.state.frames == {}
        assert workspace.assets.get(AssetKind.FRAME, "f1") is None

        workspace.switch_project(first_id)
        assert "f1" in workspace.state.frames
        assert workspace.state.get_clip(clip.id).start_frame_id == "f1"

    @pytest.mark.unit
    def test_late_commit_after_switch_is_discarded(self, workspace):
        old_state = workspace.state

        workspace.create_and_switch("Second")

        assert old_state.commit_frame(FrameRecord(id="late", owner_id="c")) is False
        assert workspace.assets.get(AssetKind.FRAME, "late") is None

    @pytest.mark.unit
    def test_job_finishing_during_switch_stays_out_of_new_project(self, workspace, fake_provider):
        """A frame generated for the outgoing project never lands in the incoming one"""
        # Arrange
        clip = workspace.state.add_clip(_seed_scene(workspace.state, clips=0).id, title="Only")
        entered = threading.Event()
        release = threading.Event()

        def block():
            entered.set()
            release.wait(5)

        fake_provider.on_call = block
        old_state = workspace.state
        old_queue = workspace.queue
        old_queue.enqueue_frame(clip.id, "start")
        old_queue.start(background=True)
        assert entered.wait(5)

        # Act
        second = workspace.create_and_switch("Second")
        release.set()
        old_queue.wait(timeout=5)

        # Assert
        assert workspace.state.project_id == second.id
        assert workspace.assets.get_all(AssetKind.FRAME) == []
        assert workspace.state.frames == {}
        assert old_state.closed is True
        assert old_state.frames == {}

    @pytest.mark.unit
    def test_session_is_closed_before_active_project_changes(self, workspace):
        first_id = workspace.active_project.id
        old_state = workspace.state
        seen = []
        teardown = workspace.registry.before_switch

        def record_then_teardown(outgoing_id):
            seen.append((outgoing_id, workspace.registry.get_active_project_id()))
            teardown(outgoing_id)
            seen.append(old_state.closed)

        workspace.registry.before_switch = record_then_teardown

        workspace.create_and_switch("Second")

        assert seen == [(first_id, first_id), True]

    @pytest.mark.unit
    def test_reload_reopens_active_project(self, workspace):
        active_id = workspace.active_project.id
        old_state = workspace.state
        clip = workspace.state.add_clip(_seed_scene(workspace.state, clips=0).id, title="Only")
        workspace.state.commit_frame(FrameRecord(id="f1", owner_id=clip.id, url="data:image/png;base64,AAAA"))

        state = workspace.reload()

        assert state is workspace.state
        assert old_state.closed is True
        assert state.project_id == active_id == workspace.registry.get_active_project_id()
        assert "f1" in state.frames
        assert state.commit_frame(FrameRecord(id="f2", owner_id=clip.id, url="data:image/png;base64,AAAA")) is True
        assert workspace.assets.get(AssetKind.FRAME, "f2") is not None

    @pytest.mark.unit
    def test_switch_to_unknown_project(self, workspace):
        state = workspace.state

        with pytest.raises(ProjectNotFoundError):
            workspace.switch_project("missing")

        assert workspace.state is state

    @pytest.mark.unit
    def test_delete_active_project_reloads_survivor(self, workspace):
        first_id = workspace.active_project.id
        second = workspace.create_and_switch("Second")

        active = workspace.delete_project(second.id)

        assert active == first_id
        assert workspace.state.project_id == first_id
        assert [p.id for p in workspace.list_projects()] == [first_id]


class TestGenerateMissing:

    @pytest.mark.unit
    def test_generates_frames_then_videos(self, workspace, fake_provider):
        scene = _seed_scene(workspace.state)

        frames = workspace.generate_missing(scene.id)

        assert len(frames) == 4
        assert workspace.queue.counts()["complete"] == 4
        assert len(fake_provider.frame_calls) == 4

        videos = workspace.generate_missing(scene.id, mode="videos")

        assert len(videos) == 2
        assert all(item.status == QueueStatus.PENDING for item in videos)
        assert len(fake_provider.video_calls) == 2
        for clip in workspace.state.clips_for_scene(scene.id):
            assert workspace.state.has_complete_video(clip.id)
            assert clip.video_id is not None

    @pytest.mark.unit
    def test_nothing_missing(self, workspace, fake_provider):
        scene = _seed_scene(workspace.state, clips=1)
        workspace.generate_missing(scene.id)
        workspace.generate_missing(scene.id)

        assert workspace.generate_missing(scene.id) == []

    @pytest.mark.unit
    def test_enqueue_without_start(self, workspace, fake_provider):
        scene = _seed_scene(workspace.state, clips=1)

        added = workspace.generate_missing(scene.id, mode="frames", start=False)

        assert len(added) == 2
        assert fake_provider.frame_calls == []
        assert workspace.state.is_clip_queued(added[0].clip_id)

    @pytest.mark.unit
    def test_requires_open_session(self, data_dir, fake_provider):
        workspace = Workspace(data_dir, fake_provider, policy=QueuePolicyInput(inter_job_delay=0))

        with pytest.raises(ProjectError):
            workspace.generate_missing()
