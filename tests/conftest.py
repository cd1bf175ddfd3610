"""Pytest configuration and shared fixtures"""
import io
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Keep test runs from writing into ~/.reelcast/logs
os.environ.setdefault("REELCAST_LOG_DIR", tempfile.mkdtemp(prefix="reelcast-test-logs-"))

from domain.models import FrameRecord, VideoRecord  # noqa: E402
from infrastructure.asset_store import AssetStore  # noqa: E402
from infrastructure.project_state_store import ProjectStateStore  # noqa: E402
from services.app_state import ApplicationState  # noqa: E402
from utils.data_url import build_data_url  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settings_store(tmp_path, monkeypatch):
    """Reset the SettingsStore singleton and point it at a temp database.

    This ensures tests don't affect each other via the singleton.
    """
    import infrastructure.settings_store as ss

    monkeypatch.setattr(ss, "_default_db_path", lambda: str(tmp_path / "settings.db"))
    ss._settings_store = None
    yield
    ss._settings_store = None


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def data_dir(tmp_path):
    """Empty data directory"""
    path = tmp_path / "data"
    path.mkdir()
    return str(path)


@pytest.fixture
def active_project():
    """Mutable holder for the active project id seen by the AssetStore"""
    return {"id": "project-a"}


@pytest.fixture
def asset_store(data_dir, active_project):
    store = AssetStore(data_dir, lambda: active_project["id"])
    yield store
    store.close()


@pytest.fixture
def app_state(data_dir, asset_store, active_project):
    """Application state with one scene and three clips"""
    state = ApplicationState(active_project["id"], asset_store, ProjectStateStore(data_dir))
    scene = state.add_scene(
        "Opening",
        id="scene-1",
        who=["Luna"],
        what="walks through neon rain",
        where="city street",
        when="night",
        why="melancholic",
    )
    for index in range(1, 4):
        state.add_clip(scene.id, title=f"Clip {index}", clip_id=f"clip-{index}")
    state.rehydrate_assets()
    return state


# ============================================================================
# Media Fixtures
# ============================================================================

@pytest.fixture
def png_bytes():
    """Small valid PNG image"""
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (64, 36), color=(200, 40, 90)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_data_url(png_bytes):
    return build_data_url(png_bytes, "image/png")


@pytest.fixture
def create_test_image(tmp_path):
    """Factory to create test PNG images"""
    def _create(filename, width=1024, height=576):
        from PIL import Image

        img_path = tmp_path / filename
        Image.new("RGB", (width, height), color=(10, 20, 30)).save(img_path)
        return img_path

    return _create


# ============================================================================
# Provider Fixtures
# ============================================================================

class FakeProvider:
    """In-process stand-in for GeminiClient.

    ``fail_with`` is raised on every call (or popped per call when it is a list);
    ``on_call`` runs inside each provider call, e.g. to pause the queue mid-flight.
    """

    def __init__(self):
        self.frame_calls: List[dict] = []
        self.video_calls: List[dict] = []
        self.fail_with = None
        self.on_call: Optional[Callable[[], None]] = None

    def _maybe_fail(self):
        if self.on_call is not None:
            self.on_call()
        error = self.fail_with
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error

    def generate_frame(self, prompt, clip_id, frame_type, scene_context, global_style, model,
                       reference_images=None):
        self.frame_calls.append({
            "prompt": prompt,
            "clip_id": clip_id,
            "frame_type": frame_type,
            "scene_context": scene_context,
            "model": model,
            "reference_images": list(reference_images or []),
        })
        self._maybe_fail()
        return FrameRecord(
            id=f"frame-{clip_id}-{frame_type}-{len(self.frame_calls)}",
            owner_id=clip_id,
            url=build_data_url(b"frame-bytes", "image/png"),
            prompt=prompt,
            model=model,
            frame_type=frame_type,
        )

    def generate_video(self, clip_id, start_frame_uri, end_frame_uri, motion_prompt, scene_context,
                       model, global_style=""):
        self.video_calls.append({
            "clip_id": clip_id,
            "start_frame_uri": start_frame_uri,
            "end_frame_uri": end_frame_uri,
            "motion_prompt": motion_prompt,
            "model": model,
        })
        self._maybe_fail()
        return VideoRecord(
            id=f"video-{clip_id}-{len(self.video_calls)}",
            owner_id=clip_id,
            url=build_data_url(b"video-bytes", "video/mp4"),
            duration=5.0,
            status="complete",
            motion_prompt=motion_prompt,
            model=model,
        )


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays"""
    delays = []

    def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
