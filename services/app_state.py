"""In-memory application state for one open project.

Holds the project document (scenes, clips, elements, preferences) and an index
of the project's assets mirrored from the AssetStore. Generation results are
committed here: the record is written to the AssetStore and the owning clip's
pointer is updated. Storage failures are logged and never undo the in-memory
result of the current session. Every store call is bound to this session's
project, so once another project is active the session's writes are refused
and its late results are discarded.
"""
import threading
import uuid
from typing import Dict, List, Optional

from domain.exceptions import NamespaceMismatchError, NotFoundError, StorageError
from domain.models import (
    AssetKind,
    AssetRecord,
    AudioTrackRecord,
    Clip,
    ElementImageRecord,
    FrameRecord,
    ProjectDocument,
    ReferenceImageRecord,
    Scene,
    VideoRecord,
    WorldElement,
)
from infrastructure.asset_store import AssetStore
from infrastructure.logger import get_logger
from infrastructure.project_state_store import ProjectStateStore

logger = get_logger(__name__)

BATCH_MODES = ("frames", "videos", "both")


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ApplicationState:
    """Working set of the active project."""

    def __init__(self, project_id: str, assets: AssetStore, state_store: ProjectStateStore):
        self.project_id = project_id
        self.assets = assets
        self.state_store = state_store
        self.state_store.configure(project_id)
        self.document = ProjectDocument.from_dict(self.state_store.load())

        self.frames: Dict[str, FrameRecord] = {}
        self.videos: Dict[str, VideoRecord] = {}
        self.references: Dict[str, ReferenceImageRecord] = {}
        self.audio_tracks: Dict[str, AudioTrackRecord] = {}
        self.element_images: Dict[str, ElementImageRecord] = {}

        self.assets_loaded = False
        self.queue = None
        self._closed = False
        self._lock = threading.RLock()

    def _index_for(self, kind: AssetKind) -> Dict[str, AssetRecord]:
        return {
            AssetKind.FRAME: self.frames,
            AssetKind.VIDEO: self.videos,
            AssetKind.REFERENCE: self.references,
            AssetKind.AUDIO: self.audio_tracks,
            AssetKind.ELEMENT_IMAGE: self.element_images,
        }[AssetKind(kind)]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def rehydrate_assets(self) -> bool:
        """Merge the stored assets of this project into the in-memory index.

        ``assets_loaded`` only becomes True if every kind could be read.
        """
        loaded: Dict[AssetKind, List[AssetRecord]] = {}
        try:
            for kind in AssetKind:
                loaded[kind] = self.assets.get_all(kind, self.project_id)
        except StorageError as exc:
            logger.warning(f"Asset rehydration failed for project {self.project_id}: {exc}")
            return False

        with self._lock:
            for kind, records in loaded.items():
                index = self._index_for(kind)
                for record in records:
                    index.setdefault(record.id, record)
            self.assets_loaded = True

        total = sum(len(records) for records in loaded.values())
        logger.info(f"✓ Rehydrated {total} assets for project {self.project_id}")
        return True

    def close(self) -> None:
        """Tear down; commits arriving afterwards are discarded."""
        with self._lock:
            self._closed = True
            self.queue = None

    @property
    def closed(self) -> bool:
        return self._closed

    def save(self) -> bool:
        """Persist the project document. Returns False if the write failed."""
        with self._lock:
            if self._closed:
                return False
            data = self.document.to_dict()
        try:
            self.state_store.save(data)
        except StorageError as exc:
            logger.warning(f"Project state not saved: {exc}")
            return False
        return True

    # ------------------------------------------------------------------
    # Document access
    # ------------------------------------------------------------------

    @property
    def global_style(self) -> str:
        return self.document.global_style

    @property
    def model_settings(self) -> Dict[str, str]:
        return self.document.model_settings

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return self.document.get_scene(scene_id)

    def get_clip(self, clip_id: str) -> Optional[Clip]:
        return self.document.get_clip(clip_id)

    def clips_for_scene(self, scene_id: str) -> List[Clip]:
        clips = [clip for clip in self.document.clips if clip.scene_id == scene_id]
        return sorted(clips, key=lambda clip: clip.order)

    def elements_for_scene(self, scene: Scene) -> List[WorldElement]:
        elements = (self.document.get_element(element_id) for element_id in scene.element_ids)
        return [element for element in elements if element is not None]

    def reference_images_for_scene(self, scene: Scene) -> List[str]:
        """Data URLs of the element images attached to the scene's world elements."""
        wanted = set(scene.element_ids)
        with self._lock:
            return [image.url for image in self.element_images.values() if image.owner_id in wanted and image.url]

    def add_scene(self, title: str, **fields) -> Scene:
        scene = Scene(id=fields.pop("id", None) or _new_id("scene"), title=title, **fields)
        with self._lock:
            self.document.scenes.append(scene)
        self.save()
        return scene

    def add_clip(self, scene_id: str, title: str = "", start_time: float = 0.0, end_time: float = 0.0,
                 clip_id: Optional[str] = None) -> Clip:
        if self.get_scene(scene_id) is None:
            raise NotFoundError(f"Scene not found: {scene_id}")
        with self._lock:
            clip = Clip(
                id=clip_id or _new_id("clip"),
                scene_id=scene_id,
                title=title,
                start_time=start_time,
                end_time=end_time,
                order=len(self.clips_for_scene(scene_id)),
            )
            self.document.clips.append(clip)
        self.save()
        return clip

    def update_clip(self, clip_id: str, **changes) -> Optional[Clip]:
        """Apply field changes to a clip; unknown clips are ignored."""
        with self._lock:
            clip = self.document.get_clip(clip_id)
            if clip is None:
                return None
            for key, value in changes.items():
                if not hasattr(clip, key):
                    raise AttributeError(f"Clip has no field '{key}'")
                setattr(clip, key, value)
        self.save()
        return clip

    def delete_clip(self, clip_id: str) -> bool:
        """Remove a clip together with its frames and videos."""
        with self._lock:
            clip = self.document.get_clip(clip_id)
            if clip is None:
                return False
            self.document.clips.remove(clip)
            for index in (self.frames, self.videos):
                for record_id in [rid for rid, record in index.items() if record.owner_id == clip_id]:
                    del index[record_id]

        for kind in (AssetKind.FRAME, AssetKind.VIDEO):
            try:
                self.assets.delete_all_by_owner(kind, clip_id, self.project_id)
            except StorageError as exc:
                logger.warning(f"Stored {kind.value} of clip {clip_id} not deleted: {exc}")
        self.save()
        logger.info(f"Clip deleted: {clip_id}")
        return True

    def add_element(self, name: str, category: str = "character", description: str = "") -> WorldElement:
        element = WorldElement(id=_new_id("element"), name=name, category=category, description=description)
        with self._lock:
            self.document.elements.append(element)
        self.save()
        return element

    def set_global_style(self, style: str) -> None:
        with self._lock:
            self.document.global_style = style
        self.save()

    # ------------------------------------------------------------------
    # Asset index queries
    # ------------------------------------------------------------------

    def frames_for_clip(self, clip_id: str) -> List[FrameRecord]:
        with self._lock:
            return [frame for frame in self.frames.values() if frame.owner_id == clip_id]

    def videos_for_clip(self, clip_id: str) -> List[VideoRecord]:
        with self._lock:
            return [video for video in self.videos.values() if video.owner_id == clip_id]

    def _frame_for(self, clip_id: str, frame_type: str) -> Optional[FrameRecord]:
        clip = self.get_clip(clip_id)
        pointer = None
        if clip is not None:
            pointer = clip.start_frame_id if frame_type == "start" else clip.end_frame_id
        with self._lock:
            if pointer and pointer in self.frames:
                return self.frames[pointer]
            candidates = [f for f in self.frames.values() if f.owner_id == clip_id and f.frame_type == frame_type]
        if not candidates:
            return None
        return max(candidates, key=lambda frame: frame.created_at)

    def start_frame_for(self, clip_id: str) -> Optional[FrameRecord]:
        return self._frame_for(clip_id, "start")

    def end_frame_for(self, clip_id: str) -> Optional[FrameRecord]:
        return self._frame_for(clip_id, "end")

    def has_complete_video(self, clip_id: str) -> bool:
        clip = self.get_clip(clip_id)
        if clip is not None and clip.video_id and clip.video_id in self.videos:
            return True
        return any(video.status == "complete" for video in self.videos_for_clip(clip_id))

    def is_clip_queued(self, clip_id: str) -> bool:
        queue = self.queue
        return bool(queue is not None and queue.is_clip_queued(clip_id))

    # ------------------------------------------------------------------
    # Completion bridge
    # ------------------------------------------------------------------

    def _store(self, record: AssetRecord) -> bool:
        """Write ``record`` to this project's store.

        Returns False only if the project is no longer active; other storage
        failures keep the record in memory.
        """
        try:
            self.assets.put(record, project_id=self.project_id)
        except NamespaceMismatchError as exc:
            logger.warning(f"Discarding {record.kind.value} {record.id}: {exc}")
            return False
        except StorageError as exc:
            logger.warning(f"{record.kind.value} {record.id} kept in memory only: {exc}")
        return True

    def _discard(self, record: AssetRecord) -> None:
        with self._lock:
            self._index_for(record.kind).pop(record.id, None)

    def commit_frame(self, frame: FrameRecord) -> bool:
        """Store a frame and point its clip's start/end slot at it.

        Returns False if the frame was discarded (session closed or project
        no longer active).
        """
        with self._lock:
            if self._closed:
                logger.warning(f"Session closed, discarding frame {frame.id}")
                return False
            self.frames[frame.id] = frame
        if not self._store(frame):
            self._discard(frame)
            return False

        with self._lock:
            clip = self.document.get_clip(frame.owner_id) if frame.owner_id else None
            if clip is None:
                logger.warning(f"Clip {frame.owner_id} no longer exists, frame {frame.id} not linked")
                return True
            if frame.frame_type == "end":
                clip.end_frame_id = frame.id
            else:
                clip.start_frame_id = frame.id
        self.save()
        return True

    def commit_video(self, video: VideoRecord) -> bool:
        """Store a video and point its clip at it."""
        with self._lock:
            if self._closed:
                logger.warning(f"Session closed, discarding video {video.id}")
                return False
            self.videos[video.id] = video
        if not self._store(video):
            self._discard(video)
            return False

        with self._lock:
            clip = self.document.get_clip(video.owner_id) if video.owner_id else None
            if clip is None:
                logger.warning(f"Clip {video.owner_id} no longer exists, video {video.id} not linked")
                return True
            clip.video_id = video.id
        self.save()
        return True

    def begin_video(self, video: VideoRecord) -> bool:
        """Record a video whose generation is under way, without linking its clip.

        A record that already exists (a retried job) only has its status reset.
        """
        if video.id in self.videos:
            return self.update_video_status(video.id, "generating")
        video.status = "generating"
        video.error = None
        return self._add_record(video) is not None

    def update_video_status(self, video_id: str, status: str, error: Optional[str] = None) -> bool:
        """Patch a video's status/error in memory and in the store."""
        with self._lock:
            if self._closed:
                return False
            video = self.videos.get(video_id)
            if video is not None:
                video.status = status
                video.error = error
        try:
            stored = self.assets.patch_video_status(video_id, status, error, project_id=self.project_id)
        except StorageError as exc:
            logger.warning(f"Video status of {video_id} not persisted: {exc}")
            stored = False
        return video is not None or stored

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def set_frame(self, frame: FrameRecord) -> bool:
        """Attach an uploaded frame to its clip."""
        return self.commit_frame(frame)

    def _add_record(self, record: AssetRecord) -> Optional[AssetRecord]:
        """Index and store an upload. Returns None if the session no longer owns the project."""
        with self._lock:
            if self._closed:
                logger.warning(f"Session closed, discarding {record.kind.value} {record.id}")
                return None
            self._index_for(record.kind)[record.id] = record
        if not self._store(record):
            self._discard(record)
            return None
        return record

    def add_reference(self, record: ReferenceImageRecord) -> Optional[ReferenceImageRecord]:
        return self._add_record(record)

    def add_audio_track(self, record: AudioTrackRecord) -> Optional[AudioTrackRecord]:
        return self._add_record(record)

    def add_element_image(self, record: ElementImageRecord) -> Optional[ElementImageRecord]:
        if record.owner_id and self.document.get_element(record.owner_id) is None:
            raise NotFoundError(f"World element not found: {record.owner_id}")
        return self._add_record(record)

    # ------------------------------------------------------------------
    # Batch generation
    # ------------------------------------------------------------------

    def missing_generation_requests(self, scene_id: Optional[str] = None, mode: str = "both") -> List[Dict[str, str]]:
        """Queue requests for everything a scene (or the project) still lacks.

        Missing start/end frames become frame jobs; clips that already have a
        start frame but no finished video become video jobs.

        Args:
            scene_id: Restrict to one scene (default: all scenes)
            mode: 'frames', 'videos' or 'both'
        """
        if mode not in BATCH_MODES:
            raise ValueError(f"Unknown batch mode: {mode}")

        if scene_id is not None:
            clips = self.clips_for_scene(scene_id)
        else:
            clips = [clip for scene in self.document.scenes for clip in self.clips_for_scene(scene.id)]

        requests: List[Dict[str, str]] = []
        for clip in clips:
            has_start = self.start_frame_for(clip.id) is not None
            if mode in ("frames", "both"):
                if not has_start:
                    requests.append({"kind": "frame", "clip_id": clip.id, "frame_type": "start"})
                if self.end_frame_for(clip.id) is None:
                    requests.append({"kind": "frame", "clip_id": clip.id, "frame_type": "end"})
            if mode in ("videos", "both") and has_start and not self.has_complete_video(clip.id):
                requests.append({"kind": "video", "clip_id": clip.id})
        return requests


__all__ = ["ApplicationState"]
