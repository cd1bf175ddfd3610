"""Domain models for projects, stored assets, scenes and the generation queue."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type


def utc_now() -> str:
    """Return the current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _known_fields(cls, payload: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in payload.items() if key in names}


# ========================================
# Projects
# ========================================

@dataclass
class ProjectMetadata:
    id: str
    name: str
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProjectMetadata":
        return cls(
            id=payload.get("id", ""),
            name=payload.get("name", ""),
            created_at=payload.get("created_at", ""),
            updated_at=payload.get("updated_at", ""),
        )


# ========================================
# Asset records
# ========================================

class AssetKind(str, Enum):
    """Record kinds held by the asset store. Values double as table names."""

    FRAME = "frames"
    VIDEO = "videos"
    REFERENCE = "references"
    AUDIO = "audio"
    ELEMENT_IMAGE = "element_images"


@dataclass
class AssetRecord:
    """Common shape of every stored artifact.

    ``url`` holds the encoded payload (a base64 data URL). ``owner_id`` is the
    clip id for frames and videos and the world element id for element images.
    """

    id: str
    owner_id: Optional[str] = None
    url: str = ""
    source: str = "generated"
    prompt: Optional[str] = None
    model: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    kind = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.kind.value
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AssetRecord":
        return cls(**_known_fields(cls, payload))


@dataclass
class FrameRecord(AssetRecord):
    frame_type: str = "start"

    kind = AssetKind.FRAME

    @property
    def clip_id(self) -> Optional[str]:
        return self.owner_id


@dataclass
class VideoRecord(AssetRecord):
    duration: float = 0.0
    status: str = "pending"
    start_frame_id: Optional[str] = None
    end_frame_id: Optional[str] = None
    motion_prompt: str = ""
    job_id: Optional[str] = None
    error: Optional[str] = None

    kind = AssetKind.VIDEO

    @property
    def clip_id(self) -> Optional[str]:
        return self.owner_id


@dataclass
class ReferenceImageRecord(AssetRecord):
    source: str = "upload"
    name: str = ""
    tags: List[str] = field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None

    kind = AssetKind.REFERENCE


@dataclass
class AudioTrackRecord(AssetRecord):
    source: str = "upload"
    name: str = ""
    duration: float = 0.0

    kind = AssetKind.AUDIO


@dataclass
class ElementImageRecord(AssetRecord):
    kind = AssetKind.ELEMENT_IMAGE

    @property
    def element_id(self) -> Optional[str]:
        return self.owner_id


RECORD_TYPES: Dict[AssetKind, Type[AssetRecord]] = {
    AssetKind.FRAME: FrameRecord,
    AssetKind.VIDEO: VideoRecord,
    AssetKind.REFERENCE: ReferenceImageRecord,
    AssetKind.AUDIO: AudioTrackRecord,
    AssetKind.ELEMENT_IMAGE: ElementImageRecord,
}


def record_from_dict(kind: AssetKind, payload: Dict[str, Any]) -> AssetRecord:
    """Rebuild the typed record for ``kind`` from its stored dictionary."""
    return RECORD_TYPES[AssetKind(kind)].from_dict(payload)


# ========================================
# Lightweight project state
# ========================================

@dataclass
class WorldElement:
    id: str
    name: str
    category: str = "character"
    description: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "WorldElement":
        return cls(
            id=payload.get("id", ""),
            name=payload.get("name", ""),
            category=payload.get("category", "character"),
            description=payload.get("description", ""),
        )


@dataclass
class Scene:
    id: str
    title: str
    who: List[str] = field(default_factory=list)
    what: str = ""
    when: str = ""
    where: str = ""
    why: str = ""
    element_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Scene":
        return cls(
            id=payload.get("id", ""),
            title=payload.get("title", ""),
            who=list(payload.get("who") or []),
            what=payload.get("what", ""),
            when=payload.get("when", ""),
            where=payload.get("where", ""),
            why=payload.get("why", ""),
            element_ids=list(payload.get("element_ids") or []),
        )

    def context(self) -> Dict[str, Any]:
        """Scene description handed to the provider alongside prompts."""
        return {
            "title": self.title,
            "who": list(self.who),
            "what": self.what,
            "when": self.when,
            "where": self.where,
            "why": self.why,
        }


@dataclass
class Clip:
    id: str
    scene_id: str
    title: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    order: int = 0
    start_frame_id: Optional[str] = None
    end_frame_id: Optional[str] = None
    video_id: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Clip":
        return cls(
            id=payload.get("id", ""),
            scene_id=payload.get("scene_id", ""),
            title=payload.get("title", ""),
            start_time=float(payload.get("start_time", 0.0)),
            end_time=float(payload.get("end_time", 0.0)),
            order=int(payload.get("order", 0)),
            start_frame_id=payload.get("start_frame_id"),
            end_frame_id=payload.get("end_frame_id"),
            video_id=payload.get("video_id"),
        )


DEFAULT_MODEL_SETTINGS = {
    "text": "gemini-2.5-pro",
    "image": "gemini-2.5-flash-image",
    "video": "veo-3.1-generate-preview",
}


@dataclass
class ProjectDocument:
    """Small per-project document: scene graph, clips, elements, preferences."""

    scenes: List[Scene] = field(default_factory=list)
    clips: List[Clip] = field(default_factory=list)
    elements: List[WorldElement] = field(default_factory=list)
    global_style: str = ""
    model_settings: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODEL_SETTINGS))

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProjectDocument":
        model_settings = dict(DEFAULT_MODEL_SETTINGS)
        model_settings.update(payload.get("model_settings") or {})
        return cls(
            scenes=[Scene.from_dict(s) for s in payload.get("scenes", [])],
            clips=[Clip.from_dict(c) for c in payload.get("clips", [])],
            elements=[WorldElement.from_dict(e) for e in payload.get("elements", [])],
            global_style=payload.get("global_style", ""),
            model_settings=model_settings,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return next((scene for scene in self.scenes if scene.id == scene_id), None)

    def get_clip(self, clip_id: str) -> Optional[Clip]:
        return next((clip for clip in self.clips if clip.id == clip_id), None)

    def get_element(self, element_id: str) -> Optional[WorldElement]:
        return next((el for el in self.elements if el.id == element_id), None)


# ========================================
# Generation queue
# ========================================

class QueueStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class JobKind:
    FRAME = "frame"
    VIDEO = "video"


FRAME_TYPES = ("start", "end")


@dataclass
class QueueItem:
    id: str
    kind: str
    clip_id: str
    frame_type: Optional[str] = None
    status: str = QueueStatus.PENDING
    progress: int = 0
    retry_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    prompt_override: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Pending or processing items block duplicate requests."""
        return self.status in (QueueStatus.PENDING, QueueStatus.PROCESSING)

    def targets(self, kind: str, clip_id: str, frame_type: Optional[str] = None) -> bool:
        if self.kind != kind or self.clip_id != clip_id:
            return False
        return kind != JobKind.FRAME or self.frame_type == frame_type


@dataclass
class GenerationQueueState:
    items: List[QueueItem] = field(default_factory=list)
    is_processing: bool = False
    is_paused: bool = False

    def get(self, item_id: str) -> Optional[QueueItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def next_pending(self) -> Optional[QueueItem]:
        return next((item for item in self.items if item.status == QueueStatus.PENDING), None)

    def processing(self) -> List[QueueItem]:
        return [item for item in self.items if item.status == QueueStatus.PROCESSING]

    def find_active(self, kind: str, clip_id: str, frame_type: Optional[str] = None) -> Optional[QueueItem]:
        return next(
            (item for item in self.items if item.is_active and item.targets(kind, clip_id, frame_type)),
            None,
        )

    def counts(self) -> Dict[str, int]:
        result = {
            QueueStatus.PENDING: 0,
            QueueStatus.PROCESSING: 0,
            QueueStatus.COMPLETE: 0,
            QueueStatus.FAILED: 0,
        }
        for item in self.items:
            result[item.status] = result.get(item.status, 0) + 1
        result["total"] = len(self.items)
        return result


__all__ = [
    "utc_now",
    "ProjectMetadata",
    "AssetKind",
    "AssetRecord",
    "FrameRecord",
    "VideoRecord",
    "ReferenceImageRecord",
    "AudioTrackRecord",
    "ElementImageRecord",
    "RECORD_TYPES",
    "record_from_dict",
    "WorldElement",
    "Scene",
    "Clip",
    "DEFAULT_MODEL_SETTINGS",
    "ProjectDocument",
    "QueueStatus",
    "JobKind",
    "FRAME_TYPES",
    "QueueItem",
    "GenerationQueueState",
]
