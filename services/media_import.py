"""Build upload records (frames, references, audio, element images) from local files."""
import io
import mimetypes
import os
import uuid
from typing import List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from domain.exceptions import InputValidationError
from domain.models import (
    AudioTrackRecord,
    ElementImageRecord,
    FrameRecord,
    FRAME_TYPES,
    ReferenceImageRecord,
)
from infrastructure.logger import get_logger
from utils.data_url import build_data_url, decode_data_url

logger = get_logger(__name__)


class MediaImportService:
    """Encode local media as data URLs and wrap them in asset records."""

    IMAGE_FORMATS = (".png", ".jpg", ".jpeg", ".webp", ".bmp")
    AUDIO_FORMATS = (".mp3", ".wav", ".m4a", ".ogg", ".flac")

    def _read(self, path: str, allowed: Tuple[str, ...]) -> Tuple[bytes, str]:
        if not os.path.isfile(path):
            raise InputValidationError(f"File not found: {path}")
        if not path.lower().endswith(allowed):
            raise InputValidationError(f"Unsupported file type: {os.path.basename(path)}")
        mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            return f.read(), mime_type

    def encode_file(self, path: str) -> str:
        """Return the file at ``path`` as a base64 data URL."""
        data, mime_type = self._read(path, self.IMAGE_FORMATS + self.AUDIO_FORMATS)
        return build_data_url(data, mime_type)

    @staticmethod
    def probe_image_size(data: bytes) -> Tuple[Optional[int], Optional[int]]:
        """Width/height of an encoded image, or (None, None) if unreadable."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                return img.size
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Could not read image dimensions: {e}")
            return None, None

    def _image_url(self, path: str) -> Tuple[str, bytes]:
        data, mime_type = self._read(path, self.IMAGE_FORMATS)
        return build_data_url(data, mime_type), data

    def frame_from_file(self, path: str, clip_id: str, frame_type: str = "start") -> FrameRecord:
        if frame_type not in FRAME_TYPES:
            raise InputValidationError(f"Invalid frame type: {frame_type}")
        url, _ = self._image_url(path)
        logger.info(f"Imported {frame_type} frame for clip {clip_id}: {os.path.basename(path)}")
        return FrameRecord(
            id=f"frame-{clip_id}-{frame_type}-{uuid.uuid4().hex[:8]}",
            owner_id=clip_id,
            url=url,
            source="upload",
            frame_type=frame_type,
        )

    def reference_from_file(self, path: str, tags: Optional[List[str]] = None,
                            name: Optional[str] = None) -> ReferenceImageRecord:
        url, data = self._image_url(path)
        width, height = self.probe_image_size(data)
        return ReferenceImageRecord(
            id=f"ref-{uuid.uuid4().hex[:12]}",
            url=url,
            name=name or os.path.splitext(os.path.basename(path))[0],
            tags=list(tags or []),
            width=width,
            height=height,
        )

    def reference_from_data_url(self, url: str, name: str, tags: Optional[List[str]] = None) -> ReferenceImageRecord:
        try:
            mime_type, data = decode_data_url(url)
        except ValueError as e:
            raise InputValidationError(f"Invalid image data: {e}") from e
        if not mime_type.startswith("image/"):
            raise InputValidationError(f"Not an image: {mime_type}")
        width, height = self.probe_image_size(data)
        return ReferenceImageRecord(
            id=f"ref-{uuid.uuid4().hex[:12]}",
            url=url,
            name=name,
            tags=list(tags or []),
            width=width,
            height=height,
        )

    def audio_from_file(self, path: str, duration: float = 0.0) -> AudioTrackRecord:
        data, mime_type = self._read(path, self.AUDIO_FORMATS)
        return AudioTrackRecord(
            id=f"audio-{uuid.uuid4().hex[:12]}",
            url=build_data_url(data, mime_type),
            name=os.path.basename(path),
            duration=duration,
        )

    def element_image_from_file(self, path: str, element_id: str) -> ElementImageRecord:
        url, _ = self._image_url(path)
        return ElementImageRecord(
            id=f"element-image-{uuid.uuid4().hex[:12]}",
            owner_id=element_id,
            url=url,
            source="upload",
        )


__all__ = ["MediaImportService"]
