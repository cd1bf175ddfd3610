"""Gemini / Veo REST client for frame and video generation.

Frames come from ``generateContent`` with image output; videos from Veo's
``predictLongRunning`` endpoint, whose operation is polled until done and whose
result is downloaded and returned as a data URL.
"""
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import requests

from domain.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from domain.models import FrameRecord, VideoRecord
from infrastructure.config_manager import DEFAULT_PROVIDER_URL
from infrastructure.logger import get_logger
from utils.data_url import build_data_url, parse_data_url

logger = get_logger(__name__)

DEFAULT_STYLE = "cinematic, high quality"
DEFAULT_MOTION = "Subtle cinematic motion"
VIDEO_DURATION_SECONDS = 5


def _unspecified(value: Any) -> str:
    return value or "unspecified"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class GeminiClient:
    """Client for the Gemini generative language API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_PROVIDER_URL,
        timeout: int = 120,
        poll_attempts: int = 30,
        poll_interval: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
    ):
        """Initialize client with API key.

        Args:
            api_key: Gemini API key
            base_url: REST base, e.g. https://generativelanguage.googleapis.com/v1beta
            timeout: Per-request HTTP timeout in seconds
            poll_attempts: Maximum polls of a video operation before giving up
            poll_interval: Seconds between video operation polls
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            "x-goog-api-key": api_key or "",
            "Content-Type": "application/json",
        })

    # -----------------------------
    # HTTP helpers
    # -----------------------------
    def _raise_for_status(self, response: requests.Response, action: str) -> None:
        if response.status_code in (401, 403):
            raise ProviderAuthError(
                "Invalid Gemini API key",
                status_code=response.status_code,
                response_body=response.text,
            )
        if response.status_code == 429:
            raise ProviderRateLimitError(
                "Gemini rate limit exceeded. Please wait and try again.",
                status_code=429,
                response_body=response.text,
            )
        if response.status_code != 200:
            raise ProviderError(
                f"{action} failed ({response.status_code}): {self._error_message(response)}",
                status_code=response.status_code,
                response_body=response.text,
            )

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return response.text[:200]

    def _request(self, method: str, url: str, action: str, **kwargs) -> requests.Response:
        if not self.api_key:
            raise ProviderAuthError("Gemini API key not configured")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise ProviderError(f"{action} timed out after {self.timeout} seconds")
        except requests.exceptions.ConnectionError as e:
            raise ProviderError(f"Failed to connect to Gemini: {e}")
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{action} failed: {e}")
        self._raise_for_status(response, action)
        return response

    def _json(self, response: requests.Response, action: str) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{action}: invalid JSON response ({e})", response_body=response.text)

    @staticmethod
    def _inline_image(data_url: str) -> Dict[str, str]:
        mime_type, payload = parse_data_url(data_url)
        return {"mimeType": mime_type, "data": payload}

    # -----------------------------
    # Frames
    # -----------------------------
    @staticmethod
    def build_frame_prompt(prompt: str, scene_context: Optional[Dict[str, Any]], global_style: str) -> str:
        scene_block = ""
        if scene_context:
            who = ", ".join(scene_context.get("who") or []) or "unspecified"
            scene_block = (
                f"Scene: {scene_context.get('title', '')}\n"
                f"- Who: {who}\n"
                f"- What: {_unspecified(scene_context.get('what'))}\n"
                f"- When: {_unspecified(scene_context.get('when'))}\n"
                f"- Where: {_unspecified(scene_context.get('where'))}\n"
                f"- Why/Mood: {_unspecified(scene_context.get('why'))}\n"
            )
        return (
            "Generate a cinematic frame for a music video.\n\n"
            f"{scene_block}\n"
            f"Visual Style: {global_style or DEFAULT_STYLE}\n\n"
            f"Frame Description: {prompt}\n\n"
            "Requirements:\n"
            "- 16:9 aspect ratio\n"
            "- Cinematic composition\n"
            "- Rich detail and lighting\n"
            "- Suitable as a keyframe for video generation"
        )

    def generate_frame(
        self,
        prompt: str,
        clip_id: str,
        frame_type: str,
        scene_context: Optional[Dict[str, Any]],
        global_style: str,
        model: str,
        reference_images: Optional[List[str]] = None,
    ) -> FrameRecord:
        """Generate one keyframe image.

        Args:
            prompt: Frame description
            clip_id: Owning clip
            frame_type: 'start' or 'end'
            scene_context: Scene fields (title, who, what, when, where, why)
            global_style: Project-wide visual style
            model: Image model id
            reference_images: Data URLs sent alongside the prompt

        Raises:
            ProviderAuthError / ProviderRateLimitError / ProviderError
        """
        action = "Frame generation"
        parts: List[Dict[str, Any]] = [{"text": self.build_frame_prompt(prompt, scene_context, global_style)}]
        for reference in reference_images or []:
            try:
                parts.append({"inlineData": self._inline_image(reference)})
            except ValueError:
                logger.warning("Skipping reference image that is not a data URL")

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": "16:9"},
            },
        }

        logger.info(f"Requesting {frame_type} frame for clip {clip_id} from {model}")
        response = self._request("POST", f"{self.base_url}/models/{model}:generateContent", action, json=payload)
        result = self._json(response, action)

        for candidate in result.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                    logger.info(f"✓ Frame generated for clip {clip_id}")
                    return FrameRecord(
                        id=_new_id(f"frame-{clip_id}-{frame_type}"),
                        owner_id=clip_id,
                        url=f"data:{mime_type};base64,{inline['data']}",
                        source="generated",
                        prompt=prompt,
                        model=model,
                        frame_type=frame_type,
                    )

        raise ProviderError("No image generated. Try a different prompt.")

    # -----------------------------
    # Videos
    # -----------------------------
    @staticmethod
    def build_motion_prompt(motion_prompt: str, scene_context: Optional[Dict[str, Any]], global_style: str) -> str:
        scene_block = ""
        if scene_context:
            scene_block = (
                "Scene context:\n"
                f"- Setting: {_unspecified(scene_context.get('where'))}\n"
                f"- Action: {_unspecified(scene_context.get('what'))}\n"
                f"- Mood: {_unspecified(scene_context.get('why'))}\n"
                f"- Time: {_unspecified(scene_context.get('when'))}\n"
            )
        return (
            f"{motion_prompt or DEFAULT_MOTION}\n\n"
            f"{scene_block}\n"
            f"Visual style: {global_style or DEFAULT_STYLE}\n\n"
            "Create smooth, cinematic camera movement. Maintain visual consistency with the input frame."
        )

    def generate_video(
        self,
        clip_id: str,
        start_frame_uri: str,
        end_frame_uri: Optional[str],
        motion_prompt: str,
        scene_context: Optional[Dict[str, Any]],
        model: str,
        global_style: str = "",
    ) -> VideoRecord:
        """Generate a short clip from a start frame (and optional end frame).

        With an end frame the request runs in interpolation mode. The long-running
        operation is polled at most ``poll_attempts`` times.

        Raises:
            ProviderTimeoutError: if the operation is not done within the poll budget
            ProviderError: for API failures or an empty result
        """
        action = "Video generation"
        try:
            start_image = self._inline_image(start_frame_uri)
        except ValueError:
            raise ProviderError("Start frame is not a base64 data URL")

        full_prompt = self.build_motion_prompt(motion_prompt, scene_context, global_style)
        instance: Dict[str, Any] = {
            "prompt": full_prompt,
            "image": {"bytesBase64Encoded": start_image["data"], "mimeType": start_image["mimeType"]},
        }
        if end_frame_uri:
            try:
                end_image = self._inline_image(end_frame_uri)
            except ValueError:
                raise ProviderError("End frame is not a base64 data URL")
            instance["lastFrame"] = {"bytesBase64Encoded": end_image["data"], "mimeType": end_image["mimeType"]}

        payload = {
            "instances": [instance],
            "parameters": {
                "aspectRatio": "16:9",
                "durationSeconds": VIDEO_DURATION_SECONDS,
                "personGeneration": "allow_adult",
            },
        }

        mode = "interpolation" if end_frame_uri else "image-to-video"
        logger.info(f"Requesting video for clip {clip_id} from {model} ({mode})")
        response = self._request("POST", f"{self.base_url}/models/{model}:predictLongRunning", action, json=payload)
        operation = self._json(response, action)

        operation = self._poll_operation(operation, action)
        video_uri = self._extract_video_uri(operation)
        video_url = self._download_video(video_uri)

        logger.info(f"✓ Video generated for clip {clip_id}")
        return VideoRecord(
            id=_new_id(f"video-{clip_id}"),
            owner_id=clip_id,
            url=video_url,
            source="generated",
            prompt=motion_prompt,
            model=model,
            duration=float(VIDEO_DURATION_SECONDS),
            status="complete",
            motion_prompt=full_prompt,
            job_id=operation.get("name"),
        )

    def _poll_operation(self, operation: Dict[str, Any], action: str) -> Dict[str, Any]:
        name = operation.get("name")
        attempts = 0
        while not operation.get("done"):
            if not name:
                raise ProviderError(f"{action}: operation has no name", response_body=str(operation))
            if attempts >= self.poll_attempts:
                raise ProviderTimeoutError(
                    f"Video generation timed out after {attempts} polls. Try again later."
                )
            self._sleep(self.poll_interval)
            attempts += 1
            logger.debug(f"Polling video operation {attempts}/{self.poll_attempts}")
            response = self._request("GET", f"{self.base_url}/{name}", action)
            operation = self._json(response, action)

        error = operation.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(message or "Video generation failed")
        return operation

    @staticmethod
    def _extract_video_uri(operation: Dict[str, Any]) -> str:
        result = operation.get("response") or {}
        samples = (result.get("generateVideoResponse") or {}).get("generatedSamples") or []
        if not samples:
            samples = result.get("generatedVideos") or []
        for sample in samples:
            uri = (sample.get("video") or {}).get("uri")
            if uri:
                return uri
        raise ProviderError("No video generated")

    def _download_video(self, uri: str) -> str:
        response = self._request("GET", uri, "Video download", allow_redirects=True)
        mime_type = response.headers.get("Content-Type", "video/mp4").split(";")[0] or "video/mp4"
        if not mime_type.startswith("video/"):
            mime_type = "video/mp4"
        return build_data_url(response.content, mime_type)

    # -----------------------------
    # Diagnostics
    # -----------------------------
    def test_connection(self) -> Dict[str, Any]:
        """Check the API key by listing models.

        Raises:
            ProviderError: If connection fails
        """
        response = self._request("GET", f"{self.base_url}/models", "Connection test", params={"pageSize": 1})
        self._json(response, "Connection test")
        return {
            "connected": True,
            "message": "Gemini connection successful",
        }


__all__ = ["GeminiClient"]
