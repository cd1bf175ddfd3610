"""Compose generation prompts from a clip's scene and world-element context."""
from typing import Iterable, Optional

from domain.models import Clip, Scene, WorldElement

END_FRAME_HINT = "This is the ending frame of the scene."
MOTION_SUFFIX = "Smooth cinematic motion"


def _element_line(elements: Iterable[WorldElement]) -> Optional[str]:
    described = []
    for element in elements:
        if element.description:
            described.append(f"{element.name} ({element.description})")
        else:
            described.append(element.name)
    return f"Featuring: {', '.join(described)}" if described else None


def build_frame_prompt(
    scene: Scene,
    clip: Clip,
    frame_type: str,
    global_style: str = "",
    elements: Iterable[WorldElement] = (),
    prompt_override: Optional[str] = None,
) -> str:
    """Prompt for a start/end keyframe.

    A non-empty ``prompt_override`` replaces the scene description; the style
    and end-frame hint are still appended.
    """
    if prompt_override and prompt_override.strip():
        parts = [prompt_override.strip()]
    else:
        parts = [
            scene.where and f"Setting: {scene.where}",
            scene.when and f"Time: {scene.when}",
            scene.who and f"Characters: {', '.join(scene.who)}",
            _element_line(elements),
            scene.what and f"Action: {scene.what}",
            scene.why and f"Mood: {scene.why}",
        ]
    parts.append(global_style and f"Style: {global_style}")
    parts.append(frame_type == "end" and END_FRAME_HINT)

    prompt = ". ".join(part for part in parts if part)
    return prompt or f'A cinematic frame for "{clip.title}"'


def build_motion_prompt(scene: Optional[Scene]) -> str:
    """Motion prompt for a video job; works without a scene."""
    parts = []
    if scene is not None:
        parts.append(scene.what and f"Action: {scene.what}")
        parts.append(scene.why and f"Mood: {scene.why}")
    parts.append(MOTION_SUFFIX)
    return ". ".join(part for part in parts if part)


__all__ = ["build_frame_prompt", "build_motion_prompt", "END_FRAME_HINT"]
