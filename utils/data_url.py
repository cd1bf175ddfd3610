"""Helpers for base64 data URLs and human-readable byte sizes."""
import base64
import binascii
import re
from typing import Tuple

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+\-]+/[\w.+\-]+)?(?P<params>(;[^;,]+)*);base64,(?P<data>.*)$", re.DOTALL)


def build_data_url(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as ``data:<mime>;base64,<payload>``."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_url(url: str) -> Tuple[str, str]:
    """Split a base64 data URL into ``(mime_type, base64_payload)``.

    Raises:
        ValueError: if ``url`` is not a base64 data URL
    """
    match = _DATA_URL_RE.match(url or "")
    if not match:
        raise ValueError("Not a base64 data URL")
    return match.group("mime") or "application/octet-stream", match.group("data")


def decode_data_url(url: str) -> Tuple[str, bytes]:
    """Return ``(mime_type, raw_bytes)`` for a base64 data URL."""
    mime_type, payload = parse_data_url(url)
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc


def estimate_payload_bytes(url: str) -> float:
    """Approximate decoded size: base64 carries ~4 chars per 3 bytes."""
    if not url:
        return 0.0
    return len(url) * 0.75


def format_bytes(size: float) -> str:
    """Format a byte count as B / KB / MB / GB."""
    if size < 1024:
        return f"{int(size)} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"


__all__ = [
    "build_data_url",
    "parse_data_url",
    "decode_data_url",
    "estimate_payload_bytes",
    "format_bytes",
]
