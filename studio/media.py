"""Media reference extraction from provider responses.

Providers nest their output under different keys depending on version, so
extraction runs an ordered list of strategies and keeps the first hit:
prioritized key paths, then a depth-first search for any http(s) string with a
known media suffix.
"""
from __future__ import annotations

import base64
import re
from typing import Any, Callable, Iterable, List, Optional, Sequence

VIDEO_SUFFIXES = (".mp4", ".mov", ".webm")
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp")
AUDIO_SUFFIXES = (".wav", ".mp3", ".ogg", ".flac", ".m4a")

VIDEO_KEYS = (
    "s3_url",
    "video_url",
    "url",
    "final-url",
    "output.s3_url",
    "output.video_url",
    "output.url",
    "artifacts.video_url",
    "output.artifacts.video_url",
)
AUDIO_KEYS = ("output.url", "url", "audio_url", "output.audio_url", "image_url")
IMAGE_KEYS = ("image_url", "url", "output.image_url", "output.url", "output.images.0")
LAST_FRAME_KEYS = ("last_frame_url", "output.last_frame_url", "last_frame", "output.last_frame", "lastFrameUrl")

Strategy = Callable[[Any], Optional[str]]


def _is_http(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def _dig(obj: Any, path: str) -> Any:
    current = obj
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else None
        else:
            return None
    return current


def _candidates(obj: Any) -> List[Any]:
    # A list response carries one result per item; check each in order.
    if isinstance(obj, list):
        return [item for item in obj if isinstance(item, dict)]
    return [obj] if isinstance(obj, dict) else []


def key_lookup(keys: Sequence[str]) -> Strategy:
    def _strategy(obj: Any) -> Optional[str]:
        for candidate in _candidates(obj):
            for key in keys:
                value = _dig(candidate, key)
                if _is_http(value):
                    return value
        return None

    return _strategy


def suffix_search(suffixes: Iterable[str]) -> Strategy:
    pattern = re.compile(
        r"(%s)(\?.*)?$" % "|".join(re.escape(s) for s in suffixes),
        re.IGNORECASE,
    )

    def _walk(obj: Any) -> Optional[str]:
        if isinstance(obj, dict):
            items = list(obj.values())
        elif isinstance(obj, list):
            items = obj
        else:
            return None
        for value in items:
            if isinstance(value, (dict, list)):
                found = _walk(value)
                if found:
                    return found
            elif _is_http(value) and pattern.search(value):
                return value
        return None

    return _walk


def key_search(names: Iterable[str]) -> Strategy:
    wanted = set(names)

    def _walk(obj: Any) -> Optional[str]:
        if isinstance(obj, dict):
            for key, value in obj.items():
                if key in wanted and _is_http(value):
                    return value
                if isinstance(value, (dict, list)):
                    found = _walk(value)
                    if found:
                        return found
        elif isinstance(obj, list):
            for item in obj:
                found = _walk(item)
                if found:
                    return found
        return None

    return _walk


def extract_first(data: Any, strategies: Sequence[Strategy]) -> Optional[str]:
    for strategy in strategies:
        found = strategy(data)
        if found:
            return found
    return None


VIDEO_STRATEGIES: List[Strategy] = [key_lookup(VIDEO_KEYS), suffix_search(VIDEO_SUFFIXES)]
AUDIO_STRATEGIES: List[Strategy] = [key_lookup(AUDIO_KEYS), suffix_search(AUDIO_SUFFIXES)]
IMAGE_STRATEGIES: List[Strategy] = [key_lookup(IMAGE_KEYS), suffix_search(IMAGE_SUFFIXES)]
LAST_FRAME_STRATEGIES: List[Strategy] = [
    key_lookup(LAST_FRAME_KEYS),
    key_search(("last_frame_url", "last_frame")),
]


def extract_video_ref(data: Any) -> Optional[str]:
    return extract_first(data, VIDEO_STRATEGIES)


def extract_audio_ref(data: Any) -> Optional[str]:
    ref = extract_first(data, AUDIO_STRATEGIES)
    if ref:
        return ref
    # Some TTS providers return the output as a bare URL string.
    for candidate in _candidates(data):
        output = candidate.get("output")
        if _is_http(output):
            return output
    return None


def extract_image_ref(data: Any) -> Optional[str]:
    return extract_first(data, IMAGE_STRATEGIES)


def extract_last_frame_ref(data: Any) -> Optional[str]:
    return extract_first(data, LAST_FRAME_STRATEGIES)


def audio_data_uri(payload: str | bytes, fmt: str = "wav") -> str:
    """Wrap inline audio (raw bytes or base64 text) as a playable data URI."""
    if isinstance(payload, bytes):
        encoded = base64.b64encode(payload).decode("ascii")
    else:
        encoded = payload.strip()
        if encoded.startswith("data:"):
            return encoded
    mime = {"mp3": "audio/mpeg", "ogg": "audio/ogg", "flac": "audio/flac"}.get(fmt.lower(), f"audio/{fmt.lower()}")
    return f"data:{mime};base64,{encoded}"
