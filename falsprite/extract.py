"""
Payload extraction for heterogeneous model responses.

Providers nest their output differently per model and per call. Each
extractor first checks a short list of well-known fields, then falls back
to a depth-first worklist walk over the JSON tree
(str | int | float | bool | None | dict | list).

An empty string return means nothing usable was found; callers treat that
as a soft failure.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Union

from .fal_client import validate_https_url

JsonValue = Union[str, int, float, bool, None, dict, list]

TEXT_KEYS = ("text", "content", "output")
MIN_DEEP_TEXT_LENGTH = 20

IMAGE_EXTENSION_RE = re.compile(r"\.(png|jpg|jpeg|webp|gif)(\?|$)", re.IGNORECASE)
MEDIA_HOST_RE = re.compile(r"(fal\.media|images|cdn)", re.IGNORECASE)
CONTROL_URL_KEY_RE = re.compile(r"(status|cancel|request|response)_?url", re.IGNORECASE)

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\n?")
_FENCE_CLOSE_RE = re.compile(r"```$")


class CandidateSource(str, Enum):
    PREFERRED = "preferred-field"
    DEEP_SCAN = "deep-scan"


@dataclass(frozen=True)
class ExtractionCandidate:
    value: str
    source: CandidateSource
    key: str = ""


# ============================================================================
# TREE HELPERS
# ============================================================================

def dig(payload: JsonValue, *path: Union[str, int]) -> JsonValue:
    """Follow a path of dict keys / list indexes, returning None on any miss."""
    current = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or not -len(current) <= step < len(current):
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step)
    return current


def walk_string_fields(payload: JsonValue) -> Iterator[tuple[str, str, bool]]:
    """
    Depth-first walk yielding (key, value, under_control_key) for every
    string-valued object field.

    Uses an explicit stack: the string fields of an object are visited in
    key order, nested containers are pushed and visited afterwards (last
    pushed first). Strings directly inside lists are not yielded.
    `under_control_key` is True when any key on the path to the value looks
    like a polling/cancel/response link.
    """
    stack: list[tuple[JsonValue, bool]] = [(payload, False)]
    while stack:
        current, excluded = stack.pop()
        if isinstance(current, list):
            for item in current:
                stack.append((item, excluded))
            continue
        if not isinstance(current, dict):
            continue
        for key, value in current.items():
            key = str(key)
            key_excluded = excluded or bool(CONTROL_URL_KEY_RE.search(key))
            if isinstance(value, str):
                yield key, value, key_excluded
            elif isinstance(value, (dict, list)):
                stack.append((value, key_excluded))


# ============================================================================
# TEXT
# ============================================================================

def normalize_message_content(value: JsonValue) -> str:
    """Flatten chat-style content (string, list of parts, or part object) to text."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        parts = []
        for part in value:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                text = part.get("text") or part.get("content") or ""
                if isinstance(text, str):
                    parts.append(text)
        return " ".join(p for p in parts if p).strip()
    if isinstance(value, dict):
        text = value.get("text") or value.get("content") or ""
        return text.strip() if isinstance(text, str) else ""
    return ""


def clean_prompt_text(text: str) -> str:
    """Strip a surrounding ``` code fence."""
    text = _FENCE_OPEN_RE.sub("", text)
    text = _FENCE_CLOSE_RE.sub("", text)
    return text.strip()


PREFERRED_TEXT_PATHS = (
    ("output",),
    ("text",),
    ("result", "output"),
    ("result", "text"),
    ("choices", 0, "message", "content"),
    ("output", "choices", 0, "message", "content"),
    ("result", "choices", 0, "message", "content"),
)


def text_candidates(payload: JsonValue) -> Iterator[ExtractionCandidate]:
    for path in PREFERRED_TEXT_PATHS:
        normalized = normalize_message_content(dig(payload, *path))
        if normalized:
            yield ExtractionCandidate(normalized, CandidateSource.PREFERRED, str(path[-1]))

    for key, value, _ in walk_string_fields(payload):
        if key in TEXT_KEYS:
            cleaned = clean_prompt_text(value)
            if len(cleaned) > MIN_DEEP_TEXT_LENGTH:
                yield ExtractionCandidate(cleaned, CandidateSource.DEEP_SCAN, key)


def extract_text(payload: JsonValue) -> str:
    """
    Find the rewritten prompt text in an LLM response.

    Preferred fields win without a length check; the deep scan only accepts
    `text` / `content` / `output` strings longer than 20 characters once a
    code fence is stripped.
    """
    for candidate in text_candidates(payload):
        return clean_prompt_text(candidate.value)
    return ""


# ============================================================================
# IMAGES
# ============================================================================

def looks_like_image_url(value: str) -> bool:
    return bool(IMAGE_EXTENSION_RE.search(value) or MEDIA_HOST_RE.search(value))


def image_candidates(payload: JsonValue) -> list[ExtractionCandidate]:
    """All image URL candidates in discovery order, deduplicated, unfiltered by scheme."""
    found: list[ExtractionCandidate] = []

    url = dig(payload, "image", "url")
    if isinstance(url, str):
        found.append(ExtractionCandidate(url, CandidateSource.PREFERRED, "image.url"))

    images = dig(payload, "images")
    if isinstance(images, list):
        for image in images:
            if isinstance(image, str):
                found.append(ExtractionCandidate(image, CandidateSource.PREFERRED, "images"))
            elif isinstance(image, dict) and isinstance(image.get("url"), str):
                found.append(ExtractionCandidate(image["url"], CandidateSource.PREFERRED, "images.url"))

    for key, value, excluded in walk_string_fields(payload):
        if excluded or not value.startswith("http"):
            continue
        if looks_like_image_url(value):
            found.append(ExtractionCandidate(value, CandidateSource.DEEP_SCAN, key))

    seen = set()
    unique = []
    for candidate in found:
        if candidate.value in seen:
            continue
        seen.add(candidate.value)
        unique.append(candidate)
    return unique


def extract_image_url(payload: JsonValue) -> str:
    """Return the first https image URL in the payload, or "" if there is none."""
    for candidate in image_candidates(payload):
        if validate_https_url(candidate.value):
            return candidate.value
    return ""


# ============================================================================
# ERRORS
# ============================================================================

def pick_error_message(data: JsonValue, fallback: str) -> str:
    """Best human-readable message from a remote error body."""
    detail = dig(data, "detail")
    if isinstance(detail, list) and detail:
        messages = []
        for entry in detail:
            if isinstance(entry, str):
                messages.append(entry)
            elif isinstance(entry, dict) and isinstance(entry.get("msg"), str):
                messages.append(entry["msg"])
        message = " | ".join(m for m in messages if m)
        if message:
            return message

    for key in ("error", "raw"):
        value = dig(data, key)
        if isinstance(value, str) and value.strip():
            return value.strip()

    return fallback
