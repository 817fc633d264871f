"""Utility helpers for the ReelDuel service."""

from __future__ import annotations

import json
import random
import re
import unicodedata
from typing import Any, Sequence, TypeVar


T = TypeVar("T")

JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)
YEAR_RE = re.compile(r"(19|20|21)\d{2}")


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower()


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from the model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def parse_year(value: Any) -> int | None:
    """Pull a plausible release year out of ``value``."""

    if isinstance(value, int):
        return value if 1900 <= value <= 2100 else None
    if not value:
        return None
    match = YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def shuffled(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """Return a uniformly shuffled copy of ``items``."""

    copy = list(items)
    (rng or random).shuffle(copy)
    return copy


def sample(items: Sequence[T], count: int, rng: random.Random | None = None) -> list[T]:
    """Return up to ``count`` distinct elements chosen uniformly at random."""

    if count <= 0:
        return []
    return shuffled(items, rng)[:count]
