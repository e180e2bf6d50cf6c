"""Utility helpers used across the project."""

from __future__ import annotations

import json
import logging
import math
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


LOGGER = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def ensure_directory(path: Path) -> None:
    """Create ``path`` when it does not exist."""

    path.mkdir(parents=True, exist_ok=True)


def strip_accents(text: str) -> str:
    """Remove diacritics from ``text``."""

    normalized = unicodedata.normalize("NFD", text)
    return "".join(char for char in normalized if unicodedata.category(char) != "Mn")


def normalize_text(text: Optional[str]) -> str:
    """Normalise text for comparisons.

    * lowercase
    * remove accents
    * collapse every run of non alphanumeric characters into one space
    * trim

    The result is stable under a second application, which is what makes it
    usable as a storage key for saved matches.
    """

    if not text:
        return ""

    text = strip_accents(str(text).lower())
    return _NON_ALNUM.sub(" ", text).strip()


def tokenize(text: Optional[str]) -> list:
    normalized = normalize_text(text)
    if not normalized:
        return []
    return normalized.split(" ")


def now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def dump_json(path: Path, data) -> None:
    ensure_directory(path.parent)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(data, handle, ensure_ascii=False, indent=2, default=str)


def load_json(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def round_money(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100.0


__all__ = [
    "ensure_directory",
    "strip_accents",
    "normalize_text",
    "tokenize",
    "now_timestamp",
    "utc_now_iso",
    "dump_json",
    "load_json",
    "round_money",
]
