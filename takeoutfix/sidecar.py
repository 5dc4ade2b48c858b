# SPDX-License-Identifier: GPL-3.0-or-later
"""Takeout JSON sidecars, album metadata.json and timestamp helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple, Optional

ALBUM_METADATA_NAME = "metadata.json"
SIDECAR_SUFFIX = ".json"
EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


class SidecarError(ValueError):
    """A sidecar could not be read or lacks a usable title/timestamp."""


class SidecarMetadata(NamedTuple):
    path: Path
    title: str
    timestamp: int


def _timestamp_field(data: dict) -> str:
    taken = data.get("photoTakenTime")
    if isinstance(taken, dict):
        nested = taken.get("timestamp")
        if nested not in (None, ""):
            return str(nested)
    legacy = data.get("timestamp")
    if legacy not in (None, ""):
        return str(legacy)
    return ""


def read_sidecar(path: Path) -> SidecarMetadata:
    """
    Parse a Takeout sidecar.

    The capture time normally lives in ``photoTakenTime.timestamp``; some
    exports carry it as a top-level ``timestamp`` instead, which is used only
    when the nested value is missing or empty.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise SidecarError(f"cannot read {path}: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SidecarError(f"malformed JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise SidecarError(f"{path}: expected a JSON object")

    title = data.get("title")
    if not isinstance(title, str) or not title:
        raise SidecarError(f"{path}: missing title")

    raw = _timestamp_field(data).strip()
    if not raw:
        raise SidecarError(f"{path}: missing photo taken timestamp")
    try:
        timestamp = int(raw)
    except ValueError as e:
        raise SidecarError(f"{path}: bad timestamp {raw!r}") from e

    return SidecarMetadata(path, title, timestamp)


def read_album_title(directory: Path) -> Optional[str]:
    """Album name from ``metadata.json`` next to the sidecar, or None."""
    try:
        with open(Path(directory) / ALBUM_METADATA_NAME, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    title = data.get("title")
    if isinstance(title, str) and title:
        return title
    return None


def is_sidecar(path: Path) -> bool:
    return path.suffix == SIDECAR_SUFFIX and path.name != ALBUM_METADATA_NAME


def to_utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def date_parts(timestamp: int) -> tuple[str, str, str]:
    t = to_utc(timestamp)
    return f"{t.year:04d}", f"{t.month:02d}", f"{t.day:02d}"


def exif_datetime(timestamp: int) -> str:
    return to_utc(timestamp).strftime(EXIF_DATETIME_FORMAT)
