# SPDX-License-Identifier: GPL-3.0-or-later

import json
import os
import sys
from pathlib import Path

import pytest
from PIL import Image

FAKE_EXIFTOOL_SCRIPT = Path(__file__).resolve().parent / "fake_exiftool.py"

# 2023-01-01 00:00:00 UTC
NEW_YEAR_2023 = 1672531200


def create_fake_jpeg(path: Path, color: str = "white"):
    image = Image.new("RGB", (10, 10), color)
    image.save(path, "JPEG", quality=85)


def write_sidecar(directory: Path, title: str, timestamp=NEW_YEAR_2023, name: str | None = None) -> Path:
    path = directory / (name or f"{title}.json")
    path.write_text(json.dumps({"title": title, "photoTakenTime": {"timestamp": str(timestamp)}}))
    return path


def write_album(directory: Path, title: str) -> Path:
    path = directory / "metadata.json"
    path.write_text(json.dumps({"title": title, "description": ""}))
    return path


def snapshot(root: Path) -> dict:
    """Everything observable about a tree: types, bytes, link targets."""
    state = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            p = Path(dirpath) / name
            rel = str(p.relative_to(root))
            if p.is_symlink():
                state[rel] = ("link", os.readlink(p))
            elif p.is_dir():
                state[rel] = ("dir", None)
            else:
                state[rel] = ("file", p.read_bytes(), p.stat().st_mode)
    return state


class FakeExifTool:
    def __init__(self, path: Path, log_path: Path):
        self.path = path
        self.log_path = log_path

    def calls(self) -> list[dict]:
        if not self.log_path.exists():
            return []
        return [json.loads(line) for line in self.log_path.read_text().splitlines() if line]


@pytest.fixture
def fake_exiftool(tmp_path, monkeypatch) -> FakeExifTool:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    wrapper = bin_dir / "exiftool"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_EXIFTOOL_SCRIPT}" "$@"\n')
    wrapper.chmod(0o755)
    log_path = tmp_path / "exiftool_calls.jsonl"
    monkeypatch.setenv("FAKE_EXIFTOOL_LOG", str(log_path))
    monkeypatch.delenv("FAKE_EXIFTOOL_CRASH_ON", raising=False)
    monkeypatch.delenv("FAKE_EXIFTOOL_EXIT_CODE", raising=False)
    return FakeExifTool(wrapper, log_path)


@pytest.fixture
def takeout(tmp_path) -> Path:
    root = tmp_path / "takeout"
    root.mkdir()
    return root
