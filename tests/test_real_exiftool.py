# SPDX-License-Identifier: GPL-3.0-or-later
"""Round trip through a real exiftool install; skipped when none is on PATH."""

from __future__ import annotations

import os
import shutil
import subprocess

import pytest

from takeoutfix.exiftool import ExifToolSession
from takeoutfix.pipeline import Pipeline, RunOptions

from tests.conftest import create_fake_jpeg, write_album, write_sidecar

pytestmark = [
    pytest.mark.exiftool,
    pytest.mark.skipif(shutil.which("exiftool") is None, reason="exiftool not installed"),
]


def read_tag(path, tag):
    return subprocess.run(
        ["exiftool", f"-{tag}", "-s", "-S", str(path)],
        capture_output=True, text=True, check=True,
    ).stdout.strip()


def test_write_and_probe_timestamp(tmp_path):
    image = tmp_path / "a.jpg"
    create_fake_jpeg(image)

    with ExifToolSession.open() as et:
        assert et.has_timestamp(image) is False
        et.write_timestamp(image, "2023:01:01 00:00:00")
        assert et.has_timestamp(image) is True

    assert read_tag(image, "DateTimeOriginal") == "2023:01:01 00:00:00"
    assert read_tag(image, "CreateDate") == "2023:01:01 00:00:00"
    assert not (tmp_path / "a.jpg_original").exists()


def test_sort_with_real_exiftool(takeout, tmp_path):
    album = takeout / "Album"
    album.mkdir()
    write_album(album, "Trip")
    create_fake_jpeg(album / "a.jpg", color="red")
    write_sidecar(album, "a.jpg")
    dest = tmp_path / "D"

    options = RunOptions("sort", takeout, dest=dest, workers=2, progress=False)
    summary = Pipeline(options).run()

    target = dest / "ALL_PHOTOS" / "2023" / "01" / "01" / "a.jpg"
    assert summary["processed"] == 1
    assert read_tag(target, "DateTimeOriginal") == "2023:01:01 00:00:00"
    assert os.readlink(dest / "Trip" / "a.jpg") == "../ALL_PHOTOS/2023/01/01/a.jpg"
