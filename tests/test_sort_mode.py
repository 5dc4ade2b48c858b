# SPDX-License-Identifier: GPL-3.0-or-later
"""
End-to-end sort runs against the fake exiftool.

Covers:
  - date tree layout with and without the ALL_PHOTOS bucket
  - album directories made of relative symlinks
  - files already at their destination are left untouched
  - re-running over a finished destination is a no-op
"""

from __future__ import annotations

import os
from pathlib import Path

from takeoutfix.pipeline import Pipeline, RunOptions

from tests.conftest import snapshot, write_album, write_sidecar


def sort(source: Path, dest: Path, fake, **kw):
    kw.setdefault("workers", 1)
    options = RunOptions("sort", source, dest=dest, exiftool=str(fake.path), progress=False, **kw)
    return Pipeline(options).run()


def test_sort_moves_into_date_tree(takeout, tmp_path, fake_exiftool):
    (takeout / "a.jpg").write_bytes(b"jpeg")
    sidecar = write_sidecar(takeout, "a.jpg")
    dest = tmp_path / "D"

    summary = sort(takeout, dest, fake_exiftool)

    target = dest / "ALL_PHOTOS" / "2023" / "01" / "01" / "a.jpg"
    assert summary["processed"] == 1
    assert target.read_bytes() == b"jpeg"
    assert not (takeout / "a.jpg").exists()
    assert not sidecar.exists()
    # No album metadata, so nothing but the bucket at the top level
    assert sorted(p.name for p in dest.iterdir()) == ["ALL_PHOTOS"]
    assert fake_exiftool.calls()[0]["file"] == str((takeout / "a.jpg").absolute())


def test_sort_without_bucket(takeout, tmp_path, fake_exiftool):
    (takeout / "a.jpg").write_bytes(b"jpeg")
    write_sidecar(takeout, "a.jpg")
    write_album(takeout, "Trip")
    dest = tmp_path / "D"

    sort(takeout, dest, fake_exiftool, bucket=None)

    assert (dest / "2023" / "01" / "01" / "a.jpg").read_bytes() == b"jpeg"
    assert os.readlink(dest / "Trip" / "a.jpg") == os.path.join("..", "2023", "01", "01", "a.jpg")


def test_sort_creates_album_symlinks(takeout, tmp_path, fake_exiftool):
    album = takeout / "Trip to the sea"
    album.mkdir()
    write_album(album, "Trip")
    for name in ("a.jpg", "b.jpg"):
        (album / name).write_bytes(name.encode())
        write_sidecar(album, name)
    dest = tmp_path / "D"

    summary = sort(takeout, dest, fake_exiftool, workers=2)

    assert summary["processed"] == 2
    for name in ("a.jpg", "b.jpg"):
        link = dest / "Trip" / name
        assert link.is_symlink()
        assert os.readlink(link) == os.path.join("..", "ALL_PHOTOS", "2023", "01", "01", name)
        assert link.read_bytes() == name.encode()


def test_existing_destination_gets_linked_but_not_rewritten(takeout, tmp_path, fake_exiftool):
    (takeout / "a.jpg").write_bytes(b"incoming")
    sidecar = write_sidecar(takeout, "a.jpg")
    write_album(takeout, "Trip")
    dest = tmp_path / "D"
    existing = dest / "ALL_PHOTOS" / "2023" / "01" / "01" / "a.jpg"
    existing.parent.mkdir(parents=True)
    existing.write_bytes(b"already here")

    summary = sort(takeout, dest, fake_exiftool)

    assert summary["already_present"] == 1
    assert fake_exiftool.calls() == []
    assert existing.read_bytes() == b"already here"
    assert os.readlink(dest / "Trip" / "a.jpg") == "../ALL_PHOTOS/2023/01/01/a.jpg"
    assert sidecar.exists()
    assert (takeout / "a.jpg").read_bytes() == b"incoming"


def test_identical_duplicates_are_removed_on_request(takeout, tmp_path, fake_exiftool):
    (takeout / "a.jpg").write_bytes(b"same")
    sidecar = write_sidecar(takeout, "a.jpg")
    dest = tmp_path / "D"
    existing = dest / "ALL_PHOTOS" / "2023" / "01" / "01" / "a.jpg"
    existing.parent.mkdir(parents=True)
    existing.write_bytes(b"same")

    summary = sort(takeout, dest, fake_exiftool, on_duplicate="delete")

    assert summary["duplicate"] == 1
    assert not (takeout / "a.jpg").exists()
    assert not sidecar.exists()
    assert existing.read_bytes() == b"same"


def test_keep_files_copies_instead_of_moving(takeout, tmp_path, fake_exiftool):
    (takeout / "a.jpg").write_bytes(b"jpeg")
    sidecar = write_sidecar(takeout, "a.jpg")
    dest = tmp_path / "D"

    summary = sort(takeout, dest, fake_exiftool, keep_files=True)

    assert summary["processed"] == 1
    assert (takeout / "a.jpg").read_bytes() == b"jpeg"
    assert (dest / "ALL_PHOTOS" / "2023" / "01" / "01" / "a.jpg").read_bytes() == b"jpeg"
    assert not sidecar.exists()


def test_second_run_is_a_no_op(takeout, tmp_path, fake_exiftool):
    album = takeout / "Album"
    album.mkdir()
    write_album(album, "Trip")
    (album / "a.jpg").write_bytes(b"jpeg")
    write_sidecar(album, "a.jpg")
    dest = tmp_path / "D"

    sort(takeout, dest, fake_exiftool, keep_files=True, keep_json=True)
    calls_after_first = len(fake_exiftool.calls())
    before = snapshot(dest)

    summary = sort(takeout, dest, fake_exiftool, keep_files=True, keep_json=True)

    assert summary["already_present"] == 1
    assert len(fake_exiftool.calls()) == calls_after_first
    assert snapshot(dest) == before


def test_sort_dry_run_changes_nothing(takeout, tmp_path):
    album = takeout / "Album"
    album.mkdir()
    write_album(album, "Trip")
    (album / "a.jpg").write_bytes(b"jpeg")
    write_sidecar(album, "a.jpg")
    dest = tmp_path / "D"
    before = snapshot(tmp_path)

    def no_exiftool(executable):
        raise AssertionError("dry run must not start exiftool")

    options = RunOptions("sort", takeout, dest=dest, dry_run=True, workers=2, progress=False)
    summary = Pipeline(options, session_factory=no_exiftool).run()

    assert summary["processed"] == 1
    assert snapshot(tmp_path) == before
    assert not dest.exists()
