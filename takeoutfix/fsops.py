# SPDX-License-Identifier: GPL-3.0-or-later
"""
Filesystem side effects used by the sort/update pipeline.

Every helper takes ``simulate``; when it is set nothing on disk is touched.
Errors are raised as ``OSError`` and never retried here, the caller decides
what a failure means for the current item.
"""

from __future__ import annotations

import filecmp
import os
import shutil
from pathlib import Path

CREATED = "created"
REPLACED = "replaced"
UNCHANGED = "unchanged"


def ensure_directory(path: Path, simulate: bool = False) -> None:
    if simulate:
        return
    Path(path).mkdir(parents=True, exist_ok=True)


def copy_file(src: Path, dest: Path) -> None:
    """Byte copy that keeps the source's permission bits."""
    shutil.copyfile(src, dest)
    shutil.copymode(src, dest)


def move_or_copy(src: Path, dest: Path, simulate: bool = False,
                 preserve_source: bool = False) -> None:
    if simulate:
        return
    Path(dest).parent.mkdir(parents=True, exist_ok=True)
    if preserve_source:
        copy_file(src, dest)
    else:
        os.rename(src, dest)


def create_symlink(target: str, link: Path, simulate: bool = False) -> str:
    """
    Point ``link`` at ``target``, idempotently.

    Returns UNCHANGED when the link already points at ``target``, REPLACED
    when something else had to be removed first, CREATED otherwise. With
    ``simulate`` the same answer is returned without touching anything.
    """
    link = Path(link)
    target = str(target)
    action = CREATED
    if link.is_symlink():
        if os.readlink(link) == target:
            return UNCHANGED
        action = REPLACED
    elif link.exists():
        action = REPLACED

    if simulate:
        return action
    if action == REPLACED:
        if link.is_dir() and not link.is_symlink():
            # rmdir refuses a non-empty directory
            link.rmdir()
        else:
            link.unlink()
    os.symlink(target, link)
    return action


def same_content(a: Path, b: Path) -> bool:
    return filecmp.cmp(a, b, shallow=False)


def remove_file(path: Path, simulate: bool = False) -> None:
    if simulate:
        return
    Path(path).unlink()
