# SPDX-License-Identifier: GPL-3.0-or-later
"""
Find the media file a sidecar describes.

Takeout exports do not always store the file under the name recorded in the
sidecar's ``title``: long names get cut to a byte length, ``name_1.jpg``
becomes ``name(1).jpg``, quotes become underscores and extension case drifts.
The candidates below are tried in order and the first one that exists wins.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional

TRUNCATION_LENGTHS = (48, 47, 46)
NUMBERED_SUFFIX_RE = re.compile(r"_(\d+)$")
QUOTE_CHARS = ("'", '"')

log = logging.getLogger("takeoutfix")


def find_media_file(directory: Path, title: str,
                    logger: Optional[logging.Logger] = None) -> Optional[Path]:
    logger = logger or log
    directory = Path(directory)

    exact = directory / title
    if exact.exists():
        return exact

    basename, ext = os.path.splitext(title)

    # Takeout truncates on encoded bytes, which may split a multi-byte character
    raw = os.fsencode(basename)
    for length in TRUNCATION_LENGTHS:
        if len(raw) > length:
            candidate = directory / f"{os.fsdecode(raw[:length])}{ext}"
            if candidate.exists():
                logger.debug("Matched '%s' by %d-byte truncation: %s", title, length, candidate.name)
                return candidate

    m = NUMBERED_SUFFIX_RE.search(basename)
    if m:
        candidate = directory / f"{basename[:m.start()]}({m.group(1)}){ext}"
        if candidate.exists():
            logger.debug("Matched '%s' by numbered suffix: %s", title, candidate.name)
            return candidate

    if any(q in title for q in QUOTE_CHARS):
        replaced = title
        for q in QUOTE_CHARS:
            replaced = replaced.replace(q, "_")
        candidate = directory / replaced
        if candidate.exists():
            logger.debug("Matched '%s' by replacing quotes: %s", title, candidate.name)
            return candidate

    for label, new_ext in (("lower-case", ext.lower()), ("upper-case", ext.upper())):
        if new_ext != ext:
            candidate = directory / f"{basename}{new_ext}"
            if candidate.exists():
                logger.debug("Matched '%s' with %s extension: %s", title, label, candidate.name)
                return candidate

    return None
