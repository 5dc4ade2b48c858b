# SPDX-License-Identifier: GPL-3.0-or-later
"""
Resident exiftool process driven over its ``-stay_open`` argfile protocol.

One session is started per worker thread and reused for every file that
worker handles, so exiftool's Perl start-up cost is paid once per worker
instead of once per file.
"""

from __future__ import annotations

import contextlib
import logging
import re
import subprocess
import threading
from pathlib import Path

READY_MARKER = "{ready}"
EXECUTE = "-execute"
UPDATED_RE = re.compile(r"^\s*[1-9]\d* image files updated", re.MULTILINE)

TIMESTAMP_TAGS = [
    "DateTimeOriginal",
    "MediaCreateDate",
    "CreationDate",
    "TrackCreateDate",
    "CreateDate",
    "DateTimeDigitized",
    "GPSDateStamp",
    "DateTime",
]

log = logging.getLogger("takeoutfix")


class ExifToolError(RuntimeError):
    """The exiftool pipe broke or the session is no longer usable."""


class SpawnFailed(ExifToolError):
    pass


class ProcessExitFailure(ExifToolError):
    pass


class ExifToolSession:
    __slots__ = ("executable", "_proc", "_stderr_thread", "_closed")

    def __init__(self, proc: subprocess.Popen, executable: str = "exiftool"):
        self.executable = executable
        self._proc = proc
        self._closed = False
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name="exiftool-stderr", daemon=True
        )
        self._stderr_thread.start()

    @classmethod
    def open(cls, executable: str = "exiftool") -> "ExifToolSession":
        cmd = [executable, "-stay_open", "True", "-@", "-"]
        log.debug("Starting exiftool: %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                bufsize=1,
            )
        except OSError as e:
            raise SpawnFailed(f"could not start {executable}: {e}") from e
        return cls(proc, executable=executable)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        pid = self._proc.pid if self._proc else None
        return f"ExifToolSession(pid={pid}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    def _drain_stderr(self):
        # exiftool blocks once the stderr pipe fills, so it is always read.
        stream = self._proc.stderr
        if stream is None:
            return
        for line in stream:
            line = line.rstrip("\n")
            if line:
                log.debug("exiftool stderr: %s", line)

    def execute(self, *args: str) -> str:
        """Run one exiftool command and return its stdout, minus the ready marker."""
        if self._closed:
            raise ExifToolError("exiftool session is closed")

        try:
            for arg in args:
                self._proc.stdin.write(f"{arg}\n")
            self._proc.stdin.write(f"{EXECUTE}\n")
            self._proc.stdin.flush()
        except (OSError, ValueError) as e:
            raise ExifToolError(f"writing to exiftool failed: {e}") from e

        lines: list[str] = []
        while True:
            line = self._proc.stdout.readline()
            if not line:
                raise ExifToolError("exiftool closed its output before {ready}")
            line = line.rstrip("\r\n")
            if line.startswith(READY_MARKER):
                break
            lines.append(line)
        return "\n".join(lines)

    def close(self):
        """Ask exiftool to leave stay-open mode and reap it."""
        if self._closed:
            return
        self._closed = True
        try:
            self._proc.stdin.write("-stay_open\nFalse\n")
            self._proc.stdin.flush()
        except OSError as e:
            log.debug("exiftool stdin already closed: %s", e)
        finally:
            with contextlib.suppress(OSError):
                self._proc.stdin.close()
        code = self._proc.wait()
        if self._proc.stdout is not None:
            self._proc.stdout.close()
        self._stderr_thread.join(timeout=1)
        if not self._stderr_thread.is_alive() and self._proc.stderr is not None:
            self._proc.stderr.close()
        if code != 0:
            raise ProcessExitFailure(f"exiftool exited with status {code}")

    # ----------------------------
    # Commands used by the pipeline
    # ----------------------------

    def write_timestamp(self, path: Path, when: str) -> str:
        output = self.execute(
            "-overwrite_original",
            f"-CreateDate={when}",
            f"-DateTimeOriginal={when}",
            str(Path(path).absolute()),
        )
        if not UPDATED_RE.search(output):
            raise ExifToolError(f"exiftool did not update {path}: {output.strip() or 'no output'}")
        return output

    def has_timestamp(self, path: Path) -> bool:
        args = [f"-{tag}" for tag in TIMESTAMP_TAGS]
        output = self.execute(*args, "-s", "-S", str(Path(path).absolute()))
        return any(looks_like_timestamp(line) for line in output.splitlines())


def looks_like_timestamp(line: str) -> bool:
    """With -s -S exiftool prints bare values; accept anything date-shaped."""
    value = line.strip()
    if not value or value == "-":
        return False
    if "error" in value.lower() or "warning" in value.lower():
        return False
    if ":" in value and len(value) >= 10:
        return True
    return False
