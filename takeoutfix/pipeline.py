# SPDX-License-Identifier: GPL-3.0-or-later
"""
Discovery, worker pool and the per-item transaction.

Each worker thread owns one resident exiftool session for its whole life and
pulls sidecar paths from a bounded queue fed by a producer thread. A sidecar
is carried through an ordered list of steps; any step may abandon the item,
which is recorded and the worker moves on. Nothing is rolled back and no
failure stops the batch.
"""

from __future__ import annotations

import itertools
import logging
import os
import queue
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from takeoutfix import fsops
from takeoutfix.exiftool import TIMESTAMP_TAGS, ExifToolError, ExifToolSession, SpawnFailed
from takeoutfix.progress import ProgressReporter
from takeoutfix.resolve import find_media_file
from takeoutfix.sidecar import (
    SidecarError,
    date_parts,
    exif_datetime,
    is_sidecar,
    read_album_title,
    read_sidecar,
)

DEFAULT_BUCKET = "ALL_PHOTOS"
MODES = ("scan", "update", "sort")

MEDIA_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp", ".heic", ".heif",
    ".mp4", ".mov", ".avi", ".mkv", ".wmv", ".flv", ".webm", ".m4v", ".3gp", ".mpg",
    ".mpeg", ".m2v", ".mts", ".m2ts",
    ".cr2", ".nef", ".arw", ".dng", ".orf", ".rw2", ".pef", ".sr2", ".x3f",
}

log = logging.getLogger("takeoutfix")


# ----------------------------
# Options, results and summary
# ----------------------------

class RunOptions:
    __slots__ = (
        "mode", "source", "dest", "dry_run", "keep_json", "keep_files",
        "on_duplicate", "bucket", "workers", "exiftool", "report_dir", "progress",
    )

    def __init__(
        self,
        mode: str,
        source: Path,
        dest: Optional[Path] = None,
        dry_run: bool = False,
        keep_json: bool = False,
        keep_files: bool = False,
        on_duplicate: str = "skip",
        bucket: Optional[str] = DEFAULT_BUCKET,
        workers: Optional[int] = None,
        exiftool: str = "exiftool",
        report_dir: Optional[Path] = None,
        progress: bool = True,
    ):
        if mode not in MODES:
            raise ValueError(f"unknown mode {mode!r}")
        if mode == "sort" and dest is None:
            raise ValueError("sort mode needs a destination directory")
        self.mode = mode
        self.source = Path(source)
        self.dest = Path(dest) if dest is not None else None
        self.dry_run = dry_run
        self.keep_json = keep_json
        self.keep_files = keep_files
        self.on_duplicate = on_duplicate
        self.bucket = bucket or None
        self.workers = max(1, workers or os.cpu_count() or 1)
        self.exiftool = exiftool
        self.report_dir = Path(report_dir) if report_dir is not None else Path.cwd()
        self.progress = progress


class ItemResult:
    __slots__ = ("source", "status", "media", "destination", "message")

    # sort/update: processed, already_present, duplicate, skipped, missing, error
    # scan: ok, no_timestamp
    def __init__(
        self,
        source: Path,
        status: str,
        media: Optional[Path] = None,
        destination: Optional[Path] = None,
        message: Optional[str] = None,
    ):
        self.source = source
        self.status = status
        self.media = media
        self.destination = destination
        self.message = message

    def __repr__(self):
        return (
            f"ItemResult(status={self.status!r}, "
            f"source={self.source.name}, "
            f"media={self.media.name if self.media else 'n/a'})"
        )


class RunSummary:
    STATUSES = ("processed", "already_present", "duplicate", "skipped", "missing",
                "error", "ok", "no_timestamp")

    def __init__(self, mode: str):
        self.mode = mode
        self.total = 0
        self.counts = dict.fromkeys(self.STATUSES, 0)
        self.report_path: Optional[Path] = None
        self.started_at = time.time()

    def update(self, result: ItemResult):
        self.total += 1
        self.counts[result.status] = self.counts.get(result.status, 0) + 1

    def __getitem__(self, status: str) -> int:
        return self.counts.get(status, 0)

    def print(self):
        duration = time.time() - self.started_at
        if self.mode == "scan":
            missing = self["no_timestamp"]
            print("\n=== SCAN RESULTS ===")
            print(f"Total media files scanned: {self.total}")
            print(f"Files missing ALL timestamp data: {missing}")
            print(f"Files with some timestamp data: {self.total - missing}")
            if self.total:
                print(f"Percentage missing timestamps: {missing / self.total * 100:.1f}%")
            if self.report_path:
                print(f"Report file: {self.report_path}")
        else:
            print("\n📊 Summary:")
            print(f"  Sidecars found           : {self.total}")
            print(f"  Processed                : {self['processed']}")
            if self.mode == "sort":
                print(f"  Already at destination   : {self['already_present']}")
                if self["duplicate"]:
                    print(f"  Duplicates removed       : {self['duplicate']}")
            print(f"  Skipped (bad sidecar)    : {self['skipped']}")
            print(f"  Media not found          : {self['missing']}")
            print(f"  Errors                   : {self['error']}")
        print(f"  Duration                 : {duration:.2f}s")
        fields = " ".join(f"{key}={value}" for key, value in self.counts.items())
        print(f"TAKEOUTFIX_SUMMARY mode={self.mode} total={self.total} {fields} duration={duration:.3f}")


# ----------------------------
# Discovery
# ----------------------------

def _walk_files(root: Path, logger: logging.Logger) -> Iterator[Path]:
    def on_error(err: OSError):
        logger.warning("Skipping unreadable path %s: %s", err.filename, err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames.sort()
        for name in sorted(filenames):
            yield Path(dirpath) / name


def iter_sidecars(root: Path, logger: Optional[logging.Logger] = None) -> Iterator[Path]:
    for path in _walk_files(Path(root), logger or log):
        if is_sidecar(path):
            yield path


def iter_media(root: Path, logger: Optional[logging.Logger] = None) -> Iterator[Path]:
    for path in _walk_files(Path(root), logger or log):
        if path.suffix.lower() in MEDIA_EXTENSIONS:
            yield path


# ----------------------------
# Per-item transaction
# ----------------------------

class ItemAbandoned(Exception):
    def __init__(self, status: str, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class ItemTransaction:
    """State carried through the steps for one sidecar."""

    def __init__(self, sidecar_path: Path, options: RunOptions,
                 session: Optional[ExifToolSession], logger: logging.Logger):
        self.sidecar_path = sidecar_path
        self.options = options
        self.session = session
        self.log = logger
        self.meta = None
        self.media: Optional[Path] = None
        self.date: Optional[tuple[str, str, str]] = None
        self.when: Optional[str] = None
        self.destination: Optional[Path] = None
        self.already_present = False
        self.duplicate_removed = False
        self.changed = False

    @property
    def dry(self) -> str:
        return "[dry-run] " if self.options.dry_run else ""

    def run(self, steps) -> ItemResult:
        try:
            for step in steps:
                step(self)
        except ItemAbandoned as e:
            return self.result(e.status, e.message)
        if self.duplicate_removed:
            return self.result("duplicate")
        if self.already_present:
            return self.result("already_present")
        return self.result("processed")

    def result(self, status: str, message: Optional[str] = None) -> ItemResult:
        return ItemResult(self.sidecar_path, status, media=self.media,
                          destination=self.destination, message=message)


def step_read_sidecar(txn: ItemTransaction):
    try:
        txn.meta = read_sidecar(txn.sidecar_path)
    except SidecarError as e:
        txn.log.info("Skipping sidecar: %s", e)
        raise ItemAbandoned("skipped", str(e)) from e


def step_resolve_media(txn: ItemTransaction):
    media = find_media_file(txn.sidecar_path.parent, txn.meta.title, logger=txn.log)
    if media is None:
        msg = f"no media file for '{txn.meta.title}' in {txn.sidecar_path.parent}"
        txn.log.info("Not found: %s", msg)
        raise ItemAbandoned("missing", msg)
    txn.media = media


def step_convert_timestamp(txn: ItemTransaction):
    try:
        txn.date = date_parts(txn.meta.timestamp)
        txn.when = exif_datetime(txn.meta.timestamp)
    except (OverflowError, OSError, ValueError) as e:
        msg = f"timestamp {txn.meta.timestamp} out of range in {txn.sidecar_path}"
        txn.log.info("Skipping sidecar: %s", msg)
        raise ItemAbandoned("skipped", msg) from e
    if txn.options.mode == "sort":
        txn.destination = canonical_path(txn.options, txn.date, txn.media.name)


def canonical_path(options: RunOptions, date: tuple[str, str, str], filename: str) -> Path:
    root = options.dest / options.bucket if options.bucket else options.dest
    return root.joinpath(*date, filename)


def step_check_destination(txn: ItemTransaction):
    dest = txn.destination
    if not (dest.exists() or dest.is_symlink()):
        return
    txn.already_present = True
    txn.log.debug("Already at destination: %s", dest)
    if txn.options.on_duplicate != "delete" or txn.options.keep_files:
        return

    try:
        identical = fsops.same_content(txn.media, dest)
    except OSError as e:
        txn.log.warning("Could not compare %s with %s: %s", txn.media, dest, e)
        return
    if not identical:
        txn.log.info("Different file already at %s; leaving %s in place", dest, txn.media)
        return

    try:
        fsops.remove_file(txn.media, simulate=txn.options.dry_run)
    except OSError as e:
        txn.log.warning("Could not delete duplicate source %s: %s", txn.media, e)
        return
    txn.duplicate_removed = True
    txn.log.info("%sDeleted identical duplicate source: %s", txn.dry, txn.media)


def step_rewrite_metadata(txn: ItemTransaction):
    if txn.already_present:
        return
    if txn.options.dry_run:
        txn.log.info("[dry-run] Would set capture time %s on %s", txn.when, txn.media)
        txn.changed = True
        return
    try:
        txn.session.write_timestamp(txn.media, txn.when)
    except ExifToolError as e:
        txn.log.error("exiftool failed for %s: %s", txn.media, e)
        raise ItemAbandoned("error", str(e)) from e
    txn.changed = True


def step_relocate(txn: ItemTransaction):
    if txn.already_present:
        return
    verb = "copy" if txn.options.keep_files else "move"
    try:
        fsops.move_or_copy(txn.media, txn.destination, simulate=txn.options.dry_run,
                           preserve_source=txn.options.keep_files)
    except OSError as e:
        txn.log.error("Could not %s %s to %s: %s", verb, txn.media, txn.destination, e)
        raise ItemAbandoned("error", str(e)) from e
    if txn.options.dry_run:
        txn.log.info("[dry-run] Would %s %s -> %s", verb, txn.media, txn.destination)
    else:
        txn.log.debug("%s %s -> %s", verb.capitalize(), txn.media, txn.destination)


def album_dir_name(title: str) -> Optional[str]:
    name = title.replace(os.sep, "_")
    if name in {".", ".."}:
        return None
    return name


def step_link_album(txn: ItemTransaction):
    title = read_album_title(txn.sidecar_path.parent)
    if not title:
        return
    name = album_dir_name(title)
    if name is None:
        txn.log.warning("Ignoring unusable album name %r in %s", title, txn.sidecar_path.parent)
        return

    album_dir = txn.options.dest / name
    try:
        fsops.ensure_directory(album_dir, simulate=txn.options.dry_run)
    except OSError as e:
        txn.log.warning("Could not create album directory %s: %s", album_dir, e)
        return

    target = os.path.relpath(txn.destination, album_dir)
    link = album_dir / txn.destination.name
    try:
        action = fsops.create_symlink(target, link, simulate=txn.options.dry_run)
    except OSError as e:
        txn.log.warning("Could not create symlink %s -> %s: %s", link, target, e)
        return
    if action != fsops.UNCHANGED:
        txn.log.debug("%sSymlink %s: %s -> %s", txn.dry, action, link, target)


def step_cleanup_sidecar(txn: ItemTransaction):
    if txn.options.keep_json:
        return
    if not (txn.changed or txn.duplicate_removed):
        return
    try:
        fsops.remove_file(txn.sidecar_path, simulate=txn.options.dry_run)
    except OSError as e:
        txn.log.warning("Could not delete sidecar %s: %s", txn.sidecar_path, e)
        return
    if txn.options.dry_run:
        txn.log.debug("[dry-run] Would delete sidecar %s", txn.sidecar_path)


UPDATE_STEPS = (
    step_read_sidecar,
    step_resolve_media,
    step_convert_timestamp,
    step_rewrite_metadata,
    step_cleanup_sidecar,
)

SORT_STEPS = (
    step_read_sidecar,
    step_resolve_media,
    step_convert_timestamp,
    step_check_destination,
    step_rewrite_metadata,
    step_relocate,
    step_link_album,
    step_cleanup_sidecar,
)


# ----------------------------
# Pool
# ----------------------------

Handler = Callable[[Path, Optional[ExifToolSession]], ItemResult]


class Pipeline:
    def __init__(
        self,
        options: RunOptions,
        logger: Optional[logging.Logger] = None,
        progress_factory=ProgressReporter,
        session_factory: Callable[[str], ExifToolSession] = ExifToolSession.open,
    ):
        self.options = options
        self.log = logger or log
        self.progress_factory = progress_factory
        self.session_factory = session_factory

    def run(self) -> RunSummary:
        match self.options.mode:
            case "scan":
                return self.scan()
            case "update":
                return self.process(UPDATE_STEPS)
            case "sort":
                return self.process(SORT_STEPS)

    # -- update / sort --

    def process(self, steps) -> RunSummary:
        opts = self.options
        summary = RunSummary(opts.mode)

        if opts.mode == "sort":
            fsops.ensure_directory(opts.dest, simulate=opts.dry_run)

        print(f"📄 Looking for JSON sidecars under {opts.source}")

        def handle(path: Path, session: Optional[ExifToolSession]) -> ItemResult:
            return ItemTransaction(path, opts, session, self.log).run(steps)

        # A dry run never writes metadata, so no exiftool is started for it.
        results = self.run_pool(iter_sidecars(opts.source, self.log), handle,
                                needs_session=not opts.dry_run, desc="Processing")
        for result in results:
            summary.update(result)
        if not summary.total:
            print("⚠️ No JSON sidecars found — nothing to do.")
        return summary

    # -- scan --

    def scan(self) -> RunSummary:
        opts = self.options
        summary = RunSummary("scan")
        print(f"🔍 Scanning {opts.source} for missing timestamps")
        print(f"   Looking for: {', '.join(TIMESTAMP_TAGS)}")

        def handle(path: Path, session: Optional[ExifToolSession]) -> ItemResult:
            try:
                found = session.has_timestamp(path)
            except ExifToolError as e:
                self.log.warning("Could not read metadata from %s: %s", path, e)
                return ItemResult(path, "no_timestamp", media=path, message=str(e))
            return ItemResult(path, "ok" if found else "no_timestamp", media=path)

        results = self.run_pool(iter_media(opts.source, self.log), handle,
                                needs_session=True, desc="Scanning")
        missing = []
        for result in results:
            summary.update(result)
            if result.status == "no_timestamp":
                missing.append(result.source)
        if not summary.total:
            print("⚠️ No media files found to scan.")
        summary.report_path = self.write_report(sorted(missing))
        return summary

    def write_report(self, missing: list[Path], now: Optional[datetime] = None) -> Path:
        now = now or datetime.now()
        self.options.report_dir.mkdir(parents=True, exist_ok=True)
        report = self.options.report_dir / f"missing_timestamps_{now:%Y%m%d_%H%M%S}.log"
        with open(report, "w", encoding="utf-8") as f:
            f.write("# Files Missing ALL Timestamp Data\n")
            f.write(f"# Scan Date: {now:%Y-%m-%d %H:%M:%S}\n")
            f.write(f"# Source Directory: {self.options.source}\n")
            f.write(f"# Checked Fields: {', '.join(TIMESTAMP_TAGS)}\n")
            f.write("#\n")
            for path in missing:
                f.write(f"{Path(path).absolute()}\n")
        self.log.info("Wrote %d paths to %s", len(missing), report)
        return report

    # -- worker pool --

    def run_pool(self, items: Iterable[Path], handler: Handler, needs_session: bool,
                 desc: str = "Processing") -> list[ItemResult]:
        """
        Start the workers, then discover on a producer thread.

        ``items`` is consumed lazily by the producer, so the walk overlaps with
        processing and the progress total grows as paths are found.
        """
        workers = self.options.workers
        jobs: queue.Queue = queue.Queue(maxsize=workers)
        results: queue.Queue = queue.Queue()
        progress = self.progress_factory(0, desc=desc, enabled=self.options.progress)
        self.log.debug("Starting %d workers", workers)

        threads = [
            threading.Thread(
                target=self._worker,
                args=(index, jobs, results, handler, needs_session, progress),
                name=f"takeoutfix-worker-{index}",
            )
            for index in range(1, workers + 1)
        ]
        for t in threads:
            t.start()

        producer = threading.Thread(
            target=self._produce, args=(items, jobs, results, threads, progress),
            name="takeoutfix-producer",
        )
        producer.start()
        producer.join()
        for t in threads:
            t.join()
        progress.close()

        # Anything still queued was never picked up because every worker died.
        while True:
            try:
                item = jobs.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                results.put(ItemResult(item, "error", message="no worker available"))

        collected = []
        while not results.empty():
            collected.append(results.get_nowait())
        return collected

    def _put(self, jobs: queue.Queue, item, threads) -> bool:
        while any(t.is_alive() for t in threads):
            try:
                jobs.put(item, timeout=0.2)
                return True
            except queue.Full:
                continue
        return False

    def _produce(self, items, jobs, results, threads, progress):
        pending = iter(items)
        try:
            for item in pending:
                progress.add_total()
                if not self._put(jobs, item, threads):
                    lost = 0
                    for path in itertools.chain([item], pending):
                        results.put(ItemResult(path, "error", message="no worker available"))
                        lost += 1
                    self.log.error("All workers have exited; %d items not processed", lost)
                    return
        except Exception:
            self.log.exception("Discovery stopped early")
        finally:
            # One sentinel per worker, even when discovery failed
            for _ in threads:
                if not self._put(jobs, None, threads):
                    break

    def _worker(self, index, jobs, results, handler, needs_session, progress):
        session = None
        if needs_session:
            try:
                session = self.session_factory(self.options.exiftool)
            except SpawnFailed as e:
                self.log.error("Worker %d: failed to start exiftool: %s", index, e)
                return

        try:
            while True:
                item = jobs.get()
                if item is None:
                    break
                try:
                    result = handler(item, session)
                except Exception as e:
                    self.log.exception("Worker %d: unexpected failure on %s", index, item)
                    result = ItemResult(item, "error", message=str(e))
                results.put(result)
                progress.advance()
        finally:
            if session is not None:
                try:
                    session.close()
                except ExifToolError as e:
                    self.log.warning("Worker %d: %s", index, e)
