#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
"""
Fix capture dates and reorganize a Google Photos Takeout export.

Modes:
  scan    report media files that carry no timestamp at all
  update  write the sidecar's photo-taken time into each media file in place
  sort    update, then move files into <dest>/ALL_PHOTOS/YYYY/MM/DD and
          recreate albums as symlinks
"""

import argparse
import contextlib
import io
import logging
import os
import shutil
import sys
from pathlib import Path

from tqdm.contrib.logging import logging_redirect_tqdm

from takeoutfix.pipeline import DEFAULT_BUCKET, MODES, Pipeline, RunOptions

__version__ = "0.3.0"

__license__ = '''Licensed under GNU GENERAL PUBLIC LICENSE v3, see the supplied file "LICENSE" for details.
THERE IS NO WARRANTY FOR THE PROGRAM, TO THE EXTENT PERMITTED BY APPLICABLE LAW, not even for MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.
See section 15 and section 16 in the supplied "LICENSE" file.'''


# ----------------------------
# Logger
# ----------------------------

def setup_logger(level: str = "info"):
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "error": logging.ERROR,
        "crit": logging.CRITICAL,
    }
    logger = logging.getLogger("takeoutfix")
    logger.setLevel(level_map.get(level.lower(), logging.INFO))
    handler = logging.StreamHandler()
    formatter = logging.Formatter("🔎 [%(levelname)s] %(message)s")
    handler.setFormatter(formatter)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    return logger


log = logging.getLogger("takeoutfix")

DEBUG_ENV_VARS = (
    "TAKEOUTFIX_WORKERS",
    "TAKEOUTFIX_BUCKET",
    "TAKEOUTFIX_ON_DUPLICATE",
    "TAKEOUTFIX_EXIFTOOL",
)


def show_version():
    script_name = os.path.basename(sys.argv[0])
    print(f"{script_name} {__version__}")
    print(__license__)


# ----------------------------
# Pre-flight checks
# ----------------------------

def check_source_dir(path: Path):
    if not path.exists():
        print(f"❌ Source directory does not exist: {path}", file=sys.stderr)
        sys.exit(1)
    if not path.is_dir():
        print(f"❌ Source path is not a directory: {path}", file=sys.stderr)
        sys.exit(1)


def check_exiftool(executable: str):
    if shutil.which(executable) is None:
        print(f"❌ '{executable}' not found. Please install exiftool and make sure it is on your PATH.",
              file=sys.stderr)
        sys.exit(1)


def _env_int(name: str):
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        log.warning("Ignoring %s=%r: not an integer", name, value)
        return None


# ----------------------------
# CLI
# ----------------------------

def _run(args: argparse.Namespace) -> int:
    if args.quiet:
        args.log_level = "crit"
        args.debug = False
        args.no_progress = True
        with contextlib.redirect_stdout(io.StringIO()) as stdout_buffer:
            try:
                return _run_inner(args)
            except SystemExit as exc:
                code = exc.code if isinstance(exc.code, int) else 1
                if code != 0:
                    sys.stderr.write(stdout_buffer.getvalue())
                return code
            except Exception:
                sys.stderr.write(stdout_buffer.getvalue())
                raise
    return _run_inner(args)


def _run_inner(args: argparse.Namespace) -> int:
    global log
    if args.debug:
        args.log_level = "debug"

    log = setup_logger(args.log_level)

    if log.isEnabledFor(logging.DEBUG):
        log.debug("Debug logging enabled")
        formatted_args = {
            key: str(value) if isinstance(value, Path) else value
            for key, value in vars(args).items()
        }
        log.debug("CLI arguments: %s", formatted_args)
        env_snapshot = {name: os.getenv(name) for name in DEBUG_ENV_VARS}
        log.debug("Environment snapshot: %s", env_snapshot)

    if args.version:
        show_version()
        sys.exit(0)

    if args.mode is None or args.source is None:
        print("❌ A mode (scan, update, sort) and a source directory are required.", file=sys.stderr)
        sys.exit(1)
    if args.mode == "sort" and args.dest is None:
        print("❌ Destination directory (--dest) is required for sort mode.", file=sys.stderr)
        sys.exit(1)

    check_source_dir(args.source)
    # A dry run of update/sort never starts exiftool.
    if args.mode == "scan" or not args.dry_run:
        check_exiftool(args.exiftool)

    options = RunOptions(
        mode=args.mode,
        source=args.source,
        dest=args.dest,
        dry_run=args.dry_run,
        keep_json=args.keep_json,
        keep_files=args.keep_files,
        on_duplicate=args.on_duplicate,
        bucket=None if args.no_bucket else args.bucket,
        workers=args.workers,
        exiftool=args.exiftool,
        report_dir=args.report_dir,
        progress=not args.no_progress,
    )

    print(f"🚀 {options.mode.capitalize()} mode: {options.source}")
    if options.dest is not None:
        print(f"📁 Destination directory: {options.dest}")
    print(f"🧵 Workers: {options.workers}")
    if options.dry_run:
        print("📝 Dry run: no files will be modified.")

    pipeline = Pipeline(options, logger=log)
    try:
        with logging_redirect_tqdm(loggers=[log]):
            summary = pipeline.run()
    except OSError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)

    summary.print()
    if options.dry_run and options.mode != "scan":
        print("📝 This was a dry run — no changes were made.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="takeoutfix",
        description="Fix capture dates and reorganize a Google Photos Takeout export.",
        epilog=(
            "sort layout:\n"
            "  <dest>/ALL_PHOTOS/<year>/<month>/<day>/<filename>\n"
            "  <dest>/<album>/<filename>  (symlinks into ALL_PHOTOS)"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("mode", nargs="?", choices=MODES, help="What to do")
    parser.add_argument("source", nargs="?", type=Path, help="Root of the Takeout export")
    parser.add_argument("--dest", type=Path, help="Destination directory (sort mode)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done without changing anything")
    parser.add_argument("--keep-json", action="store_true", help="Keep JSON sidecars after processing")
    parser.add_argument("--keep-files", action="store_true",
                        help="Copy files into the destination instead of moving them")
    parser.add_argument("--on-duplicate", choices=["skip", "delete"],
                        default=os.getenv("TAKEOUTFIX_ON_DUPLICATE", "skip"),
                        help="When the destination already exists: 'skip' leaves the source alone, "
                             "'delete' removes the source if it is byte-identical")
    parser.add_argument("--bucket", default=os.getenv("TAKEOUTFIX_BUCKET", DEFAULT_BUCKET),
                        help=f"Directory under --dest holding the date tree (default: {DEFAULT_BUCKET})")
    parser.add_argument("--no-bucket", action="store_true",
                        help="Put the date tree directly under --dest")
    parser.add_argument("--workers", type=int, metavar="N", default=_env_int("TAKEOUTFIX_WORKERS"),
                        help="Number of worker threads (default: number of CPUs)")
    parser.add_argument("--exiftool", default=os.getenv("TAKEOUTFIX_EXIFTOOL", "exiftool"),
                        help="exiftool executable")
    parser.add_argument("--report-dir", type=Path, default=None,
                        help="Where scan mode writes its report (default: current directory)")
    parser.add_argument("--no-progress", action="store_true", help="Do not draw a progress bar")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress all output on success")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    parser.add_argument("--log-level", choices=["debug", "info", "warn", "error", "crit"], default="info",
                        help="Set log verbosity")
    parser.add_argument("-v", "--version", action="store_true", help="Show version and license")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return _run(args)


if __name__ == "__main__":
    raise SystemExit(main())
