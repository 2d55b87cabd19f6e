"""Command-line entry point for Flatten.

Parses arguments, configures logging, wires Ctrl-C to the cancellation
gate and runs :class:`flatten.orchestrator.FlattenRun`.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from tqdm.contrib.logging import logging_redirect_tqdm

from flatten import __version__
from flatten.config import ConfigManager
from flatten.discovery import LISTING_SOURCES
from flatten.errors import DiscoveryError
from flatten.orchestrator import FlattenRun, RunState, RunSummary
from flatten.transfer import LinkFlattener, make_transient_predicate
from flatten.ui.progress import ConsoleProgress
from flatten.ui.prompt import confirm_flatten
from flatten.utils.path_helpers import human_readable_size, normalize_local_path
from flatten.work import CancellationGate

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DISCOVERY_ERROR = 1
EXIT_BAD_INPUT = 2

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
_DATE_FORMAT = "%H:%M:%S"


def _configure_logging(level: int | str) -> None:
    """Set up root logging to stderr."""
    logging.basicConfig(
        level=level,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        stream=sys.stderr,
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="flatten",
        description="Flattens symlinks into files",
    )
    p.add_argument("directory", metavar="DIRECTORY", help="Directory to flatten recursively")
    p.add_argument(
        "-s",
        "--skip-dir",
        dest="skip_dirs",
        action="extend",
        nargs="+",
        default=[],
        metavar="SUBSTR",
        help="Directories to skip, matches partial name",
    )
    p.add_argument("-w", "--workers", type=int, help="Number of worker threads")
    p.add_argument("--retry-limit", type=int, help="Retries for network errors (default: 3)")
    p.add_argument("--retry-delay", type=float, help="Seconds between retries (default: 10)")
    p.add_argument("--listing", choices=LISTING_SOURCES, help="How to enumerate the tree")
    p.add_argument("--listing-file", type=Path, help="Parse a pre-captured 'dir /s' listing")
    p.add_argument("--config-dir", type=Path, help="Directory holding config.json")
    p.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    return p


def install_interrupt_handler(gate: CancellationGate) -> dict[int, object]:
    """Route SIGINT (and SIGTERM where present) to *gate*.

    Returns the handlers that were replaced, for :func:`restore_handlers`.
    Outside the main thread signals cannot be hooked and nothing is installed.
    """

    def _handler(signum, frame) -> None:
        logger.warning("Exiting.. (finishing links already in progress)")
        gate.request_cancel()

    previous: dict[int, object] = {}
    signums = [signal.SIGINT]
    if hasattr(signal, "SIGTERM"):
        signums.append(signal.SIGTERM)
    for signum in signums:
        try:
            previous[signum] = signal.signal(signum, _handler)
        except ValueError:
            logger.debug("Not in main thread; Ctrl-C will not cancel the run")
            break
    return previous


def restore_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        if handler is not None:
            signal.signal(signum, handler)


def _report(summary: RunSummary) -> None:
    if summary.found == 0:
        print("No symlinks found, exiting")
        return
    if summary.declined:
        print("Nothing flattened")
        return
    print(
        f"Flattened {summary.succeeded} of {summary.found} symlinks "
        f"({human_readable_size(summary.bytes_copied)} copied)"
    )
    if summary.cancelled:
        print(f"Cancelled after {summary.processed} symlinks")
    for path in summary.cancelled_items:
        print(f"  left as a symlink (cancelled during retry): {path}")
    if summary.failures:
        print(f"{len(summary.failures)} symlinks could not be flattened")
    for failure in summary.orphaned:
        print(f"  copied data left at {failure.temp_path} (for {failure.path})")
    print("Done")


def _log_level(name: object) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def main(argv: list[str] | None = None) -> int:
    """Run the CLI; return the process exit code."""
    args = _build_parser().parse_args(argv)

    try:
        config = ConfigManager(base_dir=args.config_dir)
    except OSError as exc:
        print(f"Cannot use config directory: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT

    _configure_logging(logging.DEBUG if args.verbose else _log_level(config.get("log_level", "INFO")))

    root = normalize_local_path(args.directory)
    if not root.is_dir():
        logger.error("Directory does not exist: %s", root)
        return EXIT_BAD_INPUT

    workers = args.workers if args.workers is not None else config.get_int("workers", minimum=1)
    retry_limit = args.retry_limit if args.retry_limit is not None else config.get_int("retry_limit")
    retry_delay = args.retry_delay if args.retry_delay is not None else config.get_float("retry_delay")
    if workers < 1 or retry_limit < 0 or retry_delay < 0:
        logger.error("workers must be >= 1; retry limit and delay must be >= 0")
        return EXIT_BAD_INPUT

    skip_dirs = [str(s) for s in (*config.get_list("skip_dirs"), *args.skip_dirs)]
    if skip_dirs:
        logger.info("Skipping directories containing: %s", ", ".join(skip_dirs))

    try:
        is_transient = make_transient_predicate(
            config.get_list("transient_winerror_codes"),
            config.get_list("transient_errno_codes"),
        )
    except (TypeError, ValueError) as exc:
        logger.error("Invalid transient error codes in %s: %s", config.path, exc)
        return EXIT_BAD_INPUT
    flattener = LinkFlattener(
        temp_suffix=str(config.get("temp_suffix") or ".temp"),
        is_transient=is_transient,
    )
    gate = CancellationGate()
    progress: ConsoleProgress | None = None
    previous_handlers: dict[int, object] = {}

    def on_state_change(state: RunState) -> None:
        nonlocal progress, previous_handlers
        if state == RunState.PROCESSING:
            previous_handlers = install_interrupt_handler(gate)
            progress = ConsoleProgress(total=run.found, disable=args.no_progress)
            run.on_item_start = progress.on_item_start
            run.on_item_complete = progress.on_item_complete
        elif state == RunState.DONE and progress is not None:
            progress.close()

    run = FlattenRun(
        root,
        skip_dirs=skip_dirs,
        workers=workers,
        confirm=confirm_flatten,
        flattener=flattener,
        max_retries=retry_limit,
        retry_delay=retry_delay,
        listing_source=args.listing or str(config.get("listing_source", "auto")),
        listing_file=args.listing_file,
        gate=gate,
        on_state_change=on_state_change,
    )

    try:
        with logging_redirect_tqdm():
            summary = run.run()
    except DiscoveryError as exc:
        logger.error("%s", exc)
        return EXIT_DISCOVERY_ERROR
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_BAD_INPUT
    except KeyboardInterrupt:
        logger.warning("Exiting..")
        return EXIT_OK
    finally:
        restore_handlers(previous_handlers)

    _report(summary)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
