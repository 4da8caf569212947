from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path

from .batch import collect_tasks, process_batch
from .report import build_report, format_result, format_summary, save_report_json
from .results import RecompressResult
from .settings import CrushSettings, default_tool_path, default_workers, normalize_extensions
from .state import RunState


logger = logging.getLogger("crush")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _positive_int(text: str) -> int:
    n = int(text)
    if n < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="crush",
        description="Recompress JPEG files in place with jpeg-recompress.",
    )
    p.add_argument("paths", nargs="*", help="Files to recompress (default: JPEGs in the current directory)")

    # Tool
    p.add_argument("--tool", type=Path, default=None, help="Path to jpeg-recompress (default: next to this program)")
    p.add_argument(
        "--quality",
        choices=["low", "medium", "high", "veryhigh"],
        default="veryhigh",
        help="jpeg-recompress quality preset (default: veryhigh)",
    )

    # Scheduling
    p.add_argument("-j", "--jobs", type=_positive_int, default=None, help="Concurrent recompressions (default: CPU count)")
    p.add_argument("--keep-going", action="store_true", help="Keep starting new files after a failure")

    # Output handling
    p.add_argument("--always-replace", action="store_true", help="Replace the original even if the output isn't smaller")
    p.add_argument("--no-verify", action="store_true", help="Don't check that the output is a readable JPEG")
    p.add_argument("--ext", action="append", default=None, help="Extension to scan for (repeatable, default: .jpg)")
    p.add_argument("--report", type=Path, default=None, help="Write a JSON report to this path")

    # Logging
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("-q", "--quiet", action="store_true", help="Only log errors")

    return p


def configure_logging(verbose: bool, quiet: bool) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")
    logger.setLevel(level)


def settings_from_args(args: argparse.Namespace) -> CrushSettings:
    return CrushSettings(
        tool_path=args.tool if args.tool is not None else default_tool_path(),
        quality=args.quality,
        workers=args.jobs if args.jobs is not None else default_workers(),
        cancel_on_error=not args.keep_going,
        only_if_smaller=not args.always_replace,
        verify_output=not args.no_verify,
        extensions=normalize_extensions(args.ext),
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    settings = settings_from_args(args)

    try:
        tasks = collect_tasks(args.paths, settings)
    except OSError as e:
        logger.critical("cannot list JPEGs: %s", e)
        return EXIT_FAILURE

    if not tasks:
        logger.info("No JPEGs to recompress.")
        return EXIT_OK

    logger.debug("%d file(s), %d worker(s), tool %s", len(tasks), settings.workers, settings.tool_path)

    def show(r: RecompressResult) -> None:
        # failures are already logged by the scheduler
        if r.failed or (r.skipped_reason == "cancelled" and not args.verbose):
            return
        if not args.quiet:
            print(format_result(r), flush=True)

    state = RunState()

    def handle_sigint(signum, frame):  # noqa: ARG001
        if not state.interrupted:
            logger.warning("Interrupted, stopping recompression...")
        state.interrupt()

    orig_int = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, handle_sigint)
    try:
        results, summary = process_batch(tasks, settings, state=state, on_result=show)
    finally:
        signal.signal(signal.SIGINT, orig_int)

    error = state.first_error
    if args.report:
        report = build_report(results, summary, error=str(error) if error else None)
        try:
            save_report_json(report, args.report)
        except OSError as e:
            logger.error("cannot write report %s: %s", args.report, e)
        else:
            logger.info("Report written: %s", args.report)

    if error is not None:
        logger.critical("%s: %s", state.first_error_path, error)
        return EXIT_FAILURE
    if state.interrupted:
        logger.warning("Interrupted: %d of %d file(s) recompressed.", summary.replaced, summary.total_files)
        return EXIT_INTERRUPTED

    if not args.quiet:
        print(format_summary(summary))
    return EXIT_OK
