"""
textcast CLI
============
Terminal command surface for batch conversion and environment status.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from typing import Callable, Optional, TextIO

from textcast.app.config import WorkflowConfig
from textcast.app.events import EventName, WorkflowEvent
from textcast.errors import PipelineStepError, TextcastError, describe_error
from textcast.pipeline.scheduler import BatchScheduler
from textcast.tts.backends import SpeechBackend, detect_backend


def build_parser() -> argparse.ArgumentParser:
    """Create the root CLI parser."""
    parser = argparse.ArgumentParser(prog="textcast", description="Convert text articles to audio")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # process
    process_parser = subparsers.add_parser("process", help="Convert files or directories to audio")
    process_parser.add_argument("inputs", nargs="+", help="Text/markdown files or directories")
    process_parser.add_argument("--concurrency", type=int, default=1, help="Files processed at once (default: 1)")
    process_parser.add_argument("--retry-attempts", type=int, default=2, help="Retries per failing step (default: 2)")
    process_parser.add_argument("--retry-delay", type=float, default=1.0, help="Base retry delay in seconds (default: 1.0)")
    process_parser.add_argument("--no-continue-on-error", action="store_true", help="Abort the batch on the first failed file")
    process_parser.add_argument("--itunes", action="store_true", help="Import results into a dated Music playlist")
    process_parser.add_argument("--overwrite", action="store_true", help="Overwrite existing audio files")
    process_parser.add_argument("--output-mode", choices=["direct", "temp"], default="direct", help="Where audio is written (default: direct)")
    process_parser.add_argument("--output-dir", help="Directory for direct-mode output (default: next to source)")
    process_parser.add_argument("--max-chunk-words", type=int, default=500, help="Word budget per synthesis chunk (default: 500)")
    process_parser.add_argument("--chunk-timeout", type=float, default=30.0, help="Seconds allowed per chunk (default: 30)")
    process_parser.add_argument("--no-chunking", action="store_true", help="Always synthesize in a single pass")
    process_parser.add_argument("--dry-run", action="store_true", help="List the files that would be converted")
    process_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    process_parser.set_defaults(handler=handle_process)

    # status
    status_parser = subparsers.add_parser("status", help="Show platform and speech backend status")
    status_parser.set_defaults(handler=handle_status)

    return parser


def _print(msg: str, out: TextIO) -> None:
    out.write(msg + "\n")
    out.flush()


def config_from_args(args: argparse.Namespace) -> WorkflowConfig:
    """Translate parsed arguments into a WorkflowConfig."""
    config = WorkflowConfig(
        concurrency=args.concurrency,
        retry_attempts=args.retry_attempts,
        retry_delay=args.retry_delay,
        continue_on_error=not args.no_continue_on_error,
        enable_itunes_integration=args.itunes,
        output_mode=args.output_mode,
        output_dir=args.output_dir,
        overwrite_existing=args.overwrite,
    )
    config.synthesis.enable_chunking = not args.no_chunking
    config.synthesis.max_chunk_words = args.max_chunk_words
    config.synthesis.chunk_timeout = args.chunk_timeout
    return config


def _event_printer(out: TextIO) -> Callable[[WorkflowEvent], None]:
    def on_event(event: WorkflowEvent) -> None:
        name = event.name
        if name == EventName.WORKFLOW_FILES_DISCOVERED:
            _print(f"found {event['count']} file(s)", out)
        elif name == EventName.FILE_STARTED:
            _print(f"converting: {event['file_path']}", out)
        elif name == EventName.FILE_COMPLETED:
            _print(f"done: {event['result'].audio_path}", out)
        elif name == EventName.FILE_FAILED:
            _print(f"failed: {event['file_path']} [{event['step']}] {describe_error(event['error'])}", out)
        elif name == EventName.FILE_WARNING:
            _print(f"warning: {event['file_path']}: {event['reason']}", out)
        elif name == EventName.OPERATION_RETRY:
            _print(f"retry: {event['step']} (attempt {event['attempt']})", out)
        elif name == EventName.WORKFLOW_PROGRESS:
            _print(f"progress: {event['processed']}/{event['total']} ({int(event['progress'] * 100)}%)", out)

    return on_event


def handle_process(
    args: argparse.Namespace,
    scheduler_factory: Callable[[WorkflowConfig], BatchScheduler],
    out: TextIO,
) -> int:
    """Run a batch conversion and stream events to the terminal."""
    config = config_from_args(args)
    scheduler = scheduler_factory(config)
    target = args.inputs[0] if len(args.inputs) == 1 else list(args.inputs)

    if args.dry_run:
        try:
            items = scheduler.discover(target)
        except TextcastError as exc:
            _print(f"error: {exc}", out)
            return 1
        _print(f"would convert {len(items)} file(s):", out)
        for item in items:
            _print(f"  - {item.path}", out)
        return 0

    unsubscribe = scheduler.events.subscribe(_event_printer(out))
    try:
        report = asyncio.run(scheduler.run(target))
    except KeyboardInterrupt:
        scheduler.temp_files.cleanup_all()
        _print("interrupted", out)
        return 130
    except PipelineStepError as exc:
        _print(f"batch aborted: {exc}", out)
        return 1
    except TextcastError as exc:
        _print(f"error: {exc}", out)
        return 1
    finally:
        unsubscribe()

    summary = report.summary
    _print(
        f"summary: {summary['successful_files']}/{summary['total_files']} converted, "
        f"{summary['failed_files']} failed in {summary['processing_time']:.1f}s",
        out,
    )
    for error in summary["errors"]:
        _print(f"  - {error['file_path']} [{error['step']}]: {error['error']}", out)

    return 0 if summary["failed_files"] == 0 else 1


def handle_status(
    args: argparse.Namespace,
    backend_factory: Callable[[], SpeechBackend],
    out: TextIO,
) -> int:
    """Show platform, speech backend and merge tool availability."""
    _print(f"platform: {sys.platform}", out)
    try:
        backend = backend_factory()
    except TextcastError as exc:
        _print(f"backend: none ({exc})", out)
        return 1

    info = backend.info()
    _print(f"backend: {info['engine']} (format={info['format']}, rate={info['rate']} wpm)", out)
    _print(f"available: {'yes' if info['available'] else 'no'}", out)
    _print(f"ffmpeg: {'yes' if shutil.which('ffmpeg') else 'no (falling back to pydub/binary concatenation)'}", out)
    return 0 if info["available"] else 1


def main(
    argv: Optional[list[str]] = None,
    scheduler_factory: Callable[[WorkflowConfig], BatchScheduler] = BatchScheduler,
    backend_factory: Callable[[], SpeechBackend] = detect_backend,
    out: TextIO = sys.stdout,
) -> int:
    """
    CLI entrypoint.

    Args:
        argv: Optional argv override for testing.
        scheduler_factory: Dependency-injection hook for tests.
        backend_factory: Dependency-injection hook for the status command.
        out: Output stream.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "status":
        return int(handle_status(args, backend_factory, out))
    return int(handle_process(args, scheduler_factory, out))


if __name__ == "__main__":
    raise SystemExit(main())
