#!/usr/bin/env python3
"""Command-line tool for facepass.

Usage:
    facepass enroll /dev/video0 alice
    facepass enroll photo.jpg alice
    facepass query /dev/video0
    facepass verify --profile alice
    facepass list
    facepass remove alice
    facepass clear --yes
    facepass serve --port 8765

Exit status is 0 on success or match and 1 otherwise.
"""

import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path

from . import __version__
from .capture import CaptureOutcome
from .config import Settings, valid_threshold
from .errors import DetectionUnavailable, FacePassError
from .pipeline import FacePipeline
from .storage import EmbeddingStore

logger = logging.getLogger("facepass.cli")


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


@contextmanager
def cancel_on_interrupt():
    """Turn Ctrl-C into a cooperative cancellation event."""
    cancel = threading.Event()

    def handler(signum, frame):
        logger.info("Cancelling...")
        cancel.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def cmd_enroll(args, settings: Settings) -> int:
    """Add a face sample to a profile."""
    pipeline = FacePipeline(settings)
    logger.info(f"Enrolling {args.name} from {args.source}")

    try:
        with cancel_on_interrupt() as cancel:
            result = pipeline.enroll(args.source, args.name, cancel)
    except DetectionUnavailable as e:
        logger.error(f"✗ {e}")
        return 1

    if result.enrolled:
        logger.info(f"✓ Enrolled {args.name} ({result.sample_count} sample(s))")
        return 0
    if result.outcome is CaptureOutcome.CANCELLED:
        logger.info("Enrollment cancelled")
    else:
        logger.error(f"✗ No face found in {args.source}")
    return 1


def cmd_query(args, settings: Settings) -> int:
    """Report the best-matching profile for a face."""
    pipeline = FacePipeline(settings)
    threshold = args.threshold if args.threshold is not None else settings.verification.threshold

    with cancel_on_interrupt() as cancel:
        result = pipeline.query(args.source, cancel)

    logger.info(f"Frames: {result.total_frames}, with faces: {result.frames_with_faces}")
    if result.candidate is None:
        if result.outcome is CaptureOutcome.CANCELLED:
            logger.info("Query cancelled")
        elif result.embeddings == 0:
            logger.error("✗ No usable face captured")
        else:
            logger.info("No enrolled profile to compare against")
        return 1

    candidate = result.candidate
    verdict = "match" if candidate.meets(threshold) else "below threshold"
    logger.info(
        f"Best: {candidate.name} avg={candidate.average:.4f} max={candidate.maximum:.4f} "
        f"({verdict} at {threshold:.2f})"
    )
    return 0


def cmd_verify(args, settings: Settings) -> int:
    """Run one verification through a local session."""
    from .service import FaceService
    from .verification import VerificationRequest

    service = FaceService(settings)
    request = VerificationRequest.from_settings(
        settings,
        source=args.source,
        target_name=args.profile,
        allow_all=True if args.any else (False if args.profile else None),
        threshold=args.threshold,
    )

    done = threading.Event()
    outcome = {}

    def on_status(event):
        logger.info(f"[{event.status.value}] {event.message}".rstrip())
        if event.terminal:
            outcome["event"] = event
            done.set()

    session = service.session
    session.add_listener(on_status)
    try:
        session.claim()
        session.verify_start(request)
        try:
            done.wait()
        except KeyboardInterrupt:
            session.verify_stop()
    finally:
        session.release()
        session.remove_listener(on_status)
        service.shutdown()

    event = outcome.get("event")
    return 0 if event is not None and event.matched else 1


def cmd_list(args, settings: Settings) -> int:
    """List enrolled profiles."""
    path = settings.storage.path
    if not Path(path).is_dir():
        logger.info("No profiles enrolled")
        return 0

    with EmbeddingStore(path, read_only=True) as store:
        profiles = store.get_all()

    if not profiles:
        logger.info("No profiles enrolled")
        return 0

    logger.info("Enrolled profiles:")
    for name, samples in profiles.items():
        dimension = samples[0].size if samples else 0
        logger.info(f"  - {name}: {len(samples)} sample(s), {dimension}D")
    logger.info(f"Total: {len(profiles)} profile(s)")
    return 0


def cmd_remove(args, settings: Settings) -> int:
    """Remove one profile."""
    with EmbeddingStore(settings.storage.path) as store:
        found = store.delete(args.name)

    if not found:
        logger.error(f"Profile '{args.name}' not found")
        return 1
    logger.info(f"✓ Removed {args.name}")
    return 0


def cmd_clear(args, settings: Settings) -> int:
    """Remove every profile."""
    if not args.yes:
        logger.error("Refusing to clear all profiles without --yes")
        return 1

    with EmbeddingStore(settings.storage.path) as store:
        count = store.size()
        store.clear()
    logger.info(f"✓ Removed {count} profile(s)")
    return 0


def cmd_serve(args, settings: Settings) -> int:
    """Start the session service over HTTP."""
    import uvicorn

    from .service import FaceService
    from .service.api import create_app

    host = args.host or settings.service.host
    port = args.port or settings.service.port

    service = FaceService(settings)
    app = create_app(service)

    logger.info("Starting facepass session service")
    logger.info(f"  URL: http://{host}:{port}")
    logger.info(f"  Docs: http://{host}:{port}/docs")

    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    finally:
        service.shutdown()
    return 0


def threshold_arg(value: str) -> float:
    threshold = float(value)
    if not valid_threshold(threshold):
        raise argparse.ArgumentTypeError("threshold must be in (0, 1]")
    return threshold


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="facepass",
        description="Face verification for Linux login",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  facepass enroll /dev/video0 alice
  facepass query photo.jpg
  facepass verify --profile alice --threshold 0.92
  facepass serve --port 8765
        """
    )
    parser.add_argument("--config", "-c", type=Path, help="Config file (default: standard locations)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Enroll command
    enroll_parser = subparsers.add_parser("enroll", help="Add a face sample to a profile")
    enroll_parser.add_argument("source", help="Camera device, index or image file")
    enroll_parser.add_argument("name", help="Profile name")

    # Query command
    query_parser = subparsers.add_parser("query", help="Find the best-matching profile")
    query_parser.add_argument("source", help="Camera device, index or image file")
    query_parser.add_argument("--threshold", "-t", type=threshold_arg, help="Similarity threshold")

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Run one verification session")
    verify_parser.add_argument("--source", "-s", help="Camera device, index or image file")
    target = verify_parser.add_mutually_exclusive_group()
    target.add_argument("--profile", "-p", help="Profile to verify against")
    target.add_argument("--any", action="store_true", help="Match any enrolled profile")
    verify_parser.add_argument("--threshold", "-t", type=threshold_arg, help="Similarity threshold")

    # List command
    subparsers.add_parser("list", help="List enrolled profiles")

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Remove a profile")
    remove_parser.add_argument("name", help="Profile name")

    # Clear command
    clear_parser = subparsers.add_parser("clear", help="Remove every profile")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the session service")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", "-p", type=int, help="Port to bind to")

    return parser


COMMANDS = {
    "enroll": cmd_enroll,
    "query": cmd_query,
    "verify": cmd_verify,
    "list": cmd_list,
    "remove": cmd_remove,
    "clear": cmd_clear,
    "serve": cmd_serve,
}


def main(argv=None) -> int:
    """Main entry point for the facepass CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.verbose)
    settings = Settings.load(args.config)

    try:
        return COMMANDS[args.command](args, settings)
    except FacePassError as e:
        logger.error(f"✗ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
