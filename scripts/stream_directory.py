#!/usr/bin/env python3
"""
Directory Streaming Script
==========================

Serves the JPEG files of a directory as a looping MJPEG stream.

Frames are dropped rather than queued when the relay is backlogged, which
is how a live camera loop should drive the publisher.

Usage:
    python scripts/stream_directory.py ./frames --fps 15
    python scripts/stream_directory.py ./frames --address 127.0.0.1:8088 --mode shared
"""

import argparse
import itertools
import logging
import sys
import threading
import time
from pathlib import Path

from mjpeg_relay import ChannelClosed, StreamPublisher
from mjpeg_relay.config import settings, setup_logging


logger = logging.getLogger(__name__)


def load_frames(directory: Path) -> list:
    """Read every .jpg/.jpeg file in directory, sorted by name."""
    paths = sorted(
        p for p in directory.iterdir()
        if p.suffix.lower() in (".jpg", ".jpeg")
    )
    return [p.read_bytes() for p in paths]


def run(publisher: StreamPublisher, frames: list, fps: float, report_interval: float) -> None:
    delay = 1.0 / fps
    published = 0
    dropped = 0
    last_report = time.time()

    for jpeg in itertools.cycle(frames):
        started = time.time()

        if publisher.is_backlogged():
            dropped += 1
        else:
            try:
                publisher.publish_blocking(jpeg)
                published += 1
            except ChannelClosed:
                logger.error("Relay closed, stopping")
                return

        if started - last_report >= report_interval:
            metrics = publisher.metrics()
            logger.info(
                f"published={published} dropped={dropped} "
                f"viewers={metrics['viewers']} connections={metrics['connections']}"
            )
            last_report = started

        time.sleep(max(0.0, delay - (time.time() - started)))


def main():
    parser = argparse.ArgumentParser(
        description="Serve a directory of JPEG files as an MJPEG stream"
    )
    parser.add_argument("directory", type=Path, help="Directory containing .jpg files")
    parser.add_argument(
        "--address",
        type=str,
        default=f"{settings.server.host}:{settings.server.port}",
        help="Listen address host:port",
    )
    parser.add_argument(
        "--fps",
        type=float,
        default=15.0,
        help="Target frame rate (default: 15)",
    )
    parser.add_argument(
        "--mode",
        choices=("broadcast", "shared"),
        default=None,
        help="Relay mode (default: from config)",
    )
    parser.add_argument(
        "--report-interval",
        type=float,
        default=10.0,
        help="Seconds between progress reports (default: 10)",
    )

    args = parser.parse_args()
    setup_logging(settings)

    frames = load_frames(args.directory)
    if not frames:
        logger.error(f"No JPEG files found in {args.directory}")
        sys.exit(1)

    publisher = StreamPublisher(mode=args.mode)
    server = publisher.bind(args.address)
    threading.Thread(target=server.serve_forever, name="mjpeg-listener", daemon=True).start()

    logger.info(f"Streaming {len(frames)} frames at {args.fps} fps")
    try:
        run(publisher, frames, args.fps, args.report_interval)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        publisher.shutdown()
        publisher.close()


if __name__ == "__main__":
    main()
