from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional, Sequence

from kombu import Connection

from intake import __version__
from intake.dispatch import ScanDispatcher, WatchDispatcher
from intake.driver import IntakeDriver
from intake.errors import AlreadyLocked, PublishFailed, SchedulingFailed
from intake.lock import DEFAULT_LOCK_FILE, LockGuard
from intake.publisher import DEFAULT_AMQP_URL, DEFAULT_QUEUE, JobPublisher
from intake.scheduling import RETRY_DELAY, AtScheduler, RetryScheduler
from intake.stability import LsofStabilityDetector
from intake.worker import DEFAULT_COMMAND, TranscodeWorker

# Edit these defaults as needed
DEFAULT_DESTINATION = "/var/www/"
DEFAULT_TMP_DIR = "/tmp"
DEFAULT_LOG_DIR = None

# sysexits.h EX_TEMPFAIL: the lock was held and a retry has been scheduled
EXIT_RETRY_SCHEDULED = 75


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def setup_logger(logfile: Optional[str] = None, debug: bool = False) -> logging.Logger:
    logger = logging.getLogger("hardcode")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    if logfile:
        # Rotating file handler to avoid unbounded log growth
        handler = RotatingFileHandler(logfile, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--amqp-url", default=DEFAULT_AMQP_URL, help=f"AMQP broker URL (default {DEFAULT_AMQP_URL})")
    parser.add_argument("--queue", default=DEFAULT_QUEUE, help=f"Work queue name (default {DEFAULT_QUEUE})")
    parser.add_argument("--logdir", "-l", default=DEFAULT_LOG_DIR, help="Directory to write hardcode.log to (default: console only)")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")


def _add_intake_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("source_dir", help="Source directory to take files from")
    parser.add_argument(
        "--destination", "-d",
        default=DEFAULT_DESTINATION,
        help=f"Destination directory for transcoded output (default {DEFAULT_DESTINATION})"
    )
    parser.add_argument(
        "--tmp-dir", "-t",
        default=DEFAULT_TMP_DIR,
        help=f"Temporary directory files are staged in (default {DEFAULT_TMP_DIR})"
    )
    parser.add_argument("--lock-file", default=DEFAULT_LOCK_FILE, help=f"Lock marker path (default {DEFAULT_LOCK_FILE})")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between open-handle checks")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hardcode", description="Stage new media files and enqueue transcoding jobs")
    parser.add_argument("-v", "--version", action="version", version=f"hardcode v{__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("version", help="Outputs the version number")

    enqueue = commands.add_parser(
        "enqueue",
        help="Scans a source directory, moves the files to tmp and enqueues transcoding jobs",
    )
    _add_intake_options(enqueue)
    _add_common_options(enqueue)

    watch = commands.add_parser(
        "watch",
        help="Watch a source directory for new files, moves them to tmp and enqueues transcoding jobs",
    )
    _add_intake_options(watch)
    _add_common_options(watch)
    watch.add_argument("--recursive", action="store_true", help="Also watch subdirectories")
    watch.add_argument("--workers", type=int, default=4, help="Files processed concurrently")

    work = commands.add_parser("work", help="Start a worker consuming the transcoding queue")
    _add_common_options(work)
    work.add_argument("--command", default=DEFAULT_COMMAND, help=f"Transcode command template (default {DEFAULT_COMMAND!r})")
    work.add_argument("--ext", default=".mp4", help="Output file extension used for {dest}")

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def retry_command(argv: Sequence[str]) -> list[str]:
    return [sys.executable, "-m", "hardcode", *argv]


def _make_driver(args: argparse.Namespace, logger: logging.Logger) -> IntakeDriver:
    return IntakeDriver(
        LsofStabilityDetector(interval=args.interval),
        JobPublisher(args.amqp_url, args.queue, logger=logger),
        logger=logger,
    )


def cmd_enqueue(
    args: argparse.Namespace,
    logger: logging.Logger,
    argv: Sequence[str],
    scheduler: Optional[RetryScheduler] = None,
) -> int:
    driver = _make_driver(args, logger)
    dispatcher = ScanDispatcher(
        LockGuard(args.lock_file),
        driver,
        tmp_dir=os.path.abspath(args.tmp_dir),
        dest_dir=os.path.abspath(args.destination),
        logger=logger,
    )
    try:
        dispatcher.run(args.source_dir)
    except AlreadyLocked as exc:
        logger.warning("%s", exc)
        logger.warning("Schedule the job to run in %d minutes.", int(RETRY_DELAY.total_seconds() // 60))
        scheduler = scheduler or AtScheduler(logger=logger)
        try:
            scheduler.schedule_retry(RETRY_DELAY, retry_command(argv))
        except SchedulingFailed as sched_exc:
            logger.error("%s", sched_exc)
            return 1
        return EXIT_RETRY_SCHEDULED
    except PublishFailed as exc:
        logger.error("%s", exc)
        return 1
    finally:
        driver.publisher.close()
    return 0


def install_stop_handlers(stop, logger: logging.Logger) -> None:
    def handler(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        stop()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def cmd_watch(args: argparse.Namespace, logger: logging.Logger) -> int:
    driver = _make_driver(args, logger)
    dispatcher = WatchDispatcher(
        LockGuard(args.lock_file),
        driver,
        tmp_dir=os.path.abspath(args.tmp_dir),
        dest_dir=os.path.abspath(args.destination),
        logger=logger,
        recursive=args.recursive,
        max_workers=args.workers,
    )
    install_stop_handlers(dispatcher.stop, logger)
    try:
        dispatcher.run(args.source_dir)
    except (AlreadyLocked, PublishFailed) as exc:
        logger.error("%s", exc)
        return 1
    finally:
        driver.publisher.close()
    return 0


def cmd_work(args: argparse.Namespace, logger: logging.Logger) -> int:
    with Connection(args.amqp_url) as connection:
        worker = TranscodeWorker(
            connection,
            command=args.command,
            queue_name=args.queue,
            output_ext=args.ext,
            logger=logger,
        )

        def stop() -> None:
            worker.should_stop = True

        install_stop_handlers(stop, logger)
        logger.info("Worker consuming %s on %s", args.queue, connection.as_uri())
        worker.run()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = parse_args(argv)

    if args.command == "version":
        print(f"hardcode v{__version__}")
        return 0

    logfile = None
    if args.logdir:
        log_dir = os.path.abspath(args.logdir)
        ensure_dir(log_dir)
        logfile = os.path.join(log_dir, "hardcode.log")
    logger = setup_logger(logfile, debug=args.debug)

    if args.command == "enqueue":
        return cmd_enqueue(args, logger, argv)
    if args.command == "watch":
        return cmd_watch(args, logger)
    return cmd_work(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
