#!/usr/bin/env python3
"""v2doc - video to document conversion service.

Usage:
    python main.py submit URL       # Create a job and enqueue it
    python main.py worker           # Consume the queue until interrupted
    python main.py convert URL      # Convert synchronously (with deadline)
    python main.py status [JOB_ID]  # Show one job, or queue/store totals
    python main.py jobs             # List a user's jobs
    python main.py cancel JOB_ID    # Cancel a queued or running job
    python main.py cache stats      # Enhancement cache maintenance
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))

from clients.local_queue import FileQueue
from clients.storage import LocalObjectStorage
from core.cache import ResultCache
from core.capabilities import Capabilities
from core.config import load_config, resolve_path
from core.errors import ConversionError
from core.jobs import JobService
from core.models import JobStatus, OutputFormat, RenderOptions
from core.notify import WebhookNotifier
from core.pipeline import Pipeline
from core.state import JobStore
from core.worker import QueueConsumer, WorkerConfig
from utils import setup_logging

DEFAULT_USER = "local"


def _load(args: argparse.Namespace) -> dict:
    path = args.config
    if path is None:
        default = PROJECT_ROOT / "config.yaml"
        path = default if default.exists() else None
    config = load_config(path)
    setup_logging(
        resolve_path(config, "log_file", PROJECT_ROOT),
        config.get("logging", {}).get("level", "INFO"),
    )
    return config


def _queue(config: dict) -> FileQueue:
    return FileQueue(
        resolve_path(config, "queue_file", PROJECT_ROOT),
        resolve_path(config, "dead_letter_file", PROJECT_ROOT),
    )


def _service(config: dict, with_pipeline: bool = False) -> JobService:
    factory = None
    if with_pipeline:
        capabilities = Capabilities.from_config(config)
        factory = lambda: Pipeline.from_config(config, capabilities, root=PROJECT_ROOT)  # noqa: E731
    return JobService(
        JobStore(resolve_path(config, "state_file", PROJECT_ROOT)),
        _queue(config),
        storage=LocalObjectStorage(resolve_path(config, "storage_root", PROJECT_ROOT)),
        pipeline_factory=factory,
        config=config,
        work_root=resolve_path(config, "temp_dir", PROJECT_ROOT),
    )


def _options(args: argparse.Namespace, config: dict) -> RenderOptions:
    fc = config.get("frames", {})
    return RenderOptions(
        format=OutputFormat(args.format),
        frame_interval=args.interval or fc.get("interval", 60),
        frame_quality=args.quality or fc.get("quality", "low"),
        language=args.language,
        include_summary=args.summary,
        include_translation=args.translate,
        target_language=args.target_language or config.get("summary", {}).get("language", "en"),
    )


def _print_job(job) -> None:
    print(json.dumps(job.to_dict(), ensure_ascii=False, indent=2))


def cmd_submit(args: argparse.Namespace) -> int:
    """Create a job and put it on the queue."""
    config = _load(args)
    job = _service(config).submit(args.user, args.url, _options(args, config), webhook_url=args.webhook)
    print(f"Queued: {job.id}")
    return 0


async def _run_worker(consumer: QueueConsumer) -> None:
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_requested.set)

    poller = asyncio.create_task(consumer.start())
    await stop_requested.wait()
    # Interrupts a pending long poll; claimed jobs keep running
    poller.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await poller
    await consumer.stop()


def cmd_worker(args: argparse.Namespace) -> int:
    """Consume the queue until SIGINT/SIGTERM, then drain in-flight jobs."""
    config = _load(args)
    capabilities = Capabilities.from_config(config)
    worker_config = WorkerConfig.from_config(config, PROJECT_ROOT)
    if args.concurrency:
        worker_config.max_concurrent_jobs = args.concurrency
    consumer = QueueConsumer(
        _queue(config),
        JobStore(resolve_path(config, "state_file", PROJECT_ROOT)),
        LocalObjectStorage(resolve_path(config, "storage_root", PROJECT_ROOT)),
        pipeline_factory=lambda: Pipeline.from_config(config, capabilities, root=PROJECT_ROOT),
        notifier=WebhookNotifier.from_config(config),
        config=worker_config,
    )
    asyncio.run(_run_worker(consumer))
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert one video now, without the queue."""
    config = _load(args)
    service = _service(config, with_pipeline=True)
    output_dir = args.output.resolve() if args.output else None
    job = asyncio.run(service.convert_sync(args.user, args.url, _options(args, config), output_dir=output_dir))
    print(f"\n✓ {job.video.title if job.video else job.video_ref}")
    print(f"  Output: {job.result.output_path}")
    print(f"  Size:   {job.result.file_size} bytes, {job.result.pages} pages, {job.result.frame_count} frames")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show one job, or overall queue and store status."""
    config = _load(args)
    service = _service(config)
    if args.job_id:
        job = service.get(args.job_id)
        if job is None:
            print(f"Job not found: {args.job_id}", file=sys.stderr)
            return 1
        _print_job(job)
        return 0

    queue = service.queue
    print("=== v2doc Status ===")
    print(f"\nState file: {service.store.state_file}")
    print(f"Queue file: {queue.queue_file}")
    print(f"Messages queued: {len(queue)}")
    print(f"Dead letters: {len(queue.dead_letters())}")
    print("\nJob statistics:")
    for status, count in sorted(service.store.get_summary_stats().items()):
        print(f"  {status}: {count}")

    llm = Capabilities.from_config(config).llm
    if llm is None:
        print("\nLanguage model: disabled")
    else:
        print(f"\nLanguage model: {llm.model} @ {llm.base_url} {'✓' if llm.ping() else '✗'}")
    return 0


def cmd_jobs(args: argparse.Namespace) -> int:
    """List a user's jobs, newest first."""
    config = _load(args)
    status = JobStatus(args.status) if args.status else None
    jobs, total = _service(config).list_jobs(args.user, status=status, limit=args.limit, offset=args.offset)
    print(f"{total} job(s) for {args.user}")
    for job in jobs:
        line = f"  {job.id}  {job.status.value:<10} {job.progress.percent:>3}%  {job.video_ref}"
        if job.error:
            line += f"  [{job.error.kind.value}]"
        print(line)
    return 0


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a job that has not finished."""
    config = _load(args)
    job = _service(config).cancel(args.job_id, args.user)
    if job is None:
        print(f"Job not found: {args.job_id}", file=sys.stderr)
        return 1
    print(f"Cancelled: {job.id}")
    return 0


def cmd_cache(args: argparse.Namespace) -> int:
    """Enhancement cache maintenance."""
    config = _load(args)
    cache = ResultCache(
        resolve_path(config, "cache_dir", PROJECT_ROOT),
        ttl_days=config.get("cache", {}).get("ttl_days", 30),
    )
    if args.action == "stats":
        for key, value in cache.stats().items():
            print(f"  {key}: {value}")
    elif args.action == "cleanup":
        print(f"Removed {cache.cleanup()} expired entries")
    else:
        print(f"Removed {cache.clear()} entries")
    return 0


def _add_render_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Video URL or id")
    parser.add_argument(
        "--format", choices=[f.value for f in OutputFormat], default=OutputFormat.DOCUMENT.value,
        help="Output format (default: document)"
    )
    parser.add_argument("--interval", type=int, help="Seconds between frames")
    parser.add_argument("--quality", choices=["low", "medium", "high"], help="Frame quality")
    parser.add_argument("--language", help="Preferred subtitle language")
    parser.add_argument("--target-language", help="Language for summaries and enhancement")
    parser.add_argument(
        "--no-summary", action="store_false", dest="summary", default=True,
        help="Skip the document summary"
    )
    parser.add_argument("--translate", action="store_true", help="Show translated text in sections")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="v2doc - convert videos into documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config.yaml when present)",
    )
    parser.add_argument("--user", default=DEFAULT_USER, help="Owner id for jobs (default: local)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    submit_parser = subparsers.add_parser("submit", help="Create a job and enqueue it")
    _add_render_options(submit_parser)
    submit_parser.add_argument("--webhook", help="URL notified when the job finishes")
    submit_parser.set_defaults(func=cmd_submit)

    worker_parser = subparsers.add_parser("worker", help="Run the queue consumer")
    worker_parser.add_argument("--concurrency", type=int, help="Max concurrent jobs")
    worker_parser.set_defaults(func=cmd_worker)

    convert_parser = subparsers.add_parser("convert", help="Convert synchronously")
    _add_render_options(convert_parser)
    convert_parser.add_argument("--output", type=Path, help="Keep the document in this directory")
    convert_parser.set_defaults(func=cmd_convert)

    status_parser = subparsers.add_parser("status", help="Show job or service status")
    status_parser.add_argument("job_id", nargs="?", help="Job id")
    status_parser.set_defaults(func=cmd_status)

    jobs_parser = subparsers.add_parser("jobs", help="List jobs")
    jobs_parser.add_argument("--status", choices=[s.value for s in JobStatus])
    jobs_parser.add_argument("--limit", type=int, default=20)
    jobs_parser.add_argument("--offset", type=int, default=0)
    jobs_parser.set_defaults(func=cmd_jobs)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a job")
    cancel_parser.add_argument("job_id", help="Job id")
    cancel_parser.set_defaults(func=cmd_cancel)

    cache_parser = subparsers.add_parser("cache", help="Enhancement cache maintenance")
    cache_parser.add_argument("action", choices=["stats", "cleanup", "clear"])
    cache_parser.set_defaults(func=cmd_cache)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except ConversionError as e:
        print(f"Error [{e.kind.value}]: {e.message}", file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
