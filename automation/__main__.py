"""Entry point: python -m automation

Runs the Actionstep origination-fee worker and its operator helpers.

Usage:
    python -m automation run        # poll automation_jobs and drive Actionstep
    python -m automation check      # verify configuration, database and TOTP
    python -m automation totp       # print the current 2FA code
    python -m automation enqueue MATTER_ID "REFERRER NAME" [PERCENTAGE]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path

from sqlalchemy import inspect, text

from automation.errors import InvalidSecret
from automation.processor import JobProcessor
from automation.queue import JobQueueStore
from automation.session import build_session
from automation.totp import TotpGenerator
from src.config import Settings, settings as default_settings
from src.database import close_db, engine, init_db

logger = logging.getLogger("automation")

REQUIRED_TABLES = ("automation_jobs", "automation_logs")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    )


def _print_config(settings: Settings) -> None:
    print("=" * 60)
    print("ACTIONSTEP AUTOMATION WORKER - origination fees")
    print("=" * 60)
    print(f"  Database       = {settings.database_url[:30]}...")
    print(f"  Actionstep URL = {settings.actionstep_url}")
    print(f"  Username       = {settings.actionstep_username}")
    print(f"  2FA secret     = {'configured' if settings.actionstep_totp_secret else 'not set'}")
    print(f"  Poll interval  = {settings.poll_interval}s")
    print(f"  Headless       = {settings.headless}")
    print(f"  Max concurrent = {settings.max_concurrent_jobs}")
    print(f"  Job timeout    = {settings.job_timeout}s")
    print(f"  Screenshots    = {settings.screenshot_dir}")
    print("=" * 60)


def build_processor(settings: Settings) -> JobProcessor:
    return JobProcessor(
        JobQueueStore(),
        lambda: build_session(settings),
        poll_interval=settings.poll_interval,
        max_concurrent=settings.max_concurrent_jobs,
        job_timeout=settings.job_timeout,
        job_settle_delay=settings.job_settle_delay,
    )


async def run_worker(settings: Settings) -> int:
    missing = settings.missing_required()
    if missing:
        print("Missing required environment variables:")
        for name in missing:
            print(f"   - {name}")
        print("\nPlease add these to your .env file")
        return 1

    Path(settings.screenshot_dir).mkdir(parents=True, exist_ok=True)
    _print_config(settings)
    await init_db()

    processor = build_processor(settings)
    loop = asyncio.get_running_loop()
    stopping: list[asyncio.Task] = []

    def request_stop(signame: str) -> None:
        if not stopping:
            print(f"\nReceived {signame}, shutting down gracefully...")
            stopping.append(asyncio.create_task(processor.stop()))

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop, sig.name)

    try:
        await processor.run()
    except Exception as exc:
        logger.exception("Failed to start worker")
        print(f"Failed to start worker: {exc}")
        return 1
    finally:
        for task in stopping:
            await task
        await close_db()
    return 0


async def check_setup(settings: Settings) -> int:
    ok = True

    print("\nEnvironment:")
    print("-" * 50)
    missing = settings.missing_required()
    for name in ("DATABASE_URL", "ACTIONSTEP_USERNAME", "ACTIONSTEP_PASSWORD"):
        print(f"  {'MISSING' if name in missing else 'ok':<8} {name}")
    ok = ok and not missing
    print(f"  {'ok' if settings.actionstep_totp_secret else 'not set':<8} ACTIONSTEP_TOTP_SECRET")

    print("\nDatabase:")
    print("-" * 50)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        print("  ok       connected")
        absent = [t for t in REQUIRED_TABLES if t not in tables]
        if absent:
            print(f"  MISSING  tables: {', '.join(absent)} (run alembic upgrade head)")
            ok = False
        else:
            counts = await JobQueueStore().count_by_status()
            print(f"  ok       tables present; {counts.get('pending', 0)} pending job(s)")
    except Exception as exc:
        print(f"  FAILED   {exc}")
        ok = False
    finally:
        await close_db()

    print("\nTOTP:")
    print("-" * 50)
    if settings.actionstep_totp_secret:
        try:
            TotpGenerator(settings.actionstep_totp_secret).now()
            print("  ok       code generated; compare `python -m automation totp` with your app")
        except InvalidSecret as exc:
            print(f"  FAILED   {exc}")
            ok = False
    else:
        print("  skipped  no secret configured (login fails if Actionstep asks for 2FA)")

    print("\n" + ("All checks passed." if ok else "Some checks failed."))
    return 0 if ok else 1


def show_totp(settings: Settings) -> int:
    if not settings.actionstep_totp_secret:
        print("ACTIONSTEP_TOTP_SECRET not set")
        return 1
    try:
        totp = TotpGenerator(settings.actionstep_totp_secret)
    except InvalidSecret as exc:
        print(exc)
        return 1
    now = time.time()
    print(f"Current code: {totp.at(now)} (valid for ~{totp.seconds_remaining()}s)")
    for i in range(1, 4):
        print(f"  In {i * totp.period}s: {totp.at(now + i * totp.period)}")
    return 0


async def enqueue_job(settings: Settings, args: argparse.Namespace) -> int:
    await init_db()
    try:
        job = await JobQueueStore().enqueue(
            args.matter_id,
            args.referrer_name,
            args.percentage,
            client_participant_id=args.participant_id,
            max_attempts=args.max_attempts or settings.max_attempts,
        )
    except ValueError as exc:
        print(f"Invalid job: {exc}")
        return 1
    finally:
        await close_db()
    print(f"Queued job {job.id} for matter {job.matter_id}")
    return 0


def cli(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Actionstep origination fee automation worker")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Start the polling worker")
    sub.add_parser("check", help="Verify configuration, database and TOTP")
    sub.add_parser("totp", help="Print the current TOTP code")
    enqueue = sub.add_parser("enqueue", help="Queue a test job")
    enqueue.add_argument("matter_id")
    enqueue.add_argument("referrer_name", help="Exactly as shown in the Actionstep dropdown")
    enqueue.add_argument("percentage", nargs="?", default="10")
    enqueue.add_argument("--participant-id", default="")
    enqueue.add_argument("--max-attempts", type=int, default=None)
    args = parser.parse_args(argv)

    settings = default_settings
    _setup_logging(settings.log_level)

    if args.command == "run":
        return asyncio.run(run_worker(settings))
    if args.command == "check":
        return asyncio.run(check_setup(settings))
    if args.command == "totp":
        return show_totp(settings)
    return asyncio.run(enqueue_job(settings, args))


if __name__ == "__main__":
    sys.exit(cli())
