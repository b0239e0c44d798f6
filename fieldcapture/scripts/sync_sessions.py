#!/usr/bin/env python3
"""Dispatch ended sessions that have not reached the webhook yet.

Usage:
  python -m fieldcapture.scripts.sync_sessions
  python -m fieldcapture.scripts.sync_sessions --failed-only
  python -m fieldcapture.scripts.sync_sessions --url https://example.com/hook
"""
from __future__ import annotations

import argparse
import asyncio

from fieldcapture import config
from fieldcapture.capture_sessions import SessionService
from fieldcapture.db import connection, migrations
from fieldcapture.dispatcher import WebhookDispatcher
from fieldcapture.ingestion import ResultIngestor
from fieldcapture.retry import RetryCoordinator
from fieldcapture.store import FieldStore


def build_coordinator(db, timeout: float | None = None) -> RetryCoordinator:
    store = FieldStore(db)
    sessions = SessionService(store)
    dispatcher = WebhookDispatcher(
        store,
        sessions,
        ResultIngestor(store),
        timeout=timeout,
        media_root=config.MEDIA_ROOT,
    )
    return RetryCoordinator(store, dispatcher)


async def _run(failed_only: bool, url: str | None, timeout: float | None) -> int:
    db = await connection.get_connection()
    await migrations.run_migrations(db)
    coordinator = build_coordinator(db, timeout)

    try:
        if url:
            await coordinator.store.update_settings(webhookUrl=url)
        if failed_only:
            await coordinator.retry_failed_items()
        else:
            await coordinator.sync_pending_sessions()
    finally:
        await connection.close_connection()

    run = coordinator.last_run
    if run is None or run.attempted == 0:
        print("No sessions to sync.")
        return 0

    print(f"{run.kind}: succeeded={run.succeeded} failed={run.failed}")
    for session_id in run.failed_session_ids:
        print(f"  failed: {session_id}")
    return 1 if run.failed else 0


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--failed-only", action="store_true", help="Retry failed sessions only")
    parser.add_argument("--url", default="", help="Persist this webhook URL before syncing")
    parser.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    args = parser.parse_args()
    return asyncio.run(_run(args.failed_only, args.url or None, args.timeout))


if __name__ == "__main__":
    raise SystemExit(main())
