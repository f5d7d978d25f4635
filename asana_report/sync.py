"""Sync engine: mirrors the Asana project into the report store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from .asana_client import AsanaClient
from .config import Settings
from .errors import AsanaReportError
from .fetcher import fetch_complete_hierarchy
from .models import SyncStatus
from .storage import ReportStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Summary of what a sync attempt did."""

    success: bool
    message: str
    record_count: int = 0
    total_tasks: int = 0
    total_subtasks: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "record_count": self.record_count,
            "total_tasks": self.total_tasks,
            "total_subtasks": self.total_subtasks,
        }


async def run_sync(
    client_factory: Callable[[Settings], AsanaClient],
    store: ReportStore,
    settings: Settings,
) -> SyncResult:
    """Build a client, fetch the whole hierarchy and persist it, recording progress in sync metadata.

    This is the only place that writes the sync status: ``in-progress`` before
    the client is built, then exactly one terminal ``success`` or ``error`` row,
    so a missing token is reported through the status like any other failure.

    Errors from the pipeline (source, persistence) end the attempt and are
    reported in the result. Anything else is recorded and re-raised.
    """
    key = settings.metadata_key
    await asyncio.to_thread(store.set_sync_metadata, key, SyncStatus.IN_PROGRESS, "Sync started")

    try:
        async with client_factory(settings) as client:
            logger.info("Fetching data from Asana API...")
            fetched = await fetch_complete_hierarchy(client, team_id=settings.team_id)

        logger.info("Saving data to the report store...")
        persisted = await asyncio.to_thread(store.persist, fetched.report)
    except AsanaReportError as e:
        logger.error("Sync failed: %s", e)
        await asyncio.to_thread(store.set_sync_metadata, key, SyncStatus.ERROR, str(e))
        return SyncResult(success=False, message=str(e))
    except Exception as e:
        logger.exception("Unexpected sync failure")
        await asyncio.to_thread(
            store.set_sync_metadata, key, SyncStatus.ERROR, str(e) or type(e).__name__
        )
        raise

    message = (
        f"Sync completed successfully. Processed {fetched.total_tasks} tasks "
        f"and {fetched.total_subtasks} subtasks."
    )
    await asyncio.to_thread(
        store.set_sync_metadata, key, SyncStatus.SUCCESS, message, persisted.record_count
    )
    logger.info("%s %d records written.", message, persisted.record_count)
    return SyncResult(
        success=True,
        message=message,
        record_count=persisted.record_count,
        total_tasks=fetched.total_tasks,
        total_subtasks=fetched.total_subtasks,
    )
