"""Entry points used by the dashboard: start a sync, read its status, read metrics."""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from .asana_client import AsanaClient
from .config import Settings
from .errors import AuthorizationError
from .metrics import AssigneeMetrics, assignee_metrics, compute_metrics
from .models import SyncMetadata
from .storage import ReportStore
from .sync import SyncResult, run_sync

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Requester:
    """Who is asking. Authentication happens before this point."""

    email: str | None = None
    is_admin: bool = False
    service_token: str | None = None


class ReportService:
    def __init__(
        self,
        settings: Settings,
        store: ReportStore,
        client_factory: Callable[[Settings], AsanaClient] = AsanaClient,
    ) -> None:
        self.settings = settings
        self.store = store
        self.client_factory = client_factory
        self._sync_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _may_sync(self, requester: Requester) -> bool:
        if requester.is_admin:
            return True
        expected = self.settings.service_token
        if expected and requester.service_token:
            return hmac.compare_digest(expected, requester.service_token)
        return False

    async def start_sync(self, requester: Requester) -> SyncResult:
        """Run a full sync. Requires an admin or the shared service token.

        Overlapping calls run one after the other.
        """
        if not self._may_sync(requester):
            raise AuthorizationError("Access denied. Admin role required.")
        logger.info("Sync started by: %s", requester.email or "service")
        async with self._sync_lock:
            return await run_sync(self.client_factory, self.store, self.settings)

    def get_sync_status(self) -> SyncMetadata | None:
        return self.store.get_sync_metadata(self.settings.metadata_key)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics_for_assignee(
        self, assignee_gid: str, today: date | None = None
    ) -> AssigneeMetrics | None:
        return assignee_metrics(self.store.load(assignee_gid), assignee_gid, today=today)

    def get_all_metrics(self, today: date | None = None) -> list[AssigneeMetrics]:
        metrics = compute_metrics(self.store.load(), today=today)
        return sorted(
            metrics.values(), key=lambda m: (m.assignee.display_name.lower(), m.assignee.gid)
        )

    def metrics_for_requester(
        self, requester: Requester, assignee_gid: str, today: date | None = None
    ) -> AssigneeMetrics | None:
        """Admins may read anyone's metrics; everyone else only their own."""
        if not requester.is_admin:
            own_gid = self.store.find_assignee_gid(requester.email or "")
            if own_gid != assignee_gid:
                raise AuthorizationError("Access denied. You may only view your own data.")
        return self.get_metrics_for_assignee(assignee_gid, today=today)
