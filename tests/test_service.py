"""Tests for ReportService authorization and read paths."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from asana_report.asana_client import AsanaClient
from asana_report.config import Settings
from asana_report.errors import AuthorizationError
from asana_report.models import Assignee, Report, Section, Subtask, SyncStatus, Task
from asana_report.service import ReportService, Requester
from asana_report.storage import ReportStore

TODAY = date(2025, 1, 15)
SETTINGS = Settings(token="t", project_id="P1", service_token="s3cret")

ALICE = Assignee("A", "alice", "alice@example.com")
BOB = Assignee("B", "Bob", "bob@example.com")


@pytest.fixture
def store():
    s = ReportStore("sqlite://")
    s.create_schema()
    return s


def _seed(store):
    store.persist(Report(sections=[
        Section("S1", "Eng", tasks=[
            Task("T1", "Week 1", "S1", subtasks=[
                Subtask("ST1", "Docs", "T1", assignee=ALICE, followers=[BOB],
                        created_at="2025-01-06T00:00:00Z"),
                Subtask("ST2", "Tests", "T1", assignee=BOB, due_on="2025-01-10"),
            ]),
        ]),
    ]))


def _make_factory():
    """A client factory whose clients serve an empty project."""
    created: list[MagicMock] = []

    def factory(settings):
        client = MagicMock(spec=AsanaClient)
        client.project_id = settings.project_id
        client.list_sections = AsyncMock(return_value=[])
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=None)
        created.append(client)
        return client

    factory.created = created
    return factory


# ===================================================================
# start_sync
# ===================================================================


class TestStartSync:
    @pytest.mark.asyncio
    async def test_non_admin_is_rejected(self, store):
        factory = _make_factory()
        service = ReportService(SETTINGS, store, client_factory=factory)

        with pytest.raises(AuthorizationError, match="Admin role required"):
            await service.start_sync(Requester(email="bob@example.com"))

        assert factory.created == []
        assert service.get_sync_status() is None

    @pytest.mark.asyncio
    async def test_wrong_service_token_is_rejected(self, store):
        service = ReportService(SETTINGS, store, client_factory=_make_factory())

        with pytest.raises(AuthorizationError):
            await service.start_sync(Requester(service_token="guess"))

    @pytest.mark.asyncio
    async def test_service_token_may_sync(self, store):
        factory = _make_factory()
        service = ReportService(SETTINGS, store, client_factory=factory)

        result = await service.start_sync(Requester(service_token="s3cret"))

        assert result.success is True
        assert service.get_sync_status().status is SyncStatus.SUCCESS
        factory.created[0].__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_admin_may_sync(self, store):
        service = ReportService(SETTINGS, store, client_factory=_make_factory())

        result = await service.start_sync(Requester(email="boss@example.com", is_admin=True))

        assert result.success is True
        assert result.total_tasks == 0

    @pytest.mark.asyncio
    async def test_missing_token_is_reported_through_status(self, store):
        service = ReportService(Settings(project_id="P1"), store)

        result = await service.start_sync(Requester(is_admin=True))

        assert result.success is False
        status = service.get_sync_status()
        assert status.status is SyncStatus.ERROR
        assert "ASANA_TOKEN" in status.message


# ===================================================================
# Metrics
# ===================================================================


class TestMetrics:
    def test_empty_store(self, store):
        service = ReportService(SETTINGS, store)

        assert service.get_all_metrics(today=TODAY) == []
        assert service.get_metrics_for_assignee("A", today=TODAY) is None
        assert service.get_sync_status() is None

    def test_all_metrics_sorted_by_name(self, store):
        _seed(store)
        service = ReportService(SETTINGS, store)

        metrics = service.get_all_metrics(today=TODAY)

        assert [m.assignee.gid for m in metrics] == ["A", "B"]

    def test_metrics_for_assignee_include_collaboration(self, store):
        _seed(store)
        service = ReportService(SETTINGS, store)

        bob = service.get_metrics_for_assignee("B", today=TODAY)

        assert bob.total == 1
        assert bob.overdue == 1
        assert sum(w.collab for w in bob.weekly) == 1

    def test_requester_may_read_own_metrics(self, store):
        _seed(store)
        service = ReportService(SETTINGS, store)

        found = service.metrics_for_requester(
            Requester(email="Bob@Example.com"), "B", today=TODAY
        )

        assert found.assignee.gid == "B"

    def test_requester_may_not_read_others(self, store):
        _seed(store)
        service = ReportService(SETTINGS, store)

        with pytest.raises(AuthorizationError):
            service.metrics_for_requester(Requester(email="bob@example.com"), "A", today=TODAY)

    def test_admin_may_read_anyone(self, store):
        _seed(store)
        service = ReportService(SETTINGS, store)

        found = service.metrics_for_requester(Requester(is_admin=True), "A", today=TODAY)

        assert found.total == 1
