# tests/unit/domains/external_accounting/sync/test_scheduler.py
"""
Tests for SyncScheduler due-company selection, isolation and cancellation.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

from pickbridge.domains.external_accounting.base.models import SyncResult
from pickbridge.domains.external_accounting.base.types import (
    FailureCause,
    ProviderCallError,
    ProviderKind,
)
from pickbridge.domains.external_accounting.sync.reconciliation import (
    ReconciliationEngine,
)
from pickbridge.domains.external_accounting.sync.scheduler import (
    SYNC_JOB_ID,
    SyncScheduler,
)
from tests.fixtures.provider_fixtures import make_items, seed_token

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class RecordingEngine:
    """Engine stand-in that records calls and can block until cancelled."""

    def __init__(self, delay: float = 0.0, wait_for_cancel: bool = False):
        self.delay = delay
        self.wait_for_cancel = wait_for_cancel
        self.calls: List[str] = []
        self.category_ids: List[Optional[Sequence[str]]] = []
        self.active = 0
        self.max_active = 0

    async def sync_company(
        self,
        company_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        category_ids: Optional[Sequence[str]] = None,
    ) -> SyncResult:
        self.calls.append(company_id)
        self.category_ids.append(category_ids)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.wait_for_cancel:
                await cancel_event.wait()
                return SyncResult(company_id=company_id, success=False, cancelled=True)
            await asyncio.sleep(self.delay)
            return SyncResult(company_id=company_id, success=True)
        finally:
            self.active -= 1


class TestSyncScheduler:
    """Test suite for the periodic sync scheduler."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated_per_company(
        self, memory_store, token_manager, token_store, fake_adapter, provider_registry
    ) -> None:
        """Test one revoked and one broken company don't stop a healthy one."""
        # Arrange
        memory_store.add_company("healthy")
        await seed_token(token_store, "healthy")
        memory_store.add_company("revoked")
        memory_store.add_company("broken", provider=ProviderKind.XERO)
        await seed_token(token_store, "broken", provider=ProviderKind.XERO)
        fake_adapter.items = make_items(3)
        provider_registry.get(ProviderKind.XERO).item_page_errors = {
            1: RuntimeError("boom")
        }
        engine = ReconciliationEngine(memory_store, token_manager, clock=lambda: NOW)
        scheduler = SyncScheduler(memory_store, engine, clock=lambda: NOW)

        # Act
        results = await scheduler.run_all_due()

        # Assert
        assert results["healthy"].success is True
        assert results["revoked"].success is False
        assert results["revoked"].reauth_required is True
        assert results["broken"].success is False
        assert results["broken"].reauth_required is False
        assert results["broken"].error == "boom"
        assert len(memory_store.products_for("healthy")) == 3
        assert memory_store.companies["healthy"].last_synced_at == NOW

    @pytest.mark.asyncio
    async def test_token_revoked_at_provider_reports_reauth(
        self, memory_store, token_manager, token_store, fake_adapter
    ) -> None:
        """Test an invalid_grant refresh marks only that company for reconnect."""
        # Arrange
        memory_store.add_company("revoked-remotely")
        await seed_token(token_store, "revoked-remotely", expires_in=-60)
        memory_store.add_company("healthy", provider=ProviderKind.XERO)
        await seed_token(token_store, "healthy", provider=ProviderKind.XERO)
        fake_adapter.refresh_error = ProviderCallError(
            ProviderKind.QUICKBOOKS,
            FailureCause.REVOKED,
            "Token request failed: Token invalid",
            status_code=400,
            error_code="invalid_grant",
        )
        engine = ReconciliationEngine(memory_store, token_manager, clock=lambda: NOW)
        scheduler = SyncScheduler(memory_store, engine, clock=lambda: NOW)

        # Act
        results = await scheduler.run_all_due()

        # Assert
        assert fake_adapter.refresh_calls == 1
        assert results["revoked-remotely"].success is False
        assert results["revoked-remotely"].reauth_required is True
        assert fake_adapter.item_fetches == 0
        assert "revoked-remotely" in memory_store.tokens
        assert results["healthy"].success is True

    @pytest.mark.asyncio
    async def test_disabled_and_recent_companies_are_skipped(self, memory_store) -> None:
        # Arrange
        memory_store.add_company("disabled", sync_enabled=False)
        memory_store.add_company("recent", last_synced_at=NOW - timedelta(minutes=10))
        memory_store.add_company("stale", last_synced_at=NOW - timedelta(hours=2))
        memory_store.add_company("never")
        memory_store.add_company("disconnected", provider=None)
        engine = RecordingEngine()
        scheduler = SyncScheduler(
            memory_store, engine, interval_minutes=60, clock=lambda: NOW
        )

        # Act
        results = await scheduler.run_all_due()

        # Assert
        assert results["disabled"].skipped is True
        assert results["disabled"].skip_reason == "sync disabled"
        assert results["recent"].skip_reason == "not due"
        assert sorted(engine.calls) == ["never", "stale"]
        assert "disconnected" not in results

    @pytest.mark.asyncio
    async def test_force_ignores_interval_but_not_disabled(self, memory_store) -> None:
        memory_store.add_company("disabled", sync_enabled=False)
        memory_store.add_company("recent", last_synced_at=NOW - timedelta(minutes=10))
        engine = RecordingEngine()
        scheduler = SyncScheduler(memory_store, engine, clock=lambda: NOW)

        results = await scheduler.run_all_due(force=True)

        assert engine.calls == ["recent"]
        assert results["disabled"].skipped is True

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, memory_store) -> None:
        for company_id in ("a", "b", "c"):
            memory_store.add_company(company_id)
        engine = RecordingEngine(delay=0.01)
        scheduler = SyncScheduler(memory_store, engine, max_concurrency=1)

        await scheduler.run_all_due()

        assert engine.calls == ["a", "b", "c"]
        assert engine.max_active == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, memory_store) -> None:
        # Arrange
        for company_id in ("a", "b", "c", "d", "e"):
            memory_store.add_company(company_id)
        engine = RecordingEngine(delay=0.02)
        scheduler = SyncScheduler(memory_store, engine, max_concurrency=2)

        # Act
        results = await scheduler.run_all_due()

        # Assert
        assert engine.max_active == 2
        assert all(r.success for r in results.values())
        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_cancel_running_sync(self, memory_store) -> None:
        """Test cancel signals the in-flight run for that company only."""
        # Arrange
        memory_store.add_company("a")
        engine = RecordingEngine(wait_for_cancel=True)
        scheduler = SyncScheduler(memory_store, engine)
        task = asyncio.create_task(scheduler.run_company("a"))
        await asyncio.sleep(0)

        # Act
        assert scheduler.is_running("a") is True
        assert scheduler.cancel("other") is False
        cancelled = scheduler.cancel("a")
        result = await asyncio.wait_for(task, timeout=1)

        # Assert
        assert cancelled is True
        assert result.cancelled is True
        assert scheduler.is_running("a") is False

    @pytest.mark.asyncio
    async def test_second_run_for_same_company_is_rejected(self, memory_store) -> None:
        memory_store.add_company("a")
        engine = RecordingEngine(wait_for_cancel=True)
        scheduler = SyncScheduler(memory_store, engine)
        task = asyncio.create_task(scheduler.run_company("a"))
        await asyncio.sleep(0)

        duplicate = await scheduler.run_company("a")
        scheduler.cancel("a")
        await asyncio.wait_for(task, timeout=1)

        assert duplicate.success is False
        assert duplicate.error == "A sync is already running"
        assert engine.calls == ["a"]

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, memory_store) -> None:
        # Arrange
        scheduler = SyncScheduler(memory_store, RecordingEngine(), interval_minutes=30)

        # Act
        scheduler.start()

        # Assert
        job = scheduler.scheduler.get_job(SYNC_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(minutes=30)

        scheduler.shutdown()
        assert scheduler.scheduler is None
