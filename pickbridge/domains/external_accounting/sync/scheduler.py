# pickbridge/domains/external_accounting/sync/scheduler.py
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pickbridge.core.settings import settings
from pickbridge.shared.exceptions import ReAuthRequiredError

from ..base.models import CompanyRecord, SyncResult
from ..base.store import BaseIntegrationStore
from ..tokens.manager import utc_now
from .reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "catalogue_sync"


class SyncScheduler:
    """
    Runs reconciliation for every due company.

    A failure in one company never stops the others: every exception becomes
    that company's failed SyncResult.
    """

    def __init__(
        self,
        store: BaseIntegrationStore,
        engine: ReconciliationEngine,
        interval_minutes: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.engine = engine
        self.interval = timedelta(
            minutes=interval_minutes or settings.SYNC_INTERVAL_MINUTES
        )
        self.max_concurrency = max(1, max_concurrency or settings.SYNC_MAX_CONCURRENCY)
        self.clock = clock
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._cancel_events: Dict[str, asyncio.Event] = {}

    def start(self) -> None:
        """Register the interval job and start the APScheduler loop."""
        if self.scheduler is not None and self.scheduler.running:
            logger.warning("Sync scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self.run_all_due,
            trigger=IntervalTrigger(minutes=int(self.interval.total_seconds() // 60)),
            id=SYNC_JOB_ID,
            name="Catalogue sync for due companies",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        next_run = self.scheduler.get_job(SYNC_JOB_ID).next_run_time
        logger.info(f"Sync scheduler started, next run at {next_run}")

    def shutdown(self) -> None:
        if self.scheduler is None or not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Sync scheduler stopped")

    def cancel(self, company_id: str) -> bool:
        """Signal an in-flight run for the company to stop before its next page."""
        event = self._cancel_events.get(company_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for company {company_id} sync")
        return True

    def is_running(self, company_id: str) -> bool:
        return company_id in self._cancel_events

    async def run_all_due(self, force: bool = False) -> Dict[str, SyncResult]:
        """
        Sync every connected company that is enabled and due.

        Args:
            force: Ignore the interval and sync every enabled company

        Returns:
            Mapping of company id to that company's SyncResult
        """
        companies = await self.store.list_connected_companies()
        logger.info(
            f"Sync run over {len(companies)} connected companies "
            f"(max concurrency {self.max_concurrency}, force={force})"
        )

        results: Dict[str, SyncResult] = {}
        due = []
        for company in companies:
            skip_reason = self._skip_reason(company, force)
            if skip_reason:
                results[company.id] = SyncResult.skipped_run(company.id, skip_reason)
            else:
                due.append(company)

        if self.max_concurrency == 1:
            for company in due:
                results[company.id] = await self.run_company(company.id)
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def run_bounded(company_id: str) -> SyncResult:
                async with semaphore:
                    return await self.run_company(company_id)

            outcomes = await asyncio.gather(*(run_bounded(c.id) for c in due))
            for company, outcome in zip(due, outcomes):
                results[company.id] = outcome

        failed = sum(1 for r in results.values() if not r.success)
        logger.info(f"Sync run complete: {len(due)} synced, {failed} failed")
        return results

    async def run_company(
        self, company_id: str, category_ids: Optional[Sequence[str]] = None
    ) -> SyncResult:
        """Sync one company, converting any failure into a failed SyncResult."""
        if company_id in self._cancel_events:
            return SyncResult.failed_run(company_id, "A sync is already running")

        cancel_event = asyncio.Event()
        self._cancel_events[company_id] = cancel_event
        start_time = time.time()

        try:
            return await self.engine.sync_company(
                company_id, cancel_event, category_ids=category_ids
            )
        except ReAuthRequiredError as e:
            logger.warning(f"Sync for company {company_id} needs re-authorisation")
            return SyncResult.failed_run(
                company_id,
                str(e),
                duration_seconds=time.time() - start_time,
                reauth_required=True,
            )
        except Exception as e:
            logger.error(f"Sync for company {company_id} failed: {e}", exc_info=True)
            return SyncResult.failed_run(
                company_id, str(e), duration_seconds=time.time() - start_time
            )
        finally:
            self._cancel_events.pop(company_id, None)

    def _skip_reason(self, company: CompanyRecord, force: bool) -> Optional[str]:
        if not company.sync_enabled:
            return "sync disabled"
        if force or company.last_synced_at is None:
            return None
        if company.last_synced_at + self.interval > self.clock():
            return "not due"
        return None
