"""Webhook retry sweeper."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta

from redis.exceptions import RedisError

from solarcrm.db.types import utcnow
from solarcrm.valkey import SweepLock
from solarcrm.webhooks.config import WebhookSettings
from solarcrm.webhooks.engine import DeliveryEngine
from solarcrm.webhooks.store import WebhookStore

logger = logging.getLogger(__name__)

PURGE_INTERVAL = timedelta(hours=1)


class RetrySweeper:
    """Re-attempts deliveries whose retry time has come."""

    def __init__(
        self,
        store: WebhookStore,
        engine: DeliveryEngine,
        settings: WebhookSettings,
        use_lock: bool = False,
    ):
        """
        Initialize the sweeper.

        Args:
            store: Persistence for deliveries
            engine: Engine used for each attempt
            settings: Batch size, interval and retention
            use_lock: Guard each scheduled pass with the Valkey sweep lock
        """
        self._store = store
        self._engine = engine
        self._settings = settings
        self._use_lock = use_lock
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_purge: datetime | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def process_retries(self, now: datetime | None = None) -> int:
        """Attempt one batch of due deliveries sequentially.

        Selects ``retrying`` records with ``next_retry_at <= now`` and
        ``pending`` records whose first attempt was never recorded.
        Returns the number of records attempted.
        """
        now = now or utcnow()
        stale_before = now - timedelta(seconds=self._settings.stale_pending_seconds)
        deliveries = await self._store.due_deliveries(
            now,
            limit=self._settings.retry_batch_size,
            stale_pending_before=stale_before,
        )
        if not deliveries:
            logger.debug("No webhook deliveries due for retry")
            return 0

        for delivery in deliveries:
            try:
                await self._engine.attempt_delivery(delivery)
            except Exception:
                logger.exception("Unexpected error retrying webhook delivery %s", delivery.id)

        logger.info("Processed %d webhook retry(s)", len(deliveries))
        return len(deliveries)

    async def purge_old_deliveries(self, now: datetime | None = None) -> int:
        """Delete terminal deliveries past their retention period."""
        now = now or utcnow()
        removed = await self._store.purge_deliveries(
            delivered_before=now - timedelta(days=self._settings.delivered_retention_days),
            failed_before=now - timedelta(days=self._settings.failed_retention_days),
        )
        if removed:
            logger.info("Purged %d old webhook delivery record(s)", removed)
        return removed

    async def run_once(self) -> int:
        """One scheduled pass: retries, then an hourly purge."""
        token = uuid.uuid4().hex
        locked = False

        if self._use_lock:
            try:
                locked = await SweepLock.acquire(token, self._lock_ttl())
            except (RedisError, OSError) as e:
                logger.warning("Sweep lock unavailable, sweeping without it: %s", e)
            else:
                if not locked:
                    logger.debug("Another process is sweeping webhook retries")
                    return 0

        try:
            processed = await self.process_retries()
            now = utcnow()
            if self._last_purge is None or now - self._last_purge >= PURGE_INTERVAL:
                await self.purge_old_deliveries(now)
                self._last_purge = now
            return processed
        finally:
            if locked:
                try:
                    await SweepLock.release(token)
                except (RedisError, OSError) as e:
                    logger.warning("Failed to release sweep lock: %s", e)

    def _lock_ttl(self) -> int:
        # Upper bound on one pass: every attempt in the batch timing out
        return self._settings.retry_batch_size * self._settings.delivery_timeout_seconds

    async def start(self) -> None:
        """Start sweeping on a timer."""
        if self._running:
            logger.warning("RetrySweeper is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        logger.info(
            "RetrySweeper started (interval: %ds, batch: %d)",
            self._settings.sweep_interval_seconds,
            self._settings.retry_batch_size,
        )

    async def stop(self) -> None:
        """Stop sweeping."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("RetrySweeper stopped")

    async def _process_loop(self) -> None:
        """Main sweep loop."""
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in webhook retry sweep: %s", e)
            await asyncio.sleep(self._settings.sweep_interval_seconds)
