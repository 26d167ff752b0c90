"""
Abandonment Reaper.

Periodically moves carts that nobody touched for ``cart_idle_minutes``
to 'incomplete' and alerts the business. Every cart is expired in its
own session, so one failure never blocks the rest of the batch.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config.logging import reaper_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import AsyncSessionLocal
from shared.utils.timeutils import utcnow
from order_engine.repositories import DraftStore, StatusConflictError
from order_engine.services.domain import CartStillActiveError, build_domain_services
from order_engine.services.jobs.scheduler import IntervalTicker
from order_engine.services.notifications import OrderNotifier


@dataclass
class SweepReport:
    """Cart ids per outcome of one sweep."""

    expired: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.expired) + len(self.skipped) + len(self.failed)


class AbandonmentReaper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        ticker: IntervalTicker | None = None,
        notifier: OrderNotifier | None = None,
        idle_minutes: int | None = None,
        batch_size: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._ticker = ticker or IntervalTicker(settings.reaper_interval_seconds, name="abandonment-reaper")
        self._notifier = notifier
        self._idle = timedelta(minutes=idle_minutes or settings.cart_idle_minutes)
        self._batch_size = batch_size or settings.reaper_batch_size
        self._clock = clock

    def start(self) -> None:
        self._ticker.start(self.sweep_once)

    async def stop(self) -> None:
        await self._ticker.stop()

    async def sweep_once(self) -> SweepReport:
        """Expire one batch of idle carts."""
        idle_before = self._clock() - self._idle
        async with self._session_factory() as db:
            cart_ids = await DraftStore(db).find_idle_carts(idle_before, self._batch_size)

        report = SweepReport()
        for cart_id in cart_ids:
            await self._expire_one(cart_id, idle_before, report)

        if report.total:
            logger.info(
                "Abandoned carts swept",
                expired=len(report.expired),
                skipped=len(report.skipped),
                failed=len(report.failed),
            )
        return report

    async def _expire_one(self, cart_id: int, idle_before: datetime, report: SweepReport) -> None:
        async with self._session_factory() as db:
            services = build_domain_services(db, clock=self._clock)
            try:
                order = await services.lifecycle.expire_cart(cart_id, idle_before=idle_before)
            except (StatusConflictError, CartStillActiveError) as e:
                # Confirmed or touched since it was selected
                logger.debug("Cart no longer idle", order_id=cart_id, reason=str(e))
                report.skipped.append(cart_id)
                return
            except Exception as e:
                logger.error("Failed to expire cart", order_id=cart_id, error=str(e), exc_info=True)
                report.failed.append(cart_id)
                return

        report.expired.append(cart_id)
        if self._notifier is not None:
            try:
                await self._notifier.notify_cart_abandoned(order)
            except Exception as e:
                logger.warning("Abandonment notification failed", order_id=cart_id, error=str(e))
