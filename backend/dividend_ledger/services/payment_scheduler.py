"""Background sweeps that keep dividend payments moving."""
import asyncio
from datetime import datetime
from typing import Optional

import structlog

from dividend_ledger.models.database import async_session_factory
from dividend_ledger.services.payment_lifecycle import PaymentLifecycleCoordinator

logger = structlog.get_logger()


class PaymentScheduler:
    """
    Periodically runs the payment sweeps:
    1. Enable payments for rounds whose issue date has arrived
    2. Reconcile transfers still in Processing with the provider
    3. Send signup reminders for unclaimed dividends

    Each sweep gets its own session; a failing sweep is logged and the others
    still run.
    """

    def __init__(self, interval_seconds: int = 300, actor_id: str = "system:payment_scheduler"):
        self.interval_seconds = interval_seconds
        self.actor_id = actor_id
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background payment scheduler."""
        if self._running:
            logger.warning("Payment scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Payment scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the background payment scheduler."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Payment scheduler stopped")

    async def _run_loop(self):
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Error in payment scheduler", error=str(e))

            await asyncio.sleep(self.interval_seconds)

    async def run_once(self):
        """Run every sweep once."""
        sweeps = (
            ("enable_ready_rounds", lambda c: c.enable_ready_rounds(datetime.utcnow().date(), self.actor_id)),
            ("reconcile_processing_payments", lambda c: c.reconcile_processing_payments(self.actor_id)),
            ("send_signup_reminders", lambda c: c.send_signup_reminders(self.actor_id)),
        )
        for name, sweep in sweeps:
            async with async_session_factory() as db:
                try:
                    await sweep(PaymentLifecycleCoordinator(db))
                except Exception as e:
                    await db.rollback()
                    logger.error("Payment sweep failed", sweep=name, error=str(e))


# Global scheduler instance
_scheduler: Optional[PaymentScheduler] = None


async def start_payment_scheduler(interval_seconds: int = 300):
    """Start the global payment scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = PaymentScheduler(interval_seconds=interval_seconds)
    await _scheduler.start()


async def stop_payment_scheduler():
    """Stop the global payment scheduler."""
    global _scheduler
    if _scheduler:
        await _scheduler.stop()
        _scheduler = None
