"""Investor notifications about dividend payments"""
from typing import Protocol

import structlog

from dividend_ledger.models.dividend import Dividend
from dividend_ledger.models.recipient import Recipient

logger = structlog.get_logger()


class Notifier(Protocol):
    async def payment_failed(
        self, recipient: Recipient, dividend: Dividend, amount_cents: int, currency: str
    ) -> None:
        ...

    async def signup_reminder(self, recipient: Recipient, dividend: Dividend) -> None:
        ...


class LogNotifier:
    """Emits notifications as structured log events; delivery happens downstream"""

    async def payment_failed(
        self, recipient: Recipient, dividend: Dividend, amount_cents: int, currency: str
    ) -> None:
        logger.warning(
            "Dividend payment failed",
            recipient=str(recipient.ref),
            email=recipient.contact_email,
            dividend_id=dividend.id,
            amount_cents=amount_cents,
            currency=currency,
        )

    async def signup_reminder(self, recipient: Recipient, dividend: Dividend) -> None:
        logger.info(
            "Dividend signup reminder",
            recipient=str(recipient.ref),
            email=recipient.contact_email,
            dividend_id=dividend.id,
            amount_cents=dividend.total_amount_in_cents,
        )
