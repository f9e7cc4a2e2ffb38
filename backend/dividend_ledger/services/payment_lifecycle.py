"""
Dividend payment lifecycle.

Status flow for a single dividend:

    Pending signup -> Issued -> Processing -> Paid
                      Issued -> Retained
                  Processing -> Issued      (provider failure)

Retained and Paid are terminal. Every transition is written together with an
audit entry in the same transaction.

Payment submission holds a row lock on the company while payable dividends
are selected and moved to Processing; the provider call happens after that
transaction commits.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dividend_ledger.config import Settings, get_settings
from dividend_ledger.models.company import Company
from dividend_ledger.models.dividend import (
    Dividend,
    DividendRound,
    DividendRoundStatus,
    DividendStatus,
    RetainedReason,
)
from dividend_ledger.models.payment import DividendPayment, PaymentStatus
from dividend_ledger.models.recipient import Recipient
from dividend_ledger.services.audit import record_entry
from dividend_ledger.services.compliance import RecipientComplianceService
from dividend_ledger.services.errors import InvalidTransitionError, NotFoundError
from dividend_ledger.services.fees import calculate_dividend_fee_cents
from dividend_ledger.services.notifications import LogNotifier, Notifier
from dividend_ledger.services.payment_provider import PaymentProvider, TransferState, get_payment_provider
from dividend_ledger.services.tax_withholding import DividendTaxWithholdingCalculator, TaxWithholdingCalculator

logger = structlog.get_logger()

ALLOWED_TRANSITIONS = {
    DividendStatus.PENDING_SIGNUP.value: {DividendStatus.ISSUED.value},
    DividendStatus.ISSUED.value: {DividendStatus.PROCESSING.value, DividendStatus.RETAINED.value},
    DividendStatus.PROCESSING.value: {DividendStatus.PAID.value, DividendStatus.ISSUED.value},
    DividendStatus.RETAINED.value: set(),
    DividendStatus.PAID.value: set(),
}

SYSTEM_ACTOR = "system"


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (int, str, bool)) or value is None:
        return value
    return str(value)


def transition(
    db: AsyncSession,
    dividend: Dividend,
    to_status: DividendStatus,
    actor_id: str,
    **changes,
) -> None:
    """
    Move a dividend to a new status, applying any accompanying column changes.

    Raises:
        InvalidTransitionError: if the lifecycle does not allow the move
    """
    to_value = DividendStatus(to_status).value
    from_value = dividend.status
    if to_value not in ALLOWED_TRANSITIONS.get(from_value, set()):
        raise InvalidTransitionError(dividend.id, from_value, to_value)

    old_state = {"status": from_value}
    old_state.update({k: _serialize(getattr(dividend, k)) for k in changes})

    dividend.status = to_value
    for key, value in changes.items():
        setattr(dividend, key, value)

    new_state = {"status": to_value}
    new_state.update({k: _serialize(v) for k, v in changes.items()})
    record_entry(
        db,
        entity_type="dividend",
        entity_id=dividend.id,
        company_id=dividend.company_id,
        action="transition",
        actor_id=actor_id,
        old_state=old_state,
        new_state=new_state,
    )


@dataclass
class RoundPaymentStatus:
    """Payment progress summary for a dividend round"""
    round_id: int
    round_status: str
    ready_for_payment: bool
    total_amount_in_cents: int
    counts: Dict[str, int] = field(default_factory=dict)
    amounts_in_cents: Dict[str, int] = field(default_factory=dict)
    withheld_tax_cents: int = 0
    failed_payment_attempts: int = 0
    estimated_fees_cents: int = 0

    @property
    def paid_amount_in_cents(self) -> int:
        return self.amounts_in_cents.get(DividendStatus.PAID.value, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "round_status": self.round_status,
            "ready_for_payment": self.ready_for_payment,
            "total_amount_in_cents": self.total_amount_in_cents,
            "paid_amount_in_cents": self.paid_amount_in_cents,
            "counts": self.counts,
            "amounts_in_cents": self.amounts_in_cents,
            "withheld_tax_cents": self.withheld_tax_cents,
            "failed_payment_attempts": self.failed_payment_attempts,
            "estimated_fees_cents": self.estimated_fees_cents,
        }


class PaymentLifecycleCoordinator:
    """Drives dividends from issuance to payment"""

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[PaymentProvider] = None,
        compliance: Optional[RecipientComplianceService] = None,
        tax_calculator: Optional[TaxWithholdingCalculator] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self._provider = provider
        self.compliance = compliance or RecipientComplianceService()
        self.tax_calculator = tax_calculator or DividendTaxWithholdingCalculator()
        self.notifier = notifier or LogNotifier()

    async def provider(self) -> PaymentProvider:
        if self._provider is None:
            self._provider = await get_payment_provider()
        return self._provider

    async def _get_recipient(self, recipient_id: int) -> Recipient:
        recipient = await self.db.get(Recipient, recipient_id)
        if recipient is None:
            raise NotFoundError(f"Recipient {recipient_id} not found")
        return recipient

    async def _get_dividend(self, dividend_id: int) -> Dividend:
        result = await self.db.execute(
            select(Dividend)
            .options(selectinload(Dividend.dividend_round), selectinload(Dividend.recipient))
            .where(Dividend.id == dividend_id)
        )
        dividend = result.scalar_one_or_none()
        if dividend is None:
            raise NotFoundError(f"Dividend {dividend_id} not found")
        return dividend

    # Signup and compliance

    async def complete_signup(self, recipient_id: int, actor_id: str) -> List[Dividend]:
        """Release a newly onboarded recipient's dividends for payment"""
        recipient = await self._get_recipient(recipient_id)
        if recipient.onboarded_at is None:
            recipient.onboarded_at = datetime.utcnow()

        result = await self.db.execute(
            select(Dividend).where(
                Dividend.recipient_id == recipient_id,
                Dividend.status == DividendStatus.PENDING_SIGNUP.value,
            )
        )
        dividends = list(result.scalars().all())
        for dividend in dividends:
            transition(self.db, dividend, DividendStatus.ISSUED, actor_id)

        await self.db.commit()
        logger.info("Recipient signup completed", recipient_id=recipient_id, dividends_issued=len(dividends))
        return dividends

    async def mark_retained(self, dividend_id: int, reason: RetainedReason, actor_id: str) -> Dividend:
        dividend = await self._get_dividend(dividend_id)
        transition(
            self.db, dividend, DividendStatus.RETAINED, actor_id,
            retained_reason=RetainedReason(reason).value,
        )
        await self.db.commit()
        logger.info("Dividend retained", dividend_id=dividend_id, reason=RetainedReason(reason).value)
        return dividend

    def apply_retention_policy(
        self,
        recipient: Recipient,
        dividends: List[Dividend],
        actor_id: str,
        eligible_total_cents: Optional[int] = None,
    ) -> List[Dividend]:
        """
        Retain dividends that policy forbids paying out.

        The minimum payout is checked against ``eligible_total_cents``, the
        recipient's whole payable amount, when given; otherwise against the
        sum of ``dividends``.

        Returns the dividends that are still payable. Does not commit.
        """
        if not dividends:
            return []

        if eligible_total_cents is None:
            eligible_total_cents = sum(d.total_amount_in_cents for d in dividends)

        reason = None
        country = (recipient.country_code or "").upper()
        if country in {c.upper() for c in self.settings.sanctioned_country_codes}:
            reason = RetainedReason.OFAC_SANCTIONED_COUNTRY
        elif eligible_total_cents < self.settings.minimum_payout_cents:
            reason = RetainedReason.BELOW_MINIMUM_PAYMENT_THRESHOLD

        if reason is None:
            return dividends

        for dividend in dividends:
            transition(self.db, dividend, DividendStatus.RETAINED, actor_id, retained_reason=reason.value)
        logger.info(
            "Dividends retained by policy",
            recipient_id=recipient.id,
            reason=reason.value,
            dividends=[d.id for d in dividends],
        )
        return []

    async def sign_release(self, dividend_id: int, actor_id: str) -> Dividend:
        """Record that the recipient signed the round's release document"""
        dividend = await self._get_dividend(dividend_id)
        if dividend.signed_release_at is None:
            dividend.signed_release_at = datetime.utcnow()
            record_entry(
                self.db,
                entity_type="dividend",
                entity_id=dividend.id,
                company_id=dividend.company_id,
                action="sign_release",
                actor_id=actor_id,
                new_state={"signed_release_at": dividend.signed_release_at.isoformat()},
            )
            await self.db.commit()
        return dividend

    # Tax

    def compute_tax(self, recipient: Recipient, dividends: List[Dividend], actor_id: str) -> None:
        """Fill the tax fields of any dividend that does not have them yet"""
        by_year: Dict[int, List[Dividend]] = defaultdict(list)
        for dividend in dividends:
            if not dividend.tax_computed:
                by_year[(dividend.created_at or datetime.utcnow()).year].append(dividend)

        for tax_year, group in by_year.items():
            results = self.tax_calculator.compute_withholding(recipient, tax_year, group)
            for dividend in group:
                withholding = results[dividend.id]
                dividend.net_amount_in_cents = withholding.net_amount_in_cents
                dividend.withheld_tax_cents = withholding.withheld_tax_cents
                dividend.withholding_percentage = withholding.withholding_percentage
                record_entry(
                    self.db,
                    entity_type="dividend",
                    entity_id=dividend.id,
                    company_id=dividend.company_id,
                    action="tax_computed",
                    actor_id=actor_id,
                    new_state={
                        "tax_year": tax_year,
                        "net_amount_in_cents": withholding.net_amount_in_cents,
                        "withheld_tax_cents": withholding.withheld_tax_cents,
                        "withholding_percentage": str(withholding.withholding_percentage),
                    },
                )

    # Payments

    async def _payable_dividends(self, recipient_id: int) -> List[Dividend]:
        query = (
            select(Dividend)
            .join(DividendRound, Dividend.dividend_round_id == DividendRound.id)
            .options(selectinload(Dividend.dividend_round))
            .where(
                Dividend.recipient_id == recipient_id,
                Dividend.status == DividendStatus.ISSUED.value,
                DividendRound.ready_for_payment.is_(True),
                (DividendRound.release_document.is_(None)) | (Dividend.signed_release_at.isnot(None)),
            )
            .order_by(Dividend.id)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def trigger_payment(
        self,
        recipient_id: int,
        actor_id: str,
        dividend_id: Optional[int] = None,
    ) -> Optional[DividendPayment]:
        """
        Pay out a recipient's payable dividends, or only ``dividend_id``.

        Returns the payment attempt, or None when nothing was submitted.
        """
        recipient = await self._get_recipient(recipient_id)
        if not self.compliance.can_receive_payment(recipient):
            logger.info("Recipient not cleared for payment", recipient_id=recipient_id)
            return None

        company = (await self.db.execute(
            select(Company).where(Company.id == recipient.company_id).with_for_update()
        )).scalar_one()

        eligible = await self._payable_dividends(recipient_id)
        if dividend_id is None:
            dividends = eligible
        else:
            dividends = [d for d in eligible if d.id == dividend_id]
        dividends = self.apply_retention_policy(
            recipient, dividends, actor_id,
            eligible_total_cents=sum(d.total_amount_in_cents for d in eligible),
        )
        if not dividends:
            await self.db.commit()
            return None

        self.compute_tax(recipient, dividends, actor_id)

        provider = await self.provider()
        attempt = DividendPayment(
            company_id=company.id,
            recipient_id=recipient_id,
            status=PaymentStatus.INITIAL.value,
            processor_name=getattr(provider, "name", "provider"),
            total_transaction_cents=sum(d.net_amount_in_cents for d in dividends),
            currency=company.currency,
            dividends=dividends,
        )
        self.db.add(attempt)
        for dividend in dividends:
            transition(self.db, dividend, DividendStatus.PROCESSING, actor_id)
        await self.db.flush()
        record_entry(
            self.db,
            entity_type="dividend_payment",
            entity_id=attempt.id,
            company_id=company.id,
            action="create",
            actor_id=actor_id,
            new_state={
                "dividends": [d.id for d in dividends],
                "total_transaction_cents": attempt.total_transaction_cents,
            },
        )
        await self.db.commit()

        try:
            transfer = await provider.initiate_transfer(
                recipient_id=recipient_id,
                amount_cents=attempt.total_transaction_cents,
                currency=attempt.currency,
                reference=f"dividend-payment-{attempt.id}",
            )
        except Exception as e:
            logger.error(
                "Dividend transfer failed",
                payment_id=attempt.id,
                recipient=str(recipient.ref),
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._fail_attempt(attempt, dividends, recipient, str(e) or type(e).__name__, actor_id)
            return attempt

        attempt.transfer_id = transfer.transfer_id
        attempt.transfer_status = transfer.status
        attempt.transfer_fee_in_cents = transfer.fee_cents
        attempt.status = PaymentStatus.SUBMITTED.value
        try:
            attempt.delivery_estimate = await provider.get_delivery_estimate(transfer.transfer_id)
        except Exception as e:
            logger.warning("Delivery estimate unavailable", payment_id=attempt.id, error=str(e))
        await self.db.commit()

        logger.info(
            "Dividend transfer submitted",
            payment_id=attempt.id,
            transfer_id=transfer.transfer_id,
            recipient=str(recipient.ref),
            dividends=len(dividends),
            amount_cents=attempt.total_transaction_cents,
        )
        return attempt

    async def _notify_failed(self, recipient: Recipient, dividends: List[Dividend], currency: str) -> None:
        for dividend in dividends:
            amount = dividend.net_amount_in_cents
            if amount is None:
                amount = dividend.total_amount_in_cents
            await self.notifier.payment_failed(recipient, dividend, amount, currency)

    async def _fail_attempt(
        self,
        attempt: DividendPayment,
        dividends: List[Dividend],
        recipient: Recipient,
        error: str,
        actor_id: str,
    ) -> None:
        """Mark an attempt failed, return its dividends to Issued and notify. Commits."""
        attempt.status = PaymentStatus.FAILED.value
        attempt.error_message = error[:500]
        for dividend in dividends:
            transition(self.db, dividend, DividendStatus.ISSUED, actor_id)
        await self.db.commit()
        await self._notify_failed(recipient, dividends, attempt.currency)

    async def _mark_rounds_paid(self, round_ids: set, actor_id: str) -> None:
        for round_id in round_ids:
            unpaid = (await self.db.execute(
                select(func.count(Dividend.id)).where(
                    Dividend.dividend_round_id == round_id,
                    Dividend.status != DividendStatus.PAID.value,
                )
            )).scalar()
            if unpaid:
                continue
            dividend_round = await self.db.get(DividendRound, round_id)
            if dividend_round.status == DividendRoundStatus.PAID.value:
                continue
            dividend_round.status = DividendRoundStatus.PAID.value
            record_entry(
                self.db,
                entity_type="dividend_round",
                entity_id=round_id,
                company_id=dividend_round.company_id,
                action="transition",
                actor_id=actor_id,
                old_state={"status": DividendRoundStatus.ISSUED.value},
                new_state={"status": DividendRoundStatus.PAID.value},
            )
            logger.info("Dividend round paid", round_id=round_id)

    async def apply_transfer_state(
        self, attempt: DividendPayment, state: TransferState, actor_id: str = SYSTEM_ACTOR
    ) -> None:
        """
        Apply the provider's view of a transfer to its attempt and dividends.

        The attempt must have ``dividends`` loaded with their recipient. Does
        not commit.
        """
        attempt.transfer_status = state.status
        processing = [d for d in attempt.dividends if d.status == DividendStatus.PROCESSING.value]

        if state.succeeded:
            attempt.status = PaymentStatus.SUCCEEDED.value
            paid_at = datetime.utcnow()
            for dividend in processing:
                transition(self.db, dividend, DividendStatus.PAID, actor_id, paid_at=paid_at)
            await self.db.flush()
            await self._mark_rounds_paid({d.dividend_round_id for d in processing}, actor_id)
        elif state.failed:
            attempt.status = PaymentStatus.FAILED.value
            for dividend in processing:
                transition(self.db, dividend, DividendStatus.ISSUED, actor_id)
            if processing:
                await self._notify_failed(processing[0].recipient, processing, state.currency)

    async def recover_stale_submissions(
        self, actor_id: str = SYSTEM_ACTOR, now: Optional[datetime] = None
    ) -> int:
        """
        Fail attempts that never got a transfer id, so their dividends can be
        paid again. Only attempts older than ``stale_submission_minutes`` count.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=self.settings.stale_submission_minutes)
        result = await self.db.execute(
            select(DividendPayment.id)
            .join(DividendPayment.dividends)
            .where(
                DividendPayment.transfer_id.is_(None),
                DividendPayment.status == PaymentStatus.INITIAL.value,
                DividendPayment.created_at < cutoff,
                Dividend.status == DividendStatus.PROCESSING.value,
            )
            .distinct()
            .order_by(DividendPayment.id)
        )
        attempt_ids = list(result.scalars().all())

        recovered = 0
        for attempt_id in attempt_ids:
            try:
                attempt = (await self.db.execute(
                    select(DividendPayment)
                    .options(selectinload(DividendPayment.dividends).selectinload(Dividend.recipient))
                    .where(DividendPayment.id == attempt_id)
                    .execution_options(populate_existing=True)
                )).scalar_one()
                processing = [d for d in attempt.dividends if d.status == DividendStatus.PROCESSING.value]
                logger.warning(
                    "Recovering stale dividend payment",
                    payment_id=attempt_id,
                    created_at=attempt.created_at.isoformat(),
                    dividends=[d.id for d in processing],
                )
                await self._fail_attempt(
                    attempt, processing, processing[0].recipient,
                    "Submission to the provider did not complete", actor_id,
                )
                recovered += 1
            except Exception as e:
                await self.db.rollback()
                logger.error("Error recovering stale dividend payment", payment_id=attempt_id, error=str(e))
        return recovered

    async def reconcile_processing_payments(self, actor_id: str = SYSTEM_ACTOR) -> Dict[str, int]:
        """
        Poll the provider for every submitted transfer that still has
        Processing dividends, after failing stale unsubmitted attempts. One
        failing transfer does not stop the sweep.
        """
        stale = await self.recover_stale_submissions(actor_id)

        result = await self.db.execute(
            select(DividendPayment.id)
            .join(DividendPayment.dividends)
            .where(
                DividendPayment.transfer_id.isnot(None),
                Dividend.status == DividendStatus.PROCESSING.value,
            )
            .distinct()
            .order_by(DividendPayment.id)
        )
        attempt_ids = list(result.scalars().all())

        stats = {"checked": 0, "succeeded": 0, "failed": 0, "pending": 0, "errors": 0, "stale": stale}
        provider = await self.provider() if attempt_ids else None
        for attempt_id in attempt_ids:
            stats["checked"] += 1
            try:
                attempt = (await self.db.execute(
                    select(DividendPayment)
                    .options(selectinload(DividendPayment.dividends).selectinload(Dividend.recipient))
                    .where(DividendPayment.id == attempt_id)
                    .execution_options(populate_existing=True)
                )).scalar_one()
                state = await provider.get_transfer_status(attempt.transfer_id)
                await self.apply_transfer_state(attempt, state, actor_id)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                stats["errors"] += 1
                logger.error("Error reconciling dividend payment", payment_id=attempt_id, error=str(e))
                continue

            if state.succeeded:
                stats["succeeded"] += 1
            elif state.failed:
                stats["failed"] += 1
            else:
                stats["pending"] += 1

        if attempt_ids or stale:
            logger.info("Reconciled dividend payments", **stats)
        return stats

    # Sweeps

    async def enable_ready_rounds(self, today: Optional[date] = None, actor_id: str = SYSTEM_ACTOR) -> List[int]:
        """Mark issued rounds payable once their issue date has arrived"""
        today = today or datetime.utcnow().date()
        result = await self.db.execute(
            select(DividendRound)
            .join(Company, DividendRound.company_id == Company.id)
            .where(
                DividendRound.status == DividendRoundStatus.ISSUED.value,
                DividendRound.ready_for_payment.is_(False),
                DividendRound.issued_at <= today,
                Company.dividends_allowed.is_(True),
            )
            .order_by(DividendRound.id)
        )
        rounds = list(result.scalars().all())

        for dividend_round in rounds:
            dividend_round.ready_for_payment = True
            record_entry(
                self.db,
                entity_type="dividend_round",
                entity_id=dividend_round.id,
                company_id=dividend_round.company_id,
                action="enable_payments",
                actor_id=actor_id,
                old_state={"ready_for_payment": False},
                new_state={"ready_for_payment": True},
            )
            logger.info(
                "Enabled payments for dividend round",
                round_id=dividend_round.id,
                company_id=dividend_round.company_id,
                issued_at=dividend_round.issued_at.isoformat(),
            )

        await self.db.commit()
        logger.info("Dividend round payment sweep complete", rounds_enabled=len(rounds))
        return [r.id for r in rounds]

    async def send_signup_reminders(self, actor_id: str = SYSTEM_ACTOR) -> int:
        """Remind recipients with unclaimed dividends to finish signing up, once"""
        result = await self.db.execute(
            select(Dividend)
            .options(selectinload(Dividend.recipient))
            .where(
                Dividend.status == DividendStatus.PENDING_SIGNUP.value,
                Dividend.reminder_sent_at.is_(None),
            )
            .order_by(Dividend.id)
        )
        dividends = list(result.scalars().all())

        sent_at = datetime.utcnow()
        for dividend in dividends:
            await self.notifier.signup_reminder(dividend.recipient, dividend)
            dividend.reminder_sent_at = sent_at

        await self.db.commit()
        if dividends:
            logger.info("Sent dividend signup reminders", count=len(dividends))
        return len(dividends)

    # Reporting

    async def payment_status(self, round_id: int) -> RoundPaymentStatus:
        dividend_round = await self.db.get(DividendRound, round_id)
        if dividend_round is None:
            raise NotFoundError(f"Dividend round {round_id} not found")

        result = await self.db.execute(select(Dividend).where(Dividend.dividend_round_id == round_id))
        dividends = list(result.scalars().all())

        status = RoundPaymentStatus(
            round_id=round_id,
            round_status=dividend_round.status,
            ready_for_payment=dividend_round.ready_for_payment,
            total_amount_in_cents=dividend_round.total_amount_in_cents,
            counts={s.value: 0 for s in DividendStatus},
            amounts_in_cents={s.value: 0 for s in DividendStatus},
        )
        for dividend in dividends:
            status.counts[dividend.status] += 1
            status.amounts_in_cents[dividend.status] += dividend.total_amount_in_cents
            status.withheld_tax_cents += dividend.withheld_tax_cents or 0
            status.estimated_fees_cents += calculate_dividend_fee_cents(dividend.total_amount_in_cents)

        status.failed_payment_attempts = (await self.db.execute(
            select(func.count(func.distinct(DividendPayment.id)))
            .join(DividendPayment.dividends)
            .where(
                Dividend.dividend_round_id == round_id,
                DividendPayment.status == PaymentStatus.FAILED.value,
            )
        )).scalar() or 0
        return status
