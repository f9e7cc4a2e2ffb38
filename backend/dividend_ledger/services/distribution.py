"""
Distribution generator.

Materializes a reviewed DividendComputation into a DividendRound and one
Dividend per recipient. Generation is idempotent and safe to run from
several workers at once: rows are created inside savepoints and a unique
constraint violation means another writer got there first, in which case
the existing row is used.
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dividend_ledger.models.dividend import Dividend, DividendRound, DividendRoundStatus, DividendStatus
from dividend_ledger.models.dividend_computation import DividendComputation, DividendComputationOutput
from dividend_ledger.models.recipient import Recipient
from dividend_ledger.services.audit import model_to_dict, record_entry
from dividend_ledger.services.compliance import ComplianceService, RecipientComplianceService
from dividend_ledger.services.computation import get_computation

logger = structlog.get_logger()


@dataclass
class RecipientTotal:
    """Computation outputs summed for one recipient"""
    recipient_id: int
    total_amount_in_cents: int
    qualified_amount_cents: int
    investment_amount_cents: int
    number_of_shares: Optional[int]
    convertible_security_id: Optional[int]


def recipient_totals(outputs: List[DividendComputationOutput]) -> List[RecipientTotal]:
    """Aggregate computation outputs per recipient, in output order"""
    grouped: "OrderedDict[int, List[DividendComputationOutput]]" = OrderedDict()
    for output in outputs:
        grouped.setdefault(output.recipient_id, []).append(output)

    totals = []
    for recipient_id, rows in grouped.items():
        share_rows = [r for r in rows if r.convertible_security_id is None]
        slice_rows = [r for r in rows if r.convertible_security_id is not None]
        totals.append(RecipientTotal(
            recipient_id=recipient_id,
            total_amount_in_cents=sum(r.total_amount_in_cents for r in rows),
            qualified_amount_cents=sum(r.qualified_dividend_amount_in_cents for r in rows),
            investment_amount_cents=sum(r.investment_amount_in_cents for r in rows),
            number_of_shares=sum(r.number_of_shares or 0 for r in share_rows) if share_rows else None,
            convertible_security_id=(
                slice_rows[0].convertible_security_id if len(slice_rows) == 1 and not share_rows else None
            ),
        ))
    return totals


async def _find_round(db: AsyncSession, computation_id: int) -> Optional[DividendRound]:
    result = await db.execute(
        select(DividendRound).where(DividendRound.dividend_computation_id == computation_id)
    )
    return result.scalar_one_or_none()


async def _find_dividend(db: AsyncSession, recipient_id: int, round_id: int) -> Optional[Dividend]:
    result = await db.execute(
        select(Dividend).where(
            Dividend.recipient_id == recipient_id,
            Dividend.dividend_round_id == round_id,
        )
    )
    return result.scalar_one_or_none()


async def find_or_create_round(
    db: AsyncSession,
    computation: DividendComputation,
    attributes: Dict[str, Any],
) -> Tuple[DividendRound, bool]:
    """Return the round for a computation, creating it if needed. First writer wins."""
    existing = await _find_round(db, computation.id)
    if existing is not None:
        return existing, False

    try:
        async with db.begin_nested():
            dividend_round = DividendRound(
                company_id=computation.company_id,
                dividend_computation_id=computation.id,
                **attributes,
            )
            db.add(dividend_round)
            await db.flush()
    except IntegrityError:
        existing = await _find_round(db, computation.id)
        if existing is None:
            raise
        logger.info("Dividend round created concurrently", computation_id=computation.id, round_id=existing.id)
        return existing, False

    return dividend_round, True


async def find_or_create_dividend(
    db: AsyncSession,
    recipient_id: int,
    round_id: int,
    attributes: Dict[str, Any],
) -> Tuple[Dividend, bool]:
    """
    Return the dividend for (recipient, round), creating it if needed.

    An existing row is returned unchanged. The insert runs inside a savepoint
    so a unique violation from a concurrent writer only rolls back this row.

    Returns:
        (dividend, created)
    """
    existing = await _find_dividend(db, recipient_id, round_id)
    if existing is not None:
        return existing, False

    try:
        async with db.begin_nested():
            dividend = Dividend(recipient_id=recipient_id, dividend_round_id=round_id, **attributes)
            db.add(dividend)
            await db.flush()
    except IntegrityError:
        existing = await _find_dividend(db, recipient_id, round_id)
        if existing is None:
            raise
        logger.info(
            "Dividend created concurrently",
            recipient_id=recipient_id,
            round_id=round_id,
            dividend_id=existing.id,
        )
        return existing, False

    return dividend, True


async def generate_distribution(
    db: AsyncSession,
    computation_id: int,
    actor_id: str,
    compliance: Optional[ComplianceService] = None,
    release_document: Optional[str] = None,
) -> DividendRound:
    """
    Create the dividend round and per-recipient dividends for a computation.

    Round aggregates are computed once from the full recipient set. Running
    this again for the same computation returns the same round and rows.
    """
    compliance = compliance or RecipientComplianceService()
    computation = await get_computation(db, computation_id)
    totals = recipient_totals(computation.outputs)

    dividend_round, round_created = await find_or_create_round(
        db,
        computation,
        {
            "issued_at": computation.dividends_issuance_date,
            "number_of_shareholders": len(totals),
            "number_of_shares": sum(
                o.number_of_shares or 0 for o in computation.outputs if o.convertible_security_id is None
            ),
            "total_amount_in_cents": sum(t.total_amount_in_cents for t in totals),
            "return_of_capital": computation.return_of_capital,
            "ready_for_payment": False,
            "status": DividendRoundStatus.ISSUED.value,
            "release_document": release_document,
            "created_by": str(actor_id),
        },
    )
    if round_created:
        record_entry(
            db,
            entity_type="dividend_round",
            entity_id=dividend_round.id,
            company_id=computation.company_id,
            action="generate",
            actor_id=actor_id,
            new_state=model_to_dict(dividend_round),
        )

    recipients = {o.recipient_id: o.recipient for o in computation.outputs}
    created = 0
    for total in totals:
        recipient: Recipient = recipients[total.recipient_id]
        status = (
            DividendStatus.ISSUED.value
            if compliance.is_onboarded(recipient)
            else DividendStatus.PENDING_SIGNUP.value
        )
        dividend, was_created = await find_or_create_dividend(
            db,
            total.recipient_id,
            dividend_round.id,
            {
                "company_id": computation.company_id,
                "convertible_security_id": total.convertible_security_id,
                "total_amount_in_cents": total.total_amount_in_cents,
                "qualified_amount_cents": total.qualified_amount_cents,
                "number_of_shares": total.number_of_shares,
                "investment_amount_cents": total.investment_amount_cents,
                "status": status,
            },
        )
        if was_created:
            created += 1
            record_entry(
                db,
                entity_type="dividend",
                entity_id=dividend.id,
                company_id=computation.company_id,
                action="generate",
                actor_id=actor_id,
                new_state={"status": status, "total_amount_in_cents": dividend.total_amount_in_cents},
            )

    await db.commit()

    logger.info(
        "Dividend distribution generated",
        computation_id=computation_id,
        round_id=dividend_round.id,
        round_created=round_created,
        dividends_created=created,
        recipients=len(totals),
        total_cents=dividend_round.total_amount_in_cents,
    )
    return dividend_round
