"""
Dividend computation service.

Runs the allocation engine over the company's ledger and persists the result
as an immutable DividendComputation for administrator review.
"""
from datetime import date
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dividend_ledger.config import get_settings
from dividend_ledger.models.company import Company
from dividend_ledger.models.convertible import ConvertibleSecurity
from dividend_ledger.models.dividend import DividendRound
from dividend_ledger.models.dividend_computation import DividendComputation, DividendComputationOutput
from dividend_ledger.services.allocation import AllocationResult, allocate
from dividend_ledger.services.audit import record_entry
from dividend_ledger.services.errors import ComputationInUseError, NotFoundError
from dividend_ledger.services.ledger_view import load_share_ledger

logger = structlog.get_logger()


async def _get_company(db: AsyncSession, company_id: int) -> Company:
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundError(f"Company {company_id} not found")
    return company


async def preview_computation(
    db: AsyncSession,
    company_id: int,
    total_amount_in_cents: int,
    dividends_issuance_date: date,
    return_of_capital: bool = False,
) -> AllocationResult:
    """Run the allocation without persisting anything"""
    await _get_company(db, company_id)
    settings = get_settings()
    ledger = await load_share_ledger(db, company_id, dividends_issuance_date)
    return allocate(
        total_amount_in_cents,
        dividends_issuance_date,
        ledger,
        return_of_capital=return_of_capital,
        qualified_holding_period_days=settings.qualified_holding_period_days,
        hurdle_accrual=settings.hurdle_accrual,
    )


async def run_computation(
    db: AsyncSession,
    company_id: int,
    total_amount_in_cents: int,
    dividends_issuance_date: date,
    actor_id: str,
    return_of_capital: bool = False,
) -> DividendComputation:
    """
    Allocate a dividend pool and store the result.

    Lines with a zero total are not stored: they would not produce a payable
    dividend. Nothing is written when the allocation fails.
    """
    allocation = await preview_computation(
        db, company_id, total_amount_in_cents, dividends_issuance_date, return_of_capital
    )

    computation = DividendComputation(
        company_id=company_id,
        total_amount_in_cents=total_amount_in_cents,
        dividends_issuance_date=dividends_issuance_date,
        return_of_capital=return_of_capital,
        created_by=str(actor_id),
    )
    for line in allocation.lines:
        if line.total_amount_cents <= 0:
            continue
        computation.outputs.append(DividendComputationOutput(
            recipient_id=line.recipient_id,
            share_class_id=line.share_class_id,
            convertible_security_id=line.convertible_security_id,
            number_of_shares=line.number_of_shares,
            implied_shares=line.implied_shares,
            hurdle_rate=line.hurdle_rate,
            original_issue_price=line.original_issue_price,
            preferred_dividend_amount_in_cents=line.preferred_amount_cents,
            dividend_amount_in_cents=line.common_amount_cents,
            total_amount_in_cents=line.total_amount_cents,
            qualified_dividend_amount_in_cents=line.qualified_amount_cents,
            investment_amount_in_cents=line.investment_amount_cents,
        ))

    db.add(computation)
    await db.flush()

    record_entry(
        db,
        entity_type="dividend_computation",
        entity_id=computation.id,
        company_id=company_id,
        action="compute",
        actor_id=actor_id,
        new_state={
            "total_amount_in_cents": total_amount_in_cents,
            "distributed_amount_in_cents": allocation.distributed_amount_cents,
            "dividends_issuance_date": dividends_issuance_date.isoformat(),
            "return_of_capital": return_of_capital,
            "outputs": len(computation.outputs),
        },
    )
    await db.commit()

    logger.info(
        "Dividend computation created",
        computation_id=computation.id,
        company_id=company_id,
        pool_cents=total_amount_in_cents,
        distributed_cents=allocation.distributed_amount_cents,
        shortfall_cents=allocation.shortfall_cents,
        pool_exhausted=allocation.pool_exhausted,
        lines=len(computation.outputs),
    )
    return computation


async def get_computation(db: AsyncSession, computation_id: int) -> DividendComputation:
    result = await db.execute(
        select(DividendComputation)
        .options(
            selectinload(DividendComputation.outputs).selectinload(DividendComputationOutput.recipient),
            selectinload(DividendComputation.outputs).selectinload(DividendComputationOutput.share_class),
            selectinload(DividendComputation.outputs)
            .selectinload(DividendComputationOutput.convertible_security)
            .selectinload(ConvertibleSecurity.instrument),
        )
        .where(DividendComputation.id == computation_id)
        .execution_options(populate_existing=True)
    )
    computation = result.scalar_one_or_none()
    if computation is None:
        raise NotFoundError(f"Dividend computation {computation_id} not found")
    return computation


async def delete_computation(db: AsyncSession, computation_id: int, actor_id: str) -> None:
    """Discard a computation that has not been turned into a dividend round"""
    computation = await get_computation(db, computation_id)

    round_id: Optional[int] = (await db.execute(
        select(DividendRound.id).where(DividendRound.dividend_computation_id == computation_id)
    )).scalar_one_or_none()
    if round_id is not None:
        raise ComputationInUseError(
            f"Dividend computation {computation_id} already generated round {round_id}"
        )

    record_entry(
        db,
        entity_type="dividend_computation",
        entity_id=computation.id,
        company_id=computation.company_id,
        action="delete",
        actor_id=actor_id,
        old_state={"total_amount_in_cents": computation.total_amount_in_cents},
    )
    await db.delete(computation)
    await db.commit()

    logger.info("Dividend computation deleted", computation_id=computation_id, actor_id=actor_id)
