"""Dividend round API endpoints"""
import io
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from dividend_ledger.api.v1.dividends import _dividend_to_response, get_lifecycle
from dividend_ledger.api.v1.errors import to_http_exception
from dividend_ledger.models.database import get_db
from dividend_ledger.models.dividend import Dividend, DividendRound
from dividend_ledger.schemas.dividend import (
    DividendResponse,
    DividendRoundResponse,
    GenerateRoundRequest,
    RoundPaymentStatusResponse,
)
from dividend_ledger.services.distribution import generate_distribution
from dividend_ledger.services.errors import DividendError
from dividend_ledger.services.payment_lifecycle import PaymentLifecycleCoordinator
from dividend_ledger.services.reports import ReportView, export_report

router = APIRouter()
logger = structlog.get_logger()


def _round_to_response(r: DividendRound) -> DividendRoundResponse:
    """Convert DividendRound model to response schema"""
    return DividendRoundResponse(
        id=r.id,
        company_id=r.company_id,
        dividend_computation_id=r.dividend_computation_id,
        issued_at=r.issued_at,
        number_of_shareholders=r.number_of_shareholders,
        number_of_shares=r.number_of_shares,
        total_amount_in_cents=r.total_amount_in_cents,
        return_of_capital=r.return_of_capital,
        ready_for_payment=r.ready_for_payment,
        status=r.status,
        release_document=r.release_document,
        created_at=r.created_at,
    )


@router.post("", response_model=DividendRoundResponse)
async def create_round(request: GenerateRoundRequest, db: AsyncSession = Depends(get_db)):
    """Generate the dividend round for a reviewed computation (idempotent)"""
    try:
        dividend_round = await generate_distribution(
            db,
            request.computation_id,
            actor_id=request.actor_id,
            release_document=request.release_document,
        )
    except DividendError as e:
        raise to_http_exception(e)
    return _round_to_response(dividend_round)


@router.get("/{round_id}", response_model=DividendRoundResponse)
async def get_round(round_id: int = Path(...), db: AsyncSession = Depends(get_db)):
    dividend_round = await db.get(DividendRound, round_id)
    if not dividend_round:
        raise HTTPException(status_code=404, detail="Dividend round not found")
    return _round_to_response(dividend_round)


@router.get("/{round_id}/dividends", response_model=List[DividendResponse])
async def list_round_dividends(round_id: int = Path(...), db: AsyncSession = Depends(get_db)):
    dividend_round = await db.get(DividendRound, round_id)
    if not dividend_round:
        raise HTTPException(status_code=404, detail="Dividend round not found")

    result = await db.execute(
        select(Dividend).where(Dividend.dividend_round_id == round_id).order_by(Dividend.id)
    )
    return [_dividend_to_response(d) for d in result.scalars().all()]


@router.get("/{round_id}/payment-status", response_model=RoundPaymentStatusResponse)
async def get_payment_status(
    round_id: int = Path(...),
    lifecycle: PaymentLifecycleCoordinator = Depends(get_lifecycle),
):
    """Counts and amounts per dividend status for a round"""
    try:
        status = await lifecycle.payment_status(round_id)
    except DividendError as e:
        raise to_http_exception(e)
    return RoundPaymentStatusResponse(**status.to_dict())


@router.get("/{round_id}/export")
async def export_round(round_id: int = Path(...), db: AsyncSession = Depends(get_db)):
    """Export the generated dividends of a round as CSV"""
    try:
        content = await export_report(db, ReportView.FINAL, round_id)
    except DividendError as e:
        raise to_http_exception(e)

    return StreamingResponse(
        io.BytesIO(content.encode("utf-8")),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=dividend_round_{round_id}.csv"},
    )
