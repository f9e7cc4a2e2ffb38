"""Dividend computation API endpoints"""
import io

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from dividend_ledger.api.v1.errors import to_http_exception
from dividend_ledger.models.database import get_db
from dividend_ledger.models.dividend_computation import DividendComputation
from dividend_ledger.schemas.dividend import (
    ComputationOutputResponse,
    ComputationResponse,
    CreateComputationRequest,
    PreviewComputationRequest,
)
from dividend_ledger.services.computation import (
    delete_computation,
    get_computation,
    preview_computation,
    run_computation,
)
from dividend_ledger.services.errors import DividendError
from dividend_ledger.services.reports import ReportView, export_report

router = APIRouter()
logger = structlog.get_logger()


def _computation_to_response(c: DividendComputation) -> ComputationResponse:
    """Convert DividendComputation model to response schema"""
    return ComputationResponse(
        id=c.id,
        company_id=c.company_id,
        total_amount_in_cents=c.total_amount_in_cents,
        distributed_amount_in_cents=c.distributed_amount_in_cents,
        dividends_issuance_date=c.dividends_issuance_date,
        return_of_capital=c.return_of_capital,
        created_by=c.created_by,
        created_at=c.created_at,
        outputs=[
            ComputationOutputResponse(
                id=o.id,
                recipient_id=o.recipient_id,
                recipient_name=o.recipient.display_name,
                share_class_id=o.share_class_id,
                share_class_name=(
                    o.share_class.name if o.share_class
                    else o.convertible_security.instrument.identifier
                ),
                convertible_security_id=o.convertible_security_id,
                number_of_shares=o.number_of_shares,
                implied_shares=o.implied_shares,
                hurdle_rate=o.hurdle_rate,
                original_issue_price=o.original_issue_price,
                preferred_dividend_amount_in_cents=o.preferred_dividend_amount_in_cents,
                dividend_amount_in_cents=o.dividend_amount_in_cents,
                total_amount_in_cents=o.total_amount_in_cents,
                qualified_dividend_amount_in_cents=o.qualified_dividend_amount_in_cents,
                investment_amount_in_cents=o.investment_amount_in_cents,
            )
            for o in c.outputs
        ],
    )


@router.post("", response_model=ComputationResponse)
async def create_computation(request: CreateComputationRequest, db: AsyncSession = Depends(get_db)):
    """Allocate a dividend pool across the company's cap table and store it for review"""
    try:
        computation = await run_computation(
            db,
            company_id=request.company_id,
            total_amount_in_cents=request.total_amount_in_cents,
            dividends_issuance_date=request.dividends_issuance_date,
            actor_id=request.actor_id,
            return_of_capital=request.return_of_capital,
        )
        computation = await get_computation(db, computation.id)
    except DividendError as e:
        raise to_http_exception(e)
    return _computation_to_response(computation)


@router.post("/preview")
async def preview(request: PreviewComputationRequest, db: AsyncSession = Depends(get_db)):
    """Run the allocation without storing anything"""
    try:
        result = await preview_computation(
            db,
            company_id=request.company_id,
            total_amount_in_cents=request.total_amount_in_cents,
            dividends_issuance_date=request.dividends_issuance_date,
            return_of_capital=request.return_of_capital,
        )
    except DividendError as e:
        raise to_http_exception(e)
    return result.to_dict()


@router.get("/{computation_id}", response_model=ComputationResponse)
async def read_computation(computation_id: int = Path(...), db: AsyncSession = Depends(get_db)):
    try:
        computation = await get_computation(db, computation_id)
    except DividendError as e:
        raise to_http_exception(e)
    return _computation_to_response(computation)


@router.delete("/{computation_id}")
async def discard_computation(
    computation_id: int = Path(...),
    actor_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """Discard a computation that has not been generated into a round"""
    try:
        await delete_computation(db, computation_id, actor_id)
    except DividendError as e:
        raise to_http_exception(e)
    return {"deleted": True, "computation_id": computation_id}


@router.get("/{computation_id}/export")
async def export_computation(
    computation_id: int = Path(...),
    view: ReportView = ReportView.PER_CLASS,
    db: AsyncSession = Depends(get_db),
):
    """Export a computation as CSV (per_class or per_investor)"""
    if view == ReportView.FINAL:
        raise HTTPException(status_code=400, detail="The final view is exported from the dividend round")
    try:
        content = await export_report(db, view, computation_id)
    except DividendError as e:
        raise to_http_exception(e)

    return StreamingResponse(
        io.BytesIO(content.encode("utf-8")),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=dividend_computation_{computation_id}_{view.value}.csv"
        },
    )
