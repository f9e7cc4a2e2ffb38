"""Dividend and payment API endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from dividend_ledger.api.v1.errors import to_http_exception
from dividend_ledger.models.database import get_db
from dividend_ledger.models.dividend import Dividend
from dividend_ledger.models.payment import DividendPayment
from dividend_ledger.schemas.dividend import (
    ActorRequest,
    DividendResponse,
    PaymentAttemptResponse,
    RetainDividendRequest,
    TriggerPaymentRequest,
)
from dividend_ledger.services.errors import DividendError
from dividend_ledger.services.payment_lifecycle import PaymentLifecycleCoordinator

router = APIRouter()
logger = structlog.get_logger()


async def get_lifecycle(db: AsyncSession = Depends(get_db)) -> PaymentLifecycleCoordinator:
    """Dependency to get a payment lifecycle coordinator bound to the request session"""
    return PaymentLifecycleCoordinator(db)


def _dividend_to_response(d: Dividend) -> DividendResponse:
    """Convert Dividend model to response schema"""
    return DividendResponse(
        id=d.id,
        dividend_round_id=d.dividend_round_id,
        recipient_id=d.recipient_id,
        convertible_security_id=d.convertible_security_id,
        total_amount_in_cents=d.total_amount_in_cents,
        qualified_amount_cents=d.qualified_amount_cents,
        number_of_shares=d.number_of_shares,
        investment_amount_cents=d.investment_amount_cents,
        net_amount_in_cents=d.net_amount_in_cents,
        withheld_tax_cents=d.withheld_tax_cents,
        withholding_percentage=d.withholding_percentage,
        status=d.status,
        retained_reason=d.retained_reason,
        signed_release_at=d.signed_release_at,
        paid_at=d.paid_at,
        created_at=d.created_at,
    )


def _payment_to_response(p: DividendPayment, dividend_ids: List[int]) -> PaymentAttemptResponse:
    return PaymentAttemptResponse(
        id=p.id,
        recipient_id=p.recipient_id,
        status=p.status,
        transfer_id=p.transfer_id,
        transfer_status=p.transfer_status,
        total_transaction_cents=p.total_transaction_cents,
        transfer_fee_in_cents=p.transfer_fee_in_cents,
        currency=p.currency,
        delivery_estimate=p.delivery_estimate,
        error_message=p.error_message,
        dividend_ids=dividend_ids,
    )


@router.post("/dividends/{dividend_id}/retain", response_model=DividendResponse)
async def retain_dividend(
    request: RetainDividendRequest,
    dividend_id: int = Path(...),
    lifecycle: PaymentLifecycleCoordinator = Depends(get_lifecycle),
):
    """Hold a dividend back from payment"""
    try:
        dividend = await lifecycle.mark_retained(dividend_id, request.reason, request.actor_id)
    except DividendError as e:
        raise to_http_exception(e)
    return _dividend_to_response(dividend)


@router.post("/dividends/{dividend_id}/sign-release", response_model=DividendResponse)
async def sign_release(
    request: ActorRequest,
    dividend_id: int = Path(...),
    lifecycle: PaymentLifecycleCoordinator = Depends(get_lifecycle),
):
    """Record the recipient's signature on the round's release document"""
    try:
        dividend = await lifecycle.sign_release(dividend_id, request.actor_id)
    except DividendError as e:
        raise to_http_exception(e)
    return _dividend_to_response(dividend)


@router.post("/recipients/{recipient_id}/complete-signup", response_model=List[DividendResponse])
async def complete_signup(
    request: ActorRequest,
    recipient_id: int = Path(...),
    lifecycle: PaymentLifecycleCoordinator = Depends(get_lifecycle),
):
    """Mark a recipient as onboarded and issue their pending dividends"""
    try:
        dividends = await lifecycle.complete_signup(recipient_id, request.actor_id)
    except DividendError as e:
        raise to_http_exception(e)
    return [_dividend_to_response(d) for d in dividends]


@router.post("/recipients/{recipient_id}/payments", response_model=Optional[PaymentAttemptResponse])
async def trigger_payment(
    request: TriggerPaymentRequest,
    recipient_id: int = Path(...),
    lifecycle: PaymentLifecycleCoordinator = Depends(get_lifecycle),
):
    """
    Pay out a recipient's payable dividends.

    Returns null when nothing is payable (compliance gates not cleared,
    nothing ready, or everything retained by policy).
    """
    try:
        attempt = await lifecycle.trigger_payment(
            recipient_id, request.actor_id, dividend_id=request.dividend_id
        )
    except DividendError as e:
        raise to_http_exception(e)

    if attempt is None:
        return None
    logger.info("Payment triggered", recipient_id=recipient_id, payment_id=attempt.id, status=attempt.status)
    return _payment_to_response(attempt, [d.id for d in attempt.dividends])
