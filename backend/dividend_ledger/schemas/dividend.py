"""Dividend schemas"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict

from dividend_ledger.models.dividend import RetainedReason


class CreateComputationRequest(BaseModel):
    company_id: int
    total_amount_in_cents: int = Field(..., gt=0)
    dividends_issuance_date: date
    return_of_capital: bool = False
    actor_id: str = Field(..., min_length=1)


class PreviewComputationRequest(BaseModel):
    company_id: int
    total_amount_in_cents: int = Field(..., gt=0)
    dividends_issuance_date: date
    return_of_capital: bool = False


class ComputationOutputResponse(BaseModel):
    id: int
    recipient_id: int
    recipient_name: str
    share_class_id: Optional[int] = None
    share_class_name: Optional[str] = None
    convertible_security_id: Optional[int] = None
    number_of_shares: Optional[int] = None
    implied_shares: Optional[Decimal] = None
    hurdle_rate: Optional[Decimal] = None
    original_issue_price: Optional[Decimal] = None
    preferred_dividend_amount_in_cents: int
    dividend_amount_in_cents: int
    total_amount_in_cents: int
    qualified_dividend_amount_in_cents: int
    investment_amount_in_cents: int


class ComputationResponse(BaseModel):
    id: int
    company_id: int
    total_amount_in_cents: int
    distributed_amount_in_cents: int
    dividends_issuance_date: date
    return_of_capital: bool
    created_by: Optional[str] = None
    created_at: datetime
    outputs: List[ComputationOutputResponse] = []


class GenerateRoundRequest(BaseModel):
    computation_id: int
    actor_id: str = Field(..., min_length=1)
    release_document: Optional[str] = None


class DividendRoundResponse(BaseModel):
    id: int
    company_id: int
    dividend_computation_id: int
    issued_at: date
    number_of_shareholders: int
    number_of_shares: int
    total_amount_in_cents: int
    return_of_capital: bool
    ready_for_payment: bool
    status: str
    release_document: Optional[str] = None
    created_at: datetime


class DividendResponse(BaseModel):
    id: int
    dividend_round_id: int
    recipient_id: int
    convertible_security_id: Optional[int] = None
    total_amount_in_cents: int
    qualified_amount_cents: int
    number_of_shares: Optional[int] = None
    investment_amount_cents: int
    net_amount_in_cents: Optional[int] = None
    withheld_tax_cents: Optional[int] = None
    withholding_percentage: Optional[Decimal] = None
    status: str
    retained_reason: Optional[str] = None
    signed_release_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class RoundPaymentStatusResponse(BaseModel):
    round_id: int
    round_status: str
    ready_for_payment: bool
    total_amount_in_cents: int
    paid_amount_in_cents: int
    counts: Dict[str, int]
    amounts_in_cents: Dict[str, int]
    withheld_tax_cents: int
    failed_payment_attempts: int
    estimated_fees_cents: int


class ActorRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)


class RetainDividendRequest(ActorRequest):
    reason: RetainedReason


class TriggerPaymentRequest(ActorRequest):
    dividend_id: Optional[int] = None


class PaymentAttemptResponse(BaseModel):
    id: int
    recipient_id: int
    status: str
    transfer_id: Optional[str] = None
    transfer_status: Optional[str] = None
    total_transaction_cents: int
    transfer_fee_in_cents: Optional[int] = None
    currency: str
    delivery_estimate: Optional[date] = None
    error_message: Optional[str] = None
    dividend_ids: List[int] = []
