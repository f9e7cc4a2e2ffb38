"""API request/response schemas"""
from dividend_ledger.schemas.dividend import (
    CreateComputationRequest,
    PreviewComputationRequest,
    ComputationOutputResponse,
    ComputationResponse,
    GenerateRoundRequest,
    DividendRoundResponse,
    DividendResponse,
    RoundPaymentStatusResponse,
    ActorRequest,
    RetainDividendRequest,
    TriggerPaymentRequest,
    PaymentAttemptResponse,
)

__all__ = [
    "CreateComputationRequest",
    "PreviewComputationRequest",
    "ComputationOutputResponse",
    "ComputationResponse",
    "GenerateRoundRequest",
    "DividendRoundResponse",
    "DividendResponse",
    "RoundPaymentStatusResponse",
    "ActorRequest",
    "RetainDividendRequest",
    "TriggerPaymentRequest",
    "PaymentAttemptResponse",
]
