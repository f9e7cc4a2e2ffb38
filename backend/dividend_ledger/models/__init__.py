"""Database models"""
from dividend_ledger.models.database import Base, get_db
from dividend_ledger.models.company import Company
from dividend_ledger.models.recipient import (
    Recipient,
    RecipientKind,
    RecipientRef,
    Individual,
    Entity,
    TaxIdStatus,
)
from dividend_ledger.models.share_class import ShareClass, ShareHolding
from dividend_ledger.models.convertible import ConvertibleInstrument, ConvertibleSecurity
from dividend_ledger.models.dividend_computation import DividendComputation, DividendComputationOutput
from dividend_ledger.models.dividend import (
    DividendRound,
    DividendRoundStatus,
    Dividend,
    DividendRecord,
    DividendStatus,
    RetainedReason,
)
from dividend_ledger.models.payment import DividendPayment, PaymentStatus
from dividend_ledger.models.audit import DividendAuditEntry

__all__ = [
    "Base",
    "get_db",
    "Company",
    # Recipients
    "Recipient",
    "RecipientKind",
    "RecipientRef",
    "Individual",
    "Entity",
    "TaxIdStatus",
    # Cap table
    "ShareClass",
    "ShareHolding",
    "ConvertibleInstrument",
    "ConvertibleSecurity",
    # Dividends
    "DividendComputation",
    "DividendComputationOutput",
    "DividendRound",
    "DividendRoundStatus",
    "Dividend",
    "DividendRecord",
    "DividendStatus",
    "RetainedReason",
    "DividendPayment",
    "PaymentStatus",
    "DividendAuditEntry",
]
