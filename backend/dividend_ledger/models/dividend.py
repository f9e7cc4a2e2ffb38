"""Dividend ledger models"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, ForeignKey, BigInteger, Numeric, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dividend_ledger.models.database import Base


class DividendRoundStatus(str, Enum):
    """Dividend round status"""
    ISSUED = "Issued"
    PAID = "Paid"


class DividendStatus(str, Enum):
    """Individual dividend status"""
    PENDING_SIGNUP = "Pending signup"  # Recipient has no completed compliance profile
    ISSUED = "Issued"  # Payable once compliance gates clear
    RETAINED = "Retained"  # Held back by compliance policy (terminal)
    PROCESSING = "Processing"  # Submitted to the payment provider
    PAID = "Paid"  # Provider confirmed the transfer (terminal)


class RetainedReason(str, Enum):
    OFAC_SANCTIONED_COUNTRY = "ofac_sanctioned_country"
    BELOW_MINIMUM_PAYMENT_THRESHOLD = "below_minimum_payment_threshold"


class DividendRound(Base):
    """Dividend distribution round generated from an approved computation"""
    __tablename__ = "dividend_rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    dividend_computation_id = Column(
        Integer, ForeignKey("dividend_computations.id"), nullable=False, unique=True
    )

    issued_at = Column(Date, nullable=False)
    number_of_shareholders = Column(Integer, nullable=False, default=0)
    number_of_shares = Column(BigInteger, nullable=False, default=0)  # Share classes only
    total_amount_in_cents = Column(BigInteger, nullable=False)
    return_of_capital = Column(Boolean, nullable=False, default=False)

    ready_for_payment = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=DividendRoundStatus.ISSUED.value)
    release_document = Column(Text, nullable=True)  # Waiver investors must sign before payout

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company", back_populates="dividend_rounds")
    computation = relationship("DividendComputation")
    dividends = relationship("Dividend", back_populates="dividend_round", order_by="Dividend.id")

    def __repr__(self):
        return f"<DividendRound {self.id} ({self.status})>"


class Dividend(Base):
    """Per-recipient dividend record in a round"""
    __tablename__ = "dividends"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    dividend_round_id = Column(Integer, ForeignKey("dividend_rounds.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)
    convertible_security_id = Column(Integer, ForeignKey("convertible_securities.id"), nullable=True)

    # Amounts fixed at generation time
    total_amount_in_cents = Column(BigInteger, nullable=False)
    qualified_amount_cents = Column(BigInteger, nullable=False, default=0)
    number_of_shares = Column(BigInteger, nullable=True)
    investment_amount_cents = Column(BigInteger, nullable=False, default=0)

    # Tax fields, filled lazily before payment
    net_amount_in_cents = Column(BigInteger, nullable=True)
    withheld_tax_cents = Column(BigInteger, nullable=True)
    withholding_percentage = Column(Numeric(5, 2), nullable=True)

    status = Column(String(20), nullable=False, default=DividendStatus.ISSUED.value, index=True)
    retained_reason = Column(String(50), nullable=True)
    signed_release_at = Column(DateTime, nullable=True)
    reminder_sent_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    dividend_round = relationship("DividendRound", back_populates="dividends")
    recipient = relationship("Recipient")
    convertible_security = relationship("ConvertibleSecurity")
    payments = relationship(
        "DividendPayment",
        secondary="dividend_record_payments",
        back_populates="dividends",
    )

    __table_args__ = (
        UniqueConstraint("recipient_id", "dividend_round_id", name="uq_dividends_recipient_round"),
    )

    @property
    def tax_computed(self) -> bool:
        return (
            self.net_amount_in_cents is not None
            and self.withheld_tax_cents is not None
            and self.withholding_percentage is not None
        )

    def __repr__(self):
        return f"<Dividend {self.id} recipient={self.recipient_id} ${self.total_amount_in_cents / 100:.2f} ({self.status})>"


# Ledger-facing alias
DividendRecord = Dividend
