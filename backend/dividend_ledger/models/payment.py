"""Payment attempts against the external payment provider"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, BigInteger, Table
from sqlalchemy.orm import relationship

from dividend_ledger.models.database import Base


class PaymentStatus(str, Enum):
    INITIAL = "initial"  # Recorded, not yet accepted by the provider
    SUBMITTED = "submitted"  # Provider returned a transfer id
    SUCCEEDED = "succeeded"
    FAILED = "failed"


dividend_record_payments = Table(
    "dividend_record_payments",
    Base.metadata,
    Column("dividend_id", Integer, ForeignKey("dividends.id"), primary_key=True),
    Column("dividend_payment_id", Integer, ForeignKey("dividend_payments.id"), primary_key=True),
)


class DividendPayment(Base):
    """A single provider transfer, possibly batching several dividends"""
    __tablename__ = "dividend_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default=PaymentStatus.INITIAL.value, index=True)
    processor_name = Column(String(50), nullable=False, default="provider")
    transfer_id = Column(String(100), nullable=True, index=True)
    transfer_status = Column(String(50), nullable=True)

    total_transaction_cents = Column(BigInteger, nullable=False, default=0)
    transfer_fee_in_cents = Column(BigInteger, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    delivery_estimate = Column(Date, nullable=True)
    error_message = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    dividends = relationship("Dividend", secondary=dividend_record_payments, back_populates="payments")

    def __repr__(self):
        return f"<DividendPayment {self.id} transfer={self.transfer_id} ({self.status})>"

