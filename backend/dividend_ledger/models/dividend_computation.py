"""Dividend computation models (previews, not yet ledger commitments)"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, BigInteger, Numeric
from sqlalchemy.orm import relationship

from dividend_ledger.models.database import Base


class DividendComputation(Base):
    """One allocation run for a declared pool amount"""
    __tablename__ = "dividend_computations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)

    total_amount_in_cents = Column(BigInteger, nullable=False)
    dividends_issuance_date = Column(Date, nullable=False)
    return_of_capital = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(100), nullable=True)  # Actor that ran the computation
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    company = relationship("Company")
    outputs = relationship(
        "DividendComputationOutput",
        back_populates="computation",
        cascade="all, delete-orphan",
        order_by="DividendComputationOutput.id",
    )

    @property
    def distributed_amount_in_cents(self) -> int:
        return sum(o.total_amount_in_cents for o in self.outputs)

    def __repr__(self):
        return f"<DividendComputation {self.id} ${self.total_amount_in_cents / 100:.2f}>"


class DividendComputationOutput(Base):
    """
    One allocation line of a computation.

    Lines are stored per (recipient, share class) for shareholders and per
    convertible security for instrument holders, so every report view can be
    rebuilt from them. Exactly one of ``share_class_id`` and
    ``convertible_security_id`` is set.
    """
    __tablename__ = "dividend_computation_outputs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dividend_computation_id = Column(
        Integer, ForeignKey("dividend_computations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)
    share_class_id = Column(Integer, ForeignKey("share_classes.id"), nullable=True)
    convertible_security_id = Column(Integer, ForeignKey("convertible_securities.id"), nullable=True)

    number_of_shares = Column(BigInteger, nullable=True)  # Null for convertible slices
    implied_shares = Column(Numeric(20, 6), nullable=True)  # Slice implied shares, display only
    hurdle_rate = Column(Numeric(7, 4), nullable=True)
    original_issue_price = Column(Numeric(18, 6), nullable=True)

    preferred_dividend_amount_in_cents = Column(BigInteger, nullable=False, default=0)
    dividend_amount_in_cents = Column(BigInteger, nullable=False, default=0)  # Common component
    total_amount_in_cents = Column(BigInteger, nullable=False)
    qualified_dividend_amount_in_cents = Column(BigInteger, nullable=False, default=0)
    investment_amount_in_cents = Column(BigInteger, nullable=False, default=0)

    # Relationships
    computation = relationship("DividendComputation", back_populates="outputs")
    recipient = relationship("Recipient")
    share_class = relationship("ShareClass")
    convertible_security = relationship("ConvertibleSecurity")
