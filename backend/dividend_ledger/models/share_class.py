from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, BigInteger, Numeric
from sqlalchemy.orm import relationship, validates
from dividend_ledger.models.database import Base


class ShareClass(Base):
    """Share class with preferred dividend terms"""
    __tablename__ = "share_classes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)

    # Identity
    name = Column(String(50), nullable=False)  # "Common", "Series A Preferred", etc.

    # Preferred terms (null for common)
    preferred = Column(Boolean, nullable=False, default=False)
    hurdle_rate = Column(Numeric(7, 4), nullable=True)  # Percent: 12 = 12%
    original_issue_price = Column(Numeric(18, 6), nullable=True)  # In dollars per share

    # Seniority: 0 = most senior
    seniority_rank = Column(Integer, nullable=False, default=99)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company", back_populates="share_classes")
    holdings = relationship("ShareHolding", back_populates="share_class")

    @validates("hurdle_rate", "original_issue_price")
    def _validate_preferred_terms(self, key, value):
        if value is not None and self.preferred is False:
            raise ValueError(f"{key} is only allowed on preferred share classes")
        return value


class ShareHolding(Base):
    """A recipient's holding in a specific share class"""
    __tablename__ = "share_holdings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)
    share_class_id = Column(Integer, ForeignKey("share_classes.id"), nullable=False, index=True)

    number_of_shares = Column(BigInteger, nullable=False)
    total_amount_in_cents = Column(BigInteger, nullable=False, default=0)  # Cost basis
    originally_acquired_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    recipient = relationship("Recipient", back_populates="share_holdings")
    share_class = relationship("ShareClass", back_populates="holdings")
