from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, BigInteger, Numeric
from sqlalchemy.orm import relationship
from dividend_ledger.models.database import Base


class ConvertibleInstrument(Base):
    """SAFE or convertible note that has not converted to shares yet"""
    __tablename__ = "convertible_instruments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)

    # Identity
    entity_name = Column(String(255), nullable=False)  # "Wefunder"
    identifier = Column(String(100), nullable=False)  # "SAFE-2024-01"
    instrument_type = Column(String(20), nullable=False, default="safe")  # "safe", "convertible_note"

    # As-converted share equivalent used for dividend allocation
    implied_shares = Column(Numeric(20, 6), nullable=False)

    # Principal (in cents)
    amount_in_cents = Column(BigInteger, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    company = relationship("Company", back_populates="convertible_instruments")
    securities = relationship("ConvertibleSecurity", back_populates="instrument")


class ConvertibleSecurity(Base):
    """A recipient's proportional slice of a convertible instrument"""
    __tablename__ = "convertible_securities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    convertible_instrument_id = Column(
        Integer, ForeignKey("convertible_instruments.id"), nullable=False, index=True
    )
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)

    implied_shares = Column(Numeric(20, 6), nullable=False)
    principal_value_in_cents = Column(BigInteger, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    instrument = relationship("ConvertibleInstrument", back_populates="securities")
    recipient = relationship("Recipient", back_populates="convertible_securities")
