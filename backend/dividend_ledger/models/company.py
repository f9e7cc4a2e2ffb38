from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from dividend_ledger.models.database import Base


class Company(Base):
    """Company issuing dividends"""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Administrative switch; rounds only become payable while this is on
    dividends_allowed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    recipients = relationship("Recipient", back_populates="company")
    share_classes = relationship("ShareClass", back_populates="company")
    convertible_instruments = relationship("ConvertibleInstrument", back_populates="company")
    dividend_rounds = relationship("DividendRound", back_populates="company")

    def __repr__(self):
        return f"<Company {self.id} {self.name}>"
