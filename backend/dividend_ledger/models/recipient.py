"""Dividend recipients (individual investors and investing entities)"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Union

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from dividend_ledger.models.database import Base


class RecipientKind(str, Enum):
    INDIVIDUAL = "individual"
    ENTITY = "entity"


class TaxIdStatus(str, Enum):
    VERIFIED = "verified"
    INVALID = "invalid"
    PENDING = "pending"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class Individual:
    id: int
    kind: ClassVar[str] = RecipientKind.INDIVIDUAL.value

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass(frozen=True)
class Entity:
    id: int
    kind: ClassVar[str] = RecipientKind.ENTITY.value

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


RecipientRef = Union[Individual, Entity]


class Recipient(Base):
    """
    A legal recipient of dividends.

    Individuals and entities share one table; ``kind`` is the discriminator
    and ``ref`` exposes the typed variant used by the services.
    """
    __tablename__ = "recipients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False, default=RecipientKind.INDIVIDUAL.value)

    # Identity
    legal_name = Column(String(255), nullable=True)
    entity_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    country_code = Column(String(2), nullable=True)  # ISO 3166-1 alpha-2

    # Compliance profile
    onboarded_at = Column(DateTime, nullable=True)
    tax_id_status = Column(String(20), nullable=False, default=TaxIdStatus.UNVERIFIED.value)
    tax_information_confirmed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company", back_populates="recipients")
    share_holdings = relationship("ShareHolding", back_populates="recipient")
    convertible_securities = relationship("ConvertibleSecurity", back_populates="recipient")

    @property
    def ref(self) -> RecipientRef:
        if self.kind == RecipientKind.ENTITY.value:
            return Entity(self.id)
        return Individual(self.id)

    @property
    def display_name(self) -> str:
        if self.kind == RecipientKind.ENTITY.value:
            return self.entity_name or self.legal_name or ""
        return self.legal_name or self.email or ""

    @property
    def contact_email(self) -> Optional[str]:
        return self.email

    def __repr__(self):
        return f"<Recipient {self.id} {self.kind} {self.display_name!r}>"
