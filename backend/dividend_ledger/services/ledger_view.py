"""
Share ledger view.

Read-only, point-in-time materialization of a company's cap table for dividend
allocation: every share holding with its class terms, and every convertible
security slice with its instrument terms.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dividend_ledger.models.convertible import ConvertibleInstrument, ConvertibleSecurity
from dividend_ledger.models.share_class import ShareHolding
from dividend_ledger.services.errors import AllocationInputError

logger = structlog.get_logger()


@dataclass
class HoldingPosition:
    """A single share holding with its class terms"""
    recipient_id: int
    recipient_name: str
    share_class_id: int
    share_class_name: str
    preferred: bool
    hurdle_rate: Optional[Decimal]  # Percent
    original_issue_price: Optional[Decimal]  # Dollars per share
    number_of_shares: int
    cost_basis_cents: int
    acquired_at: date
    seniority_rank: int = 99

    @property
    def preferred_rate_cents(self) -> Decimal:
        """Per-share preferred entitlement in cents (issue price x hurdle)"""
        if not self.preferred or self.hurdle_rate is None or self.original_issue_price is None:
            return Decimal(0)
        return Decimal(self.original_issue_price) * Decimal(self.hurdle_rate)  # $ x % == cents


@dataclass
class ConvertibleSlice:
    """A recipient's slice of an unconverted convertible instrument"""
    convertible_security_id: int
    recipient_id: int
    recipient_name: str
    instrument_id: int
    instrument_identifier: str
    entity_name: str
    instrument_implied_shares: Decimal
    instrument_principal_cents: int
    implied_shares: Decimal
    principal_value_cents: int


@dataclass
class ShareLedger:
    """Cap table snapshot consumed by the allocation engine"""
    as_of: date
    holdings: List[HoldingPosition] = field(default_factory=list)
    slices: List[ConvertibleSlice] = field(default_factory=list)

    def slices_by_instrument(self) -> Dict[int, List[ConvertibleSlice]]:
        grouped: Dict[int, List[ConvertibleSlice]] = {}
        for s in self.slices:
            grouped.setdefault(s.instrument_id, []).append(s)
        return grouped

    def validate(self) -> None:
        """Check ledger invariants that the allocation relies on"""
        for instrument_id, slices in self.slices_by_instrument().items():
            principal = slices[0].instrument_principal_cents
            owned = sum(s.principal_value_cents for s in slices)
            if owned > principal:
                raise AllocationInputError(
                    f"Convertible instrument {instrument_id} slices total {owned} cents, "
                    f"more than its principal of {principal} cents"
                )
        for h in self.holdings:
            if not h.preferred and (h.hurdle_rate is not None or h.original_issue_price is not None):
                raise AllocationInputError(
                    f"Share class {h.share_class_name!r} is not preferred but carries preferred terms"
                )


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


async def load_share_ledger(db: AsyncSession, company_id: int, as_of: date) -> ShareLedger:
    """
    Materialize the cap table for a company as of a date.

    Holdings acquired after ``as_of`` are excluded. Convertible instruments
    are included through their security slices; instruments nobody holds a
    slice of have no recipient and are skipped.
    """
    cutoff = datetime.combine(as_of, time.max)

    result = await db.execute(
        select(ShareHolding)
        .options(selectinload(ShareHolding.share_class), selectinload(ShareHolding.recipient))
        .where(
            ShareHolding.company_id == company_id,
            ShareHolding.originally_acquired_at <= cutoff,
            ShareHolding.number_of_shares > 0,
        )
        .order_by(ShareHolding.recipient_id, ShareHolding.id)
    )
    holdings = [
        HoldingPosition(
            recipient_id=h.recipient_id,
            recipient_name=h.recipient.display_name,
            share_class_id=h.share_class_id,
            share_class_name=h.share_class.name,
            preferred=bool(h.share_class.preferred),
            hurdle_rate=h.share_class.hurdle_rate,
            original_issue_price=h.share_class.original_issue_price,
            number_of_shares=h.number_of_shares,
            cost_basis_cents=h.total_amount_in_cents or 0,
            acquired_at=_as_date(h.originally_acquired_at),
            seniority_rank=h.share_class.seniority_rank,
        )
        for h in result.scalars().all()
    ]

    result = await db.execute(
        select(ConvertibleSecurity)
        .join(ConvertibleInstrument)
        .options(selectinload(ConvertibleSecurity.instrument), selectinload(ConvertibleSecurity.recipient))
        .where(ConvertibleInstrument.company_id == company_id)
        .order_by(ConvertibleInstrument.id, ConvertibleSecurity.id)
    )
    slices = [
        ConvertibleSlice(
            convertible_security_id=s.id,
            recipient_id=s.recipient_id,
            recipient_name=s.recipient.display_name,
            instrument_id=s.instrument.id,
            instrument_identifier=s.instrument.identifier,
            entity_name=s.instrument.entity_name,
            instrument_implied_shares=Decimal(s.instrument.implied_shares),
            instrument_principal_cents=s.instrument.amount_in_cents,
            implied_shares=Decimal(s.implied_shares),
            principal_value_cents=s.principal_value_in_cents,
        )
        for s in result.scalars().all()
    ]

    ledger = ShareLedger(as_of=as_of, holdings=holdings, slices=slices)
    ledger.validate()

    logger.info(
        "Loaded share ledger",
        company_id=company_id,
        as_of=as_of.isoformat(),
        holdings=len(holdings),
        convertible_slices=len(slices),
    )
    return ledger
