"""
Dividend Allocation Engine

Splits a dividend pool across a share ledger:
1. Preferred classes take issue_price x hurdle_rate per share, scaled down
   pro rata if the pool cannot cover them all
2. The residual is shared pro rata by every unit: each share of every class,
   plus the implied shares of unconverted convertible instruments
3. Each line total is rounded half-up to cents (an instrument amount is
   rounded before it is split across its slices); any overflow above the pool
   is trimmed back off the lines that gained most from rounding

Pure: no database access, all amounts are integer cents on the way out.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Dict, List, Optional, Tuple

from dividend_ledger.services.errors import AllocationInputError, AllocationIntegrityError
from dividend_ledger.services.ledger_view import ConvertibleSlice, HoldingPosition, ShareLedger

HURDLE_ACCRUAL_PER_SHARE = "per_share"
HURDLE_ACCRUAL_PRORATED = "prorated"
HURDLE_ACCRUAL_POLICIES = (HURDLE_ACCRUAL_PER_SHARE, HURDLE_ACCRUAL_PRORATED)

DAYS_IN_YEAR = 365
ONE_CENT = Decimal(1)


def round_half_up(value: Decimal) -> int:
    """Round a Decimal amount of cents to a whole cent, halves away from zero"""
    return int(Decimal(value).quantize(ONE_CENT, rounding=ROUND_HALF_UP))


@dataclass
class AllocationLine:
    """Allocation for one (recipient, share class) or one convertible slice"""
    recipient_id: int
    recipient_name: str
    share_class_id: Optional[int] = None
    share_class_name: Optional[str] = None
    convertible_security_id: Optional[int] = None
    instrument_id: Optional[int] = None
    number_of_shares: Optional[int] = None
    implied_shares: Optional[Decimal] = None
    hurdle_rate: Optional[Decimal] = None
    original_issue_price: Optional[Decimal] = None
    investment_amount_cents: int = 0
    preferred_amount_cents: int = 0
    common_amount_cents: int = 0
    qualified_amount_cents: int = 0

    @property
    def is_convertible(self) -> bool:
        return self.convertible_security_id is not None

    @property
    def total_amount_cents(self) -> int:
        return self.preferred_amount_cents + self.common_amount_cents


@dataclass
class RecipientAllocation:
    """All lines for one recipient, summed"""
    recipient_id: int
    recipient_name: str
    number_of_shares: Optional[int]
    total_amount_cents: int
    qualified_amount_cents: int
    investment_amount_cents: int
    convertible_security_id: Optional[int] = None


@dataclass
class AllocationResult:
    """Complete allocation for a dividend pool"""
    pool_amount_cents: int
    issuance_date: date
    return_of_capital: bool
    preferred_total_cents: Decimal
    residual_cents: Decimal
    total_units: Decimal
    pool_exhausted: bool
    trimmed_cents: int = 0
    lines: List[AllocationLine] = field(default_factory=list)

    @property
    def distributed_amount_cents(self) -> int:
        return sum(line.total_amount_cents for line in self.lines)

    @property
    def shortfall_cents(self) -> int:
        return self.pool_amount_cents - self.distributed_amount_cents

    def recipient_totals(self) -> List[RecipientAllocation]:
        """Aggregate lines per recipient, in first-seen line order"""
        grouped: "OrderedDict[int, List[AllocationLine]]" = OrderedDict()
        for line in self.lines:
            grouped.setdefault(line.recipient_id, []).append(line)

        totals = []
        for recipient_id, lines in grouped.items():
            share_lines = [l for l in lines if not l.is_convertible]
            slice_lines = [l for l in lines if l.is_convertible]
            totals.append(RecipientAllocation(
                recipient_id=recipient_id,
                recipient_name=lines[0].recipient_name,
                number_of_shares=sum(l.number_of_shares for l in share_lines) if share_lines else None,
                total_amount_cents=sum(l.total_amount_cents for l in lines),
                qualified_amount_cents=sum(l.qualified_amount_cents for l in lines),
                investment_amount_cents=sum(l.investment_amount_cents for l in lines),
                convertible_security_id=(
                    slice_lines[0].convertible_security_id
                    if len(slice_lines) == 1 and not share_lines else None
                ),
            ))
        return totals

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response"""
        return {
            "pool_amount_cents": self.pool_amount_cents,
            "issuance_date": self.issuance_date.isoformat(),
            "return_of_capital": self.return_of_capital,
            "preferred_total_cents": str(self.preferred_total_cents),
            "residual_cents": str(self.residual_cents),
            "total_units": str(self.total_units),
            "pool_exhausted": self.pool_exhausted,
            "distributed_amount_cents": self.distributed_amount_cents,
            "shortfall_cents": self.shortfall_cents,
            "trimmed_cents": self.trimmed_cents,
            "lines": [
                {
                    "recipient_id": l.recipient_id,
                    "recipient_name": l.recipient_name,
                    "share_class_id": l.share_class_id,
                    "share_class_name": l.share_class_name,
                    "convertible_security_id": l.convertible_security_id,
                    "number_of_shares": l.number_of_shares,
                    "implied_shares": str(l.implied_shares) if l.implied_shares is not None else None,
                    "preferred_amount_cents": l.preferred_amount_cents,
                    "common_amount_cents": l.common_amount_cents,
                    "total_amount_cents": l.total_amount_cents,
                    "qualified_amount_cents": l.qualified_amount_cents,
                    "investment_amount_cents": l.investment_amount_cents,
                }
                for l in self.lines
            ],
            "recipients": [
                {
                    "recipient_id": r.recipient_id,
                    "recipient_name": r.recipient_name,
                    "number_of_shares": r.number_of_shares,
                    "total_amount_cents": r.total_amount_cents,
                    "qualified_amount_cents": r.qualified_amount_cents,
                }
                for r in self.recipient_totals()
            ],
        }


@dataclass
class _ExactLine:
    """Unrounded amounts for a line, kept alongside the line being built"""
    line: AllocationLine
    preferred: Decimal = Decimal(0)
    common: Decimal = Decimal(0)
    preferred_qualified: Decimal = Decimal(0)
    shares: int = 0
    qualified_shares: int = 0


def _accrual_factor(holding: HoldingPosition, issuance_date: date, policy: str) -> Decimal:
    if policy == HURDLE_ACCRUAL_PER_SHARE:
        return Decimal(1)
    days_held = max(0, (issuance_date - holding.acquired_at).days)
    return Decimal(min(days_held, DAYS_IN_YEAR)) / Decimal(DAYS_IN_YEAR)


def _validate(pool_amount_cents: int, policy: str, holding_period_days: int) -> None:
    if not isinstance(pool_amount_cents, int) or isinstance(pool_amount_cents, bool):
        raise AllocationInputError("Dividend pool must be a whole number of cents")
    if pool_amount_cents <= 0:
        raise AllocationInputError("Dividend pool must be greater than zero")
    if policy not in HURDLE_ACCRUAL_POLICIES:
        raise AllocationInputError(f"Unknown hurdle accrual policy: {policy}")
    if holding_period_days < 0:
        raise AllocationInputError("Qualified holding period cannot be negative")


def _share_lines(
    holdings: List[HoldingPosition],
    issuance_date: date,
    qualified_cutoff: date,
    policy: str,
) -> List[_ExactLine]:
    """One line per (recipient, share class), summing multiple holdings"""
    ordered = sorted(holdings, key=lambda h: (h.recipient_id, h.seniority_rank, h.share_class_id))
    lines: "OrderedDict[Tuple[int, int], _ExactLine]" = OrderedDict()

    for h in ordered:
        key = (h.recipient_id, h.share_class_id)
        exact = lines.get(key)
        if exact is None:
            exact = _ExactLine(line=AllocationLine(
                recipient_id=h.recipient_id,
                recipient_name=h.recipient_name,
                share_class_id=h.share_class_id,
                share_class_name=h.share_class_name,
                hurdle_rate=h.hurdle_rate,
                original_issue_price=h.original_issue_price,
            ))
            lines[key] = exact

        entitlement = h.number_of_shares * h.preferred_rate_cents * _accrual_factor(h, issuance_date, policy)
        qualified = h.acquired_at < qualified_cutoff

        exact.preferred += entitlement
        exact.shares += h.number_of_shares
        exact.line.investment_amount_cents += h.cost_basis_cents
        if qualified:
            exact.preferred_qualified += entitlement
            exact.qualified_shares += h.number_of_shares

    for exact in lines.values():
        exact.line.number_of_shares = exact.shares
    return list(lines.values())


def _slice_lines(slices: List[ConvertibleSlice]) -> List[_ExactLine]:
    ordered = sorted(slices, key=lambda s: (s.instrument_id, s.convertible_security_id))
    return [
        _ExactLine(line=AllocationLine(
            recipient_id=s.recipient_id,
            recipient_name=s.recipient_name,
            share_class_name=s.instrument_identifier,
            convertible_security_id=s.convertible_security_id,
            instrument_id=s.instrument_id,
            implied_shares=s.implied_shares,
            investment_amount_cents=s.principal_value_cents,
        ))
        for s in ordered
    ]


def _round_line(exact: _ExactLine) -> None:
    """Round the line total; the preferred part is rounded within it"""
    total = round_half_up(exact.preferred + exact.common)
    preferred = min(round_half_up(exact.preferred), total)
    exact.line.preferred_amount_cents = preferred
    exact.line.common_amount_cents = total - preferred


def _trim_overflow(exact_lines: List[_ExactLine], overflow: int) -> None:
    """Take overflow cents back from the line totals rounded up the most"""
    candidates = []
    for index, exact in enumerate(exact_lines):
        excess = Decimal(exact.line.total_amount_cents) - (exact.preferred + exact.common)
        if excess > 0:
            candidates.append((-excess, index))

    candidates.sort()
    for _, index in candidates[:overflow]:
        line = exact_lines[index].line
        if line.common_amount_cents > 0:
            line.common_amount_cents -= 1
        else:
            line.preferred_amount_cents -= 1


def allocate(
    pool_amount_cents: int,
    issuance_date: date,
    ledger: ShareLedger,
    return_of_capital: bool = False,
    qualified_holding_period_days: int = 90,
    hurdle_accrual: str = HURDLE_ACCRUAL_PER_SHARE,
) -> AllocationResult:
    """
    Allocate a dividend pool across the share ledger.

    Args:
        pool_amount_cents: Total dividend pool, must be > 0
        issuance_date: Date the dividend is issued; drives qualification
        ledger: Cap table snapshot
        return_of_capital: Nothing is qualified when True
        qualified_holding_period_days: Holdings acquired more than this many
            days before issuance are qualified
        hurdle_accrual: "per_share" or "prorated" (by days held, capped at a year)

    Returns:
        AllocationResult whose distributed total never exceeds the pool
    """
    _validate(pool_amount_cents, hurdle_accrual, qualified_holding_period_days)
    ledger.validate()

    with localcontext() as ctx:
        ctx.prec = 50
        pool = Decimal(pool_amount_cents)
        qualified_cutoff = issuance_date - timedelta(days=qualified_holding_period_days)

        share_lines = _share_lines(ledger.holdings, issuance_date, qualified_cutoff, hurdle_accrual)
        slice_lines = _slice_lines(ledger.slices)
        slices_by_security = {s.convertible_security_id: s for s in ledger.slices}

        # Preferred phase
        preferred_total = sum((e.preferred for e in share_lines), Decimal(0))
        pool_exhausted = preferred_total > pool
        if pool_exhausted:
            scale = pool / preferred_total
            for e in share_lines:
                e.preferred *= scale
                e.preferred_qualified *= scale
            residual = Decimal(0)
        else:
            residual = pool - preferred_total

        # Residual phase
        instruments = {s.instrument_id: s.instrument_implied_shares for s in ledger.slices}
        total_units = Decimal(sum(e.shares for e in share_lines)) + sum(instruments.values(), Decimal(0))
        per_unit = residual / total_units if residual > 0 and total_units > 0 else Decimal(0)

        common_qualified: Dict[int, Decimal] = {}
        for index, e in enumerate(share_lines):
            e.common = e.shares * per_unit
            common_qualified[index] = e.qualified_shares * per_unit

        for e in slice_lines:
            s = slices_by_security[e.line.convertible_security_id]
            instrument_amount = Decimal(round_half_up(s.instrument_implied_shares * per_unit))
            if s.instrument_principal_cents > 0:
                e.common = instrument_amount * Decimal(s.principal_value_cents) / Decimal(s.instrument_principal_cents)

        exact_lines = share_lines + slice_lines
        for e in exact_lines:
            _round_line(e)

        # Rounding reconciliation
        recipients = len({e.line.recipient_id for e in exact_lines})
        overflow = sum(e.line.total_amount_cents for e in exact_lines) - pool_amount_cents
        if overflow > recipients:
            raise AllocationIntegrityError(
                f"Rounded allocations exceed the pool by {overflow} cents "
                f"(tolerance {recipients} cents)"
            )
        trimmed = 0
        if overflow > 0:
            _trim_overflow(exact_lines, overflow)
            trimmed = overflow

        # Qualification
        for index, e in enumerate(exact_lines):
            line = e.line
            if return_of_capital:
                line.qualified_amount_cents = 0
            elif line.is_convertible:
                line.qualified_amount_cents = line.total_amount_cents
            else:
                qualified = round_half_up(e.preferred_qualified + common_qualified[index])
                line.qualified_amount_cents = min(qualified, line.total_amount_cents)

    return AllocationResult(
        pool_amount_cents=pool_amount_cents,
        issuance_date=issuance_date,
        return_of_capital=return_of_capital,
        preferred_total_cents=preferred_total,
        residual_cents=residual,
        total_units=total_units,
        pool_exhausted=pool_exhausted,
        trimmed_cents=trimmed,
        lines=[e.line for e in exact_lines],
    )
