"""
CSV reports for dividend computations and rounds.

Three views that all reconcile to the same grand total:
- per_class: one row per (investor, share class), one row per convertible instrument
- per_investor: share classes collapsed per investor, one row per convertible instrument
- final: one row per generated dividend
"""
import csv
import io
from collections import OrderedDict
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dividend_ledger.models.dividend import Dividend, DividendRound
from dividend_ledger.models.dividend_computation import DividendComputation, DividendComputationOutput
from dividend_ledger.services.computation import get_computation
from dividend_ledger.services.errors import NotFoundError

PER_CLASS_HEADER = [
    "Investor",
    "Share class",
    "Number of shares",
    "Hurdle rate",
    "Original issue price (USD)",
    "Common dividend amount (USD)",
    "Preferred dividend amount (USD)",
    "Total amount (USD)",
]
PER_INVESTOR_HEADER = ["Investor", "Investor ID", "Number of shares", "Amount (USD)"]
FINAL_HEADER = PER_INVESTOR_HEADER


class ReportView(str, Enum):
    PER_CLASS = "per_class"
    PER_INVESTOR = "per_investor"
    FINAL = "final"


def format_usd(cents: int) -> str:
    """Render cents as major units"""
    return f"{Decimal(cents) / 100:.2f}"


def format_decimal(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


def _to_csv(header: List[str], rows: List[list]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return output.getvalue()


def _instrument_rows(outputs: List[DividendComputationOutput]) -> "OrderedDict[int, dict]":
    """Sum convertible slices back up to their instrument"""
    instruments: "OrderedDict[int, dict]" = OrderedDict()
    for o in outputs:
        if o.convertible_security_id is None:
            continue
        instrument = o.convertible_security.instrument
        row = instruments.setdefault(instrument.id, {
            "instrument": instrument,
            "common": 0,
            "preferred": 0,
            "total": 0,
        })
        row["common"] += o.dividend_amount_in_cents
        row["preferred"] += o.preferred_dividend_amount_in_cents
        row["total"] += o.total_amount_in_cents
    return instruments


def per_class_csv(computation: DividendComputation) -> str:
    rows = []
    for o in computation.outputs:
        if o.convertible_security_id is not None:
            continue
        rows.append([
            o.recipient.display_name,
            o.share_class.name if o.share_class else "",
            o.number_of_shares,
            format_decimal(o.hurdle_rate),
            format_decimal(o.original_issue_price),
            format_usd(o.dividend_amount_in_cents),
            format_usd(o.preferred_dividend_amount_in_cents),
            format_usd(o.total_amount_in_cents),
        ])

    for row in _instrument_rows(computation.outputs).values():
        instrument = row["instrument"]
        rows.append([
            instrument.entity_name,
            instrument.identifier,
            format_decimal(instrument.implied_shares),
            "",
            "",
            format_usd(row["common"]),
            format_usd(row["preferred"]),
            format_usd(row["total"]),
        ])
    return _to_csv(PER_CLASS_HEADER, rows)


def per_investor_csv(computation: DividendComputation) -> str:
    investors: "OrderedDict[int, dict]" = OrderedDict()
    for o in computation.outputs:
        if o.convertible_security_id is not None:
            continue
        row = investors.setdefault(o.recipient_id, {"name": o.recipient.display_name, "shares": 0, "total": 0})
        row["shares"] += o.number_of_shares or 0
        row["total"] += o.total_amount_in_cents

    rows = [
        [row["name"], recipient_id, row["shares"], format_usd(row["total"])]
        for recipient_id, row in investors.items()
    ]
    for row in _instrument_rows(computation.outputs).values():
        instrument = row["instrument"]
        rows.append([
            instrument.entity_name,
            "",
            format_decimal(instrument.implied_shares),
            format_usd(row["total"]),
        ])
    return _to_csv(PER_INVESTOR_HEADER, rows)


def final_csv(dividend_round: DividendRound) -> str:
    """
    One row per dividend of a generated round.

    Requires ``dividends`` loaded with ``recipient`` and ``convertible_security``.
    """
    rows = []
    for d in dividend_round.dividends:
        if d.number_of_shares is not None:
            shares = d.number_of_shares
        elif d.convertible_security is not None:
            shares = format_decimal(d.convertible_security.implied_shares)
        else:
            shares = ""
        rows.append([
            d.recipient.display_name,
            d.recipient_id,
            shares,
            format_usd(d.total_amount_in_cents),
        ])
    return _to_csv(FINAL_HEADER, rows)


async def load_round_for_report(db: AsyncSession, round_id: int) -> DividendRound:
    result = await db.execute(
        select(DividendRound)
        .options(
            selectinload(DividendRound.dividends).selectinload(Dividend.recipient),
            selectinload(DividendRound.dividends).selectinload(Dividend.convertible_security),
        )
        .where(DividendRound.id == round_id)
        .execution_options(populate_existing=True)
    )
    dividend_round = result.scalar_one_or_none()
    if dividend_round is None:
        raise NotFoundError(f"Dividend round {round_id} not found")
    return dividend_round


async def export_report(db: AsyncSession, view: ReportView, object_id: int) -> str:
    """
    Render a report view as CSV.

    ``object_id`` is a computation id for the per_class and per_investor
    views, and a dividend round id for the final view.
    """
    view = ReportView(view)
    if view == ReportView.FINAL:
        return final_csv(await load_round_for_report(db, object_id))

    computation = await get_computation(db, object_id)
    if view == ReportView.PER_CLASS:
        return per_class_csv(computation)
    return per_investor_csv(computation)
