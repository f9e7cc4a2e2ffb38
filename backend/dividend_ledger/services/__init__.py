"""Dividend Ledger Services"""
from .allocation import allocate, AllocationLine, AllocationResult, RecipientAllocation
from .ledger_view import load_share_ledger, ShareLedger, HoldingPosition, ConvertibleSlice
from .computation import run_computation, preview_computation, get_computation, delete_computation
from .distribution import generate_distribution, find_or_create_dividend
from .payment_lifecycle import PaymentLifecycleCoordinator, transition
from .reports import export_report, ReportView
from .tax_withholding import DividendTaxWithholdingCalculator, WithholdingResult
from .fees import calculate_dividend_fee_cents

__all__ = [
    # Allocation
    "allocate",
    "AllocationLine",
    "AllocationResult",
    "RecipientAllocation",
    "load_share_ledger",
    "ShareLedger",
    "HoldingPosition",
    "ConvertibleSlice",
    # Computations and rounds
    "run_computation",
    "preview_computation",
    "get_computation",
    "delete_computation",
    "generate_distribution",
    "find_or_create_dividend",
    # Payments
    "PaymentLifecycleCoordinator",
    "transition",
    "DividendTaxWithholdingCalculator",
    "WithholdingResult",
    "calculate_dividend_fee_cents",
    # Reports
    "export_report",
    "ReportView",
]
