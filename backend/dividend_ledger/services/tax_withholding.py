"""
Tax withholding for dividend payouts.

Withholding is computed lazily, right before a dividend is paid, because the
recipient's tax profile may change between issuance and payment.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Protocol

from dividend_ledger.config import get_settings
from dividend_ledger.models.dividend import Dividend
from dividend_ledger.models.recipient import Recipient, TaxIdStatus

UNITED_STATES = "US"


@dataclass
class WithholdingResult:
    net_amount_in_cents: int
    withheld_tax_cents: int
    withholding_percentage: Decimal


class TaxWithholdingCalculator(Protocol):
    def compute_withholding(
        self,
        recipient: Recipient,
        tax_year: int,
        dividends_in_year: List[Dividend],
    ) -> Dict[int, WithholdingResult]:
        ...


def withhold(total_amount_cents: int, percentage: Decimal) -> WithholdingResult:
    """Apply a withholding percentage to a gross amount"""
    withheld = int(
        (Decimal(total_amount_cents) * Decimal(percentage) / Decimal(100)).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
    )
    return WithholdingResult(
        net_amount_in_cents=total_amount_cents - withheld,
        withheld_tax_cents=withheld,
        withholding_percentage=Decimal(percentage),
    )


class DividendTaxWithholdingCalculator:
    """
    Default withholding rules:
    - return of capital is not a dividend for tax purposes: 0%
    - US recipients with a verified tax id: 0%
    - US recipients without one: backup withholding
    - everybody else: treaty rate for their country, or the default foreign rate
    """

    def __init__(
        self,
        backup_withholding_percentage: Optional[Decimal] = None,
        default_foreign_percentage: Optional[Decimal] = None,
        treaty_rates: Optional[Dict[str, Decimal]] = None,
    ):
        settings = get_settings()
        self.backup_withholding_percentage = (
            backup_withholding_percentage
            if backup_withholding_percentage is not None
            else settings.backup_withholding_percentage
        )
        self.default_foreign_percentage = (
            default_foreign_percentage
            if default_foreign_percentage is not None
            else settings.default_foreign_withholding_percentage
        )
        self.treaty_rates = treaty_rates if treaty_rates is not None else settings.withholding_treaty_rates

    def withholding_percentage(self, recipient: Recipient, return_of_capital: bool = False) -> Decimal:
        if return_of_capital:
            return Decimal(0)

        country = (recipient.country_code or UNITED_STATES).upper()
        if country == UNITED_STATES:
            if recipient.tax_id_status == TaxIdStatus.VERIFIED.value:
                return Decimal(0)
            return Decimal(self.backup_withholding_percentage)

        return Decimal(self.treaty_rates.get(country, self.default_foreign_percentage))

    def compute_withholding(
        self,
        recipient: Recipient,
        tax_year: int,
        dividends_in_year: List[Dividend],
    ) -> Dict[int, WithholdingResult]:
        """
        Withholding for each of a recipient's dividends in a tax year, keyed by dividend id.

        Dividends must have their round loaded; return-of-capital rounds withhold nothing.
        """
        return {
            dividend.id: withhold(
                dividend.total_amount_in_cents,
                self.withholding_percentage(recipient, dividend.dividend_round.return_of_capital),
            )
            for dividend in dividends_in_year
        }
