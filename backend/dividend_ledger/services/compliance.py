"""Recipient compliance profile checks"""
from datetime import datetime
from typing import Optional, Protocol

from dividend_ledger.models.recipient import Recipient, TaxIdStatus


class ComplianceService(Protocol):
    def is_onboarded(self, recipient: Recipient) -> bool:
        ...

    def tax_id_status(self, recipient: Recipient) -> str:
        ...

    def tax_info_confirmed_at(self, recipient: Recipient) -> Optional[datetime]:
        ...


class RecipientComplianceService:
    """Reads compliance state straight from the recipient's profile columns"""

    def is_onboarded(self, recipient: Recipient) -> bool:
        return recipient.onboarded_at is not None

    def tax_id_status(self, recipient: Recipient) -> str:
        return recipient.tax_id_status or TaxIdStatus.UNVERIFIED.value

    def tax_info_confirmed_at(self, recipient: Recipient) -> Optional[datetime]:
        return recipient.tax_information_confirmed_at

    def can_receive_payment(self, recipient: Recipient) -> bool:
        return (
            self.tax_id_status(recipient) == TaxIdStatus.VERIFIED.value
            and self.tax_info_confirmed_at(recipient) is not None
        )
