"""Domain errors raised by the dividend services"""


class DividendError(Exception):
    """Base class for dividend ledger errors"""


class AllocationInputError(DividendError):
    """Invalid computation input, rejected before any allocation happens"""


class AllocationIntegrityError(DividendError):
    """Rounded allocations overflow the pool beyond the rounding tolerance"""


class NotFoundError(DividendError):
    """Referenced entity does not exist"""


class ComputationInUseError(DividendError):
    """Computation already has a dividend round and can no longer be discarded"""


class InvalidTransitionError(DividendError):
    """Dividend status change not permitted by the lifecycle"""

    def __init__(self, dividend_id: int, from_status: str, to_status: str):
        self.dividend_id = dividend_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Dividend {dividend_id} cannot move from {from_status!r} to {to_status!r}"
        )


class PaymentProviderError(DividendError):
    """The external payment provider rejected or failed a request"""
