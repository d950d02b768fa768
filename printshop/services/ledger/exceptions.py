"""Ledger error hierarchy."""

from decimal import Decimal
from typing import Any, Union


class LedgerError(Exception):
    """Base exception for voucher and loyalty ledger errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InsufficientBalance(LedgerError):
    """Raised when a balance cannot cover the requested amount.

    Carries the requested and available amounts so the API can tell the
    customer how much is missing.
    """

    def __init__(
        self,
        message: str,
        resource: str,
        requested: Union[Decimal, int],
        available: Union[Decimal, int],
        **context: Any,
    ):
        super().__init__(
            message,
            resource=resource,
            requested=str(requested),
            available=str(available),
            **context,
        )
        self.resource = resource
        self.requested = requested
        self.available = available


class InvalidRedemptionAmount(LedgerError):
    """Raised when a points redemption breaks the redemption rules."""

    pass


class DuplicatePointCredit(LedgerError):
    """Raised when points were already credited or redeemed for an order."""

    pass


class VoucherNotFoundError(LedgerError):
    """Raised when a voucher or voucher template does not exist."""

    pass
