"""
Payout value objects and destination selection.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from fulfillment.domain.exceptions import PayoutConfigMissing


class Operator(str, Enum):
    """Mobile money carriers supported for payouts."""
    MTN = "MTN"
    ORANGE = "ORANGE"

    @property
    def account_key(self) -> str:
        """Key of the carrier in vendor.mobile_money_accounts."""
        return self.value.lower()


# Fallback order when no explicit method is configured or usable.
OPERATOR_PREFERENCE = (Operator.MTN, Operator.ORANGE)


class PayoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PayoutDestination:
    operator: Operator
    phone: str
    account_name: str = ""


def parse_operator(method: str | Operator | None) -> Operator | None:
    if method is None or method == "":
        return None
    if isinstance(method, Operator):
        return method
    try:
        return Operator(str(method).upper())
    except ValueError:
        raise PayoutConfigMissing(f"Unsupported payout method: {method}") from None


def choose_destination(
    accounts: dict | None,
    has_payment_setup: bool,
    method: str | Operator | None = None,
) -> PayoutDestination:
    """
    Pick the vendor's payout destination.

    The explicit method wins when that account is configured; otherwise MTN,
    then Orange. Raises PayoutConfigMissing when nothing usable is set up.
    """
    if not has_payment_setup or not accounts:
        raise PayoutConfigMissing("Vendor payment method not configured")

    preferred = parse_operator(method)
    candidates = [preferred] if preferred else []
    candidates += [op for op in OPERATOR_PREFERENCE if op not in candidates]

    for operator in candidates:
        account = accounts.get(operator.account_key) or {}
        phone = account.get("phone")
        if phone:
            return PayoutDestination(
                operator=operator,
                phone=str(phone),
                account_name=account.get("account_name") or account.get("accountName") or "",
            )

    raise PayoutConfigMissing("No valid payment method found for vendor")


@dataclass
class PayoutResult:
    """Outcome of one payout attempt."""
    payout_id: UUID | None
    vendor_id: UUID
    order_id: UUID | None
    amount: Decimal
    status: PayoutStatus
    reference: str | None = None
    operator: Operator | None = None
    error: str | None = None
    synthetic: bool = False
    duplicate: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == PayoutStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "payoutId": self.payout_id,
            "status": self.status.value,
            "amount": self.amount,
            "reference": self.reference,
            "operator": self.operator.value if self.operator else None,
            "error": self.error,
            "synthetic": self.synthetic,
            "duplicate": self.duplicate,
        }
