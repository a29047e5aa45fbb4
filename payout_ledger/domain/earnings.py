"""Vendor earnings from finalized orders"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable

from payout_ledger.domain.exceptions import InvalidRequest
from payout_ledger.domain.models import OrderItem


def commission_cents(gross_cents: int, commission_rate: float) -> int:
    """Platform commission, rounded half-up to the minor unit"""
    rate = Decimal(str(commission_rate))
    return int((Decimal(gross_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def vendor_earnings(items: Iterable[OrderItem], commission_rate: float) -> Dict[str, int]:
    """
    Split an order's line items into net earnings per vendor.

    Commission is taken once per vendor on the vendor's gross total, so
    per-line rounding never accumulates.

    Example:
        rate 0.15, vendor A sells 2 x 1000 and 1 x 333
        gross 2333, commission 349.95 -> 350, net 1983

    Raises:
        InvalidRequest: On non-positive prices/quantities or a bad rate
    """
    if not 0 <= commission_rate < 1:
        raise InvalidRequest(f"Commission rate must be in [0, 1), got {commission_rate}")

    gross: Dict[str, int] = {}
    for item in items:
        if not item.vendor_id:
            raise InvalidRequest("Order item is missing a vendor id")
        if item.unit_price_cents <= 0 or item.quantity <= 0:
            raise InvalidRequest(
                f"Order item for vendor {item.vendor_id} must have a positive price and quantity"
            )
        gross[item.vendor_id] = gross.get(item.vendor_id, 0) + item.unit_price_cents * item.quantity

    earnings = {}
    for vendor_id, total in gross.items():
        net = total - commission_cents(total, commission_rate)
        if net > 0:
            earnings[vendor_id] = net
    return earnings
