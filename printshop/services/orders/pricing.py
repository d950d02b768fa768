"""
Production extras charged on top of DTF print items.

Extras are priced per item from the whole meters ordered:

    prioritize   max(4.50, 1.50 x (m - 1))
    layout       6.00 + 1.50 x m
    cutting      5.20 x m

Quantities outside 1-50 m are priced as 50 m.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from printshop.services.orders.enums import ProductType

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

MIN_PRICED_METERS = 1
MAX_PRICED_METERS = 50

PRIORITIZE_MINIMUM = Decimal("4.50")
PRIORITIZE_PER_METER = Decimal("1.50")
LAYOUT_BASE = Decimal("6.00")
LAYOUT_PER_METER = Decimal("1.50")
CUTTING_PER_METER = Decimal("5.20")

EXTRAS_PRODUCT_TYPES = frozenset({ProductType.DTF_TEXTILE, ProductType.DTF_UV})


def _priced_meters(quantity: Decimal) -> int:
    meters = int(quantity.to_integral_value(rounding=ROUND_FLOOR))
    if meters < MIN_PRICED_METERS or meters > MAX_PRICED_METERS:
        return MAX_PRICED_METERS
    return meters


def extras_price(
    quantity: Decimal,
    prioritize: bool = False,
    layout: bool = False,
    cutting: bool = False,
) -> Decimal:
    """
    Total price of the selected extras for an item.

    Args:
        quantity: Meters ordered for the item
        prioritize: Produce ahead of the regular queue
        layout: Layout service
        cutting: Cutting service

    Returns:
        Extras total rounded to cents
    """
    meters = _priced_meters(quantity)
    total = ZERO
    if prioritize:
        total += max(PRIORITIZE_MINIMUM, PRIORITIZE_PER_METER * (meters - 1))
    if layout:
        total += LAYOUT_BASE + LAYOUT_PER_METER * meters
    if cutting:
        total += CUTTING_PER_METER * meters
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def item_extras_price(
    product_type: ProductType,
    quantity: Decimal,
    customizations: Mapping[str, Any],
) -> Decimal:
    """Extras charge of an order item; voucher purchases and other products carry none."""
    kind = customizations.get("kind", "plain")
    if product_type not in EXTRAS_PRODUCT_TYPES or kind not in ("plain", "prioritized"):
        return ZERO
    return extras_price(
        quantity,
        prioritize=kind == "prioritized",
        layout=bool(customizations.get("layout")),
        cutting=bool(customizations.get("cutting")),
    )
