"""
Settlement pricing for gold bars.

All prices are euros. The spot price is quoted per troy ounce; everything
else is per gram. Pure functions only: nothing here touches the store.

    base          = ceil(spot / 31.10349, cents)
    client price  = round(client_base * (1 + margin%), cents)
    invoice       = client price * net weight
    closing margin = (client_base - base) * net weight
    total margin   = invoice - reference cost * net weight
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Any, Optional

from lingotes.errors import ValidationError
from lingotes.models import Settlement, to_decimal
from lingotes.utils import iso_today

TROY_OUNCE_GRAMS = Decimal("31.10349")
REFERENCE_COST_SPREAD = Decimal("0.25")
DEFAULT_MARGIN_PERCENT = Decimal("6")
CENT = Decimal("0.01")


def base_price_per_gram(spot_price_per_ounce: Any) -> Decimal:
    # Always rounded up to the cent, never to nearest.
    spot = _positive(spot_price_per_ounce, "Spot price per ounce")
    return (spot / TROY_OUNCE_GRAMS).quantize(CENT, rounding=ROUND_CEILING)


def default_client_base_price(base: Decimal) -> Decimal:
    return base


def default_reference_cost_price(base: Decimal) -> Decimal:
    return base + REFERENCE_COST_SPREAD


def client_price_per_gram(client_base_price_per_gram: Any, margin_percent: Any) -> Decimal:
    client_base = _positive(client_base_price_per_gram, "Client base price per gram")
    margin = to_decimal(margin_percent, "Margin percent")
    price = client_base * (1 + margin / 100)
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


def net_weight(weight_grams: Any, devolution_grams: Any = 0) -> Decimal:
    weight = to_decimal(weight_grams, "Weight")
    devolution = to_decimal(devolution_grams or 0, "Returned grams")
    if devolution < 0:
        raise ValidationError("Returned grams cannot be negative.")
    if devolution >= weight:
        raise ValidationError(
            f"Returned grams ({devolution:f}) must be less than the {weight:f}g bar weight; "
            "use a return for the whole bar."
        )
    return weight - devolution


@dataclass(frozen=True)
class ClosePayload:
    """Operator input for closing one or more bars at the same price."""

    spot_price_per_ounce: Any
    client_base_price_per_gram: Any = None
    reference_cost_price_per_gram: Any = None
    margin_percent: Any = DEFAULT_MARGIN_PERCENT
    devolution_grams: Any = 0
    invoice_ref: Optional[str] = None
    close_date: Optional[str] = None


def _positive(value: Any, field_name: str) -> Decimal:
    if value is None or value == "":
        raise ValidationError(f"{field_name} is required.")
    d = to_decimal(value, field_name)
    if d <= 0:
        raise ValidationError(f"{field_name} must be > 0.")
    return d


def settle(weight_grams: Any, payload: ClosePayload) -> Settlement:
    base = base_price_per_gram(payload.spot_price_per_ounce)

    if payload.client_base_price_per_gram in (None, ""):
        client_base = default_client_base_price(base)
    else:
        client_base = _positive(payload.client_base_price_per_gram, "Client base price per gram")

    if payload.reference_cost_price_per_gram in (None, ""):
        reference_cost = default_reference_cost_price(base)
    else:
        reference_cost = _positive(payload.reference_cost_price_per_gram, "Reference cost price per gram")

    margin = to_decimal(payload.margin_percent, "Margin percent")
    w = net_weight(weight_grams, payload.devolution_grams)

    client_price = client_price_per_gram(client_base, margin)
    invoice_amount = client_price * w
    reference_cost_amount = reference_cost * w

    return Settlement(
        spot_price_per_ounce=to_decimal(payload.spot_price_per_ounce, "Spot price per ounce"),
        base_price_per_gram=base,
        client_base_price_per_gram=client_base,
        reference_cost_price_per_gram=reference_cost,
        margin_percent=margin,
        client_price_per_gram=client_price,
        net_weight_grams=w,
        invoice_amount=invoice_amount,
        reference_cost_amount=reference_cost_amount,
        closing_margin=(client_base - base) * w,
        total_margin=invoice_amount - reference_cost_amount,
        invoice_ref=(payload.invoice_ref or "").strip() or None,
        close_date=payload.close_date or iso_today(),
    )
