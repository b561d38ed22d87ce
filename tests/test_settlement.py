from decimal import Decimal

import pytest

from lingotes.errors import ValidationError
from lingotes.services.settlement import (
    ClosePayload,
    base_price_per_gram,
    client_price_per_gram,
    net_weight,
    settle,
)


def test_base_price_rounds_up_to_the_cent():
    # 3110.38 / 31.10349 = 100.00099..., nearest-cent rounding would give 100.00
    assert base_price_per_gram(3110.38) == Decimal("100.01")
    assert base_price_per_gram("3693.42") == Decimal("118.75")


def test_base_price_exact_cent_is_not_bumped():
    assert base_price_per_gram("3110.349") == Decimal("100.00")


def test_client_price_rounds_to_nearest_cent():
    assert client_price_per_gram("118.76", 6) == Decimal("125.89")
    assert client_price_per_gram("100.00", "0") == Decimal("100.00")


def test_close_one_50g_bar_with_negotiated_prices():
    s = settle(
        50,
        ClosePayload(
            spot_price_per_ounce=3693.42,
            client_base_price_per_gram="118.76",
            reference_cost_price_per_gram="119.01",
            margin_percent=6,
            invoice_ref="2026-12",
            close_date="2026-02-01",
        ),
    )
    assert s.base_price_per_gram == Decimal("118.75")
    assert s.client_price_per_gram == Decimal("125.89")
    assert s.invoice_amount == Decimal("6294.50")
    assert s.reference_cost_amount == Decimal("5950.50")
    assert s.total_margin == Decimal("344.00")
    assert s.closing_margin == Decimal("0.50")
    assert s.invoice_ref == "2026-12"
    assert s.close_date == "2026-02-01"


def test_defaults_follow_the_base_price():
    s = settle(100, ClosePayload(spot_price_per_ounce=3693.42))
    assert s.client_base_price_per_gram == Decimal("118.75")
    assert s.reference_cost_price_per_gram == Decimal("119.00")
    assert s.margin_percent == Decimal("6")
    assert s.closing_margin == 0
    assert s.invoice_ref is None


def test_partial_return_reduces_net_weight():
    s = settle(50, ClosePayload(spot_price_per_ounce=3693.42, devolution_grams=2))
    assert s.net_weight_grams == Decimal("48")
    assert s.invoice_amount == s.client_price_per_gram * 48


@pytest.mark.parametrize("spot", [None, "", 0, -10])
def test_missing_or_bad_spot_price_is_rejected(spot):
    with pytest.raises(ValidationError):
        settle(50, ClosePayload(spot_price_per_ounce=spot))


def test_devolution_must_be_smaller_than_the_bar():
    with pytest.raises(ValidationError, match="50"):
        net_weight(50, 50)
    with pytest.raises(ValidationError):
        net_weight(50, -1)


@pytest.mark.parametrize("value", ["NaN", "Infinity", "-inf", Decimal("NaN")])
@pytest.mark.parametrize(
    "field",
    ["spot_price_per_ounce", "margin_percent", "client_base_price_per_gram", "reference_cost_price_per_gram"],
)
def test_non_finite_prices_are_rejected(field, value):
    args = {"spot_price_per_ounce": "3693.42", field: value}
    with pytest.raises(ValidationError, match="finite"):
        settle(50, ClosePayload(**args))


@pytest.mark.parametrize("devolution", ["NaN", "Infinity"])
def test_non_finite_devolution_is_rejected(devolution):
    with pytest.raises(ValidationError):
        net_weight(50, devolution)
