import pytest

from lingotes.errors import IllegalTransitionError, ValidationError
from lingotes.models import Bar, BarState, Delivery, LogCategory
from lingotes.services import bars as lifecycle
from lingotes.services.settlement import ClosePayload, settle


@pytest.fixture
def settlement():
    return settle(50, ClosePayload(spot_price_per_ounce=3693.42, devolution_grams=0.5))


def _closed(settlement):
    bar = Bar(weight_grams=50)
    lifecycle.close_bar(bar, settlement)
    return bar


def test_close_then_pay_then_unpay(settlement):
    bar = _closed(settlement)
    assert bar.state == BarState.AWAITING_PAYMENT
    assert not bar.paid
    assert bar.returned_weight_grams == 0.5
    assert bar.total_margin == settlement.total_margin

    assert lifecycle.mark_paid(bar) is True
    assert bar.state == BarState.SETTLED and bar.paid
    assert lifecycle.mark_paid(bar) is False

    assert lifecycle.unmark_paid(bar) is True
    assert bar.state == BarState.AWAITING_PAYMENT
    assert lifecycle.unmark_paid(bar) is False


def test_return_and_cancel(settlement):
    bar = Bar(weight_grams=100)
    assert lifecycle.return_bar(bar, "2026-02-03") is True
    assert bar.state == BarState.RETURNED
    assert bar.return_date == "2026-02-03"
    assert lifecycle.return_bar(bar) is False

    assert lifecycle.cancel_return(bar) is True
    assert bar.state == BarState.IN_PROGRESS
    assert bar.return_date is None
    assert lifecycle.cancel_return(bar) is False


def test_closed_bar_cannot_be_returned(settlement):
    bar = _closed(settlement)
    with pytest.raises(ValidationError):
        lifecycle.return_bar(bar)
    lifecycle.mark_paid(bar)
    with pytest.raises(IllegalTransitionError):
        lifecycle.return_bar(bar)


@pytest.mark.parametrize("state", [BarState.IN_PROGRESS, BarState.RETURNED])
def test_payment_toggles_need_a_closed_bar(state):
    bar = Bar(weight_grams=50, state=state)
    with pytest.raises(ValidationError):
        lifecycle.mark_paid(bar)
    with pytest.raises(ValidationError):
        lifecycle.unmark_paid(bar)


def test_close_is_not_repeatable(settlement):
    bar = _closed(settlement)
    with pytest.raises(IllegalTransitionError, match="close"):
        lifecycle.close_bar(bar, settlement)
    returned = Bar(weight_grams=50, state=BarState.RETURNED)
    with pytest.raises(IllegalTransitionError):
        lifecycle.close_bar(returned, settlement)


def test_cancel_return_of_closed_bar_is_illegal(settlement):
    with pytest.raises(IllegalTransitionError):
        lifecycle.cancel_return(_closed(settlement))


def test_settlement_fields_follow_the_state(settlement):
    with pytest.raises(ValidationError):
        Bar(weight_grams=50, state=BarState.AWAITING_PAYMENT)
    with pytest.raises(ValidationError):
        Bar(weight_grams=50, settlement=settlement)
    with pytest.raises(ValidationError):
        Bar(weight_grams=50, state=BarState.RETURNED, settlement=settlement)


def test_invoice_ref_only_on_closed_bars(settlement):
    bar = _closed(settlement)
    lifecycle.set_invoice_ref(bar, "2026-9")
    assert bar.invoice_ref == "2026-9"
    with pytest.raises(IllegalTransitionError):
        lifecycle.set_invoice_ref(Bar(weight_grams=50), "2026-9")


def test_delivery_document_keeps_bars_and_log(settlement):
    d = Delivery(client_id="X", batch_id="b", delivery_date="2026-02-01", bars=[_closed(settlement), Bar(weight_grams=100)])
    d.log.append(lifecycle.new_log_entry(LogCategory.CLOSE, "closed", "ana"))

    again = Delivery.from_doc({"id": "d1", **d.to_doc()})

    assert again.id == "d1"
    assert again.bars == d.bars
    assert again.log == d.log
    assert again.to_doc()["bars"][0]["paid"] is False


def test_describe_bars():
    bars = [Bar(weight_grams=100), Bar(weight_grams=50), Bar(weight_grams=50)]
    assert lifecycle.describe_bars(bars) == "2 x 50g, 1 x 100g (200 g)"
    assert lifecycle.describe_bars([]) == "no bars"
