import logging

import pytest

from lingotes.errors import IllegalTransitionError, NotFoundError, ValidationError
from lingotes.services.forward import (
    close_forward_commitment,
    create_forward_commitment,
    delete_forward_commitment,
    get_forward_commitment,
    mark_forward_paid,
    pending_forward_commitments,
    unmark_forward_paid,
)
from lingotes.services.settlement import ClosePayload

PAYLOAD = ClosePayload(spot_price_per_ounce=3693.42, invoice_ref="F-1")


def test_create_and_list_oldest_first(store):
    late = create_forward_commitment(store, client_id="X", weight_grams=50.0, created_at="2026-02-01T00:00:00")
    early = create_forward_commitment(store, client_id=" X ", weight_grams=100, created_at="2026-01-01T00:00:00")
    create_forward_commitment(store, client_id="Y", weight_grams=50, notes="  ")

    assert [c.id for c in pending_forward_commitments(store, "X")] == [early.id, late.id]
    assert len(pending_forward_commitments(store)) == 3
    stored = get_forward_commitment(store, late.id)
    assert stored.weight_grams == 50 and isinstance(stored.weight_grams, int)
    assert stored.notes is None
    assert not stored.priced and not stored.paid


@pytest.mark.parametrize(
    "kwargs",
    [
        {"client_id": ""},
        {"weight_grams": 0},
        {"weight_grams": "heavy"},
        {"weight_grams": float("nan")},
        {"weight_grams": "inf"},
        {"created_at": "last tuesday"},
    ],
)
def test_invalid_commitments(store, kwargs):
    args = {"client_id": "X", "weight_grams": 50}
    args.update(kwargs)
    with pytest.raises(ValidationError):
        create_forward_commitment(store, **args)
    assert pending_forward_commitments(store) == []


def test_price_then_toggle_payment(store):
    fc = create_forward_commitment(store, client_id="X", weight_grams=50)

    priced = close_forward_commitment(store, fc.id, PAYLOAD, actor="ana")
    assert priced.priced
    assert str(priced.settlement.base_price_per_gram) == "118.75"
    assert get_forward_commitment(store, fc.id).settlement == priced.settlement

    assert mark_forward_paid(store, fc.id).paid
    assert mark_forward_paid(store, fc.id).paid
    assert get_forward_commitment(store, fc.id).paid
    assert not unmark_forward_paid(store, fc.id).paid
    assert not get_forward_commitment(store, fc.id).paid


def test_price_only_once(store):
    fc = create_forward_commitment(store, client_id="X", weight_grams=50)
    close_forward_commitment(store, fc.id, PAYLOAD)
    with pytest.raises(IllegalTransitionError):
        close_forward_commitment(store, fc.id, PAYLOAD)


def test_unpriced_commitment_cannot_be_paid(store):
    fc = create_forward_commitment(store, client_id="X", weight_grams=50)
    with pytest.raises(IllegalTransitionError):
        mark_forward_paid(store, fc.id)
    with pytest.raises(IllegalTransitionError):
        unmark_forward_paid(store, fc.id)


def test_delete(store):
    fc = create_forward_commitment(store, client_id="X", weight_grams=50)
    delete_forward_commitment(store, fc.id)
    with pytest.raises(NotFoundError):
        delete_forward_commitment(store, fc.id)


def test_every_change_is_logged_with_its_actor(store, caplog):
    caplog.set_level(logging.INFO, logger="lingotes")

    fc = create_forward_commitment(store, client_id="X", weight_grams=50, actor="ana")
    close_forward_commitment(store, fc.id, PAYLOAD, actor="joan")
    mark_forward_paid(store, fc.id, actor="joan")
    delete_forward_commitment(store, fc.id, actor="ana")

    messages = [r.getMessage() for r in caplog.records if r.name == "lingotes.services.forward"]
    assert len(messages) == 4
    assert messages[0].endswith("by ana")
    assert "closed at" in messages[1]
    assert "mark paid by joan" in messages[2]
    assert "deleted" in messages[3]


def test_created_at_is_stored_in_utc_so_the_queue_orders_by_instant(store):
    # 23:00 at UTC-2 on Jan 1st is 01:00 UTC on Jan 2nd, after the date-only value
    late = create_forward_commitment(store, client_id="X", weight_grams=50, created_at="2026-01-01T23:00:00-02:00")
    early = create_forward_commitment(store, client_id="X", weight_grams=50, created_at="2026-01-02")
    zulu = create_forward_commitment(store, client_id="X", weight_grams=50, created_at="2026-01-02T00:30:00Z")

    assert early.created_at == "2026-01-02T00:00:00.000000+00:00"
    assert late.created_at == "2026-01-02T01:00:00.000000+00:00"
    assert [c.id for c in pending_forward_commitments(store, "X")] == [early.id, zulu.id, late.id]
