import pytest

from lingotes.errors import ValidationError
from lingotes.models import BarState, ForwardCommitment
from lingotes.services.fifo import client_queues, match_forward_commitments
from lingotes.services.settlement import ClosePayload, settle


def _fc(id, client="X", weight=50, created_at="2026-01-01T10:00:00", **kw):
    return ForwardCommitment(id=id, client_id=client, weight_grams=weight, created_at=created_at, **kw)


def test_oldest_commitment_is_consumed_first():
    c2 = _fc("c2", created_at="2026-01-02T00:00:00")
    c1 = _fc("c1", created_at="2026-01-01T00:00:00")

    result = match_forward_commitments("X", {50: 1}, [c2, c1])

    assert [c.id for c in result.consumed] == ["c1"]
    assert result.bars[0].forward_commitment_id == "c1"


def test_shortfall_becomes_fresh_bars():
    result = match_forward_commitments("X", {50: 3}, [_fc("c1")])

    assert len(result.bars) == 3
    assert result.from_forward_count == 1
    assert [b.from_forward_commitment for b in result.bars] == [True, False, False]
    assert all(b.state == BarState.IN_PROGRESS for b in result.bars)
    assert all(b.settlement is None for b in result.bars)


def test_only_the_clients_commitments_of_the_same_weight_match():
    commitments = [_fc("other", client="Y"), _fc("heavy", weight=100), _fc("mine")]
    result = match_forward_commitments("X", {50: 2}, commitments)
    assert [c.id for c in result.consumed] == ["mine"]


def test_more_commitments_than_requested_leaves_the_newest():
    commitments = [_fc(f"c{i}", created_at=f"2026-01-0{i}T00:00:00") for i in (3, 1, 2)]
    result = match_forward_commitments("X", {50: 2}, commitments)
    assert [c.id for c in result.consumed] == ["c1", "c2"]


def test_priced_commitment_carries_its_settlement():
    s = settle(50, ClosePayload(spot_price_per_ounce=3693.42, devolution_grams=1))
    unpaid = _fc("a", settlement=s, created_at="2026-01-01T00:00:00")
    paid = _fc("b", settlement=s, paid=True, created_at="2026-01-02T00:00:00")

    result = match_forward_commitments("X", {50: 2}, [unpaid, paid])

    first, second = result.bars
    assert first.state == BarState.AWAITING_PAYMENT
    assert first.settlement == s
    assert first.returned_weight_grams == 1
    assert second.state == BarState.SETTLED
    assert second.paid


def test_same_timestamp_keeps_store_order():
    queues = client_queues("X", [_fc("first"), _fc("second")])
    assert [c.id for c in queues[50]] == ["first", "second"]


def test_commitment_listed_twice_is_rejected():
    with pytest.raises(ValidationError):
        match_forward_commitments("X", {50: 2}, [_fc("c1"), _fc("c1")])
