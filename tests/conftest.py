from __future__ import annotations

import pytest

from lingotes.db import DocumentStore, connect, ensure_schema
from lingotes.models import BarState, Delivery
from lingotes.services.batches import BatchLineInput, create_batch


@pytest.fixture
def store(tmp_path):
    conn = connect(tmp_path / "lingotes.db")
    ensure_schema(conn)
    yield DocumentStore(conn)
    conn.close()


@pytest.fixture
def make_batch(store):
    def _make(name="28-1", lines=((50, 10),), acquisition_date="2026-01-28"):
        return create_batch(
            store,
            name=name,
            acquisition_date=acquisition_date,
            lines=[BatchLineInput(weight_grams=w, count=n) for w, n in lines],
        )

    return _make


def held_from_raw_docs(store, batch_id):
    """Independent recount of non-returned bars per weight, straight from the stored documents."""
    held = {}
    for doc in store.list("deliveries"):
        d = Delivery.from_doc(doc)
        if d.batch_id != batch_id:
            continue
        for bar in d.bars:
            if bar.state != BarState.RETURNED:
                held[bar.weight_grams] = held.get(bar.weight_grams, 0) + 1
    return held
