from __future__ import annotations

import random
import sqlite3
from datetime import date, timedelta

from lingotes.db import DocumentStore, ensure_schema
from lingotes.schema import COLLECTIONS
from lingotes.services.batches import BatchLineInput, create_batch
from lingotes.services.deliveries import close_bars, create_delivery, mark_paid, return_bars
from lingotes.services.forward import close_forward_commitment, create_forward_commitment
from lingotes.services.settlement import ClosePayload

DEMO_CLIENTS = ["Nova Joia", "La Milla d'Or", "OrCash", "Gemma d'Or"]
DEMO_BATCHES = [
    ("26-9", 120, [(50, 20), (100, 6)]),
    ("16-9", 60, [(50, 30), (100, 10)]),
    ("28-1", 10, [(50, 10)]),
]


def wipe_all(conn: sqlite3.Connection) -> None:
    # Keep schema, delete data.
    ensure_schema(conn)
    for t in COLLECTIONS:
        conn.execute(f"DELETE FROM {t};")
    conn.commit()


def load_demo_data(store: DocumentStore, *, seed: int = 7, actor: str = "demo") -> None:
    random.seed(seed)
    ensure_schema(store.conn)
    today = date.today()

    batch_ids = []
    for name, days_ago, lines in DEMO_BATCHES:
        batch_ids.append(
            create_batch(
                store,
                name=name,
                acquisition_date=(today - timedelta(days=days_ago)).isoformat(),
                lines=[BatchLineInput(weight_grams=w, count=n) for w, n in lines],
            )
        )

    # A priceless FUTURA for the first client, converted by its first delivery
    create_forward_commitment(store, client_id=DEMO_CLIENTS[0], weight_grams=50, notes="Sold before arrival", actor=actor)

    deliveries = []
    for i, client in enumerate(DEMO_CLIENTS):
        batch_id = batch_ids[i % 2]
        items = {50: random.randint(2, 4)}
        if i % 2 == 0:
            items[100] = 1
        deliveries.append(
            create_delivery(
                store,
                client_id=client,
                batch_id=batch_id,
                delivery_date=(today - timedelta(days=40 - i * 5)).isoformat(),
                items=items,
                actor=actor,
            )
        )

    spot = 3693.42
    for n, d in enumerate(deliveries[:3]):
        close_bars(
            store,
            [(d.id, 0)],
            ClosePayload(spot_price_per_ounce=spot + 25 * n, invoice_ref=f"{today.year}-{n + 1}"),
            actor=actor,
        )
    mark_paid(store, deliveries[0].id, 0, actor=actor)
    return_bars(store, deliveries[1].id, [1], actor=actor)

    # One FUTURA left pending, already priced
    pending = create_forward_commitment(store, client_id=DEMO_CLIENTS[2], weight_grams=100, actor=actor)
    close_forward_commitment(store, pending.id, ClosePayload(spot_price_per_ounce=spot), actor=actor)
