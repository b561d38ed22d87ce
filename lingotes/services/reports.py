from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from lingotes.config import StockThresholds
from lingotes.db import DocumentStore
from lingotes.models import BarState, CLOSED_STATES, Delivery, ForwardCommitment
from lingotes.services.batches import availability_of, global_stock, list_batches


@dataclass
class ClientStats:
    client_id: str
    delivered_grams: float = 0
    closed_grams: float = 0          # net of partial-return credits
    returned_grams: float = 0        # whole returns plus partial credits
    pending_grams: float = 0         # still in progress at the client
    open_bars: int = 0
    invoiced_total: Decimal = Decimal("0")
    unpaid_total: Decimal = Decimal("0")
    closing_margin: Decimal = Decimal("0")
    total_margin: Decimal = Decimal("0")
    forward_pending: int = 0
    forward_pending_grams: float = 0


@dataclass
class BatchStats:
    batch_id: str
    name: str
    acquisition_date: str
    purchased_grams: float
    held_grams: float
    available_grams: float
    invoiced_total: Decimal


def _deliveries(store: DocumentStore) -> list[Delivery]:
    return [Delivery.from_doc(d) for d in store.list("deliveries")]


def client_stats(store: DocumentStore) -> list[ClientStats]:
    stats: dict[str, ClientStats] = {}

    for d in _deliveries(store):
        s = stats.setdefault(d.client_id, ClientStats(client_id=d.client_id))
        for bar in d.bars:
            s.delivered_grams += bar.weight_grams
            if bar.state == BarState.IN_PROGRESS:
                s.pending_grams += bar.weight_grams
                s.open_bars += 1
            elif bar.state == BarState.RETURNED:
                s.returned_grams += bar.weight_grams
            elif bar.state in CLOSED_STATES:
                st = bar.settlement
                s.closed_grams += float(st.net_weight_grams)
                s.returned_grams += bar.returned_weight_grams
                s.invoiced_total += st.invoice_amount
                s.closing_margin += st.closing_margin
                s.total_margin += st.total_margin
                if bar.state == BarState.AWAITING_PAYMENT:
                    s.unpaid_total += st.invoice_amount

    for doc in store.list("forward_commitments"):
        c = ForwardCommitment.from_doc(doc)
        s = stats.setdefault(c.client_id, ClientStats(client_id=c.client_id))
        s.forward_pending += 1
        s.forward_pending_grams += c.weight_grams

    return sorted(stats.values(), key=lambda s: s.client_id)


def batch_stats(store: DocumentStore) -> list[BatchStats]:
    by_batch: dict[str, list[Delivery]] = {}
    for d in _deliveries(store):
        by_batch.setdefault(d.batch_id, []).append(d)

    out: list[BatchStats] = []
    for batch in list_batches(store):
        deliveries = by_batch.get(batch.id, [])
        available = sum(line.total_grams for line in availability_of(batch, deliveries))
        invoiced = sum(
            (b.settlement.invoice_amount for d in deliveries for b in d.bars if b.settlement),
            Decimal("0"),
        )
        out.append(
            BatchStats(
                batch_id=batch.id,
                name=batch.name,
                acquisition_date=batch.acquisition_date,
                purchased_grams=batch.total_grams,
                held_grams=batch.total_grams - available,
                available_grams=available,
                invoiced_total=invoiced,
            )
        )
    return out


def stock_totals(store: DocumentStore) -> dict:
    free = sum(line.total_grams for line in global_stock(store))
    at_clients = sum(
        b.weight_grams for d in _deliveries(store) for b in d.bars if b.state == BarState.IN_PROGRESS
    )
    return {"free_grams": free, "at_clients_grams": at_clients}


def stock_level(grams: float, thresholds: StockThresholds) -> str:
    if grams < thresholds.red:
        return "red"
    if grams < thresholds.orange:
        return "orange"
    if grams < thresholds.yellow:
        return "yellow"
    return "green"
