from __future__ import annotations

import base64
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from lingotes.db import DocumentStore
from lingotes.errors import ValidationError
from lingotes.models import (
    Batch,
    BarState,
    CompositionLine,
    Delivery,
    InvoiceDocument,
    Weight,
    normalize_weight,
    to_decimal,
)
from lingotes.utils import iso_now

log = logging.getLogger(__name__)


@dataclass
class BatchLineInput:
    weight_grams: float
    count: int


@dataclass(frozen=True)
class StockLine:
    weight_grams: Weight
    count: int
    per_batch: dict[str, int] = field(default_factory=dict)

    @property
    def total_grams(self) -> float:
        return self.weight_grams * self.count


def _normalize_lines(lines: Iterable[BatchLineInput]) -> list[CompositionLine]:
    out: list[CompositionLine] = []
    seen: set = set()
    for line in lines:
        w = normalize_weight(line.weight_grams)
        try:
            raw = float(line.count)
        except (TypeError, ValueError):
            raise ValidationError(f"Count for {w:g}g must be a whole number.")
        if not raw.is_integer() or raw <= 0:
            raise ValidationError(f"Count for {w:g}g must be a whole number > 0.")
        count = int(raw)
        if w in seen:
            raise ValidationError(f"Weight class {w:g}g is listed twice.")
        seen.add(w)
        out.append(CompositionLine(weight_grams=w, count=count))
    if not out:
        raise ValidationError("At least one weight line is required.")
    return out


def list_batches(store: DocumentStore) -> list[Batch]:
    batches = [Batch.from_doc(d) for d in store.list("batches")]
    return sorted(batches, key=lambda b: b.acquisition_date or "", reverse=True)


def get_batch(store: DocumentStore, batch_id: str) -> Batch:
    return Batch.from_doc(store.get("batches", batch_id))


def create_batch(
    store: DocumentStore,
    *,
    name: str,
    acquisition_date: str,
    lines: list[BatchLineInput],
    year_label: Optional[str] = None,
    price_per_gram: Any = None,
) -> str:
    name = str(name or "").strip()
    if not name:
        raise ValidationError("Batch name is required.")
    if not acquisition_date:
        raise ValidationError("Acquisition date is required.")

    price = None
    if price_per_gram not in (None, ""):
        price = to_decimal(price_per_gram, "Price per gram")
        if price <= 0:
            raise ValidationError("Price per gram must be > 0.")

    batch = Batch(
        name=name,
        acquisition_date=str(acquisition_date),
        year_label=year_label or str(acquisition_date)[:4],
        composition=_normalize_lines(lines),
        price_per_gram=price,
    )
    batch_id = store.create("batches", batch.to_doc())
    log.info("batch %s (%s) created: %s", name, batch_id, _describe(batch.composition))
    return batch_id


def _describe(composition: list[CompositionLine]) -> str:
    return ", ".join(f"{c.count} x {c.weight_grams:g}g" for c in composition)


def _batch_deliveries(store: DocumentStore, batch_id: str) -> list[Delivery]:
    return [Delivery.from_doc(d) for d in store.list("deliveries", batch_id=batch_id)]


def _consumed(deliveries: Iterable[Delivery]) -> Counter:
    used: Counter = Counter()
    for d in deliveries:
        for bar in d.bars:
            if bar.state != BarState.RETURNED:
                used[bar.weight_grams] += 1
    return used


def _returned(deliveries: Iterable[Delivery]) -> Counter:
    returned: Counter = Counter()
    for d in deliveries:
        for bar in d.bars:
            if bar.state == BarState.RETURNED:
                returned[bar.weight_grams] += 1
    return returned


def consumed_counts(store: DocumentStore, batch_id: str) -> dict[Weight, int]:
    """Bars per weight class still held against the batch (returned bars excluded)."""
    get_batch(store, batch_id)
    return dict(_consumed(_batch_deliveries(store, batch_id)))


def update_batch(
    store: DocumentStore,
    batch_id: str,
    *,
    name: Optional[str] = None,
    acquisition_date: Optional[str] = None,
    year_label: Optional[str] = None,
    price_per_gram: Any = None,
    lines: Optional[list[BatchLineInput]] = None,
) -> Batch:
    batch = get_batch(store, batch_id)
    fields: dict[str, Any] = {}

    if name is not None:
        if not name.strip():
            raise ValidationError("Batch name is required.")
        fields["name"] = name.strip()
    if acquisition_date is not None:
        fields["acquisition_date"] = str(acquisition_date)
    if year_label is not None:
        fields["year_label"] = year_label
    if price_per_gram is not None:
        price = to_decimal(price_per_gram, "Price per gram")
        if price <= 0:
            raise ValidationError("Price per gram must be > 0.")
        fields["price_per_gram"] = str(price)

    if lines is not None:
        deliveries = _batch_deliveries(store, batch_id)
        used = _consumed(deliveries)
        if any(used.values()):
            raise ValidationError(
                f"Composition of batch {batch.name} is locked: bars already delivered ({_describe_used(used)})."
            )
        composition = _normalize_lines(lines)
        # returned bars may still have their return cancelled
        returned = _returned(deliveries)
        new_counts = {c.weight_grams: c.count for c in composition}
        short = {w: n for w, n in returned.items() if new_counts.get(w, 0) < n}
        if short:
            raise ValidationError(
                f"Composition of batch {batch.name} must keep room for returned bars ({_describe_used(short)})."
            )
        fields["composition"] = [c.to_doc() for c in composition]

    if fields:
        store.update("batches", batch_id, fields)
    return get_batch(store, batch_id)


def _describe_used(used: dict) -> str:
    return ", ".join(f"{n} x {w:g}g" for w, n in used.items() if n)


def delete_batch(store: DocumentStore, batch_id: str) -> None:
    batch = get_batch(store, batch_id)
    if _batch_deliveries(store, batch_id):
        raise ValidationError(f"Batch {batch.name} has deliveries and cannot be deleted.")
    store.delete("batches", batch_id)
    if batch.invoice_id:
        store.delete("invoices", batch.invoice_id)
    log.info("batch %s (%s) deleted", batch.name, batch_id)


def attach_invoice(
    store: DocumentStore,
    batch_id: str,
    *,
    filename: str,
    content: bytes,
    content_type: str = "application/pdf",
) -> str:
    batch = get_batch(store, batch_id)
    if not content:
        raise ValidationError("Invoice file is empty.")
    invoice = InvoiceDocument(
        batch_id=batch_id,
        filename=filename,
        content_type=content_type,
        size_bytes=len(content),
        data=base64.b64encode(content).decode("ascii"),
        uploaded_at=iso_now(),
    )
    invoice_id = store.create("invoices", invoice.to_doc())
    store.update("batches", batch_id, {"invoice_id": invoice_id})
    if batch.invoice_id:
        store.delete("invoices", batch.invoice_id)
    return invoice_id


def get_invoice(store: DocumentStore, invoice_id: str) -> InvoiceDocument:
    return InvoiceDocument.from_doc(store.get("invoices", invoice_id))


def invoice_bytes(invoice: InvoiceDocument) -> bytes:
    return base64.b64decode(invoice.data)


def availability_of(batch: Batch, deliveries: Iterable[Delivery]) -> list[CompositionLine]:
    """Purchased composition minus bars still held, in composition order."""
    used = _consumed(deliveries)
    return [
        CompositionLine(weight_grams=line.weight_grams, count=line.count - used.get(line.weight_grams, 0))
        for line in batch.composition
    ]


def availability(store: DocumentStore, batch_id: str) -> list[CompositionLine]:
    batch = get_batch(store, batch_id)
    return availability_of(batch, _batch_deliveries(store, batch_id))


def global_stock(store: DocumentStore) -> list[StockLine]:
    """Free stock across every batch, by weight class. Display only; allocation is per batch."""
    deliveries_by_batch: dict[str, list[Delivery]] = {}
    for doc in store.list("deliveries"):
        d = Delivery.from_doc(doc)
        deliveries_by_batch.setdefault(d.batch_id, []).append(d)

    totals: dict[Weight, int] = {}
    per_batch: dict[Weight, dict[str, int]] = {}
    for batch in list_batches(store):
        for line in availability_of(batch, deliveries_by_batch.get(batch.id, [])):
            totals[line.weight_grams] = totals.get(line.weight_grams, 0) + line.count
            per_batch.setdefault(line.weight_grams, {})[batch.id] = line.count

    return [StockLine(weight_grams=w, count=totals[w], per_batch=per_batch[w]) for w in sorted(totals)]
