from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Iterable, Optional, Union

from lingotes.db import DocumentStore
from lingotes.errors import InsufficientStockError, NotFoundError, PersistenceError, Shortage, ValidationError
from lingotes.models import (
    Bar,
    BarRef,
    BarState,
    Delivery,
    ForwardCommitment,
    LogCategory,
    Weight,
    normalize_weight,
)
from lingotes.services import bars as lifecycle
from lingotes.services.bars import describe_bars, new_log_entry
from lingotes.services.batches import BatchLineInput, availability_of, get_batch
from lingotes.services.fifo import match_forward_commitments
from lingotes.services.forward import pending_forward_commitments
from lingotes.services.settlement import ClosePayload, settle

log = logging.getLogger(__name__)


# -------------------------
# Saga runner
# -------------------------

@dataclass
class SagaStep:
    name: str
    action: Callable[[], Any]


def run_saga(name: str, steps: list[SagaStep]) -> list[str]:
    """
    Run store writes in order. There is no rollback: on failure the steps
    already done stay done and are reported on the raised PersistenceError.
    """
    completed: list[str] = []
    for step in steps:
        try:
            step.action()
        except PersistenceError as e:
            log.error("%s: '%s' failed after %d step(s) %s: %s", name, step.name, len(completed), completed, e)
            raise PersistenceError(f"{name} stopped at '{step.name}': {e}", completed_steps=completed) from e
        completed.append(step.name)
        log.info("%s: %s", name, step.name)
    return completed


# -------------------------
# Reads
# -------------------------

def get_delivery(store: DocumentStore, delivery_id: str) -> Delivery:
    return Delivery.from_doc(store.get("deliveries", delivery_id))


def list_deliveries(
    store: DocumentStore,
    *,
    client_id: Optional[str] = None,
    batch_id: Optional[str] = None,
) -> list[Delivery]:
    filters = {}
    if client_id is not None:
        filters["client_id"] = client_id
    if batch_id is not None:
        filters["batch_id"] = batch_id
    return [Delivery.from_doc(d) for d in store.list("deliveries", **filters)]


def deliveries_for_client(store: DocumentStore, client_id: str) -> list[Delivery]:
    return sorted(list_deliveries(store, client_id=client_id), key=lambda d: d.delivery_date)


def is_delivery_open(delivery: Delivery) -> bool:
    """Open until every bar is returned, or settled with an invoice reference."""
    return not all(
        b.state == BarState.RETURNED or (b.state == BarState.SETTLED and b.invoice_ref)
        for b in delivery.bars
    )


def bars_in_state(
    store: DocumentStore,
    state: BarState,
    *,
    client_id: Optional[str] = None,
) -> list[tuple[BarRef, Delivery, Bar]]:
    out = []
    for d in list_deliveries(store, client_id=client_id):
        for i, bar in enumerate(d.bars):
            if bar.state == state:
                out.append((BarRef(d.id, i), d, bar))
    return out


# -------------------------
# Writes
# -------------------------

def _requested_map(items: Union[dict, Iterable[BatchLineInput]]) -> dict[Weight, int]:
    pairs = items.items() if isinstance(items, dict) else ((i.weight_grams, i.count) for i in items)
    requested: dict[Weight, int] = {}
    for weight, count in pairs:
        w = normalize_weight(weight)
        try:
            n = int(count)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"Count for {w:g}g must be a whole number.")
        if n != float(count) or n < 0:
            raise ValidationError(f"Count for {w:g}g must be a whole number >= 0.")
        if n:
            requested[w] = requested.get(w, 0) + n
    if not requested:
        raise ValidationError("Request at least one bar.")
    return requested


def _save(store: DocumentStore, delivery: Delivery) -> None:
    doc = delivery.to_doc()
    store.update("deliveries", delivery.id, {"bars": doc["bars"], "log": doc["log"]})


def _consume_commitment(store: DocumentStore, commitment_id: str) -> None:
    try:
        store.delete("forward_commitments", commitment_id)
    except NotFoundError:
        log.warning("forward commitment %s was already gone", commitment_id)


def _unconverted_commitments(store: DocumentStore, client_id: str) -> list[ForwardCommitment]:
    # A commitment outlives its bar when the saga stopped before deleting it.
    converted = {
        b.forward_commitment_id
        for d in list_deliveries(store, client_id=client_id)
        for b in d.bars
        if b.forward_commitment_id
    }
    pending = []
    for c in pending_forward_commitments(store, client_id):
        if c.id in converted:
            log.warning("forward commitment %s already converted into a bar; run reconcile_delivery", c.id)
            continue
        pending.append(c)
    return pending


def create_delivery(
    store: DocumentStore,
    *,
    client_id: str,
    batch_id: str,
    delivery_date: str,
    items: Union[dict, Iterable[BatchLineInput]],
    actor: str = "system",
) -> Delivery:
    """
    Hand bars from one batch to one client.

    Stock is checked for every weight class before anything is written; if
    any class is short the whole request is rejected. The client's pending
    forward commitments are converted first (oldest first), then the new
    delivery is written and the consumed commitments deleted, in that order.
    """
    client_id = str(client_id or "").strip()
    if not client_id:
        raise ValidationError("Client is required.")
    if not delivery_date:
        raise ValidationError("Delivery date is required.")
    requested = _requested_map(items)

    batch = get_batch(store, batch_id)
    available = {
        line.weight_grams: line.count
        for line in availability_of(batch, list_deliveries(store, batch_id=batch_id))
    }
    shortages = [
        Shortage(weight_grams=w, requested=n, available=available.get(w, 0))
        for w, n in requested.items()
        if n > available.get(w, 0)
    ]
    if shortages:
        raise InsufficientStockError(batch.name, shortages)

    match = match_forward_commitments(client_id, requested, _unconverted_commitments(store, client_id))
    delivery = Delivery(client_id=client_id, batch_id=batch_id, delivery_date=str(delivery_date), bars=match.bars)
    delivery.log.append(
        new_log_entry(
            LogCategory.DELIVERY,
            f"Delivered {describe_bars(delivery.bars)} from batch {batch.name}; "
            f"{match.from_forward_count} from forward commitments",
            actor,
        )
    )

    def _persist() -> None:
        delivery.id = store.create("deliveries", delivery.to_doc())

    steps = [SagaStep("persist delivery", _persist)]
    steps += [
        SagaStep(f"delete forward commitment {c.id}", partial(_consume_commitment, store, c.id))
        for c in match.consumed
    ]
    run_saga(f"create delivery for {client_id}", steps)
    return delivery


def _check_indices(delivery: Delivery, bar_indices: Iterable[int]) -> list[int]:
    indices = [int(i) for i in bar_indices]
    if not indices:
        raise ValidationError("Select at least one bar.")
    if len(set(indices)) != len(indices):
        raise ValidationError("A bar was selected twice.")
    for i in indices:
        if not 0 <= i < len(delivery.bars):
            raise ValidationError(f"Delivery {delivery.id} has no bar #{i}.")
    return indices


def close_bars(
    store: DocumentStore,
    refs: Iterable[Union[BarRef, tuple[str, int]]],
    payload: ClosePayload,
    *,
    actor: str = "system",
) -> list[Delivery]:
    """
    Price and invoice bars across any number of deliveries and clients.

    The payload's devolution_grams is deducted from every selected bar alike,
    whatever its weight. Every ref is validated before the first write; the
    deliveries are then written one at a time in the order first referenced.
    """
    refs = [BarRef(*r) for r in refs]
    if not refs:
        raise ValidationError("Select at least one bar to close.")
    if len(set(refs)) != len(refs):
        raise ValidationError("A bar was selected twice.")

    grouped: dict[str, list[int]] = {}
    for ref in refs:
        grouped.setdefault(ref.delivery_id, []).append(ref.bar_index)

    deliveries = {delivery_id: get_delivery(store, delivery_id) for delivery_id in grouped}

    planned: list[tuple[Delivery, list[tuple[Bar, Any]]]] = []
    for delivery_id, indices in grouped.items():
        delivery = deliveries[delivery_id]
        _check_indices(delivery, indices)
        closes = []
        for i in indices:
            bar = delivery.bars[i]
            lifecycle.check_transition(bar, "close")
            closes.append((bar, settle(bar.weight_grams, payload)))
        planned.append((delivery, closes))

    steps: list[SagaStep] = []
    for delivery, closes in planned:
        for bar, settlement in closes:
            lifecycle.close_bar(bar, settlement)
        first = closes[0][1]
        delivery.log.append(
            new_log_entry(
                LogCategory.CLOSE,
                f"Closed {describe_bars(b for b, _ in closes)} at {first.client_price_per_gram} EUR/g "
                f"(spot {first.spot_price_per_ounce}/oz, invoice {first.invoice_ref or '-'})",
                actor,
            )
        )
        steps.append(SagaStep(f"update delivery {delivery.id}", partial(_save, store, delivery)))

    run_saga("close bars", steps)
    return [d for d, _ in planned]


def return_bars(
    store: DocumentStore,
    delivery_id: str,
    bar_indices: Iterable[int],
    *,
    return_date: Optional[str] = None,
    actor: str = "system",
) -> Delivery:
    """Take in-progress bars back; their stock is free again immediately."""
    delivery = get_delivery(store, delivery_id)
    indices = _check_indices(delivery, bar_indices)
    for i in indices:
        lifecycle.check_transition(delivery.bars[i], "return")

    changed = [i for i in indices if lifecycle.return_bar(delivery.bars[i], return_date)]
    note = "" if len(changed) == len(indices) else f" ({len(indices) - len(changed)} already returned)"
    delivery.log.append(
        new_log_entry(LogCategory.RETURN, f"Returned {describe_bars(delivery.bars[i] for i in indices)}{note}", actor)
    )
    _save(store, delivery)
    return delivery


def _single_bar_action(
    store: DocumentStore,
    delivery_id: str,
    bar_index: int,
    action: Callable[[Bar], bool],
    category: LogCategory,
    verb: str,
    actor: str,
) -> Delivery:
    delivery = get_delivery(store, delivery_id)
    (i,) = _check_indices(delivery, [bar_index])
    bar = delivery.bars[i]
    changed = action(bar)
    suffix = "" if changed else " (no change)"
    delivery.log.append(new_log_entry(category, f"{verb} 1 x {bar.weight_grams:g}g{suffix}", actor))
    _save(store, delivery)
    return delivery


def cancel_return(store: DocumentStore, delivery_id: str, bar_index: int, *, actor: str = "system") -> Delivery:
    """
    Put a returned bar back at the client. Its unit must still be free in the
    batch: a return frees stock that a later delivery may already have taken.
    """
    delivery = get_delivery(store, delivery_id)
    (i,) = _check_indices(delivery, [bar_index])
    bar = delivery.bars[i]
    if lifecycle.check_transition(bar, "cancel_return"):
        batch = get_batch(store, delivery.batch_id)
        free = {
            line.weight_grams: line.count
            for line in availability_of(batch, list_deliveries(store, batch_id=batch.id))
        }.get(bar.weight_grams, 0)
        if free < 1:
            raise InsufficientStockError(
                batch.name, [Shortage(weight_grams=bar.weight_grams, requested=1, available=max(free, 0))]
            )
    return _single_bar_action(
        store, delivery_id, bar_index, lifecycle.cancel_return, LogCategory.CANCEL_RETURN, "Cancelled return of", actor
    )


def mark_paid(store: DocumentStore, delivery_id: str, bar_index: int, *, actor: str = "system") -> Delivery:
    return _single_bar_action(
        store, delivery_id, bar_index, lifecycle.mark_paid, LogCategory.PAYMENT, "Marked paid", actor
    )


def unmark_paid(store: DocumentStore, delivery_id: str, bar_index: int, *, actor: str = "system") -> Delivery:
    return _single_bar_action(
        store, delivery_id, bar_index, lifecycle.unmark_paid, LogCategory.PAYMENT, "Marked unpaid", actor
    )


def set_invoice_ref(
    store: DocumentStore,
    delivery_id: str,
    bar_indices: Iterable[int],
    invoice_ref: str,
    *,
    actor: str = "system",
) -> Delivery:
    invoice_ref = (invoice_ref or "").strip()
    if not invoice_ref:
        raise ValidationError("Invoice reference is required.")
    delivery = get_delivery(store, delivery_id)
    indices = _check_indices(delivery, bar_indices)
    for i in indices:
        lifecycle.set_invoice_ref(delivery.bars[i], invoice_ref)
    delivery.log.append(
        new_log_entry(
            LogCategory.CLOSE,
            f"Invoice {invoice_ref} recorded for {describe_bars(delivery.bars[i] for i in indices)}",
            actor,
        )
    )
    _save(store, delivery)
    return delivery


def delete_delivery(store: DocumentStore, delivery_id: str, *, actor: str = "system") -> None:
    """Only while every bar is still in progress; the bars' stock is released."""
    delivery = get_delivery(store, delivery_id)
    blocking = [b for b in delivery.bars if b.state != BarState.IN_PROGRESS]
    if blocking:
        raise ValidationError(
            f"Delivery {delivery_id} cannot be deleted: {describe_bars(blocking)} no longer in progress."
        )
    store.delete("deliveries", delivery_id)
    log.info(
        "delivery %s deleted by %s: %s released to batch %s",
        delivery_id, actor, describe_bars(delivery.bars), delivery.batch_id,
    )


def reconcile_delivery(store: DocumentStore, delivery_id: str) -> list[str]:
    """
    Finish an interrupted create_delivery: delete forward commitments that
    the persisted delivery already converted into bars. Returns their ids.
    """
    delivery = get_delivery(store, delivery_id)
    removed: list[str] = []
    for bar in delivery.bars:
        if not bar.forward_commitment_id:
            continue
        try:
            store.get("forward_commitments", bar.forward_commitment_id)
        except NotFoundError:
            continue
        store.delete("forward_commitments", bar.forward_commitment_id)
        removed.append(bar.forward_commitment_id)
    if removed:
        log.warning("delivery %s: removed %d leftover forward commitment(s)", delivery_id, len(removed))
    return removed
