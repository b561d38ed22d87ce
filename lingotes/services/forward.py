from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from lingotes.db import DocumentStore
from lingotes.errors import IllegalTransitionError, ValidationError
from lingotes.models import ForwardCommitment, normalize_weight
from lingotes.services.settlement import ClosePayload, settle
from lingotes.utils import iso_now, to_utc_iso

# Forward commitments live outside any delivery, so their audit trail is
# this logger rather than an embedded log.
log = logging.getLogger(__name__)


def get_forward_commitment(store: DocumentStore, commitment_id: str) -> ForwardCommitment:
    return ForwardCommitment.from_doc(store.get("forward_commitments", commitment_id))


def pending_forward_commitments(store: DocumentStore, client_id: Optional[str] = None) -> list[ForwardCommitment]:
    filters = {"client_id": client_id} if client_id is not None else {}
    docs = store.list("forward_commitments", **filters)
    return sorted((ForwardCommitment.from_doc(d) for d in docs), key=lambda c: c.created_at)


def create_forward_commitment(
    store: DocumentStore,
    *,
    client_id: str,
    weight_grams: float,
    created_at: Optional[str] = None,
    notes: Optional[str] = None,
    actor: str = "system",
) -> ForwardCommitment:
    if created_at:
        try:
            created_at = to_utc_iso(created_at)
        except ValueError:
            raise ValidationError(f"created_at must be an ISO date or timestamp, got {created_at!r}.")
    client_id = str(client_id or "").strip()
    if not client_id:
        raise ValidationError("Client is required.")
    commitment = ForwardCommitment(
        client_id=client_id,
        weight_grams=normalize_weight(weight_grams),
        created_at=created_at or iso_now(),
        notes=(notes or "").strip() or None,
    )
    commitment.id = store.create("forward_commitments", commitment.to_doc())
    log.info(
        "forward commitment %s created: %gg for client %s by %s",
        commitment.id, commitment.weight_grams, client_id, actor,
    )
    return commitment


def close_forward_commitment(
    store: DocumentStore,
    commitment_id: str,
    payload: ClosePayload,
    *,
    actor: str = "system",
) -> ForwardCommitment:
    """Price a commitment before its bar exists. The price travels to the bar on delivery."""
    commitment = get_forward_commitment(store, commitment_id)
    if commitment.priced:
        raise IllegalTransitionError("close", "priced", commitment.weight_grams)

    settlement = settle(commitment.weight_grams, payload)
    store.update("forward_commitments", commitment_id, {"settlement": settlement.to_doc(), "paid": False})
    log.info(
        "forward commitment %s closed at %s/g (invoice %s) by %s",
        commitment_id, settlement.client_price_per_gram, settlement.invoice_amount, actor,
    )
    return replace(commitment, settlement=settlement, paid=False)


def _set_paid(store: DocumentStore, commitment_id: str, paid: bool, actor: str) -> ForwardCommitment:
    commitment = get_forward_commitment(store, commitment_id)
    action = "mark_paid" if paid else "unmark_paid"
    if not commitment.priced:
        raise IllegalTransitionError(action, "unpriced", commitment.weight_grams)

    if commitment.paid != paid:
        store.update("forward_commitments", commitment_id, {"paid": paid})
    log.info("forward commitment %s %s by %s", commitment_id, action.replace("_", " "), actor)
    return replace(commitment, paid=paid)


def mark_forward_paid(store: DocumentStore, commitment_id: str, *, actor: str = "system") -> ForwardCommitment:
    return _set_paid(store, commitment_id, True, actor)


def unmark_forward_paid(store: DocumentStore, commitment_id: str, *, actor: str = "system") -> ForwardCommitment:
    return _set_paid(store, commitment_id, False, actor)


def delete_forward_commitment(store: DocumentStore, commitment_id: str, *, actor: str = "system") -> None:
    commitment = get_forward_commitment(store, commitment_id)
    store.delete("forward_commitments", commitment_id)
    log.info(
        "forward commitment %s deleted (%gg, client %s) by %s",
        commitment_id, commitment.weight_grams, commitment.client_id, actor,
    )
