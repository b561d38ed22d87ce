from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from lingotes.errors import ValidationError
from lingotes.models import Bar, BarState, ForwardCommitment, Weight
from lingotes.services.bars import credit_grams


@dataclass
class MatchResult:
    bars: list[Bar] = field(default_factory=list)
    consumed: list[ForwardCommitment] = field(default_factory=list)

    @property
    def from_forward_count(self) -> int:
        return len(self.consumed)


def client_queues(client_id: str, commitments: Iterable[ForwardCommitment]) -> dict[Weight, list[ForwardCommitment]]:
    """
    Pending commitments of one client per weight class, oldest first.

    sorted() is stable, so commitments with the same created_at keep the
    order the store returned them in.
    """
    queues: dict[Weight, list[ForwardCommitment]] = {}
    seen: set[str] = set()
    for c in commitments:
        if c.client_id != client_id:
            continue
        if c.id in seen:
            raise ValidationError(f"Forward commitment {c.id} listed twice.")
        seen.add(c.id)
        queues.setdefault(c.weight_grams, []).append(c)
    return {w: sorted(q, key=lambda c: c.created_at) for w, q in queues.items()}


def bar_from_commitment(commitment: ForwardCommitment) -> Bar:
    if commitment.settlement is None:
        return Bar(
            weight_grams=commitment.weight_grams,
            from_forward_commitment=True,
            forward_commitment_id=commitment.id,
        )
    return Bar(
        weight_grams=commitment.weight_grams,
        state=BarState.SETTLED if commitment.paid else BarState.AWAITING_PAYMENT,
        settlement=commitment.settlement,
        returned_weight_grams=credit_grams(commitment.weight_grams, commitment.settlement),
        from_forward_commitment=True,
        forward_commitment_id=commitment.id,
    )


def match_forward_commitments(
    client_id: str,
    requested: dict[Weight, int],
    commitments: Iterable[ForwardCommitment],
) -> MatchResult:
    """
    Build the bar list of a new delivery.

    For each requested weight class the client's oldest commitments are used
    first, one bar per commitment; the rest of the count becomes fresh
    in-progress bars.
    """
    queues = client_queues(client_id, commitments)
    result = MatchResult()

    for weight, count in requested.items():
        queue = queues.get(weight, [])
        taken = queue[: max(0, int(count))]
        for commitment in taken:
            result.bars.append(bar_from_commitment(commitment))
            result.consumed.append(commitment)
        for _ in range(int(count) - len(taken)):
            result.bars.append(Bar(weight_grams=weight))

    return result
