"""
Bar lifecycle.

    in_progress --close--> awaiting_payment --mark_paid--> settled
                                     ^------unmark_paid------'
    in_progress --return--> returned --cancel_return--> in_progress

A closed bar (awaiting payment or settled) cannot be returned. Asking for
the state a bar is already in is a no-op, anything else outside the table
raises IllegalTransitionError. The functions mutate the bar in place and
report whether its state changed; callers own the audit log.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from typing import Iterable, Optional

from lingotes.errors import IllegalTransitionError
from lingotes.models import Bar, BarState, LogCategory, LogEntry, Settlement, Weight, to_decimal
from lingotes.utils import iso_now, iso_today, new_id

# action -> (states it may start from, resulting state)
TRANSITIONS: dict[str, tuple[frozenset, BarState]] = {
    "close": (frozenset({BarState.IN_PROGRESS}), BarState.AWAITING_PAYMENT),
    "mark_paid": (frozenset({BarState.AWAITING_PAYMENT}), BarState.SETTLED),
    "unmark_paid": (frozenset({BarState.SETTLED}), BarState.AWAITING_PAYMENT),
    "return": (frozenset({BarState.IN_PROGRESS}), BarState.RETURNED),
    "cancel_return": (frozenset({BarState.RETURNED}), BarState.IN_PROGRESS),
}


def check_transition(bar: Bar, action: str) -> bool:
    """True if the action moves the bar, False if it is already there."""
    sources, target = TRANSITIONS[action]
    if bar.state in sources:
        return True
    # close has no idempotent form: re-closing would overwrite a price
    if bar.state == target and action != "close":
        return False
    raise IllegalTransitionError(action, bar.state.value, bar.weight_grams)


def credit_grams(weight_grams: Weight, settlement: Settlement) -> Weight:
    """Grams handed back on a partial return: bar weight minus invoiced net weight."""
    credit = to_decimal(weight_grams, "Weight") - settlement.net_weight_grams
    return float(credit) if credit % 1 else int(credit)


def close_bar(bar: Bar, settlement: Settlement) -> bool:
    check_transition(bar, "close")
    bar.settlement = settlement
    bar.returned_weight_grams = credit_grams(bar.weight_grams, settlement)
    bar.state = BarState.AWAITING_PAYMENT
    return True


def mark_paid(bar: Bar) -> bool:
    if not check_transition(bar, "mark_paid"):
        return False
    bar.state = BarState.SETTLED
    return True


def unmark_paid(bar: Bar) -> bool:
    if not check_transition(bar, "unmark_paid"):
        return False
    bar.state = BarState.AWAITING_PAYMENT
    return True


def return_bar(bar: Bar, return_date: Optional[str] = None) -> bool:
    if not check_transition(bar, "return"):
        return False
    bar.state = BarState.RETURNED
    bar.return_date = return_date or iso_today()
    return True


def cancel_return(bar: Bar) -> bool:
    if not check_transition(bar, "cancel_return"):
        return False
    bar.state = BarState.IN_PROGRESS
    bar.return_date = None
    return True


def set_invoice_ref(bar: Bar, invoice_ref: Optional[str]) -> None:
    if bar.settlement is None:
        raise IllegalTransitionError("set_invoice_ref", bar.state.value, bar.weight_grams)
    bar.settlement = replace(bar.settlement, invoice_ref=invoice_ref)


def describe_bars(bars: Iterable[Bar]) -> str:
    bars = list(bars)
    by_weight = Counter(b.weight_grams for b in bars)
    parts = ", ".join(f"{n} x {w:g}g" for w, n in sorted(by_weight.items()))
    total = sum(b.weight_grams for b in bars)
    return f"{parts} ({total:g} g)" if parts else "no bars"


def new_log_entry(category: LogCategory, description: str, actor: str = "system") -> LogEntry:
    return LogEntry(
        id=new_id(),
        category=category,
        description=description,
        actor=actor or "system",
        timestamp=iso_now(),
    )
