from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, NamedTuple, Optional, Union

from lingotes.errors import ValidationError

Weight = Union[int, float]


class BarState(str, Enum):
    IN_PROGRESS = "in_progress"
    AWAITING_PAYMENT = "awaiting_payment"
    SETTLED = "settled"
    RETURNED = "returned"


CLOSED_STATES = frozenset({BarState.AWAITING_PAYMENT, BarState.SETTLED})


class LogCategory(str, Enum):
    DELIVERY = "delivery"
    CLOSE = "close"
    RETURN = "return"
    CANCEL_RETURN = "cancel_return"
    PAYMENT = "payment"


def normalize_weight(value: Any) -> Weight:
    # 50.0 -> 50 so weight classes compare and serialize the same way
    try:
        w = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Weight must be a number, got {value!r}.")
    if not math.isfinite(w) or w <= 0:
        raise ValidationError("Weight must be a finite number > 0 grams.")
    return int(w) if w.is_integer() else w


def to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, AttributeError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}.")
    if not d.is_finite():
        raise ValidationError(f"{field_name} must be a finite number, got {value!r}.")
    return d


def _opt_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _opt_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class CompositionLine:
    weight_grams: Weight
    count: int

    @property
    def total_grams(self) -> float:
        return self.weight_grams * self.count

    def to_doc(self) -> dict:
        return {"weight_grams": self.weight_grams, "count": self.count}

    @classmethod
    def from_doc(cls, doc: dict) -> "CompositionLine":
        return cls(weight_grams=normalize_weight(doc["weight_grams"]), count=int(doc["count"]))


@dataclass
class Batch:
    name: str
    acquisition_date: str
    composition: list[CompositionLine]
    year_label: Optional[str] = None
    price_per_gram: Optional[Decimal] = None
    invoice_id: Optional[str] = None
    id: Optional[str] = None

    @property
    def purchased(self) -> dict[Weight, int]:
        return {line.weight_grams: line.count for line in self.composition}

    @property
    def total_grams(self) -> float:
        return sum(line.total_grams for line in self.composition)

    def to_doc(self) -> dict:
        return {
            "name": self.name,
            "acquisition_date": self.acquisition_date,
            "year_label": self.year_label,
            "composition": [line.to_doc() for line in self.composition],
            "price_per_gram": _opt_str(self.price_per_gram),
            "invoice_id": self.invoice_id,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "Batch":
        return cls(
            id=doc.get("id"),
            name=doc["name"],
            acquisition_date=doc["acquisition_date"],
            year_label=doc.get("year_label"),
            composition=[CompositionLine.from_doc(c) for c in doc.get("composition", [])],
            price_per_gram=_opt_decimal(doc.get("price_per_gram")),
            invoice_id=doc.get("invoice_id"),
        )


@dataclass
class InvoiceDocument:
    batch_id: str
    filename: str
    content_type: str
    size_bytes: int
    data: str  # base64
    uploaded_at: str
    id: Optional[str] = None

    def to_doc(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "filename": self.filename,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "data": self.data,
            "uploaded_at": self.uploaded_at,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "InvoiceDocument":
        return cls(
            id=doc.get("id"),
            batch_id=doc["batch_id"],
            filename=doc["filename"],
            content_type=doc.get("content_type") or "application/octet-stream",
            size_bytes=int(doc.get("size_bytes") or 0),
            data=doc.get("data") or "",
            uploaded_at=doc["uploaded_at"],
        )


_SETTLEMENT_DECIMALS = (
    "spot_price_per_ounce",
    "base_price_per_gram",
    "client_base_price_per_gram",
    "reference_cost_price_per_gram",
    "margin_percent",
    "client_price_per_gram",
    "net_weight_grams",
    "invoice_amount",
    "reference_cost_amount",
    "closing_margin",
    "total_margin",
)


@dataclass(frozen=True)
class Settlement:
    """Priced snapshot of a closed bar or a priced forward commitment."""

    spot_price_per_ounce: Decimal
    base_price_per_gram: Decimal
    client_base_price_per_gram: Decimal
    reference_cost_price_per_gram: Decimal
    margin_percent: Decimal
    client_price_per_gram: Decimal
    net_weight_grams: Decimal
    invoice_amount: Decimal
    reference_cost_amount: Decimal
    closing_margin: Decimal
    total_margin: Decimal
    close_date: str
    invoice_ref: Optional[str] = None

    def to_doc(self) -> dict:
        doc: dict[str, Any] = {name: str(getattr(self, name)) for name in _SETTLEMENT_DECIMALS}
        doc["close_date"] = self.close_date
        doc["invoice_ref"] = self.invoice_ref
        return doc

    @classmethod
    def from_doc(cls, doc: dict) -> "Settlement":
        values = {name: Decimal(str(doc[name])) for name in _SETTLEMENT_DECIMALS}
        return cls(close_date=doc["close_date"], invoice_ref=doc.get("invoice_ref"), **values)


@dataclass
class Bar:
    """
    One physical unit inside a delivery.

    The settlement record is present exactly when the bar is closed
    (awaiting payment or settled); in-progress and returned bars carry none.
    """

    weight_grams: Weight
    state: BarState = BarState.IN_PROGRESS
    settlement: Optional[Settlement] = None
    returned_weight_grams: Weight = 0
    return_date: Optional[str] = None
    from_forward_commitment: bool = False
    forward_commitment_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.state = BarState(self.state)
        closed = self.state in CLOSED_STATES
        if closed and self.settlement is None:
            raise ValidationError(f"A bar in state '{self.state.value}' requires settlement fields.")
        if not closed and self.settlement is not None:
            raise ValidationError(f"A bar in state '{self.state.value}' cannot carry settlement fields.")

    @property
    def paid(self) -> bool:
        return self.state == BarState.SETTLED

    @property
    def invoice_ref(self) -> Optional[str]:
        return self.settlement.invoice_ref if self.settlement else None

    @property
    def closing_margin(self) -> Optional[Decimal]:
        return self.settlement.closing_margin if self.settlement else None

    @property
    def total_margin(self) -> Optional[Decimal]:
        return self.settlement.total_margin if self.settlement else None

    def to_doc(self) -> dict:
        return {
            "weight_grams": self.weight_grams,
            "state": self.state.value,
            "settlement": self.settlement.to_doc() if self.settlement else None,
            "paid": self.paid,
            "returned_weight_grams": self.returned_weight_grams,
            "return_date": self.return_date,
            "from_forward_commitment": self.from_forward_commitment,
            "forward_commitment_id": self.forward_commitment_id,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "Bar":
        settlement = doc.get("settlement")
        return cls(
            weight_grams=normalize_weight(doc["weight_grams"]),
            state=BarState(doc.get("state", BarState.IN_PROGRESS.value)),
            settlement=Settlement.from_doc(settlement) if settlement else None,
            returned_weight_grams=doc.get("returned_weight_grams") or 0,
            return_date=doc.get("return_date"),
            from_forward_commitment=bool(doc.get("from_forward_commitment", False)),
            forward_commitment_id=doc.get("forward_commitment_id"),
        )


@dataclass(frozen=True)
class LogEntry:
    id: str
    category: LogCategory
    description: str
    actor: str
    timestamp: str

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "description": self.description,
            "actor": self.actor,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "LogEntry":
        return cls(
            id=doc["id"],
            category=LogCategory(doc["category"]),
            description=doc.get("description", ""),
            actor=doc.get("actor", "system"),
            timestamp=doc["timestamp"],
        )


@dataclass
class Delivery:
    client_id: str
    batch_id: str
    delivery_date: str
    bars: list[Bar] = field(default_factory=list)
    log: list[LogEntry] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def total_grams(self) -> float:
        return sum(b.weight_grams for b in self.bars)

    def bars_in(self, *states: BarState) -> list[Bar]:
        return [b for b in self.bars if b.state in states]

    def to_doc(self) -> dict:
        return {
            "client_id": self.client_id,
            "batch_id": self.batch_id,
            "delivery_date": self.delivery_date,
            "bars": [b.to_doc() for b in self.bars],
            "log": [e.to_doc() for e in self.log],
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "Delivery":
        return cls(
            id=doc.get("id"),
            client_id=doc["client_id"],
            batch_id=doc["batch_id"],
            delivery_date=doc["delivery_date"],
            bars=[Bar.from_doc(b) for b in doc.get("bars", [])],
            log=[LogEntry.from_doc(e) for e in doc.get("log", [])],
        )


@dataclass
class ForwardCommitment:
    """A 'FUTURA' sale: sold to a client before the physical bar exists."""

    client_id: str
    weight_grams: Weight
    created_at: str
    settlement: Optional[Settlement] = None
    paid: bool = False
    notes: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.paid and self.settlement is None:
            raise ValidationError("An unpriced forward commitment cannot be marked paid.")

    @property
    def priced(self) -> bool:
        return self.settlement is not None

    def to_doc(self) -> dict:
        return {
            "client_id": self.client_id,
            "weight_grams": self.weight_grams,
            "created_at": self.created_at,
            "settlement": self.settlement.to_doc() if self.settlement else None,
            "paid": self.paid,
            "notes": self.notes,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "ForwardCommitment":
        settlement = doc.get("settlement")
        return cls(
            id=doc.get("id"),
            client_id=doc["client_id"],
            weight_grams=normalize_weight(doc["weight_grams"]),
            created_at=doc["created_at"],
            settlement=Settlement.from_doc(settlement) if settlement else None,
            paid=bool(doc.get("paid", False)),
            notes=doc.get("notes"),
        )


class BarRef(NamedTuple):
    delivery_id: str
    bar_index: int
