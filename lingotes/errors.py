from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class LingotesError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(LingotesError, ValueError):
    """Bad input or illegal operation, raised before anything is written."""


@dataclass(frozen=True)
class Shortage:
    weight_grams: float
    requested: int
    available: int

    def __str__(self) -> str:
        return f"{self.weight_grams:g}g: requested {self.requested}, available {self.available}"


class InsufficientStockError(ValidationError):
    def __init__(self, batch: str, shortages: list[Shortage]):
        self.batch = batch
        self.shortages = list(shortages)
        detail = "; ".join(str(s) for s in self.shortages)
        super().__init__(f"Not enough stock in batch {batch}: {detail}.")


class IllegalTransitionError(ValidationError):
    def __init__(self, action: str, state: str, weight_grams: Optional[float] = None):
        self.action = action
        self.state = state
        self.weight_grams = weight_grams
        what = f"{weight_grams:g}g bar" if weight_grams is not None else "bar"
        super().__init__(f"Cannot {action.replace('_', ' ')} a {what} in state '{state}'.")


class NotFoundError(LingotesError, LookupError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection} '{doc_id}' not found.")


class PersistenceError(LingotesError):
    """
    A store call failed. Multi-step operations are not rolled back; callers
    should re-read state (availability, delivery bars) before retrying.
    """

    def __init__(self, message: str, completed_steps: Optional[list[str]] = None):
        self.completed_steps = list(completed_steps or [])
        super().__init__(message)
