from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Optional

import streamlit as st

CONFIG_FILE_NAME = "settings.json"
ENV_DATA_DIR = "LINGOTES_DATA_DIR"
SESSION_KEY = "lingotes_data_dir"


@dataclass(frozen=True)
class StockThresholds:
    """Grams of free stock below which the stock badge turns red/orange/yellow."""

    red: float = 200
    orange: float = 500
    yellow: float = 1000


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    currency: str = "EUR"
    default_margin_percent: Decimal = Decimal("6")
    stock_thresholds: StockThresholds = field(default_factory=StockThresholds)


def _default_data_dir() -> Path:
    return Path.home() / ".lingotes_tracker"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def _write_persisted_settings(data_dir: Path, updates: dict) -> None:
    data_dir.mkdir(parents=True, exist_ok=True)
    payload = _load_persisted_settings(data_dir)
    payload.update(updates)
    (data_dir / CONFIG_FILE_NAME).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def load_settings(data_dir: Optional[Path | str] = None) -> Settings:
    # Priority order:
    # 1) Explicit argument
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    if data_dir is not None:
        resolved = Path(data_dir).expanduser().resolve()
    elif os.getenv(ENV_DATA_DIR):
        resolved = Path(os.getenv(ENV_DATA_DIR, "")).expanduser().resolve()
    else:
        default_dir = _default_data_dir()
        persisted = _load_persisted_settings(default_dir)
        resolved = Path(persisted.get("data_dir", default_dir)).expanduser().resolve()

    resolved.mkdir(parents=True, exist_ok=True)
    persisted = _load_persisted_settings(resolved)
    known = {f.name for f in fields(StockThresholds)}
    thresholds = StockThresholds(
        **{k: v for k, v in (persisted.get("stock_thresholds") or {}).items() if k in known}
    )
    margin = Decimal(str(persisted.get("default_margin_percent", "6")))
    return Settings(
        data_dir=resolved,
        db_path=resolved / "lingotes.db",
        default_margin_percent=margin,
        stock_thresholds=thresholds,
    )


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    _write_persisted_settings(data_dir, {"data_dir": str(data_dir)})
    _write_persisted_settings(_default_data_dir(), {"data_dir": str(data_dir)})

    # Update session for immediate effect
    st.session_state[SESSION_KEY] = str(data_dir)


def persist_thresholds(data_dir: Path, thresholds: StockThresholds) -> None:
    if not (thresholds.red <= thresholds.orange <= thresholds.yellow):
        raise ValueError("Thresholds must satisfy red <= orange <= yellow.")
    _write_persisted_settings(
        data_dir,
        {"stock_thresholds": {"red": thresholds.red, "orange": thresholds.orange, "yellow": thresholds.yellow}},
    )


def persist_default_margin(data_dir: Path, margin_percent: Decimal) -> None:
    _write_persisted_settings(data_dir, {"default_margin_percent": str(margin_percent)})


@st.cache_resource
def get_settings() -> Settings:
    # Session state (set via Data Management page) wins over everything else.
    return load_settings(st.session_state.get(SESSION_KEY))
