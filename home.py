from __future__ import annotations

import streamlit as st

from lingotes.config import get_settings
from lingotes.db import get_store
from lingotes.logging_config import configure_logging
from lingotes.services.reports import stock_level, stock_totals
from lingotes.utils import fmt_grams

st.set_page_config(page_title="Lingotes Tracker", page_icon="🪙", layout="wide")
configure_logging()

st.title("🪙 Lingotes Tracker")
st.caption("Gold-bar batches, consignment deliveries, forward sales (FUTURA) and settlement.")

settings = get_settings()
store = get_store(settings.db_path)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")
    st.text_input("Operator", key="operator", value=st.session_state.get("operator", "operator"))

totals = stock_totals(store)
level = stock_level(totals["free_grams"], settings.stock_thresholds)
badge = {"red": "🔴", "orange": "🟠", "yellow": "🟡", "green": "🟢"}[level]

c1, c2 = st.columns(2)
c1.metric(f"{badge} Free stock", fmt_grams(totals["free_grams"]))
c2.metric("At clients (in progress)", fmt_grams(totals["at_clients_grams"]))

st.info(
    "Use the left sidebar navigation. Start with **🧪 Data Management** to load demo data, then try "
    "**Batches**, **Deliveries** and **Settlement**.",
    icon="ℹ️",
)
