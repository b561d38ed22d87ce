from __future__ import annotations

import streamlit as st

st.set_page_config(page_title="Lingotes Tracker", page_icon="🪙", layout="wide")

pages = [
    st.Page("home.py", title="Home", icon="🏠"),
    st.Page("pages/1_📥_Batches.py", title="Batches", icon="📥"),
    st.Page("pages/2_📦_Stock.py", title="Stock", icon="📦"),
    st.Page("pages/3_🚚_Deliveries.py", title="Deliveries", icon="🚚"),
    st.Page("pages/4_✅_Settlement.py", title="Settlement", icon="✅"),
    st.Page("pages/5_⏳_Forward_Sales.py", title="Forward Sales (FUTURA)", icon="⏳"),
    st.Page("pages/6_🧪_Data_Management.py", title="Data Management", icon="🧪"),
]

st.navigation(pages).run()
