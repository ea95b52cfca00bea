"""
Admin Dashboard
===============
Streamlit page over the PostgreSQL stores of the checkout service.

Features:
- Order counts by state, stale pending orders
- Pending / fulfilled orders table
- Leads table with CSV export
- Manual maintenance sweep button

Run: DATABASE_URL=postgres://... streamlit run admin/dashboard.py
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List

import pandas as pd
import streamlit as st

from config import AppConfig
from database import Database
from pipeline.agents import build_notifier
from schemas.order_definitions import OrderState, utcnow
from storage import PostgresLeadLedger, PostgresPendingOrderStore, build_artifact_store
from tasks.sweeper import order_summary, run_sweep_once

config = AppConfig.from_env()


# =============================================================================
# PAGE CONFIG
# =============================================================================

st.set_page_config(
    page_title="Rescisão - Admin",
    page_icon="📄",
    layout="wide",
    initial_sidebar_state="expanded",
)


# =============================================================================
# ASYNC HELPERS
# =============================================================================

async def _with_stores(fn: Callable[[PostgresPendingOrderStore, PostgresLeadLedger], Awaitable[Any]]):
    db = Database(config.database_url, max_size=2, acquire_timeout=config.db_acquire_timeout_seconds)
    await db.initialize()
    try:
        return await fn(PostgresPendingOrderStore(db), PostgresLeadLedger(db))
    finally:
        await db.close()


def run_with_stores(fn):
    """One short-lived pool per call; Streamlit reruns the script on every interaction."""
    return asyncio.run(_with_stores(fn))


# =============================================================================
# DATA FETCHING
# =============================================================================

@st.cache_data(ttl=30)
def fetch_summary() -> Dict[str, int]:
    return run_with_stores(
        lambda orders, leads: order_summary(orders, config.pending_order_stale_hours)
    )


@st.cache_data(ttl=30)
def fetch_orders(state: str, limit: int = 200) -> List[Dict[str, Any]]:
    async def fetch(orders, leads):
        selected = None if state == "all" else OrderState(state)
        rows = await orders.list_orders(state=selected, limit=limit)
        return [_order_row(o) for o in rows]

    return run_with_stores(fetch)


@st.cache_data(ttl=30)
def fetch_stale(limit: int = 200) -> List[Dict[str, Any]]:
    async def fetch(orders, leads):
        cutoff = utcnow() - timedelta(hours=config.pending_order_stale_hours)
        rows = await orders.list_stale(cutoff, limit=limit)
        return [_order_row(o) for o in rows]

    return run_with_stores(fetch)


@st.cache_data(ttl=30)
def fetch_leads(limit: int = 500) -> List[Dict[str, Any]]:
    async def fetch(orders, leads):
        return [lead.model_dump() for lead in await leads.list_leads(limit=limit)]

    return run_with_stores(fetch)


def _order_row(order) -> Dict[str, Any]:
    return {
        "correlation_id": order.correlation_id,
        "session_id": order.session_id,
        "state": order.state.value,
        "name": order.order_input.name or "-",
        "email": order.order_input.email,
        "created_at": order.created_at,
        "fulfilled_at": order.fulfilled_at,
    }


# =============================================================================
# SIDEBAR
# =============================================================================

def render_sidebar() -> str:
    st.sidebar.title("📄 Rescisão Admin")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigation",
        ["📊 Overview", "📦 Orders", "⏰ Stale Orders", "👥 Leads"],
        label_visibility="collapsed",
    )

    st.sidebar.markdown("---")
    st.sidebar.caption(f"Processor: {config.payment_processor}")
    st.sidebar.caption(f"Artifacts: {config.artifact_backend}")

    if st.sidebar.button("🔄 Refresh Data"):
        st.cache_data.clear()
        st.rerun()

    return page


# =============================================================================
# PAGES
# =============================================================================

def render_overview():
    st.title("📊 Overview")

    summary = fetch_summary()
    leads = fetch_leads()

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("⏳ Pending", summary.get(OrderState.PENDING.value, 0))
    with col2:
        st.metric("✅ Fulfilled", summary.get(OrderState.FULFILLED.value, 0))
    with col3:
        st.metric(
            "⏰ Stale",
            summary.get("stale", 0),
            help=f"Pending for more than {config.pending_order_stale_hours}h",
        )
    with col4:
        st.metric("👥 Leads", len(leads))

    if leads:
        st.subheader("📈 Leads per day")
        df = pd.DataFrame(leads)
        df["day"] = pd.to_datetime(df["created_at"]).dt.date
        st.bar_chart(df.groupby("day").size().rename("leads"))


def render_orders():
    st.title("📦 Orders")

    state = st.selectbox("State", ["all", OrderState.PENDING.value, OrderState.FULFILLED.value])
    orders = fetch_orders(state)

    if not orders:
        st.info("No orders")
        return

    df = pd.DataFrame(orders)
    df["created_at"] = pd.to_datetime(df["created_at"]).dt.strftime("%Y-%m-%d %H:%M")
    df["fulfilled_at"] = pd.to_datetime(df["fulfilled_at"]).dt.strftime("%Y-%m-%d %H:%M").fillna("-")
    st.dataframe(df, use_container_width=True, hide_index=True)


def render_stale():
    st.title("⏰ Stale Orders")
    st.markdown(
        f"Pending for more than {config.pending_order_stale_hours}h with no approved "
        "payment. Nothing is deleted; the sweep only releases orders whose PDF already exists "
        "and emails that PDF to the customer."
    )

    if st.button("🧹 Run sweep now"):
        artifacts = build_artifact_store(config)
        notifier = build_notifier(config)
        result = run_with_stores(
            lambda orders, leads: run_sweep_once(
                orders, artifacts, config.pending_order_stale_hours, notifier
            )
        )
        st.success(f"Reconciled {result['reconciled']} order(s); {result['stale']} stale")
        st.cache_data.clear()

    stale = fetch_stale()
    if not stale:
        st.success("✅ No stale orders")
        return

    df = pd.DataFrame(stale)
    df["age_hours"] = (
        (pd.Timestamp.now(tz="UTC") - pd.to_datetime(df["created_at"], utc=True))
        .dt.total_seconds() / 3600
    ).round(1)
    st.dataframe(
        df[["correlation_id", "session_id", "email", "age_hours"]],
        use_container_width=True,
        hide_index=True,
    )


def render_leads():
    st.title("👥 Leads")

    leads = fetch_leads()
    if not leads:
        st.info("No leads yet")
        return

    df = pd.DataFrame(leads)
    df["created_at"] = pd.to_datetime(df["created_at"]).dt.strftime("%Y-%m-%d %H:%M")
    st.dataframe(df, use_container_width=True, hide_index=True)
    st.download_button(
        "⬇️ Export CSV",
        df.to_csv(index=False).encode("utf-8"),
        file_name="leads.csv",
        mime="text/csv",
    )


# =============================================================================
# MAIN
# =============================================================================

def main():
    if not config.database_url:
        st.error("DATABASE_URL is not set")
        st.info("The dashboard reads the PostgreSQL stores; in-memory mode has nothing to show")
        return

    page = render_sidebar()

    if page == "📊 Overview":
        render_overview()
    elif page == "📦 Orders":
        render_orders()
    elif page == "⏰ Stale Orders":
        render_stale()
    elif page == "👥 Leads":
        render_leads()


if __name__ == "__main__":
    main()
