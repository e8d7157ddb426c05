from __future__ import annotations

import pandas as pd
import plotly.express as px
import requests
import streamlit as st

from mining_comps.config import settings
from mining_comps.listing import NA, format_fact, rank_scores

API_BASE = settings.resolved_api_base_url.rstrip("/")

# (column, label, scale, digits, suffix)
COLUMNS = [
    ("stock_price", "Price (CAD)", 1.0, 2, ""),
    ("market_cap", "Market cap (CAD)", 1e6, 1, "M"),
    ("enterprise_value", "EV (CAD)", 1e6, 1, "M"),
    ("cash", "Cash (CAD)", 1e6, 1, "M"),
    ("debt", "Debt (CAD)", 1e6, 1, "M"),
    ("revenue", "Revenue (CAD)", 1e6, 1, "M"),
    ("net_income", "Net income (CAD)", 1e6, 1, "M"),
    ("reserves_au_moz", "Reserves (Moz AuEq)", 1.0, 2, ""),
    ("resources_au_moz", "Resources (Moz AuEq)", 1.0, 2, ""),
    ("production_total_au_eq_koz", "Production (koz AuEq)", 1.0, 1, ""),
    ("aisc_last_year", "AISC (USD/oz)", 1.0, 0, ""),
    ("ev_per_oz", "EV / oz (CAD)", 1.0, 2, ""),
    ("market_cap_per_oz", "Mkt cap / oz (CAD)", 1.0, 2, ""),
]

# Metrics that feed the composite score; True when higher is better.
SCORED = {
    "resources_au_moz": True,
    "production_total_au_eq_koz": True,
    "ev_per_oz": False,
    "aisc_last_year": False,
}

st.set_page_config(page_title="Mining Comps", layout="wide")
st.title("⛏️ Mining Comps")
st.caption("Reconciled prices, financials and ounces across sources. Flagged values (⚠) disagree between sources.")


@st.cache_data(ttl=60)
def load_data() -> pd.DataFrame:
    try:
        resp = requests.get(f"{API_BASE}/companies", params={"limit": 5000}, timeout=10)
        resp.raise_for_status()
        df = pd.DataFrame(resp.json())
        if df.empty:
            return df
        df["last_updated"] = pd.to_datetime(df["last_updated"], utc=True)
        return df
    except Exception as exc:  # noqa: BLE001
        st.error(f"Could not fetch data from the API: {exc}")
        return pd.DataFrame()


def with_scores(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    score_cols = []
    for key, higher_better in SCORED.items():
        col = f"{key}_score"
        rows = [
            {"ticker": ticker, key: None if pd.isna(value) else float(value)}
            for ticker, value in zip(df["ticker"], df[key])
        ]
        scores = rank_scores(rows, key, higher_better)
        df[col] = df["ticker"].map(scores)
        score_cols.append(col)
    df["score"] = df[score_cols].mean(axis=1, skipna=True)
    return df


def render_table(df: pd.DataFrame) -> pd.DataFrame:
    out = pd.DataFrame({"Company": df["name"], "Ticker": df["ticker"]})
    for key, label, scale, digits, suffix in COLUMNS:
        flagged = df["flagged_facts"].apply(lambda facts, k=key: k in (facts or []))
        values = df[key].apply(lambda v, s=scale, d=digits, x=suffix: format_fact(None if pd.isna(v) else v, s, d, x))
        out[label] = [f"{v} ⚠" if flag and v != NA else v for v, flag in zip(values, flagged)]
    out["Score"] = df["score"].apply(lambda v: NA if pd.isna(v) else f"{v:.2f}")
    out["News"] = df["news_link"]
    return out


df = load_data()

if df.empty:
    st.warning("No data available yet. Run the ingestion pipeline first.")
    st.stop()

df = with_scores(df)

with st.sidebar:
    st.subheader("Filters")
    search = st.text_input("Search name or ticker")
    only_with_resources = st.checkbox("Only companies with resources", value=False)
    hide_flagged = st.checkbox("Hide companies with flagged facts", value=False)
    sort_options = {label: key for key, label, *_ in COLUMNS}
    sort_options["Score"] = "score"
    sort_label = st.selectbox("Sort by", options=list(sort_options), index=len(sort_options) - 1)
    ascending = st.checkbox("Ascending", value=False)
    if st.button("Refresh data"):
        st.cache_data.clear()
        st.rerun()

filtered = df
if search:
    needle = search.strip().lower()
    filtered = filtered[
        filtered["name"].str.lower().str.contains(needle, regex=False)
        | filtered["ticker"].str.lower().str.contains(needle, regex=False)
    ]
if only_with_resources:
    filtered = filtered[filtered["resources_au_moz"].notna()]
if hide_flagged:
    filtered = filtered[filtered["flagged_facts"].apply(lambda facts: not facts)]
filtered = filtered.sort_values(sort_options[sort_label], ascending=ascending, na_position="last")

cols = st.columns(3)
cols[0].metric("Companies", len(filtered))
cols[1].metric("Flagged facts", int(filtered["flagged_facts"].apply(len).sum()))
latest = filtered["last_updated"].max()
cols[2].metric("Last update", latest.strftime("%Y-%m-%d %H:%M %Z") if pd.notna(latest) else NA)

st.dataframe(
    render_table(filtered),
    use_container_width=True,
    hide_index=True,
    column_config={"News": st.column_config.LinkColumn("News")},
)

chart_df = filtered.dropna(subset=["ev_per_oz"]).nsmallest(20, "ev_per_oz")
if not chart_df.empty:
    fig = px.bar(
        chart_df,
        x="ev_per_oz",
        y="name",
        orientation="h",
        color="aisc_last_year",
        color_continuous_scale="Viridis",
        title="Cheapest ounces in the ground: EV per oz AuEq resources (CAD)",
    )
    fig.update_layout(yaxis={"categoryorder": "total descending"})
    st.plotly_chart(fig, use_container_width=True)
