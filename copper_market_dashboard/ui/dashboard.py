"""Streamlit dashboard for the copper market.

Two tabs:
- Market: copper price, inventory levels, alerts and breakdowns
- Indicators: every economy indicator in the current bundle

Run with ``streamlit run copper_market_dashboard/ui/dashboard.py``.
"""

import asyncio

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from copper_market_dashboard.config import Settings
from copper_market_dashboard.indicators import EconomyBundleBuilder, WarrantDashboardAggregator
from copper_market_dashboard.models import EconomyBundle, SourceStatus, format_indicator_value


STATUS_COLORS = {
    SourceStatus.OK: "#10b981",
    SourceStatus.FALLBACK: "#f59e0b",
    SourceStatus.EMPTY: "#ef4444",
    SourceStatus.DISABLED: "#64748b",
}

HEADLINE_IDS = ["lme_copper_jpy", "lme_copper_usd", "usd_jpy", "usd_cny", "copx", "fcx"]


def change_color(change: str | None) -> str:
    if not change:
        return "#6b7280"
    return "#ef4444" if change.startswith("-") else "#10b981"


def format_pct(value: float | None) -> str:
    return "N/A" if value is None else f"{value:+.2f}%"


@st.cache_data(ttl=600)
def load_data() -> tuple[dict, dict]:
    """Bundle and inventory aggregate as plain dicts (cache-friendly)."""
    settings = Settings()
    builder = EconomyBundleBuilder(settings)
    bundle = asyncio.run(builder.get_bundle())
    warrant = WarrantDashboardAggregator(
        settings.warrant_data_dir, builder.export, monthly_ceiling=settings.warrant_monthly_ceiling
    ).build()
    return bundle.to_dict(), warrant.to_dict()


# =============================================================================
# TAB 1: MARKET
# =============================================================================

def render_card(label: str, value: str, sub: str = "", sub_color: str = "#6b7280") -> None:
    st.markdown(
        f"""<div style="background: #1e293b; border: 1px solid #334155; border-radius: 8px; padding: 1rem 1.25rem; margin-bottom: 0.75rem;">
            <div style="color: #94a3b8; font-size: 0.7rem; text-transform: uppercase; letter-spacing: 0.1em;">{label}</div>
            <div style="font-size: 1.6rem; font-weight: 700; color: #f1f5f9; font-family: 'SF Mono', 'Consolas', monospace;">{value}</div>
            <div style="color: {sub_color}; font-size: 0.8rem;">{sub}</div>
        </div>""",
        unsafe_allow_html=True,
    )


def render_headline(bundle: EconomyBundle) -> None:
    """Copper and FX headline cards."""
    shown = [bundle.find(i) for i in HEADLINE_IDS]
    shown = [i for i in shown if i is not None]
    if not shown:
        st.info("No headline indicators in the current bundle")
        return

    cols = st.columns(len(shown))
    for col, indicator in zip(cols, shown):
        with col:
            render_card(
                indicator.name,
                format_indicator_value(indicator.value),
                f"{indicator.change_percent or ''} {indicator.date} · {indicator.source}",
                change_color(indicator.change_percent),
            )


def render_inventory_cards(warrant: dict) -> None:
    latest = warrant["warrant"]["latest"]
    off_latest = warrant["offWarrant"]["latest"]
    tate = warrant["copperTate"]["latest"]
    ratio = warrant["ratio"]

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        render_card(
            "Registered Stock (t)",
            format_indicator_value(str(latest["value"])) if latest else "-",
            f"1d {format_pct(warrant['warrant']['diffPct1d'])} · 7d {format_pct(warrant['warrant']['diffPct7d'])}",
        )
    with col2:
        render_card(
            "Off-warrant Stock (t)",
            format_indicator_value(str(off_latest["value"])) if off_latest else "-",
            f"MoM {format_pct(warrant['offWarrant']['diffPctMoM'])}",
        )
    with col3:
        render_card("Registered Share", f"{ratio:.1%}" if ratio is not None else "-")
    with col4:
        render_card(
            "Domestic Price (JPY/t)",
            format_indicator_value(str(tate["value"])) if tate else "-",
            f"1d {format_pct(warrant['copperTate']['diffPct1d'])}",
        )


def render_alerts(alerts: list[str]) -> None:
    for msg in alerts:
        st.markdown(
            f"""<div style="background: #f9731622; border: 1px solid #f97316; border-radius: 4px; padding: 0.5rem 1rem; color: #fdba74; font-size: 0.8rem; margin-bottom: 0.5rem;">
                {msg}
            </div>""",
            unsafe_allow_html=True,
        )


def render_line_chart(points: list[dict], x_key: str, title: str, color: str, ma: float | None = None) -> None:
    if not points:
        st.info(f"No data for {title}")
        return

    df = pd.DataFrame(points)
    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=df[x_key], y=df["value"],
        mode="lines+markers", line=dict(color=color, width=2), marker=dict(size=4),
        name=title,
        hovertemplate="%{x}: %{y:,.0f}<extra></extra>",
    ))
    if ma is not None:
        fig.add_hline(y=ma, line_dash="dot", line_color="#94a3b8", line_width=1)

    fig.update_layout(
        height=280, margin=dict(l=0, r=20, t=30, b=0),
        paper_bgcolor="rgba(0,0,0,0)", plot_bgcolor="rgba(0,0,0,0)",
        showlegend=False,
        title=dict(text=title, font=dict(size=12, color="#94a3b8"), x=0),
        xaxis=dict(showgrid=True, gridcolor="#1e293b", tickfont=dict(color="#64748b", size=10)),
        yaxis=dict(showgrid=True, gridcolor="#1e293b", tickfont=dict(color="#64748b", size=10)),
        hovermode="x unified",
    )
    st.plotly_chart(fig, use_container_width=True, config={"displayModeBar": False})


def render_market_tab(bundle: EconomyBundle, warrant: dict) -> None:
    render_headline(bundle)
    render_inventory_cards(warrant)

    col_left, col_right = st.columns([2, 1])
    with col_left:
        charts = warrant["charts"]
        render_line_chart(
            charts["warrantDaily"], "date", "Registered Stock, last 30 days", "#3b82f6",
            ma=warrant["warrant"]["ma20"],
        )
        render_line_chart(charts["offWarrantMonthly"], "month", "Off-warrant Stock, monthly", "#a855f7")
        render_line_chart(charts["copperTateDaily"], "date", "Domestic Copper Price", "#f59e0b")
    with col_right:
        st.markdown("#### Alerts")
        render_alerts(warrant["alerts"])

        breakdown = warrant["breakdown"]
        st.markdown("#### Registered by Location")
        if breakdown["warrantLatestByLocation"]:
            st.dataframe(pd.DataFrame(breakdown["warrantLatestByLocation"]), hide_index=True)
        st.markdown("#### Off-warrant by Delivery Point")
        if breakdown["offWarrantLatestByPoint"]:
            st.dataframe(pd.DataFrame(breakdown["offWarrantLatestByPoint"]), hide_index=True)


# =============================================================================
# TAB 2: INDICATORS
# =============================================================================

def render_source_status(bundle: EconomyBundle) -> None:
    html = '<div style="display: flex; flex-wrap: wrap; gap: 1rem; padding: 0.5rem 0;">'
    for name, status in bundle.source_status.items():
        color = STATUS_COLORS.get(status, "#94a3b8")
        html += f'''<div style="display: flex; align-items: center; gap: 0.4rem;">
            <div style="width: 8px; height: 8px; background: {color}; border-radius: 50%;"></div>
            <span style="color: #94a3b8; font-size: 0.75rem;">{name}</span>
            <span style="color: #e2e8f0; font-size: 0.75rem;">{status}</span>
        </div>'''
    html += "</div>"
    st.markdown(html, unsafe_allow_html=True)


def render_indicators_tab(bundle: EconomyBundle) -> None:
    render_source_status(bundle)
    st.caption(f"Bucket {bundle.cache_bucket_jst} · updated {bundle.updated_at}")

    for title, items in (("Macro", bundle.fred), ("Markets & FX", bundle.alpha)):
        st.markdown(f"#### {title}")
        if not items:
            st.info("No indicators")
            continue
        rows = [
            {
                "Indicator": i.name,
                "Value": format_indicator_value(i.value),
                "Change": i.change_percent or "",
                "Units": i.units,
                "Date": i.date,
                "Frequency": i.frequency,
                "Source": i.source,
            }
            for i in items
        ]
        st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)


def main() -> None:
    """Main dashboard entry point."""
    st.set_page_config(
        page_title="Copper Market Dashboard",
        page_icon="",
        layout="wide",
        initial_sidebar_state="collapsed",
    )

    st.markdown(
        """
        <style>
            .stApp { background-color: #0f172a; }
            .stMarkdown, .stText, p, span, label { color: #e2e8f0; }
            h1, h2, h3, h4 { color: #f1f5f9 !important; font-weight: 600 !important; }
            #MainMenu, footer, header { visibility: hidden; }
        </style>
        """,
        unsafe_allow_html=True,
    )

    st.markdown(
        """<div style="padding: 0.5rem 0 1rem 0; border-bottom: 1px solid #334155; margin-bottom: 1rem;">
            <h1 style="margin: 0; font-size: 1.5rem; color: #f1f5f9;">Copper Market Dashboard</h1>
            <div style="color: #64748b; font-size: 0.75rem; margin-top: 0.25rem;">Data: FRED + Alpha Vantage + Metals.dev + exchange inventory files</div>
        </div>""",
        unsafe_allow_html=True,
    )

    with st.spinner("Loading..."):
        bundle_data, warrant = load_data()
    bundle = EconomyBundle.from_dict(bundle_data)

    if bundle.is_empty():
        st.warning("No economy data available. Run: python -m copper_market_dashboard.indicators.bundle --force")

    tab1, tab2 = st.tabs(["Market", "Indicators"])
    with tab1:
        render_market_tab(bundle, warrant)
    with tab2:
        render_indicators_tab(bundle)


if __name__ == "__main__":
    main()
