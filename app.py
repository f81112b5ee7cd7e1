from __future__ import annotations

import atexit
from datetime import date
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import pandas as pd
import plotly.express as px
import streamlit as st
from dateutil.relativedelta import relativedelta

from portfolio_ledger import (
    LedgerError,
    LedgerSession,
    MessageLevel,
    PerformanceMode,
    ServiceMessage,
    Transaction,
    TransactionKind,
)
from portfolio_ledger.logging_config import setup_logging
from portfolio_ledger.services import (
    allocation_breakdown,
    downsample,
    extract_range,
    summarize,
)
from portfolio_ledger.services.performance import clamp_range, to_frame


# ------------------ Page config ------------------ #
st.set_page_config(page_title="Portfolio Ledger", layout="centered")
st.title("💼 Portfolio Ledger")


PENDING_MESSAGES = "pending_messages"


# ------------------ Helpers ------------------ #
def format_period(start: date, end: date) -> str:
    """Format the difference between two days in years/months/days."""
    rd = relativedelta(end, start)
    parts: list[str] = []
    if rd.years:
        parts.append(f"{rd.years} year" + ("s" if rd.years > 1 else ""))
    if rd.months:
        parts.append(f"{rd.months} month" + ("s" if rd.months > 1 else ""))
    if rd.days:
        parts.append(f"{rd.days} day" + ("s" if rd.days > 1 else ""))

    if not parts:
        return "0 days"
    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + f" and {parts[-1]}"


def format_dollars(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_percent(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:+.2f}%"


def _hex_to_rgb(hexstr: str):
    h = hexstr.lstrip("#")
    if len(h) != 6:
        return None
    try:
        return tuple(int(h[i : i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        return None


def _luma(rgb):
    r, g, b = rgb
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def _theme_is_dark() -> bool:
    base = st.get_option("theme.base")
    if isinstance(base, str):
        return base.lower() == "dark"

    bg = st.get_option("theme.backgroundColor")
    if isinstance(bg, str):
        rgb = _hex_to_rgb(bg)
        if rgb:
            return _luma(rgb) < 128

    return False


def _display_messages(messages: Sequence[ServiceMessage], *, stop_on_error: bool = False) -> None:
    has_error = False
    for message in messages:
        if message.level == MessageLevel.ERROR:
            st.error(message.text)
            has_error = True
        elif message.level == MessageLevel.WARNING:
            st.warning(message.text)
        else:
            st.info(message.text)
    if stop_on_error and has_error:
        st.stop()


def _await(future):
    try:
        return future.result()
    except LedgerError as exc:
        # Only fatal errors escape the session.
        st.error(f"Fatal error: {exc}")
        st.stop()


@st.cache_resource
def get_session() -> LedgerSession:
    setup_logging()
    session = LedgerSession.open()
    atexit.register(session.close)
    return session


TRANSACTION_KINDS = {
    "Buy": TransactionKind.BUY,
    "Sell": TransactionKind.SELL,
    "Dividend reinvestment": TransactionKind.DIVIDEND_REINVESTMENT,
}


def _transaction_form(session: LedgerSession) -> None:
    with st.sidebar.form("transaction", clear_on_submit=True):
        st.markdown("**New transaction**")
        kind_label = st.selectbox("Type", list(TRANSACTION_KINDS))
        ticker = st.text_input("Ticker").strip().upper()
        when = st.date_input("Date", value=date.today(), max_value=date.today())
        shares = st.number_input("Shares", min_value=0.0, value=1.0, step=1.0, format="%.4f")
        price = st.number_input(
            "Price per share (dividend: total amount)",
            min_value=0.0,
            value=1.0,
            step=1.0,
            format="%.2f",
        )
        submitted = st.form_submit_button("Record")

    if not submitted:
        return
    try:
        txn = Transaction(TRANSACTION_KINDS[kind_label], when, ticker, shares, price)
    except ValueError as exc:
        st.sidebar.error(str(exc).capitalize())
        return
    with st.spinner(f"Recording {kind_label.lower()} of {ticker}..."):
        result = _await(session.submit(txn))
    _display_messages(result.messages)


def _overview(ledger) -> None:
    portfolio = ledger.portfolio
    value = portfolio.current_value
    invested = portfolio.current_invested
    gain = value - invested
    change = gain / invested * 100 if invested else 0.0

    st.subheader("📈 Overview")
    col1, col2, col3 = st.columns(3)
    col1.metric("Invested", format_dollars(invested))
    col2.metric("Current value", format_dollars(value))
    col3.metric("Total gain/loss", format_dollars(gain), f"{change:.2f}%")
    st.caption(f"Last updated {portfolio.last_update:%Y-%m-%d %H:%M}")


def _allocations(ledger) -> None:
    df_alloc = allocation_breakdown(ledger.portfolio)
    st.subheader("🍰 Allocations")
    if df_alloc.empty:
        st.info("No open long positions.")
        return

    st.dataframe(
        df_alloc.set_index("Ticker").style.format(
            {"Invested": "${:,.2f}", "Shares": "{:,.4f}", "Allocation (%)": "{:.2f}%"}
        )
    )

    txt_col = "white" if _theme_is_dark() else "black"
    plt.rcParams["savefig.transparent"] = True
    fig, ax = plt.subplots(facecolor="none")
    ax.set_facecolor("none")
    _, texts, autotexts = ax.pie(
        df_alloc["Invested"],
        labels=df_alloc["Ticker"],
        autopct="%1.1f%%",
        startangle=90,
        counterclock=False,
        wedgeprops={"edgecolor": txt_col, "linewidth": 1.0},
    )
    for t in [*texts, *autotexts]:
        t.set_color(txt_col)
        t.set_fontsize(11)
    ax.axis("equal")
    st.pyplot(fig, transparent=True)
    plt.close(fig)


def _performance(ledger) -> None:
    history = ledger.history
    st.subheader("📊 Performance")
    bounds = clamp_range(history)
    if bounds is None:
        st.info("No history yet. Record a transaction to get started.")
        return

    first, last = bounds
    mode_label = st.radio("Show", ["Gross profit", "Percent return"], horizontal=True)
    mode = PerformanceMode.GROSS_PROFIT if mode_label == "Gross profit" else PerformanceMode.PERCENT_RETURN

    col_from, col_to = st.columns(2)
    from_date = col_from.date_input("From", value=first, min_value=first, max_value=last)
    to_date = col_to.date_input("To", value=last, min_value=first, max_value=last)

    points = downsample(extract_range(history, from_date, to_date, mode))
    df_perf = to_frame(points)
    y_title = "Gain/loss (USD)" if mode is PerformanceMode.GROSS_PROFIT else "Return (%)"
    df_perf["Period"] = df_perf["date"].dt.date.map(lambda d: format_period(first, d))

    fig = px.line(df_perf, x="date", y="value", markers=True)
    fig.update_traces(
        customdata=df_perf["Period"],
        hovertemplate="<b>%{x|%m/%d/%Y}</b><br>%{y:,.2f}<br>Held: %{customdata}<extra></extra>",
    )
    fig.update_layout(xaxis_title="Date", yaxis_title=y_title, hovermode="x unified")
    st.plotly_chart(fig, use_container_width=True)


def _stats(ledger) -> None:
    rows = summarize(ledger.portfolio, ledger.held_series())
    st.subheader("📋 Statistics")
    if not rows:
        st.info("Statistics appear once the portfolio has history.")
        return

    gains = pd.DataFrame(
        [
            {
                "": row.label,
                "Value": format_dollars(row.value),
                "Day G/L": format_percent(row.gain_loss.day),
                "Month G/L": format_percent(row.gain_loss.month),
                "Year G/L": format_percent(row.gain_loss.year),
            }
            for row in rows
        ]
    )
    st.dataframe(gains.set_index(""))

    yearly = pd.DataFrame(
        [
            {
                "": row.label,
                "52 wk high": format_dollars(row.fifty_two_week.high),
                "52 wk low": format_dollars(row.fifty_two_week.low),
                "52 wk avg": format_dollars(row.fifty_two_week.average),
                "Current SD": "n/a"
                if row.fifty_two_week.current_sd is None
                else f"{row.fifty_two_week.current_sd:+.2f}",
            }
            for row in rows
            if row.fifty_two_week is not None
        ]
    )
    if not yearly.empty:
        st.dataframe(yearly.set_index(""))


def _transactions(session: LedgerSession, ledger) -> None:
    st.subheader("🧾 Transactions")
    if not ledger.transactions:
        st.info("No transactions recorded.")
        return

    for index, txn in enumerate(ledger.transactions):
        cols = st.columns([2, 2, 2, 2, 2, 1])
        cols[0].write(txn.date.isoformat())
        cols[1].write(txn.label)
        cols[2].write(txn.ticker)
        cols[3].write(f"{txn.share_count:,.4f}")
        cols[4].write(format_dollars(txn.money_amount))
        if cols[5].button("Undo", key=f"undo-{index}-{txn.ticker}-{txn.date}"):
            with st.spinner("Undoing..."):
                result = _await(session.undo(txn))
            # Shown by the next run; st.rerun discards this one.
            st.session_state[PENDING_MESSAGES] = result.messages
            st.rerun()


def main() -> None:
    session = get_session()
    _display_messages(st.session_state.pop(PENDING_MESSAGES, []))

    if st.sidebar.button("Refresh prices"):
        result = _await(session.refresh(force=True))
        _display_messages(result.messages)
    else:
        result = _await(session.refresh())
        _display_messages(result.messages)

    _transaction_form(session)

    ledger = _await(session.view())
    _overview(ledger)
    st.divider()
    _performance(ledger)
    _allocations(ledger)
    _stats(ledger)
    _transactions(session, ledger)


if __name__ == "__main__":
    main()
