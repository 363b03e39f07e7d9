import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import date

import pandas as pd
import plotly.express as px
import streamlit as st

from ledger.config import BASE_DIR, configure_logging, get_settings
from ledger.domain import AccountType, TransactionType
from ledger.engine import BudgetLedger
from ledger.events import AlertLog, EventBus
from ledger.months import current_month
from ledger.services import LedgerService
from ledger.store import LedgerStore
from ledger.transforms import load_seed

st.set_page_config(page_title="Envelope Budget", layout="wide")


@st.cache_resource
def get_service() -> tuple:
    """One ledger per server process, with its own bus and alert log."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    store = LedgerStore.from_settings(settings)
    seed = BASE_DIR / "data" / "seed.json"
    if not store.get("categories") and seed.exists():
        load_seed(str(seed), store)
    bus = EventBus()
    alerts = AlertLog().attach(bus)
    return LedgerService(BudgetLedger(store, settings, bus=bus)), alerts


service, alerts = get_service()


def show_result(result, success: str):
    if result.is_right():
        st.success(success)
    else:
        err = result.get_error()
        if err.get("retryable"):
            st.warning(f"{err['message']} (try again)")
        else:
            st.error(err["message"])
    return result


categories = service.list_categories().get_or_else([])
accounts = service.list_accounts().get_or_else([])
cat_by_name = {c.name: c for c in categories}
acc_by_name = {a.name: a for a in accounts}

months = service.accessible_months().get_or_else([current_month()])
month = st.sidebar.selectbox("Month", months, index=months.index(current_month()) if current_month() in months else 0)

menu = st.sidebar.radio("Menu", ["💰 Budget", "🧾 Transactions", "🏦 Accounts & Categories", "🔧 Consistency"])

if alerts.entries:
    with st.sidebar.expander(f"Alerts ({len(alerts.entries)})"):
        for alert in alerts.recent():
            st.caption(f"{alert['ts'][:16]} {alert['alert']}")

if menu == "💰 Budget":
    summary = service.month_summary(month)
    if summary.is_left():
        st.error(summary.get_error()["message"])
        st.stop()
    data = summary.get_or_else({})
    df = pd.DataFrame(data["rows"])

    k1, k2, k3 = st.columns(3)
    k1.metric("Ready to Assign", f"{data['ready_to_assign']:,.2f}")
    k2.metric("Assigned", f"{df['assigned'].sum() if not df.empty else 0:,.2f}")
    k3.metric("Available", f"{df['available'].sum() if not df.empty else 0:,.2f}")

    if df.empty:
        st.info("No categories yet.")
    else:
        st.dataframe(
            df.drop(columns=["category_id"]).style.format(
                {"starting_balance": "{:,.2f}", "assigned": "{:,.2f}", "activity": "{:,.2f}", "available": "{:,.2f}"}
            ),
            use_container_width=True,
        )
        fig = px.bar(
            df,
            x="category",
            y=["assigned", "activity", "available"],
            barmode="group",
            title=f"Envelopes for {month}",
            template="plotly_dark",
        )
        st.plotly_chart(fig, use_container_width=True)

        with st.form("assign_form"):
            cat_name = st.selectbox("Category", list(cat_by_name))
            current = df.set_index("category").loc[cat_name, "assigned"] if cat_name in set(df["category"]) else 0.0
            amount = st.number_input("Assigned", min_value=0.0, value=float(current), step=10.0)
            if st.form_submit_button("Assign"):
                show_result(service.assign_to_budget(cat_by_name[cat_name].id, month, amount), "Assignment saved")

        cat_name = st.selectbox("History for", list(cat_by_name), key="history_cat")
        history = service.category_history(cat_by_name[cat_name].id).get_or_else([])
        if history:
            hist_df = pd.DataFrame([b.to_record() for b in history])
            fig_hist = px.line(hist_df, x="month", y="available", markers=True, title=f"{cat_name}: available by month")
            st.plotly_chart(fig_hist, use_container_width=True)

elif menu == "🧾 Transactions":
    if not accounts:
        st.info("Open an account first.")
        st.stop()
    with st.form("tx_form", clear_on_submit=True):
        c1, c2 = st.columns(2)
        with c1:
            tx_type = st.selectbox("Type", [t.value for t in TransactionType])
            account = st.selectbox("Account", list(acc_by_name))
            amount = st.number_input("Amount", min_value=0.01, value=10.0, step=1.0)
        with c2:
            tx_date = st.date_input("Date", value=date.today())
            category = st.selectbox("Category (expenses)", ["(none)"] + list(cat_by_name))
            target = st.selectbox("To account (transfers)", ["(none)"] + list(acc_by_name))
        payee = st.text_input("Payee")
        if st.form_submit_button("Add Transaction"):
            show_result(
                service.add_transaction(
                    account_id=acc_by_name[account].id,
                    type=tx_type,
                    amount=amount,
                    date=tx_date.isoformat(),
                    category_id=cat_by_name[category].id if tx_type == "expense" and category in cat_by_name else None,
                    transfer_account_id=acc_by_name[target].id if tx_type == "transfer" and target in acc_by_name else None,
                    payee=payee,
                ),
                "Transaction recorded",
            )

    trans = service.list_transactions(month=month).get_or_else([])
    if trans:
        names = {c.id: c.name for c in categories}
        tx_df = pd.DataFrame([t.to_record() for t in trans])
        tx_df["category"] = tx_df["category_id"].map(names)
        st.dataframe(tx_df[["date", "type", "amount", "payee", "category", "id"]], use_container_width=True)
        to_delete = st.selectbox("Delete transaction", ["(none)"] + list(tx_df["id"]))
        if to_delete != "(none)" and st.button("Delete"):
            show_result(service.delete_transaction(to_delete), "Transaction deleted")
    else:
        st.caption(f"No transactions in {month}.")

elif menu == "🏦 Accounts & Categories":
    if accounts:
        acc_df = pd.DataFrame([a.to_record() for a in accounts])
        st.plotly_chart(
            px.bar(acc_df, x="name", y="current_balance", title="Account Balances", template="plotly_dark"),
            use_container_width=True,
        )
    with st.form("account_form", clear_on_submit=True):
        name = st.text_input("Account name")
        kind = st.selectbox("Type", [t.value for t in AccountType])
        initial = st.number_input("Initial balance", value=0.0, step=100.0)
        if st.form_submit_button("Open Account") and name:
            show_result(service.open_account(name, kind, initial), f"Opened {name}")

    with st.form("category_form", clear_on_submit=True):
        name = st.text_input("Category name")
        icon = st.text_input("Icon")
        if st.form_submit_button("Create Category"):
            show_result(service.create_category(name, icon), f"Created {name}")

    if categories:
        victim = st.selectbox("Delete category", list(cat_by_name))
        if st.button("Delete Category"):
            show_result(service.delete_category(cat_by_name[victim].id), f"Deleted {victim}")

elif menu == "🔧 Consistency":
    issues = service.find_inconsistencies().get_or_else([])
    if issues:
        st.warning(f"{len(issues)} inconsistency(ies) found")
        st.dataframe(pd.DataFrame([i.__dict__ for i in issues]), use_container_width=True)
    else:
        st.success("All budget chains are consistent")

    start = st.selectbox("Repair from", months, index=0)
    end = st.selectbox("Repair to", months, index=len(months) - 1)
    if st.button("Repair all categories"):
        result = show_result(service.repair_all(start, end), "Repair finished")
        for report in result.get_or_else([]):
            if report.changed:
                st.caption(f"{report.category_id}: {', '.join(report.changed_months)}")
    if st.button("Recalculate account balances"):
        show_result(service.recalculate_account_balances(), "Balances recalculated")

    st.caption(f"Latest accessible month: {months[-1]}")
