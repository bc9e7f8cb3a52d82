import json
import os
from typing import Any

import pandas as pd
import streamlit as st
import streamlit.components.v1 as components

from ledger_risk.ledger.xrpl_client import XRPLClient
from ledger_risk.network.export import to_html
from ledger_risk.network.traversal import NetworkAnalyzer, ProgressEvent

st.set_page_config(
    page_title="XRPL Network Risk Analyzer",
    page_icon="🛡️",
    layout="wide",
)

st.title("🛡️ XRPL Network Risk Analyzer")
st.caption("Scan the accounts and assets around a ledger address and surface rug-pull risk.")
st.divider()

st.session_state.setdefault("scan_payload", None)
st.session_state.setdefault("scan_error", None)
st.session_state.setdefault("scan_details", {})

DEFAULT_RPC = os.getenv("XRPL_RPC_URL", XRPLClient.DEFAULT_URL)
SEVERITY_ICONS = {"critical": "🔴", "high": "🟠", "medium": "🟡", "low": "🟢"}


def pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, default=str)


def run_scan(rpc_url: str, address: str, depth: int, max_nodes: int, status):
    def on_progress(event: ProgressEvent):
        status.write(f"{event.message} ({event.node_count} nodes, {event.edge_count} edges)")

    analyzer = NetworkAnalyzer(XRPLClient(url=rpc_url))
    run = analyzer.analyze(address, depth, max_nodes, on_progress=on_progress)
    payload = run.to_payload()
    details = {n["id"]: run.node_details(n["id"]) for n in payload["nodes"]}
    return payload, details


# Sidebar
st.sidebar.header("Settings")
rpc_url = st.sidebar.text_input("JSON-RPC endpoint", value=DEFAULT_RPC)
depth = st.sidebar.selectbox("Depth", [1, 2, 3], index=1)
max_nodes = st.sidebar.slider("Max nodes", 10, 300, 100, step=10)

with st.form("scan_form", clear_on_submit=False):
    address = st.text_input("Account address", placeholder="r...")
    b_scan, b_clear = st.columns(2)
    scan_clicked = b_scan.form_submit_button("Scan", use_container_width=True)
    clear_clicked = b_clear.form_submit_button("Clear", use_container_width=True)

if clear_clicked:
    st.session_state["scan_payload"] = None
    st.session_state["scan_error"] = None
    st.session_state["scan_details"] = {}

if scan_clicked and address.strip():
    with st.status("Scanning…", expanded=False) as status:
        try:
            payload, details = run_scan(rpc_url, address.strip(), depth, max_nodes, status)
            st.session_state["scan_payload"] = payload
            st.session_state["scan_details"] = details
            st.session_state["scan_error"] = None
            status.update(label="Scan complete", state="complete")
        except Exception as e:
            st.session_state["scan_payload"] = None
            st.session_state["scan_error"] = str(e)
            status.update(label="Scan failed", state="error")

if st.session_state["scan_error"]:
    st.error(st.session_state["scan_error"])

payload = st.session_state.get("scan_payload")
if not payload:
    st.info("Enter an address and press Scan.")
    st.stop()

metrics = payload["metrics"]
a, b, c, d = st.columns(4)
a.metric("Risk Score", f"{metrics['risk_score_percent']}%")
b.metric("Connected Accounts", metrics["connected_account_count"])
c.metric("Connected Assets", metrics["connected_asset_count"])
d.metric("Suspicious Connections", metrics["suspicious_edge_count"])

tab_graph, tab_findings, tab_nodes, tab_raw = st.tabs(["Network Graph", "Findings", "Nodes", "Raw JSON"])

with tab_graph:
    node_ids = [n["id"] for n in payload["nodes"]]
    highlight = st.selectbox("Highlight node", [""] + node_ids, index=0)
    components.html(to_html(payload, highlight), height=700, scrolling=True)

with tab_findings:
    for f in payload["findings"]:
        icon = SEVERITY_ICONS.get(f["severity"], "")
        with st.expander(f"{icon} {f['kind']}: {f['description']}"):
            st.json(f["details"])

with tab_nodes:
    df = pd.DataFrame(payload["nodes"])
    cols = [c for c in ["id", "kind", "risk_level", "depth", "is_known_high_risk",
                        "is_early_participant", "is_creator_account", "asset_code"] if c in df.columns]
    df = df[cols].sort_values("risk_level", ascending=False)
    st.dataframe(
        df.style.format({"risk_level": "{:.3f}"}).background_gradient(subset=["risk_level"], cmap="Reds"),
        use_container_width=True,
        hide_index=True,
    )

    st.subheader("Node details")
    selected = st.selectbox("Node", list(df["id"]), key="detail_node")
    detail = st.session_state["scan_details"].get(selected)
    if detail:
        st.caption(f"{detail['kind']} · risk {detail['risk_level']:.3f} · "
                   f"{detail['interconnected_accounts']} interconnected accounts")
        conns = pd.DataFrame(detail["connections"])
        if not conns.empty:
            st.dataframe(conns, use_container_width=True, hide_index=True)
        if detail["kind"] == "account" and st.button("Load wallet history"):
            try:
                history = NetworkAnalyzer(XRPLClient(url=rpc_url)).wallet_history(selected)
                st.json(history.to_dict())
            except Exception as e:
                st.error(f"History failed: {e}")

with tab_raw:
    st.code(pretty(payload), language="json")
    st.download_button(
        label="📄 Export JSON",
        data=pretty(payload),
        file_name=f"network_{payload['seed_id']}.json",
        mime="application/json",
        use_container_width=True,
    )
