"""
export.py – Hand a finished run to a renderer.

``to_payload`` is the plain-dict contract (nodes, edges, metrics, findings);
``to_pyvis`` turns that payload into an interactive network graph.
"""
from __future__ import annotations

from typing import Any, Dict

from pyvis.network import Network

SEED_COLOR = "#00C853"
ASSET_COLOR = "#BA68C8"
HIGHLIGHT_COLOR = "#FFD54F"
SUSPICIOUS_EDGE_COLOR = "#FF5252"
EDGE_COLOR = "#546E7A"


def to_payload(run) -> Dict[str, Any]:
    return {
        "seed_id": run.seed_id,
        "state": run.state.value,
        "nodes": [n.to_dict() for n in run.store.nodes()],
        "edges": [e.to_dict() for e in run.store.edges()],
        "metrics": run.get_metrics(),
        "findings": run.get_findings(),
    }


def risk_color(risk: float) -> str:
    if risk >= 0.75:
        return "#D50000"
    if risk >= 0.5:
        return "#FF6D00"
    if risk >= 0.25:
        return "#FFD600"
    return "#64B5F6"


def _node_title(n: Dict[str, Any]) -> str:
    lines = [f"{n['kind']}={n['id']}", f"risk={n.get('risk_level', 0):.3f}"]
    if n["kind"] == "asset":
        lines.append(f"issuer={n.get('issuer_id')}")
        lines.append(f"issued={n.get('issue_date')}{' (est.)' if n.get('issue_date_estimated') else ''}")
        if n.get("estimated_holder_count") is not None:
            lines.append(f"holders~{n['estimated_holder_count']}")
    else:
        if n.get("is_known_high_risk"):
            lines.append("known high-risk")
        if n.get("early_info"):
            lines.append(n["early_info"])
        if n.get("is_creator_account"):
            lines.append("asset creator")
    return "<br>".join(lines)


def to_pyvis(payload: Dict[str, Any], highlight: str = "", height: str = "650px") -> Network:
    seed = payload.get("seed_id")
    net = Network(
        height=height,
        width="100%",
        directed=False,
        bgcolor="#0E1117",
        font_color="#E6EDF3",
        cdn_resources="in_line",
    )
    net.barnes_hut(gravity=-20000, central_gravity=0.15, spring_length=160, spring_strength=0.04, damping=0.09)

    for n in payload.get("nodes", []):
        nid = str(n["id"])
        risk = float(n.get("risk_level", 0.0))
        if nid == seed:
            color = SEED_COLOR
        elif n.get("kind") == "asset":
            color = ASSET_COLOR
        else:
            color = risk_color(risk)

        # highlight last so it wins
        if highlight and nid == highlight:
            color = HIGHLIGHT_COLOR

        net.add_node(
            nid,
            label=nid if n.get("kind") == "asset" else nid[:8],
            title=_node_title(n),
            color=color,
            size=float(n.get("radius", 10.0)) * 2,
            shape="diamond" if n.get("kind") == "asset" else "dot",
        )

    for e in payload.get("edges", []):
        weight = float(e.get("weight", 1.0))
        net.add_edge(
            str(e["source"]),
            str(e["target"]),
            title=f"{e.get('kind')}<br>weight={weight:.2f}",
            width=1 + min(8.0, weight),
            color=SUSPICIOUS_EDGE_COLOR if e.get("is_suspicious") else EDGE_COLOR,
        )
    return net


def to_html(payload: Dict[str, Any], highlight: str = "") -> str:
    return to_pyvis(payload, highlight).generate_html(notebook=False)
