"""
findings.py – Human-readable summaries over a finalized graph.

Findings are read-only views; nothing here changes risk.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from ledger_risk.network.graph_store import GraphStore, Node, NodeKind
from ledger_risk.scoring.config import RiskModel
from ledger_risk.scoring.final_pass import FinalRisk, network_risk_level, network_risk_score

NETWORK_RISK_ASSESSMENT = "network_risk_assessment"

_MAX_LISTED = 20

# always present when applicable; not evidence either way
_SUMMARY_KINDS = frozenset({NETWORK_RISK_ASSESSMENT, "top_risk_accounts"})


@dataclass(frozen=True)
class Finding:
    kind: str
    severity: str  # critical | high | medium | low
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "severity": self.severity,
            "description": self.description,
            "details": self.details,
        }


def _risk(final: FinalRisk, node: Node) -> float:
    return final.risk_by_node.get(node.id, node.risk)


def account_reasons(node: Node, final: FinalRisk) -> List[str]:
    reasons = []
    if node.is_known_high_risk:
        reasons.append("on known high-risk list")
    if node.is_creator_account:
        reasons.append("issues assets")
    if node.is_early_participant and node.early_info:
        reasons.append(node.early_info.lower())
    e = node.enhanced_risk
    if e is not None:
        if e.trustline_position:
            reasons.append(f"trust line position {e.trustline_position}")
        if e.creator_connection:
            reasons.append("transacted with the creator early")
        if e.suspicious_connection_count:
            reasons.append(f"{e.suspicious_connection_count} suspicious transactions")
        if e.wallet_type in ("new", "high-activity"):
            reasons.append(f"{e.wallet_type} wallet")
    links = final.interconnections.get(node.id)
    if links:
        reasons.append(f"linked to {links} other direct counterparties")
    if node.base_risk_degraded:
        reasons.append("incomplete ledger data")
    return reasons


def top_accounts_frame(
    store: GraphStore, final: FinalRisk, seed_id: str, top_n: int = 5
) -> pd.DataFrame:
    rows = [
        {
            "account": n.id,
            "risk_level": round(_risk(final, n), 6),
            "reasons": "; ".join(account_reasons(n, final)),
        }
        for n in store.nodes(NodeKind.ACCOUNT)
        if n.id != seed_id
    ]
    df = pd.DataFrame(rows, columns=["account", "risk_level", "reasons"])
    # stable sort keeps discovery order among equal risks
    return df.sort_values("risk_level", ascending=False, kind="mergesort").head(top_n).reset_index(drop=True)


def generate_findings(
    store: GraphStore, seed_id: str, final: FinalRisk, model: RiskModel
) -> List[Finding]:
    b = model.network
    findings: List[Finding] = []
    accounts = store.nodes(NodeKind.ACCOUNT)
    assets = store.nodes(NodeKind.ASSET)
    others = [a for a in accounts if a.id != seed_id]

    # 1. Overall assessment, exactly one per run
    score, components = network_risk_score(store, final, seed_id, model)
    level = network_risk_level(score, model)
    findings.append(
        Finding(
            kind=NETWORK_RISK_ASSESSMENT,
            severity=level,
            description=f"Overall network risk is {level} ({score:.2f}).",
            details={
                "score": round(score, 6),
                "level": level,
                "risk_score_percent": final.risk_score_percent,
                **components,
            },
        )
    )

    # 2. Known high-risk list matches
    known = [a for a in accounts if a.is_known_high_risk]
    if known:
        findings.append(
            Finding(
                kind="known_high_risk_wallets",
                severity="critical",
                description=f"{len(known)} account(s) in the network are on the known high-risk list.",
                details={"accounts": [a.id for a in known]},
            )
        )

    # 3. Highest-risk accounts with reasons
    if others:
        top = top_accounts_frame(store, final, seed_id, model.limits.top_n)
        findings.append(
            Finding(
                kind="top_risk_accounts",
                severity=network_risk_level(float(top["risk_level"].iloc[0]), model),
                description=f"Top {len(top)} highest-risk connected accounts.",
                details={"accounts": top.to_dict(orient="records")},
            )
        )

    # 4. Asset creators
    creators = [a for a in accounts if a.is_creator_account]
    if creators:
        risky_issuers = {
            t.issuer_id for t in assets if _risk(final, t) > b.high_risk_asset
        }
        findings.append(
            Finding(
                kind="creator_accounts",
                severity="high" if risky_issuers & {c.id for c in creators} else "medium",
                description=f"{len(creators)} account(s) issue their own assets.",
                details={"accounts": [c.id for c in creators[:_MAX_LISTED]]},
            )
        )

    # 5. Early participants that scored high
    early = [a for a in accounts if a.is_early_participant and _risk(final, a) > b.high_risk_node]
    if early:
        findings.append(
            Finding(
                kind="high_risk_early_participants",
                severity="high",
                description=(
                    f"{len(early)} high-risk account(s) transacted in the first moments of an "
                    "asset's life, which may indicate insider or coordinated activity."
                ),
                details={
                    "accounts": [
                        {"account": a.id, "risk_level": round(_risk(final, a), 6), "info": a.early_info}
                        for a in early[:_MAX_LISTED]
                    ]
                },
            )
        )

    # 6. Risky assets
    risky_assets = [t for t in assets if _risk(final, t) > b.high_risk_asset]
    if risky_assets:
        findings.append(
            Finding(
                kind="high_risk_assets",
                severity="high",
                description=f"{len(risky_assets)} asset(s) show patterns common in rug pulls.",
                details={
                    "assets": [
                        {
                            "asset": t.id,
                            "code": t.asset_code,
                            "issuer": t.issuer_id,
                            "risk_level": round(_risk(final, t), 6),
                        }
                        for t in risky_assets
                    ]
                },
            )
        )

    # 7. Suspicious edges
    suspicious = [e for e in store.edges() if e.is_suspicious]
    if suspicious:
        findings.append(
            Finding(
                kind="suspicious_connections",
                severity="high",
                description=f"{len(suspicious)} suspicious connection(s) found in the network.",
                details={"edges": [e.to_dict() for e in suspicious[:_MAX_LISTED]]},
            )
        )

    # 8. High-risk to high-risk edges
    pairs = []
    for e in store.edges():
        src, dst = store.find_node(e.source), store.find_node(e.target)
        if src.is_account and dst.is_account:
            if _risk(final, src) > b.high_risk_node and _risk(final, dst) > b.high_risk_node:
                pairs.append(e)
    if pairs:
        findings.append(
            Finding(
                kind="high_risk_pairings",
                severity="high",
                description=f"{len(pairs)} connection(s) join two high-risk accounts.",
                details={"edges": [e.to_dict() for e in pairs[:_MAX_LISTED]]},
            )
        )

    # 9. Early trust lines / creator-connected holders
    early_lines = [
        a for a in others
        if a.enhanced_risk is not None
        and 0 < a.enhanced_risk.trustline_position <= model.final.trust_position_max
    ]
    if early_lines:
        findings.append(
            Finding(
                kind="early_trustline_positions",
                severity="high",
                description=(
                    f"{len(early_lines)} account(s) hold very early trust lines to the seed's "
                    "assets, indicating potential coordinated activity or insider connections."
                ),
                details={
                    "accounts": [
                        {"account": a.id, "position": a.enhanced_risk.trustline_position}
                        for a in early_lines[:_MAX_LISTED]
                    ]
                },
            )
        )

    creator_linked = [a for a in others if a.enhanced_risk is not None and a.enhanced_risk.creator_connection]
    if creator_linked:
        findings.append(
            Finding(
                kind="creator_connected_wallets",
                severity="high",
                description=(
                    f"{len(creator_linked)} account(s) transacted directly with the asset creator, "
                    "suggesting related entities operating multiple wallets."
                ),
                details={"accounts": [a.id for a in creator_linked[:_MAX_LISTED]]},
            )
        )

    # 10. Network shape
    if len(assets) > 3:
        findings.append(
            Finding(
                kind="multiple_asset_connections",
                severity="high" if len(assets) > 5 else "medium",
                description=f"The network is connected to {len(assets)} assets.",
                details={"assets": [t.id for t in assets[:_MAX_LISTED]]},
            )
        )

    if len(others) < 3:
        findings.append(
            Finding(
                kind="limited_network_activity",
                severity="medium",
                description="Very few connected accounts; this may be a new or isolated account.",
                details={"connected_accounts": len(others)},
            )
        )

    # 11. Explicit all-clear for quiet networks
    red_flags = [f for f in findings if f.kind not in _SUMMARY_KINDS]
    if final.risk_score_percent < b.all_clear_below_percent and len(red_flags) < 2:
        findings.append(
            Finding(
                kind="no_major_red_flags",
                severity="low",
                description="No significant signs of suspicious activity were found in this network.",
                details={"risk_score_percent": final.risk_score_percent},
            )
        )

    return findings


def find_finding(findings: List[Finding], kind: str) -> Optional[Finding]:
    return next((f for f in findings if f.kind == kind), None)
