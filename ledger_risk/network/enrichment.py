"""
enrichment.py – Structural links added after expansion, without transaction evidence.

- known high-risk accounts are tied to each other and to the seed so that a
  coordinated cluster is visible even when discovery reached it by chance
- accounts that came alive within the same window, or share an unusual
  behaviour class, are marked as related
- accounts attached to the same asset are marked as sharing it
"""
from __future__ import annotations

import logging
from itertools import combinations
from typing import List

from ledger_risk.network.graph_store import GraphStore, Node, NodeKind, RelationshipKind
from ledger_risk.scoring.config import RiskModel

log = logging.getLogger(__name__)

HIGH_RISK_PAIRING_WEIGHT = 4.0
RELATED_WEIGHT = 1.5
SHARED_ASSET_WEIGHT = 1.0

# behaviour classes worth linking on; "standard" / "established" would link everyone
NOTABLE_WALLET_TYPES = frozenset({"high-activity", "new"})


def link_high_risk_accounts(store: GraphStore, seed_id: str) -> int:
    known = [a.id for a in store.nodes(NodeKind.ACCOUNT) if a.is_known_high_risk]
    linked = 0
    for a, b in combinations(known, 2):
        if store.upsert_edge(a, b, HIGH_RISK_PAIRING_WEIGHT, True, RelationshipKind.HIGH_RISK_PAIRING):
            linked += 1
    for a in known:
        if a != seed_id and store.upsert_edge(
            seed_id, a, HIGH_RISK_PAIRING_WEIGHT, True, RelationshipKind.HIGH_RISK_PAIRING
        ):
            linked += 1
    if linked:
        log.info("Linked %d known high-risk pairs", linked)
    return linked


def _related(a: Node, b: Node, window_seconds: float) -> bool:
    ea, eb = a.enhanced_risk, b.enhanced_risk
    if ea is None or eb is None:
        return False
    if ea.first_activity is not None and eb.first_activity is not None:
        if abs((ea.first_activity - eb.first_activity).total_seconds()) <= window_seconds:
            return True
    return ea.wallet_type == eb.wallet_type and ea.wallet_type in NOTABLE_WALLET_TYPES


def link_related_accounts(store: GraphStore, seed_id: str, model: RiskModel) -> int:
    accounts: List[Node] = [
        a for a in store.nodes(NodeKind.ACCOUNT) if a.id != seed_id and a.enhanced_risk is not None
    ]
    linked = 0
    for a, b in combinations(accounts, 2):
        if _related(a, b, model.limits.timing_window_seconds):
            if store.upsert_edge(a.id, b.id, RELATED_WEIGHT, False, RelationshipKind.RELATED_ACCOUNTS):
                linked += 1
    return linked


def link_shared_assets(store: GraphStore, model: RiskModel) -> int:
    linked = 0
    limit = model.limits.shared_asset_group_limit
    for asset in store.nodes(NodeKind.ASSET):
        holders = []
        for other in store.neighbors(asset.id):
            node = store.find_node(other)
            if node.is_account and other != asset.issuer_id:
                holders.append(other)
            if len(holders) >= limit:
                break
        for a, b in combinations(holders, 2):
            if store.upsert_edge(a, b, SHARED_ASSET_WEIGHT, False, RelationshipKind.SHARED_ASSET):
                linked += 1
    return linked
