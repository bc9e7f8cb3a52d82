"""
final_pass.py – Whole-graph risk aggregation, run once after expansion.

Stage 1 (``collect_inputs``) freezes what discovery learned about each node.
Stage 2 (``compute_final_risk``) is a pure function of the graph and those
inputs; the caller decides when to write the result back onto the nodes.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from ledger_risk.network.graph_store import GraphStore, NodeKind
from ledger_risk.scoring.config import RiskModel
from ledger_risk.scoring.risk_engine import EnhancedRisk, clamp

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BaseRiskInputs:
    node_id: str
    kind: NodeKind
    base_risk: float
    enhanced: Optional[EnhancedRisk] = None
    is_known_high_risk: bool = False
    is_early_participant: bool = False
    is_seed: bool = False


@dataclass(frozen=True)
class FinalRisk:
    risk_by_node: Mapping[str, float]
    interconnections: Mapping[str, int] = field(default_factory=dict)
    total_risk: float = 0.0
    risk_score_percent: int = 0

    def __getitem__(self, node_id: str) -> float:
        return self.risk_by_node[node_id]


def collect_inputs(store: GraphStore, seed_id: str) -> Dict[str, BaseRiskInputs]:
    return {
        n.id: BaseRiskInputs(
            node_id=n.id,
            kind=n.kind,
            base_risk=n.risk,
            enhanced=n.enhanced_risk,
            is_known_high_risk=n.is_known_high_risk,
            is_early_participant=n.is_early_participant,
            is_seed=n.id == seed_id,
        )
        for n in store.nodes()
    }


def account_risk(inputs: BaseRiskInputs, model: RiskModel) -> float:
    """Blend base and enhanced risk for one account (before interconnection)."""
    if inputs.is_known_high_risk:
        return 1.0

    w = model.final
    risk = inputs.base_risk
    e = inputs.enhanced
    if e is not None:
        if 0 < e.trustline_position <= w.trust_position_max:
            risk += w.trust_position_bonus
        if e.creator_connection:
            risk += w.creator_connection
        risk += e.activity_risk * w.activity
        risk += e.age_risk * w.age
        risk += e.transaction_volume_risk * w.volume
        risk += e.trustline_risk * w.trustline
        if e.suspicious_connection_count >= w.suspicious_connections_min:
            risk += w.suspicious_connections
    if inputs.is_early_participant:
        risk += w.early_participant
    return clamp(risk)


def first_degree_accounts(store: GraphStore, seed_id: str) -> Set[str]:
    out = set()
    for other in store.neighbors(seed_id):
        node = store.find_node(other)
        if node is not None and node.is_account:
            out.add(other)
    return out


def interconnection_counts(store: GraphStore, seed_id: str) -> Dict[str, int]:
    """
    For each account linked directly to the seed, how many other such accounts
    it is also linked to. Limited to first-degree neighbours to keep it cheap.
    """
    first = first_degree_accounts(store, seed_id)
    counts: Dict[str, int] = {}
    for account in first:
        n = sum(1 for other in store.neighbors(account) if other in first and other != seed_id)
        if n:
            counts[account] = n
    return counts


def risk_score_percent(total_risk: float, node_count: int, model: RiskModel) -> int:
    if node_count <= 0:
        return 0
    cap = model.network.node_amplifier_cap
    amplifier = min(node_count, cap) / cap
    return int(math.floor((total_risk / node_count) * 100 * amplifier + 0.5))


def _chunks(items: List[str], size: int):
    for i in range(0, len(items), max(1, size)):
        yield items[i : i + size]


def compute_final_risk(
    store: GraphStore,
    inputs: Mapping[str, BaseRiskInputs],
    seed_id: str,
    model: RiskModel,
    on_batch: Optional[Callable[[int, int], None]] = None,
) -> FinalRisk:
    """
    Final risk per node. Nodes are processed in batches of
    ``limits.batch_size``; ``on_batch(done, total)`` runs between batches so a
    host UI can stay responsive.
    """
    ids = list(inputs)
    risks: Dict[str, float] = {}

    for batch in _chunks(ids, model.limits.batch_size):
        for node_id in batch:
            item = inputs[node_id]
            if item.kind is NodeKind.ACCOUNT:
                risks[node_id] = account_risk(item, model)
            else:
                risks[node_id] = clamp(item.base_risk)
        if on_batch is not None:
            on_batch(len(risks), len(ids))

    w = model.final
    counts = interconnection_counts(store, seed_id)
    for account, n in counts.items():
        if account in risks:
            risks[account] = clamp(risks[account] + min(w.interconnection_cap, n * w.interconnection_step))

    total = sum(risks.values())
    percent = risk_score_percent(total, len(risks), model)
    log.info("Final risk computed for %d nodes (score %d%%)", len(risks), percent)
    return FinalRisk(
        risk_by_node=risks,
        interconnections=counts,
        total_risk=total,
        risk_score_percent=percent,
    )


def network_risk_score(
    store: GraphStore, final: FinalRisk, seed_id: str, model: RiskModel
) -> Tuple[float, Dict[str, float]]:
    """
    Aggregate network risk in [0, 1] from mean risk, share of high-risk nodes
    and interconnection density. Any known-high-risk account dominates.
    """
    b = model.network
    n = len(final.risk_by_node)
    if n == 0:
        return 0.0, {"mean_risk": 0.0, "high_risk_ratio": 0.0, "interconnection": 0.0, "known_high_risk": 0}

    mean_risk = final.total_risk / n
    high_ratio = sum(1 for r in final.risk_by_node.values() if r > b.high_risk_node) / n

    others = {a.id for a in store.nodes(NodeKind.ACCOUNT) if a.id != seed_id}
    links = sum(1 for e in store.edges() if e.source in others and e.target in others)
    ratio = links / len(others) if others else 0.0
    density = ratio / (b.interconnection_softness + ratio) if ratio > 0 else 0.0

    score = b.mean_weight * mean_risk + b.high_ratio_weight * high_ratio + b.density_weight * density
    known = sum(1 for a in store.nodes(NodeKind.ACCOUNT) if a.is_known_high_risk)
    if known:
        score = max(score, round(b.known_bad_floor + b.known_bad_step * (known - 1), 6))

    score = clamp(round(score, 6))
    return score, {
        "mean_risk": round(mean_risk, 6),
        "high_risk_ratio": round(high_ratio, 6),
        "interconnection": round(density, 6),
        "known_high_risk": known,
    }


def network_risk_level(score: float, model: RiskModel) -> str:
    b = model.network
    if score >= b.critical:
        return "critical"
    if score >= b.high:
        return "high"
    if score >= b.medium:
        return "medium"
    return "low"
