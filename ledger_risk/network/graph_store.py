"""
graph_store.py – Deduplicated node/edge store for one analysis run.

Backed by an undirected ``networkx.Graph`` so there is at most one edge per
unordered pair and node / neighbour lookups are O(1).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import networkx as nx

log = logging.getLogger(__name__)


class NodeKind(str, Enum):
    ACCOUNT = "account"
    ASSET = "asset"


class RelationshipKind(str, Enum):
    PAYMENT = "payment"
    TRUST_ESTABLISHMENT = "trust_establishment"
    ASSET_ISSUANCE = "asset_issuance"
    EARLY_ASSET_ACTIVITY = "early_asset_activity"
    HIGH_RISK_PAIRING = "high_risk_pairing"
    RELATED_ACCOUNTS = "related_accounts"
    SHARED_ASSET = "shared_asset"


@dataclass
class Node:
    id: str
    kind: NodeKind
    risk_level: Optional[float] = None
    radius: float = 10.0
    depth: Optional[int] = None

    # accounts
    is_known_high_risk: bool = False
    is_early_participant: bool = False
    early_info: Optional[str] = None
    is_creator_account: bool = False
    enhanced_risk: Any = None          # scoring.risk_engine.EnhancedRisk
    interaction_summary: Any = None    # scoring.risk_engine.InteractionSummary
    base_risk_degraded: bool = False

    # assets
    issuer_id: Optional[str] = None
    asset_code: Optional[str] = None
    issue_date: Optional[date] = None
    issue_date_estimated: bool = False
    estimated_holder_count: Optional[int] = None
    early_participant_count: int = 0

    @property
    def is_account(self) -> bool:
        return self.kind is NodeKind.ACCOUNT

    @property
    def risk(self) -> float:
        return self.risk_level or 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "kind": self.kind.value}
        out["risk_level"] = round(self.risk, 6)
        out["radius"] = round(self.radius, 3)
        if self.depth is not None:
            out["depth"] = self.depth
        if self.is_account:
            out.update(
                is_known_high_risk=self.is_known_high_risk,
                is_early_participant=self.is_early_participant,
                early_info=self.early_info,
                is_creator_account=self.is_creator_account,
                enhanced_risk=self.enhanced_risk.to_dict() if self.enhanced_risk else None,
                interaction_summary=(
                    self.interaction_summary.to_dict() if self.interaction_summary else None
                ),
            )
        else:
            out.update(
                issuer_id=self.issuer_id,
                asset_code=self.asset_code,
                issue_date=self.issue_date.isoformat() if self.issue_date else None,
                issue_date_estimated=self.issue_date_estimated,
                estimated_holder_count=self.estimated_holder_count,
                early_participant_count=self.early_participant_count,
            )
        return out


_NODE_FIELDS = {f.name for f in fields(Node)} - {"id", "kind"}


@dataclass
class Edge:
    source: str
    target: str
    weight: float = 1.0
    is_suspicious: bool = False
    kind: RelationshipKind = RelationshipKind.PAYMENT

    def other(self, node_id: str) -> str:
        return self.target if node_id == self.source else self.source

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "weight": round(self.weight, 6),
            "is_suspicious": self.is_suspicious,
            "kind": self.kind.value,
        }


class GraphStore:
    def __init__(self):
        self.graph = nx.Graph()
        self.suspicious_edge_count = 0

    # ── nodes ────────────────────────────────────────────────────────────────

    def upsert_node(self, node_id: str, kind: NodeKind, **attributes: Any) -> Node:
        """
        Insert a node, or merge promotable fields into the existing one.
        Merging never blanks an existing risk and only grows the radius.
        """
        unknown = set(attributes) - _NODE_FIELDS
        if unknown:
            raise TypeError(f"Unknown node attributes: {sorted(unknown)}")

        existing = self.find_node(node_id)
        if existing is None:
            node = Node(id=node_id, kind=kind, **attributes)
            self.graph.add_node(node_id, data=node)
            return node

        if attributes.get("is_early_participant"):
            existing.is_early_participant = True
            existing.early_info = attributes.get("early_info", existing.early_info)
        if attributes.get("is_creator_account"):
            existing.is_creator_account = True
        if "radius" in attributes:
            existing.radius = max(existing.radius, attributes["radius"])
        if existing.risk_level is None and attributes.get("risk_level") is not None:
            existing.risk_level = attributes["risk_level"]
        return existing

    def find_node(self, node_id: str) -> Optional[Node]:
        data = self.graph.nodes.get(node_id)
        return data["data"] if data is not None else None

    def has_node(self, node_id: str) -> bool:
        return node_id in self.graph

    def nodes(self, kind: Optional[NodeKind] = None) -> List[Node]:
        out = [d for _, d in self.graph.nodes(data="data")]
        if kind is not None:
            out = [n for n in out if n.kind is kind]
        return out

    @property
    def node_count(self) -> int:
        return self.graph.number_of_nodes()

    # ── edges ────────────────────────────────────────────────────────────────

    def upsert_edge(
        self,
        source: str,
        target: str,
        weight: float = 1.0,
        suspicious: bool = False,
        kind: RelationshipKind = RelationshipKind.PAYMENT,
    ) -> Optional[Edge]:
        """
        Add or strengthen the edge between two known nodes. Returns ``None``
        (and stores nothing) while either endpoint is still undiscovered.
        """
        if source == target or source not in self.graph or target not in self.graph:
            return None

        if self.graph.has_edge(source, target):
            edge: Edge = self.graph.edges[source, target]["data"]
            edge.weight = max(edge.weight, weight)
            if suspicious and not edge.is_suspicious:
                edge.is_suspicious = True
                self.suspicious_edge_count += 1
            return edge

        edge = Edge(source=source, target=target, weight=weight, is_suspicious=suspicious, kind=kind)
        self.graph.add_edge(source, target, data=edge)
        if suspicious:
            self.suspicious_edge_count += 1
        return edge

    def find_edge(self, a: str, b: str) -> Optional[Edge]:
        if self.graph.has_edge(a, b):
            return self.graph.edges[a, b]["data"]
        return None

    def edges_of(self, node_id: str) -> List[Edge]:
        if node_id not in self.graph:
            return []
        return [d for _, _, d in self.graph.edges(node_id, data="data")]

    def neighbors(self, node_id: str) -> Iterator[str]:
        if node_id not in self.graph:
            return iter(())
        return iter(self.graph.neighbors(node_id))

    def edges(self) -> List[Edge]:
        return [d for _, _, d in self.graph.edges(data="data")]

    @property
    def edge_count(self) -> int:
        return self.graph.number_of_edges()
