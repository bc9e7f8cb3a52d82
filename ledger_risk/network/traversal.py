"""
traversal.py – Bounded expansion from a seed account, then scoring and findings.

Run lifecycle
-------------
IDLE -> VALIDATING -> EXPANDING -> IDENTIFYING_EARLY_PARTICIPANTS -> ENRICHING
     -> FINALIZING_RISK -> GENERATING_FINDINGS -> COMPLETE
with FAILED reachable from any state. Every ``analyze`` call builds a fresh
``AnalysisRun``; nothing is shared between runs.
"""
from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ledger_risk.errors import DataSourceError, InvalidAddress, LedgerUnavailable
from ledger_risk.ledger.models import IssuedAsset, split_account_id
from ledger_risk.network import enrichment
from ledger_risk.network.export import to_payload
from ledger_risk.network.graph_store import Edge, GraphStore, NodeKind, RelationshipKind
from ledger_risk.scoring.config import AnalysisLimits, RiskModel
from ledger_risk.scoring.final_pass import (
    BaseRiskInputs,
    FinalRisk,
    collect_inputs,
    compute_final_risk,
)
from ledger_risk.scoring.findings import Finding, generate_findings
from ledger_risk.scoring.risk_engine import (
    SeedContext,
    WalletHistory,
    assess_account,
    asset_risk,
    early_participant_risk,
    enhanced_account_risk,
    estimate_holder_count,
    estimate_issue_date,
    is_known_high_risk,
    is_suspicious_transaction,
    plausible_issue_date,
    rank_early_participants,
    transaction_risk,
    wallet_history,
)

log = logging.getLogger(__name__)

SEED_RADIUS = 15.0
ASSET_RADIUS = 10.0
ISSUANCE_WEIGHT = 5.0
TRUST_WEIGHT = 3.0


class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    EXPANDING = "expanding"
    IDENTIFYING_EARLY_PARTICIPANTS = "identifying_early_participants"
    ENRICHING = "enriching"
    FINALIZING_RISK = "finalizing_risk"
    GENERATING_FINDINGS = "generating_findings"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    state: RunState
    message: str
    node_count: int
    edge_count: int
    depth: Optional[int] = None


ProgressCallback = Callable[[ProgressEvent], None]

# edge waiting for its target to be discovered: (source, weight, suspicious, kind)
_PendingEdge = Tuple[str, float, bool, RelationshipKind]


def asset_node_id(asset_code: str, issuer: str) -> str:
    return f"{asset_code}.{issuer}"


def relationship_label(edge: Edge) -> str:
    if edge.kind is RelationshipKind.EARLY_ASSET_ACTIVITY:
        return "early transaction"
    if edge.is_suspicious:
        return "suspicious"
    return "regular"


@dataclass
class AnalysisRun:
    seed_id: str
    model: RiskModel
    store: GraphStore = field(default_factory=GraphStore)
    state: RunState = RunState.IDLE
    error: Optional[str] = None
    visited: Set[str] = field(default_factory=set)
    expansion_order: List[str] = field(default_factory=list)
    scam_creators: Set[str] = field(default_factory=set)
    pending_edges: Dict[str, List[_PendingEdge]] = field(default_factory=lambda: defaultdict(list))
    inputs: Dict[str, BaseRiskInputs] = field(default_factory=dict)
    final: Optional[FinalRisk] = None
    findings: List[Finding] = field(default_factory=list)
    total_risk: float = 0.0
    risk_score_percent: int = 0

    @property
    def limits(self) -> AnalysisLimits:
        return self.model.limits

    def get_metrics(self) -> Dict[str, int]:
        accounts = self.store.nodes(NodeKind.ACCOUNT)
        return {
            "risk_score_percent": self.risk_score_percent,
            "connected_account_count": sum(1 for a in accounts if a.id != self.seed_id),
            "connected_asset_count": len(self.store.nodes(NodeKind.ASSET)),
            "suspicious_edge_count": self.store.suspicious_edge_count,
        }

    def get_findings(self) -> List[Dict[str, Any]]:
        return [f.to_dict() for f in self.findings]

    def to_payload(self) -> Dict[str, Any]:
        return to_payload(self)

    def node_details(self, node_id: str) -> Optional[Dict[str, Any]]:
        """One node with every connection it has and how it is related to each."""
        node = self.store.find_node(node_id)
        if node is None:
            return None
        connections = []
        for edge in self.store.edges_of(node_id):
            other = self.store.find_node(edge.other(node_id))
            connections.append(
                {
                    "id": other.id,
                    "kind": other.kind.value,
                    "risk_level": round(other.risk, 6),
                    "is_early_participant": other.is_early_participant,
                    "relationship": relationship_label(edge),
                    "link_kind": edge.kind.value,
                    "weight": round(edge.weight, 6),
                }
            )
        interconnections = self.final.interconnections if self.final is not None else {}
        return {
            **node.to_dict(),
            "connections": connections,
            "interconnected_accounts": interconnections.get(node_id, 0),
        }


class NetworkAnalyzer:
    """
    Drive one analysis: expand from the seed through the data source, score
    as nodes are discovered, then finalize and summarize.

    ``source`` is any object with the ledger data-source methods
    (``is_valid_address``, ``get_account_info``, ``get_account_transactions``,
    ``fetch_earliest_transactions``, ``fetch_recent_transactions``,
    ``get_account_trustlines``, ``get_issued_assets``,
    ``get_asset_first_transactions``); see ``ledger_risk.ledger.xrpl_client``.
    """

    def __init__(self, source, model: Optional[RiskModel] = None):
        self.source = source
        self.model = model or RiskModel()
        self.run: Optional[AnalysisRun] = None
        self._on_progress: Optional[ProgressCallback] = None

    def analyze(
        self,
        seed_id: str,
        max_depth: Optional[int] = None,
        max_nodes: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AnalysisRun:
        limits = self.model.limits
        if max_depth is not None:
            limits = limits.with_depth(max_depth)
        if max_nodes is not None:
            limits = limits.with_max_nodes(max_nodes)

        run = AnalysisRun(seed_id=seed_id, model=replace(self.model, limits=limits))
        self.run = run
        self._on_progress = on_progress
        log.info("Starting network analysis for %s (depth=%d, nodes=%d)",
                 seed_id, limits.max_depth, limits.max_nodes)

        try:
            self._transition(run, RunState.VALIDATING, "Validating seed address")
            if not self.source.is_valid_address(seed_id):
                raise InvalidAddress(seed_id)

            run.store.upsert_node(
                seed_id,
                NodeKind.ACCOUNT,
                risk_level=0.0,
                radius=SEED_RADIUS,
                depth=0,
                is_known_high_risk=is_known_high_risk(seed_id, run.model),
            )

            self._expand(run)
            self._identify_early_participants(run)
            self._enrich(run)
            self._finalize(run)

            self._transition(run, RunState.GENERATING_FINDINGS, "Generating findings")
            run.findings = generate_findings(run.store, seed_id, run.final, run.model)

            self._transition(run, RunState.COMPLETE, "Analysis complete")
        except Exception as e:
            run.state = RunState.FAILED
            run.error = str(e)
            log.error("Network analysis for %s failed: %s", seed_id, e)
            raise

        log.info("Network analysis complete: %d nodes, %d edges",
                 run.store.node_count, run.store.edge_count)
        return run

    def wallet_history(self, account_id: str) -> WalletHistory:
        """Early and recent activity profile for one account, outside any run."""
        if not self.source.is_valid_address(account_id):
            raise InvalidAddress(account_id)
        return wallet_history(self.source, account_id, self.model)

    # ── progress ─────────────────────────────────────────────────────────────

    def _transition(self, run: AnalysisRun, state: RunState, message: str) -> None:
        run.state = state
        log.debug("%s: %s", state.value, message)
        self._emit(run, message)

    def _emit(self, run: AnalysisRun, message: str, depth: Optional[int] = None) -> None:
        if self._on_progress is not None:
            self._on_progress(
                ProgressEvent(run.state, message, run.store.node_count, run.store.edge_count, depth)
            )

    # ── expansion ────────────────────────────────────────────────────────────

    def _expand(self, run: AnalysisRun) -> None:
        self._transition(run, RunState.EXPANDING, "Expanding account network")
        limits = run.limits
        store = run.store
        seed = SeedContext(self.source, run.seed_id, run.model)

        queue = deque([(run.seed_id, 0)])
        queued = {run.seed_id}

        while queue:
            account_id, depth = queue.popleft()
            if depth >= limits.max_depth or store.node_count >= limits.max_nodes:
                continue
            if account_id in run.visited:
                continue
            run.visited.add(account_id)
            run.expansion_order.append(account_id)
            log.debug("Expanding %s at depth %d", account_id, depth)
            self._emit(run, f"Analyzing connections for {account_id}", depth)

            try:
                neighbours = self._scan_transactions(run, account_id)
            except LedgerUnavailable:
                if account_id == run.seed_id:
                    raise
                log.warning("Ledger unavailable for %s; skipping", account_id)
                neighbours = []
            except DataSourceError as e:
                log.warning("Could not load transactions for %s: %s", account_id, e)
                neighbours = []

            self._discover_assets(run, account_id)

            for other in neighbours:
                if other in queued:
                    continue
                if store.has_node(other):
                    self._flush_pending(run, other)
                    continue
                if store.node_count >= limits.max_nodes:
                    log.info("Node budget of %d reached", limits.max_nodes)
                    break

                risk = self._add_account(run, other, depth + 1, seed)
                self._flush_pending(run, other)

                # record a very risky neighbour but do not wander into its cluster
                if risk < limits.expansion_risk_ceiling:
                    queue.append((other, depth + 1))
                    queued.add(other)

    def _scan_transactions(self, run: AnalysisRun, account_id: str) -> List[str]:
        model = run.model
        address, _ = split_account_id(account_id)
        seed_address, _ = split_account_id(run.seed_id)
        txs = self.source.get_account_transactions(account_id, run.limits.transaction_window)
        neighbours: Dict[str, None] = {}

        for tx in txs:
            if not tx.type:
                continue
            risk = transaction_risk(tx, model)
            suspicious = is_suspicious_transaction(tx, risk, model)

            if tx.type == "Payment":
                other = tx.destination if tx.account == address else tx.account
                weight, kind = (tx.value or 1.0), RelationshipKind.PAYMENT
            elif tx.type == "TrustSet" and tx.limit_amount is not None:
                other = tx.limit_amount.issuer
                weight, kind = TRUST_WEIGHT, RelationshipKind.TRUST_ESTABLISHMENT
            else:
                continue
            if not other or other == address:
                continue
            # ledger records carry bare addresses; a tagged seed is still the seed
            if other == seed_address:
                other = run.seed_id
            if other == account_id:
                continue

            if run.store.upsert_edge(account_id, other, weight, suspicious, kind) is None:
                run.pending_edges[other].append((account_id, weight, suspicious, kind))
            if other not in run.visited:
                neighbours.setdefault(other, None)

        return list(neighbours)

    def _flush_pending(self, run: AnalysisRun, account_id: str) -> None:
        for source_id, weight, suspicious, kind in run.pending_edges.pop(account_id, []):
            run.store.upsert_edge(source_id, account_id, weight, suspicious, kind)

    def _add_account(self, run: AnalysisRun, account_id: str, depth: int, seed: SeedContext) -> float:
        enhanced, summary = enhanced_account_risk(self.source, account_id, seed, run.model)
        assessment = assess_account(self.source, account_id, run.model, run.scam_creators)
        risk = assessment.base_risk
        run.store.upsert_node(
            account_id,
            NodeKind.ACCOUNT,
            risk_level=risk,
            radius=8 + risk * 2,
            depth=depth,
            is_known_high_risk=is_known_high_risk(account_id, run.model),
            is_creator_account=assessment.is_creator,
            enhanced_risk=enhanced,
            interaction_summary=summary,
            base_risk_degraded=assessment.degraded,
        )
        return risk

    def _discover_assets(self, run: AnalysisRun, account_id: str) -> None:
        try:
            issued = self.source.get_issued_assets(account_id)
        except DataSourceError as e:
            log.warning("Could not load issued assets for %s: %s", account_id, e)
            return
        if not issued:
            return

        store = run.store
        issuer = store.upsert_node(account_id, NodeKind.ACCOUNT, is_creator_account=True)
        for asset in issued:
            asset_id = asset_node_id(asset.asset_code, account_id)
            if store.has_node(asset_id):
                continue
            if store.node_count >= run.limits.max_nodes:
                log.info("Node budget reached; skipping remaining assets of %s", account_id)
                return

            risk = asset_risk(asset, issuer.risk_level, run.model)
            issue_date, estimated = self._issue_date(asset, account_id)
            store.upsert_node(
                asset_id,
                NodeKind.ASSET,
                risk_level=risk,
                radius=ASSET_RADIUS,
                issuer_id=account_id,
                asset_code=asset.asset_code,
                issue_date=issue_date,
                issue_date_estimated=estimated,
                estimated_holder_count=estimate_holder_count(asset.amount),
            )
            store.upsert_edge(
                account_id,
                asset_id,
                ISSUANCE_WEIGHT,
                risk > run.model.network.high_risk_asset,
                RelationshipKind.ASSET_ISSUANCE,
            )
            if risk > run.model.network.high_risk_asset:
                run.scam_creators.add(account_id)

    def _issue_date(self, asset: IssuedAsset, issuer: str) -> Tuple[date, bool]:
        try:
            first = self.source.get_asset_first_transactions(issuer, asset.asset_code, 1)
            if first and plausible_issue_date(first[0].date):
                return first[0].date.date(), False
        except DataSourceError as e:
            log.warning("No first transaction for %s.%s: %s", asset.asset_code, issuer, e)
        return estimate_issue_date(asset.asset_code, issuer), True

    # ── early participants ───────────────────────────────────────────────────

    def _identify_early_participants(self, run: AnalysisRun) -> None:
        self._transition(run, RunState.IDENTIFYING_EARLY_PARTICIPANTS, "Identifying early participants")
        limits = run.limits
        store = run.store
        seed_address, _ = split_account_id(run.seed_id)
        histories: Dict[str, list] = {}

        for asset in store.nodes(NodeKind.ASSET):
            issuer = asset.issuer_id
            if issuer not in histories:
                try:
                    histories[issuer] = self.source.fetch_earliest_transactions(
                        issuer, limits.early_history
                    ).transactions
                except DataSourceError as e:
                    log.warning("Could not load early history for %s: %s", issuer, e)
                    continue

            positions, ranked = rank_early_participants(
                histories[issuer], split_account_id(issuer)[0], asset.asset_code, limits.early_window
            )
            for participant, position in positions.items():
                if participant == seed_address:
                    participant = run.seed_id
                risk, info = early_participant_risk(position)
                if not store.has_node(participant):
                    if store.node_count >= limits.max_nodes:
                        break
                    store.upsert_node(
                        participant,
                        NodeKind.ACCOUNT,
                        risk_level=risk,
                        radius=7 + risk * 4,
                        is_early_participant=True,
                        early_info=info,
                        is_known_high_risk=is_known_high_risk(participant, run.model),
                    )
                    self._flush_pending(run, participant)
                else:
                    store.upsert_node(
                        participant,
                        NodeKind.ACCOUNT,
                        radius=7 + risk * 4,
                        is_early_participant=True,
                        early_info=info,
                    )
                store.upsert_edge(
                    participant,
                    asset.id,
                    2 + (1 - position / ranked) * 3,
                    False,
                    RelationshipKind.EARLY_ASSET_ACTIVITY,
                )
            asset.early_participant_count = len(positions)

    # ── enrichment / final risk ──────────────────────────────────────────────

    def _enrich(self, run: AnalysisRun) -> None:
        self._transition(run, RunState.ENRICHING, "Linking related accounts")
        enrichment.link_high_risk_accounts(run.store, run.seed_id)
        enrichment.link_related_accounts(run.store, run.seed_id, run.model)
        enrichment.link_shared_assets(run.store, run.model)

    def _finalize(self, run: AnalysisRun) -> None:
        self._transition(run, RunState.FINALIZING_RISK, "Calculating final risk")
        run.inputs = collect_inputs(run.store, run.seed_id)
        run.final = compute_final_risk(
            run.store,
            run.inputs,
            run.seed_id,
            run.model,
            on_batch=lambda done, total: self._emit(run, f"Scored {done}/{total} nodes"),
        )
        for node_id, risk in run.final.risk_by_node.items():
            run.store.find_node(node_id).risk_level = risk
        run.total_risk = run.final.total_risk
        run.risk_score_percent = run.final.risk_score_percent
