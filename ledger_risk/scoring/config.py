"""
config.py – Static risk model: weights, thresholds, denylists and traversal limits.
All tunables live here so nothing is scattered across the scorers.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import FrozenSet, Tuple

# Addresses previously tied to rug pulls. In production this list is loaded
# from a curated feed; these are the seed entries.
HIGH_RISK_ADDRESSES: Tuple[str, ...] = (
    "rHYTJDFrbCU1i2yCENTSEgVFJUMWuFqeQj",
    "rG5Ro9e3uGEZVCpwYbLe21nVwXXCGXPkTu",
    "rLpq5RcRzA8FU1yUqEPW4xfsdwon7caQfM",
)

SUSPICIOUS_NAME_FLAGS: Tuple[str, ...] = ("safe", "moon", "elon", "doge", "shib", "inu", "swap")

MEMO_KEYWORDS: Tuple[str, ...] = ("http", "send", "receive", "claim")


@dataclass(frozen=True)
class AssetRiskWeights:
    suspicious_name: float = 0.4
    limited_holders: float = 0.8
    limited_holders_threshold: float = 10.0  # issued amount used as holder proxy
    issuer_pass_through: float = 0.3


@dataclass(frozen=True)
class AccountRiskWeights:
    new_account: float = 0.4
    # sequence number is the ledger-wide age proxy: higher = created later
    new_sequence_high: int = 60_000_000
    new_sequence_mid: int = 40_000_000
    low_activity: float = 0.3
    low_activity_threshold: int = 10
    many_issuances: float = 0.5
    many_issuances_threshold: int = 3
    many_issuances_span: int = 5
    suspicious_asset_name: float = 0.4
    scam_creator_link: float = 0.3
    high_risk_proximity: float = 0.2
    high_risk_proximity_cap: float = 0.4
    # used when the account cannot be fetched at all
    unknown: float = 0.5


@dataclass(frozen=True)
class TransactionRiskWeights:
    large_amount: float = 0.5
    large_amount_threshold: float = 10_000.0
    odd_amount: float = 0.4
    odd_amount_suffixes: Tuple[str, ...] = ("000000", "999999")
    memo_flags: float = 0.6
    payment_suspicious_above: float = 0.7
    trust_suspicious_above: float = 0.5
    # issued-asset payments above this are listed as unusual in a wallet history
    unusual_issued_amount: float = 100_000.0


@dataclass(frozen=True)
class FinalPassWeights:
    trust_position_bonus: float = 0.2
    trust_position_max: int = 9
    creator_connection: float = 0.3
    activity: float = 0.15
    age: float = 0.15
    volume: float = 0.1
    trustline: float = 0.2
    suspicious_connections: float = 0.25
    suspicious_connections_min: int = 4
    early_participant: float = 0.15
    interconnection_step: float = 0.05
    interconnection_cap: float = 0.3


@dataclass(frozen=True)
class NetworkRiskBands:
    critical: float = 0.75
    high: float = 0.5
    medium: float = 0.25
    # ratio / (ratio + interconnection_softness) maps edge density into [0, 1)
    interconnection_softness: float = 0.2
    node_amplifier_cap: int = 10
    mean_weight: float = 0.4
    high_ratio_weight: float = 0.3
    density_weight: float = 0.3
    known_bad_floor: float = 0.7
    known_bad_step: float = 0.1
    high_risk_node: float = 0.7
    high_risk_asset: float = 0.7
    all_clear_below_percent: int = 30


@dataclass(frozen=True)
class AnalysisLimits:
    max_depth: int = 2
    max_nodes: int = 100
    transaction_window: int = 20
    activity_window: int = 10
    recent_window: int = 50
    expansion_risk_ceiling: float = 0.8
    early_window: int = 50
    early_history: int = 100
    creator_check_window: int = 20
    batch_size: int = 20
    shared_asset_group_limit: int = 10
    timing_window_seconds: float = 3600.0
    top_n: int = 5
    history_window: int = 100

    def with_depth(self, depth: int) -> "AnalysisLimits":
        return replace(self, max_depth=min(max(1, int(depth)), 3))

    def with_max_nodes(self, max_nodes: int) -> "AnalysisLimits":
        return replace(self, max_nodes=max(1, int(max_nodes)))


@dataclass(frozen=True)
class RiskModel:
    asset: AssetRiskWeights = field(default_factory=AssetRiskWeights)
    account: AccountRiskWeights = field(default_factory=AccountRiskWeights)
    transaction: TransactionRiskWeights = field(default_factory=TransactionRiskWeights)
    final: FinalPassWeights = field(default_factory=FinalPassWeights)
    network: NetworkRiskBands = field(default_factory=NetworkRiskBands)
    limits: AnalysisLimits = field(default_factory=AnalysisLimits)
    high_risk_addresses: FrozenSet[str] = frozenset(HIGH_RISK_ADDRESSES)
    suspicious_name_flags: Tuple[str, ...] = SUSPICIOUS_NAME_FLAGS
    memo_keywords: Tuple[str, ...] = MEMO_KEYWORDS
