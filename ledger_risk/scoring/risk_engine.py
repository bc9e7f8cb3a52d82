"""
risk_engine.py – Incremental (discovery-time) risk heuristics.

Scoring model
-------------
1. Account base risk  – denylist short-circuit, sequence-number age proxy,
                        low activity, many issuances, buzzword asset names,
                        links to flagged creators, proximity to denylisted
                        accounts
2. Enhanced risk      – parallel sub-scores in [0, 1]: activity frequency,
                        age, transferred volume, trust-line position, plus
                        the creator-connection flag
3. Asset risk         – buzzword name, low issued amount (holder proxy),
                        30% of the issuer's own risk
4. Transaction risk   – large amount, round/odd drops, solicitation memos;
                        only used to mark edges suspicious
5. Wallet history     – early plus recent activity profile with per-asset
                        counts and unusual patterns (self-payments, very
                        large issued amounts); on demand, not part of a scan

Every data-source failure degrades to a medium (0.5) contribution; unknown is
not treated as safe.
"""
from __future__ import annotations

import logging
import math
import zlib
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ledger_risk.errors import DataSourceError
from ledger_risk.ledger.models import (
    IssuedAmount,
    IssuedAsset,
    NativeAmount,
    Transaction,
    Trustline,
    split_account_id,
    transactions_frame,
)
from ledger_risk.scoring.config import RiskModel

log = logging.getLogger(__name__)

# Estimated issue dates fall inside this fixed window so the fallback is
# reproducible for a given asset.
_ESTIMATE_START = date(2013, 1, 1)
_ESTIMATE_SPAN_DAYS = 3650
_EARLIEST_PLAUSIBLE_YEAR = 2013


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


def is_known_high_risk(account_id: str, model: RiskModel) -> bool:
    address, _ = split_account_id(account_id)
    return address in model.high_risk_addresses


def readable_asset_code(code: str) -> str:
    """Decode 40-hex-char non-standard currency codes into text."""
    if len(code) == 40:
        try:
            return bytes.fromhex(code).rstrip(b"\x00").decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return code
    return code


def has_suspicious_name(code: str, model: RiskModel) -> bool:
    lowered = readable_asset_code(code or "").lower()
    return any(flag in lowered for flag in model.suspicious_name_flags)


# ── transactions ──────────────────────────────────────────────────────────────

def transaction_risk(tx: Transaction, model: RiskModel) -> float:
    w = model.transaction
    score = 0.0

    amount = tx.value
    if amount > w.large_amount_threshold:
        score += w.large_amount * min(1.0, amount / w.large_amount_threshold - 1)

    # synthetic amounts tend to be exact multiples of a whole unit, or x.999999
    if isinstance(tx.amount, NativeAmount):
        drops = tx.amount.drops
        if any(drops.endswith(s) for s in w.odd_amount_suffixes):
            score += w.odd_amount

    for memo in tx.decoded_memos():
        lowered = memo.lower()
        if any(k in lowered for k in model.memo_keywords):
            score += w.memo_flags

    return clamp(score)


def is_suspicious_transaction(tx: Transaction, risk: float, model: RiskModel) -> bool:
    if tx.type == "TrustSet":
        return risk > model.transaction.trust_suspicious_above
    return risk > model.transaction.payment_suspicious_above


# ── assets ────────────────────────────────────────────────────────────────────

def asset_risk(asset: IssuedAsset, issuer_risk: Optional[float], model: RiskModel) -> float:
    w = model.asset
    score = 0.0

    if has_suspicious_name(asset.asset_code, model):
        score += w.suspicious_name

    try:
        amount = max(0.0, float(asset.amount or 0))
    except (TypeError, ValueError):
        amount = 0.0
    if amount < w.limited_holders_threshold:
        score += w.limited_holders * (1 - amount / w.limited_holders_threshold)

    if issuer_risk:
        score += issuer_risk * w.issuer_pass_through

    return clamp(score)


def estimate_holder_count(amount: str) -> Optional[int]:
    """Rough holder count from outstanding supply; big supplies rarely mean many holders."""
    try:
        raw = float(amount)
    except (TypeError, ValueError):
        return None
    if raw != raw or raw <= 0:
        return None

    if raw > 500_000_000:
        return int(min(10_000, math.sqrt(raw) / 10))
    if raw > 10_000_000:
        return int(min(5_000, math.sqrt(raw) / 5))
    if raw > 100_000:
        return int(min(1_000, math.sqrt(raw) / 2))
    return int(min(500, max(10, raw / 100)))


def estimate_issue_date(asset_code: str, issuer: str) -> date:
    """Deterministic stand-in issue date derived from a hash of the asset id."""
    digest = zlib.crc32(f"{asset_code}{issuer}".encode("utf-8"))
    return _ESTIMATE_START + timedelta(days=digest % _ESTIMATE_SPAN_DAYS)


def plausible_issue_date(when: Optional[datetime]) -> bool:
    if when is None:
        return False
    return _EARLIEST_PLAUSIBLE_YEAR <= when.year and when <= datetime.now(timezone.utc)


# ── early participants ────────────────────────────────────────────────────────

def early_participant_risk(position: int) -> Tuple[float, str]:
    """
    Risk for the counterparty whose first appearance is at ``position`` (0-based)
    in an asset's history. Earlier means closer to the issuer.
    """
    if position < 10:
        return 0.7 - position * 0.01, f"Very early participant (position {position + 1})"
    if position < 20:
        return 0.6 - (position - 10) * 0.01, f"Early participant (position {position + 1})"
    if position < 30:
        return 0.5 - (position - 20) * 0.01, f"Early-mid participant (position {position + 1})"
    return (
        clamp(0.4 - (position - 30) * 0.002),
        f"Mid-early participant (position {position + 1})",
    )


def rank_early_participants(
    txs: Iterable[Transaction], issuer: str, asset_code: str, window: int
) -> Tuple[Dict[str, int], int]:
    """
    Map counterparty -> position of first appearance among the first ``window``
    asset-relevant transactions (Payment of the asset, TrustSet for it).
    Also returns how many relevant transactions were ranked.
    """
    relevant: List[Transaction] = []
    for tx in txs:
        if tx.type in ("Payment", "TrustSet") and tx.asset_code == asset_code:
            relevant.append(tx)
        if len(relevant) >= window:
            break

    positions: Dict[str, int] = {}
    for index, tx in enumerate(relevant):
        for party in (tx.account, tx.destination):
            if party and party != issuer and party not in positions:
                positions[party] = index
    return positions, len(relevant)


# ── accounts ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AccountAssessment:
    base_risk: float
    issued_count: int = 0
    is_creator: bool = False
    suspicious_issuance: bool = False
    high_risk_counterparties: Tuple[str, ...] = ()
    tx_count: int = 0
    degraded: bool = False


def assess_account(
    source,
    account_id: str,
    model: RiskModel,
    scam_creators: Optional[Set[str]] = None,
) -> AccountAssessment:
    """Base risk for an account from its metadata, recent activity and issuances."""
    if is_known_high_risk(account_id, model):
        return AccountAssessment(base_risk=1.0)

    w = model.account
    address, _ = split_account_id(account_id)
    scam_creators = scam_creators or set()
    score = 0.0

    try:
        info = source.get_account_info(address)
        if info.sequence is not None:
            if info.sequence > w.new_sequence_high:
                score += w.new_account * 0.8
            elif info.sequence > w.new_sequence_mid:
                score += w.new_account * 0.4

        txs = source.get_account_transactions(address, model.limits.activity_window)
        tx_count = len(txs)
        if tx_count < w.low_activity_threshold:
            score += w.low_activity * (1 - tx_count / w.low_activity_threshold)

        issued = source.get_issued_assets(address)
        if len(issued) > w.many_issuances_threshold:
            score += w.many_issuances * min(
                1.0, (len(issued) - w.many_issuances_threshold) / w.many_issuances_span
            )
        suspicious_issuance = any(has_suspicious_name(a.asset_code, model) for a in issued)
        if suspicious_issuance:
            score += w.suspicious_asset_name
    except DataSourceError as e:
        log.warning("Base risk for %s defaulted: %s", address, e)
        return AccountAssessment(base_risk=w.unknown, degraded=True)

    counterparties: Dict[str, None] = {}
    for tx in txs:
        for party in tx.counterparties(address):
            counterparties.setdefault(party, None)

    if any(p in scam_creators for p in counterparties):
        score += w.scam_creator_link

    flagged = tuple(p for p in counterparties if p in model.high_risk_addresses)
    if flagged:
        score += min(w.high_risk_proximity_cap, w.high_risk_proximity * len(flagged))

    return AccountAssessment(
        base_risk=clamp(score),
        issued_count=len(issued),
        is_creator=len(issued) > 0,
        suspicious_issuance=suspicious_issuance,
        high_risk_counterparties=flagged,
        tx_count=tx_count,
    )


@dataclass(frozen=True)
class InteractionSummary:
    payment_count: int = 0
    asset_transfer_count: int = 0
    total_value: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    mean_gap_hours: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "payment_count": self.payment_count,
            "asset_transfer_count": self.asset_transfer_count,
            "total_value": round(self.total_value, 6),
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "mean_gap_hours": None if self.mean_gap_hours is None else round(self.mean_gap_hours, 3),
        }


def summarize_interactions(txs: Iterable[Transaction]) -> InteractionSummary:
    df = transactions_frame(txs)
    if df.empty:
        return InteractionSummary()

    payments = df[df["type"] == "Payment"]
    dates = df["date"].dropna().sort_values()
    mean_gap = None
    if len(dates) >= 2:
        mean_gap = float(dates.diff().dropna().dt.total_seconds().mean() / 3600)

    return InteractionSummary(
        payment_count=int(len(payments)),
        asset_transfer_count=int(payments["is_issued"].sum()),
        total_value=float(df["value"].sum()),
        first_seen=dates.iloc[0].to_pydatetime() if len(dates) else None,
        last_seen=dates.iloc[-1].to_pydatetime() if len(dates) else None,
        mean_gap_hours=mean_gap,
    )


@dataclass(frozen=True)
class EnhancedRisk:
    activity_risk: float = 0.0
    age_risk: float = 0.0
    transaction_volume_risk: float = 0.0
    trustline_risk: float = 0.0
    wallet_type: str = "standard"
    trustline_position: int = 0  # 1-based, 0 = no trust line to a seed asset
    early_connection: bool = False
    creator_connection: bool = False
    first_activity: Optional[datetime] = None
    suspicious_connection_count: int = 0

    @classmethod
    def unknown(cls) -> "EnhancedRisk":
        return cls(
            activity_risk=0.5,
            age_risk=0.5,
            transaction_volume_risk=0.5,
            trustline_risk=0.5,
            wallet_type="unknown",
        )

    def to_dict(self) -> dict:
        return {
            "activity_risk": self.activity_risk,
            "age_risk": self.age_risk,
            "transaction_volume_risk": self.transaction_volume_risk,
            "trustline_risk": self.trustline_risk,
            "wallet_type": self.wallet_type,
            "trustline_position": self.trustline_position,
            "early_connection": self.early_connection,
            "creator_connection": self.creator_connection,
            "first_activity": self.first_activity.isoformat() if self.first_activity else None,
            "suspicious_connection_count": self.suspicious_connection_count,
        }


class SeedContext:
    """
    Seed-account lookups needed by every enhanced assessment. Results are kept
    for the lifetime of one analysis run only.
    """

    def __init__(self, source, seed_id: str, model: RiskModel):
        self.source = source
        self.address, _ = split_account_id(seed_id)
        self.model = model
        self._trustlines: Optional[List[Trustline]] = None
        self._issued: Optional[List[IssuedAsset]] = None
        self._early: Optional[List[Transaction]] = None

    def trustlines(self) -> List[Trustline]:
        if self._trustlines is None:
            self._trustlines = list(self.source.get_account_trustlines(self.address))
        return self._trustlines

    def issued_assets(self) -> List[IssuedAsset]:
        if self._issued is None:
            self._issued = list(self.source.get_issued_assets(self.address))
        return self._issued

    def early_transactions(self) -> List[Transaction]:
        if self._early is None:
            page = self.source.fetch_earliest_transactions(
                self.address, self.model.limits.creator_check_window
            )
            self._early = list(page.transactions)
        return self._early


def _age_band(sequence: int) -> Tuple[float, str]:
    if sequence < 100:
        return 0.1, "established"
    if sequence < 1000:
        return 0.3, "established"
    if sequence < 10000:
        return 0.5, "standard"
    return 0.8, "new"


def _activity_band(mean_gap_hours: float) -> Tuple[float, Optional[str]]:
    if mean_gap_hours < 1:
        return 0.9, "high-activity"
    if mean_gap_hours < 24:
        return 0.7, "active"
    if mean_gap_hours < 168:
        return 0.4, None
    return 0.2, "inactive"


def _volume_band(volume: float) -> float:
    if volume > 100_000:
        return 0.8
    if volume > 10_000:
        return 0.6
    if volume > 1_000:
        return 0.4
    return 0.2


def _trustline_band(position: int) -> Tuple[float, bool]:
    if position < 5:
        return 0.8, True
    if position < 20:
        return 0.6, True
    if position < 100:
        return 0.4, False
    return 0.2, False


def enhanced_account_risk(
    source, account_id: str, seed: SeedContext, model: RiskModel
) -> Tuple[EnhancedRisk, InteractionSummary]:
    """Independent activity / age / volume / trust-position sub-scores for an account."""
    address, _ = split_account_id(account_id)
    fields: dict = {}
    summary = InteractionSummary()
    failed = 0

    try:
        info = source.get_account_info(address)
        if info.sequence is not None:
            fields["age_risk"], fields["wallet_type"] = _age_band(info.sequence)
            try:
                first = source.fetch_earliest_transactions(address, 1).transactions
                if first and first[0].date is not None:
                    fields["first_activity"] = first[0].date
            except DataSourceError as e:
                log.debug("No creation date for %s: %s", address, e)
    except DataSourceError as e:
        log.warning("Age risk for %s defaulted: %s", address, e)
        fields["age_risk"] = 0.5
        failed += 1

    try:
        recent = source.fetch_recent_transactions(address, model.limits.recent_window).transactions
        if recent:
            summary = summarize_interactions(recent)
            if summary.mean_gap_hours is not None:
                fields["activity_risk"], wallet_type = _activity_band(summary.mean_gap_hours)
                if wallet_type:
                    fields["wallet_type"] = wallet_type
            fields["transaction_volume_risk"] = _volume_band(summary.total_value)
            fields["suspicious_connection_count"] = sum(
                1 for tx in recent if transaction_risk(tx, model) > model.transaction.payment_suspicious_above
            )
    except DataSourceError as e:
        log.warning("Activity risk for %s defaulted: %s", address, e)
        fields["activity_risk"] = 0.5
        failed += 1

    if failed == 2:
        return EnhancedRisk.unknown(), summary

    if address != seed.address:
        try:
            fields.update(_trust_position(address, seed))
        except DataSourceError as e:
            log.warning("Trust-line position for %s unavailable: %s", address, e)

    return EnhancedRisk(**fields), summary


def _trust_position(address: str, seed: SeedContext) -> dict:
    issued = seed.issued_assets()
    if not issued:
        return {}
    lines = seed.trustlines()

    for asset in issued:
        holders = [line.counterparty for line in lines if line.asset_code == asset.asset_code]
        if address not in holders:
            continue
        position = holders.index(address)
        risk, early = _trustline_band(position)
        out = {
            "trustline_position": position + 1,
            "trustline_risk": risk,
            "early_connection": early,
        }
        # only the first few holders get the extra history lookup
        if position < 5:
            try:
                out["creator_connection"] = any(
                    address in (tx.account, tx.destination) for tx in seed.early_transactions()
                )
            except DataSourceError as e:
                log.warning("Creator connection check for %s failed: %s", address, e)
        return out
    return {}


# ── wallet history ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class UnusualPattern:
    kind: str  # circular_payment | large_amount
    severity: str
    description: str
    tx_hash: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "severity": self.severity,
            "description": self.description,
            "tx_hash": self.tx_hash,
        }


def detect_unusual_patterns(tx: Transaction, address: str, model: RiskModel) -> List[UnusualPattern]:
    if tx.type != "Payment":
        return []
    found = []
    if tx.account == address and tx.destination == address:
        found.append(UnusualPattern("circular_payment", "medium", "Payment sent to self", tx.hash))
    if isinstance(tx.amount, IssuedAmount) and tx.value > model.transaction.unusual_issued_amount:
        found.append(
            UnusualPattern(
                "large_amount",
                "high",
                f"Unusually large amount: {tx.value:g} {readable_asset_code(tx.amount.currency)}",
                tx.hash,
            )
        )
    return found


@dataclass
class AssetInteraction:
    sent: int = 0
    received: int = 0
    volume: float = 0.0


@dataclass
class WalletHistory:
    address: str
    early: List[Transaction] = field(default_factory=list)
    recent: List[Transaction] = field(default_factory=list)
    counterparties: List[str] = field(default_factory=list)
    asset_interactions: Dict[str, AssetInteraction] = field(default_factory=dict)
    payment_count: int = 0
    trustline_count: int = 0
    unusual_patterns: List[UnusualPattern] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "early_transaction_count": len(self.early),
            "recent_transaction_count": len(self.recent),
            "counterparties": list(self.counterparties),
            "asset_interactions": {
                code: {"sent": a.sent, "received": a.received, "volume": round(a.volume, 6)}
                for code, a in self.asset_interactions.items()
            },
            "payment_count": self.payment_count,
            "trustline_count": self.trustline_count,
            "unusual_patterns": [p.to_dict() for p in self.unusual_patterns],
            "degraded": self.degraded,
        }


def wallet_history(source, account_id: str, model: RiskModel) -> WalletHistory:
    """
    Profile an account from both ends of its history.

    The earliest and the most recent ``limits.history_window`` transactions are
    merged; a transaction that appears in both is counted once. A lookup
    failure leaves whatever was loaded and marks the profile ``degraded``.
    """
    address, _ = split_account_id(account_id)
    history = WalletHistory(address=address)
    window = model.limits.history_window

    try:
        history.early = list(source.fetch_earliest_transactions(address, window).transactions)
        history.recent = list(source.fetch_recent_transactions(address, window).transactions)
    except DataSourceError as e:
        log.warning("History for %s is incomplete: %s", address, e)
        history.degraded = True

    counterparties: Dict[str, None] = {}
    seen: Set[object] = set()
    for tx in history.early + history.recent:
        key = tx.hash or tx
        if key in seen:
            continue
        seen.add(key)

        for party in tx.counterparties(address):
            counterparties.setdefault(party, None)

        if tx.type == "Payment":
            history.payment_count += 1
            if isinstance(tx.amount, IssuedAmount):
                entry = history.asset_interactions.setdefault(
                    readable_asset_code(tx.amount.currency), AssetInteraction()
                )
                if tx.account == address:
                    entry.sent += 1
                elif tx.destination == address:
                    entry.received += 1
                entry.volume += tx.value
        elif tx.type == "TrustSet":
            history.trustline_count += 1

        history.unusual_patterns.extend(detect_unusual_patterns(tx, address, model))

    history.counterparties = list(counterparties)
    return history
