"""
models.py – Typed views over ledger JSON.

The ledger reports amounts in two shapes: a string of drops for the native
asset, or an object ``{value, currency, issuer}`` for issued assets.  Both are
parsed once into the ``Amount`` union so callers never branch on raw JSON.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

# Ledger timestamps count seconds from 2000-01-01T00:00:00Z
RIPPLE_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)

DROPS_PER_NATIVE = 1_000_000


@dataclass(frozen=True)
class NativeAmount:
    drops: str


@dataclass(frozen=True)
class IssuedAmount:
    value: str
    currency: str
    issuer: str


Amount = Union[NativeAmount, IssuedAmount]


def parse_amount(raw: Any) -> Optional[Amount]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return NativeAmount(drops=raw)
    if isinstance(raw, dict) and "value" in raw:
        return IssuedAmount(
            value=str(raw.get("value", "0")),
            currency=str(raw.get("currency", "")),
            issuer=str(raw.get("issuer", "")),
        )
    return None


def normalize_amount(amount: Optional[Amount]) -> float:
    """Amount as a float in whole units. Malformed, negative or non-finite input counts as 0."""
    if amount is None:
        return 0.0
    try:
        if isinstance(amount, NativeAmount):
            value = int(amount.drops) / DROPS_PER_NATIVE
        else:
            value = float(amount.value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def ripple_time_to_datetime(seconds: Any) -> Optional[datetime]:
    try:
        return RIPPLE_EPOCH + timedelta(seconds=int(seconds))
    except (TypeError, ValueError, OverflowError):
        return None


def split_account_id(account_id: str) -> Tuple[str, Optional[str]]:
    """``"rAddr:1234"`` -> ``("rAddr", "1234")``; untagged ids give ``None``."""
    address, sep, tag = account_id.partition(":")
    return address, (tag if sep else None)


@dataclass(frozen=True)
class Transaction:
    type: str
    account: str
    hash: str = ""
    destination: Optional[str] = None
    amount: Optional[Amount] = None
    limit_amount: Optional[IssuedAmount] = None
    memos: Tuple[str, ...] = ()
    date: Optional[datetime] = None

    @classmethod
    def from_xrpl(cls, raw: Dict[str, Any]) -> "Transaction":
        """
        Build from an ``account_tx`` entry. Accepts either the wrapper
        ``{"tx": {...}, "meta": ...}`` or the bare transaction object.
        """
        tx = raw.get("tx") or raw.get("tx_json") or raw
        limit = parse_amount(tx.get("LimitAmount"))
        memos = []
        for m in tx.get("Memos") or []:
            data = (m.get("Memo") or {}).get("MemoData")
            if data:
                memos.append(data)
        return cls(
            type=tx.get("TransactionType", ""),
            account=tx.get("Account", ""),
            hash=tx.get("hash") or raw.get("hash", ""),
            destination=tx.get("Destination"),
            amount=parse_amount(tx.get("Amount")),
            limit_amount=limit if isinstance(limit, IssuedAmount) else None,
            memos=tuple(memos),
            date=ripple_time_to_datetime(tx.get("date", raw.get("date"))),
        )

    @property
    def value(self) -> float:
        return normalize_amount(self.amount)

    @property
    def asset_code(self) -> Optional[str]:
        """Issued-asset code moved or trusted by this transaction, if any."""
        if isinstance(self.amount, IssuedAmount):
            return self.amount.currency
        if self.limit_amount is not None:
            return self.limit_amount.currency
        return None

    def counterparties(self, address: str) -> List[str]:
        """Other accounts touched by this transaction, in field order."""
        seen: Dict[str, None] = {}
        candidates = [self.account, self.destination]
        if self.limit_amount is not None:
            candidates.append(self.limit_amount.issuer)
        for c in candidates:
            if c and c != address:
                seen.setdefault(c, None)
        return list(seen)

    def decoded_memos(self) -> List[str]:
        out = []
        for data in self.memos:
            try:
                out.append(bytes.fromhex(data).decode("utf-8"))
            except (ValueError, UnicodeDecodeError):
                continue
        return out


@dataclass(frozen=True)
class AccountInfo:
    address: str
    sequence: Optional[int] = None
    balance: float = 0.0
    owner_count: int = 0

    @classmethod
    def from_xrpl(cls, data: Dict[str, Any]) -> "AccountInfo":
        seq = data.get("Sequence")
        return cls(
            address=data.get("Account", ""),
            sequence=int(seq) if seq is not None else None,
            balance=normalize_amount(parse_amount(data.get("Balance"))),
            owner_count=int(data.get("OwnerCount", 0) or 0),
        )


@dataclass(frozen=True)
class Trustline:
    asset_code: str
    counterparty: str
    balance: str = "0"
    limit: str = "0"


@dataclass(frozen=True)
class IssuedAsset:
    asset_code: str
    amount: str
    issuer: str


@dataclass
class TransactionPage:
    transactions: List[Transaction] = field(default_factory=list)
    has_more: bool = False
    page_token: Any = None


_FRAME_COLUMNS = ["type", "account", "destination", "value", "is_issued", "asset_code", "date"]


def transactions_frame(txs: Iterable[Transaction]) -> pd.DataFrame:
    """One row per transaction; ``date`` is a tz-aware timestamp or NaT."""
    rows = [
        {
            "type": tx.type,
            "account": tx.account,
            "destination": tx.destination,
            "value": tx.value,
            "is_issued": isinstance(tx.amount, IssuedAmount),
            "asset_code": tx.asset_code,
            "date": tx.date,
        }
        for tx in txs
    ]
    df = pd.DataFrame(rows, columns=_FRAME_COLUMNS)
    df["date"] = pd.to_datetime(df["date"], utc=True)
    return df
