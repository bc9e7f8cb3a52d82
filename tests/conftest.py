from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from ledger_risk.ledger.models import (
    AccountInfo,
    IssuedAmount,
    IssuedAsset,
    NativeAmount,
    Transaction,
    TransactionPage,
    Trustline,
)
from ledger_risk.ledger.xrpl_client import XRPLClient


def addr(name: str) -> str:
    """Well-formed test address: 'r' + name padded to 25 base58 characters."""
    return "r" + name + "x" * (25 - len(name))


SEED = addr("Seed")
BOB = addr("Bob")
DAVE = addr("Dave")
ERIN = addr("Erin")
FRANK = addr("Frank")
GINA = addr("Gina")
HANK = addr("Hank")
KNOWN_BAD = "rHYTJDFrbCU1i2yCENTSEgVFJUMWuFqeQj"

T0 = datetime(2023, 1, 1, tzinfo=timezone.utc)


def payment(src: str, dst: str, drops: str = "1234567", at: Optional[datetime] = None,
            memos: Tuple[str, ...] = ()) -> Transaction:
    return Transaction(
        type="Payment",
        account=src,
        destination=dst,
        amount=NativeAmount(drops),
        memos=memos,
        date=at or T0,
    )


def issued_payment(src: str, dst: str, code: str, issuer: str, value: str = "10",
                   at: Optional[datetime] = None) -> Transaction:
    return Transaction(
        type="Payment",
        account=src,
        destination=dst,
        amount=IssuedAmount(value=value, currency=code, issuer=issuer),
        date=at or T0,
    )


def trust_set(account: str, issuer: str, code: str, at: Optional[datetime] = None) -> Transaction:
    return Transaction(
        type="TrustSet",
        account=account,
        limit_amount=IssuedAmount(value="1000000", currency=code, issuer=issuer),
        date=at or T0,
    )


def spaced(txs: List[Transaction], gap: timedelta = timedelta(days=10)) -> List[Transaction]:
    """Re-date a newest-first list so entries are ``gap`` apart."""
    n = len(txs)
    return [
        replace(tx, date=T0 + gap * (n - 1 - i))
        for i, tx in enumerate(txs)
    ]


class FakeLedger:
    """
    In-memory ledger data source. Transactions are stored newest first, as
    ``account_tx`` returns them by default. ``fail(method, address, exc)``
    makes one lookup raise.
    """

    def __init__(self):
        self.accounts: Dict[str, AccountInfo] = {}
        self.txs: Dict[str, List[Transaction]] = {}
        self.issued: Dict[str, List[IssuedAsset]] = {}
        self.trustlines: Dict[str, List[Trustline]] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple[str, str]] = []

    is_valid_address = staticmethod(XRPLClient.is_valid_address)

    # setup helpers
    def account(self, address: str, sequence: int = 50) -> "FakeLedger":
        self.accounts[address] = AccountInfo(address=address, sequence=sequence)
        return self

    def history(self, address: str, txs: List[Transaction]) -> "FakeLedger":
        self.txs[address] = list(txs)
        return self

    def issue(self, issuer: str, code: str, amount: str) -> "FakeLedger":
        self.issued.setdefault(issuer, []).append(IssuedAsset(asset_code=code, amount=amount, issuer=issuer))
        return self

    def fail(self, method: str, address: str, exc: Exception) -> "FakeLedger":
        self.failures[(method, address)] = exc
        return self

    def _check(self, method: str, address: str) -> None:
        self.calls.append((method, address))
        exc = self.failures.get((method, address))
        if exc is not None:
            raise exc

    # data source
    def get_account_info(self, address):
        self._check("get_account_info", address)
        return self.accounts.get(address, AccountInfo(address=address, sequence=50))

    def get_account_transactions(self, address, limit=20):
        self._check("get_account_transactions", address)
        return self.txs.get(address, [])[:limit]

    def fetch_earliest_transactions(self, address, limit=100):
        self._check("fetch_earliest_transactions", address)
        return TransactionPage(transactions=list(reversed(self.txs.get(address, [])))[:limit])

    def fetch_recent_transactions(self, address, limit=100, page_token=None):
        self._check("fetch_recent_transactions", address)
        return TransactionPage(transactions=self.txs.get(address, [])[:limit])

    def get_account_trustlines(self, address):
        self._check("get_account_trustlines", address)
        return list(self.trustlines.get(address, []))

    def get_issued_assets(self, address):
        self._check("get_issued_assets", address)
        return list(self.issued.get(address, []))

    def get_asset_first_transactions(self, issuer, asset_code, limit=10):
        self._check("get_asset_first_transactions", issuer)
        out = [
            tx for tx in reversed(self.txs.get(issuer, []))
            if tx.asset_code == asset_code and tx.type in ("Payment", "TrustSet")
        ]
        return out[:limit]


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
