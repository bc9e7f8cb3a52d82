"""
XRP Ledger JSON-RPC client used as the analysis data source.

Talks to any public rippled / Clio endpoint over HTTPS
(https://xrpl.org/docs/references/http-websocket-apis).
No API key required.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, List, Optional

import requests

from ledger_risk.errors import AccountNotFound, DataSourceError, LedgerUnavailable
from ledger_risk.ledger.models import (
    AccountInfo,
    IssuedAmount,
    IssuedAsset,
    Transaction,
    TransactionPage,
    Trustline,
    split_account_id,
)

log = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^r[1-9A-HJ-NP-Za-km-z]{24,34}$")


class XRPLClient:
    """Fetch account metadata, history, trust lines and issued assets."""

    DEFAULT_URL = "https://xrplcluster.com/"

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = 20.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            url: JSON-RPC endpoint of a rippled or Clio server
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request before giving up
            retry_delay: Base delay between attempts (grows linearly)
            session: Optional pre-configured requests session
        """
        self.url = url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"method": method, "params": [params]}
        address = params.get("account")
        last_exc: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.post(self.url, json=payload, timeout=self.timeout)
                resp.raise_for_status()
                data = resp.json()
            except (requests.RequestException, ValueError) as e:
                last_exc = e
                log.warning("%s attempt %d/%d failed: %s", method, attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    time.sleep(self.retry_delay * attempt)
                continue

            result = data.get("result") if isinstance(data, dict) else None
            if not isinstance(result, dict):
                raise LedgerUnavailable(f"{method}: malformed response", address=address)

            if result.get("status") == "error" or "error" in result:
                err = result.get("error", "unknown")
                if err == "actNotFound":
                    raise AccountNotFound(f"{method}: account not found", address=address)
                raise DataSourceError(
                    f"{method}: {err} ({result.get('error_message', '')})", address=address
                )
            return result

        raise LedgerUnavailable(f"{method}: {last_exc}", address=address)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_address(account_id: str) -> bool:
        if not isinstance(account_id, str):
            return False
        address, tag = split_account_id(account_id)
        if tag is not None and not tag.isdigit():
            return False
        return bool(ADDRESS_RE.match(address))

    def get_account_info(self, account_id: str) -> AccountInfo:
        address, _ = split_account_id(account_id)
        result = self._request(
            "account_info", {"account": address, "ledger_index": "validated"}
        )
        return AccountInfo.from_xrpl(result.get("account_data", {}))

    def _account_tx(
        self, address: str, limit: int, forward: bool, marker: Any = None
    ) -> TransactionPage:
        params: Dict[str, Any] = {
            "account": address,
            "limit": int(limit),
            "forward": forward,
            "ledger_index_min": -1,
            "ledger_index_max": -1,
        }
        if marker is not None:
            params["marker"] = marker
        result = self._request("account_tx", params)

        txs: List[Transaction] = []
        for entry in result.get("transactions", []):
            try:
                txs.append(Transaction.from_xrpl(entry))
            except (AttributeError, TypeError, ValueError) as e:
                log.debug("Skipping malformed transaction for %s: %s", address, e)
        marker = result.get("marker")
        return TransactionPage(transactions=txs, has_more=marker is not None, page_token=marker)

    def get_account_transactions(self, account_id: str, limit: int = 20) -> List[Transaction]:
        """Most recent transactions first."""
        address, _ = split_account_id(account_id)
        return self._account_tx(address, limit, forward=False).transactions

    def fetch_earliest_transactions(self, account_id: str, limit: int = 100) -> TransactionPage:
        """Oldest transactions first."""
        address, _ = split_account_id(account_id)
        return self._account_tx(address, limit, forward=True)

    def fetch_recent_transactions(
        self, account_id: str, limit: int = 100, page_token: Any = None
    ) -> TransactionPage:
        address, _ = split_account_id(account_id)
        return self._account_tx(address, limit, forward=False, marker=page_token)

    def get_account_trustlines(self, account_id: str) -> List[Trustline]:
        address, _ = split_account_id(account_id)
        lines: List[Trustline] = []
        marker = None
        while True:
            params: Dict[str, Any] = {"account": address, "ledger_index": "validated"}
            if marker is not None:
                params["marker"] = marker
            result = self._request("account_lines", params)
            for line in result.get("lines", []):
                lines.append(
                    Trustline(
                        asset_code=line.get("currency", ""),
                        counterparty=line.get("account", ""),
                        balance=str(line.get("balance", "0")),
                        limit=str(line.get("limit", "0")),
                    )
                )
            marker = result.get("marker")
            if marker is None:
                return lines

    def get_issued_assets(self, account_id: str) -> List[IssuedAsset]:
        """Assets for which the account is the issuer, with outstanding obligations."""
        address, _ = split_account_id(account_id)
        result = self._request(
            "gateway_balances",
            {"account": address, "strict": True, "ledger_index": "validated"},
        )
        obligations = result.get("obligations") or {}
        return [
            IssuedAsset(asset_code=code, amount=str(amount), issuer=address)
            for code, amount in obligations.items()
        ]

    def get_asset_first_transactions(
        self, issuer: str, asset_code: str, limit: int = 10
    ) -> List[Transaction]:
        """Earliest issuer transactions that create trust in, or move, the asset."""
        address, _ = split_account_id(issuer)
        page = self.fetch_earliest_transactions(address, 200)
        out: List[Transaction] = []
        for tx in page.transactions:
            if tx.type == "TrustSet" and tx.limit_amount is not None:
                if tx.limit_amount.currency == asset_code and tx.limit_amount.issuer == address:
                    out.append(tx)
            elif tx.type == "Payment" and isinstance(tx.amount, IssuedAmount):
                if tx.amount.currency == asset_code and tx.amount.issuer == address:
                    out.append(tx)
            if len(out) >= limit:
                break
        return out
