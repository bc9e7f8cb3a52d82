"""
Scan the network around one XRP Ledger account and print a risk report.

Usage:
    python scripts/scan.py rXXXXXXXX... [--depth 2] [--max-nodes 100] [--json]
    python scripts/scan.py rXXXXXXXX... --history
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List

from ledger_risk.errors import LedgerRiskError
from ledger_risk.ledger.xrpl_client import XRPLClient
from ledger_risk.network.traversal import NetworkAnalyzer, ProgressEvent
from ledger_risk.scoring.findings import top_accounts_frame


def hr(title: str) -> None:
    print("\n" + "=" * 90)
    print(title)
    print("=" * 90)


def pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, default=str)


def print_metrics(metrics: Dict[str, int]) -> None:
    print(f"{'Risk score':<28}{metrics['risk_score_percent']}%")
    print(f"{'Connected accounts':<28}{metrics['connected_account_count']}")
    print(f"{'Connected assets':<28}{metrics['connected_asset_count']}")
    print(f"{'Suspicious connections':<28}{metrics['suspicious_edge_count']}")


def print_findings(findings: List[Dict[str, Any]]) -> None:
    if not findings:
        print("No findings.")
        return

    print(f"{'Severity':<10}{'Kind':<32}{'Description'}")
    print("-" * 90)
    for f in findings:
        print(f"{f['severity']:<10}{f['kind']:<32}{f['description']}")


def print_top_accounts(run, limit: int) -> None:
    top = top_accounts_frame(run.store, run.final, run.seed_id, limit)
    if top.empty:
        print("No connected accounts.")
        return

    print(f"{'Rank':<6}{'Account':<38}{'Risk':<8}{'Reasons'}")
    print("-" * 90)
    for i, row in enumerate(top.itertuples(index=False), start=1):
        print(f"{i:<6}{row.account:<38}{row.risk_level:<8.3f}{row.reasons}")


def print_history(history) -> None:
    print(f"{'Payments':<28}{history.payment_count}")
    print(f"{'Trust lines set':<28}{history.trustline_count}")
    print(f"{'Unique counterparties':<28}{len(history.counterparties)}")
    if history.degraded:
        print("(history is incomplete: the ledger did not answer every request)")

    if history.asset_interactions:
        print()
        print(f"{'Asset':<16}{'Sent':<8}{'Received':<10}{'Volume'}")
        print("-" * 90)
        for code, a in history.asset_interactions.items():
            print(f"{code:<16}{a.sent:<8}{a.received:<10}{a.volume:,.6g}")

    if history.unusual_patterns:
        print()
        print(f"{'Severity':<10}{'Pattern':<20}{'Description'}")
        print("-" * 90)
        for p in history.unusual_patterns:
            print(f"{p.severity:<10}{p.kind:<20}{p.description}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Analyze the network risk around an XRP Ledger account")
    parser.add_argument("address", help="Seed account address (optionally address:tag)")
    parser.add_argument("--depth", type=int, default=None, help="Expansion depth (1-3)")
    parser.add_argument("--max-nodes", type=int, default=None, help="Node budget for the scan")
    parser.add_argument(
        "--rpc-url",
        default=os.getenv("XRPL_RPC_URL", XRPLClient.DEFAULT_URL),
        help="JSON-RPC endpoint (env: XRPL_RPC_URL)",
    )
    parser.add_argument("--top", type=int, default=10, help="Rows in the top-accounts table")
    parser.add_argument("--json", action="store_true", help="Print the full payload as JSON")
    parser.add_argument("--history", action="store_true", help="Profile the account's own history instead of scanning")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    def on_progress(event: ProgressEvent) -> None:
        if not args.json:
            print(f"  [{event.state.value}] {event.message} (nodes={event.node_count}, edges={event.edge_count})")

    analyzer = NetworkAnalyzer(XRPLClient(url=args.rpc_url))

    if args.history:
        try:
            history = analyzer.wallet_history(args.address)
        except LedgerRiskError as e:
            print(f"❌ History failed: {e}", file=sys.stderr)
            return 1
        if args.json:
            print(pretty(history.to_dict()))
        else:
            hr(f"Wallet history for {history.address}")
            print_history(history)
        return 0

    try:
        run = analyzer.analyze(args.address, args.depth, args.max_nodes, on_progress=on_progress)
    except LedgerRiskError as e:
        print(f"❌ Scan failed: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(pretty(run.to_payload()))
        return 0

    hr(f"Network risk for {run.seed_id}")
    print_metrics(run.get_metrics())

    hr("Findings")
    print_findings(run.get_findings())

    hr("Highest-risk connected accounts")
    print_top_accounts(run, args.top)

    print("\n✅ Scan complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
