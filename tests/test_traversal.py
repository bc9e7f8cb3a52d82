import pytest

from conftest import (
    BOB,
    DAVE,
    ERIN,
    FRANK,
    GINA,
    HANK,
    KNOWN_BAD,
    SEED,
    issued_payment,
    payment,
    spaced,
    trust_set,
)
from ledger_risk.errors import InvalidAddress, LedgerUnavailable
from ledger_risk.network.graph_store import NodeKind, RelationshipKind
from ledger_risk.network.traversal import NetworkAnalyzer, RunState, asset_node_id
from ledger_risk.scoring.findings import find_finding


def test_seed_without_activity_is_a_single_node(ledger):
    run = NetworkAnalyzer(ledger).analyze(SEED)

    assert run.state is RunState.COMPLETE
    assert run.store.node_count == 1
    assert run.store.edge_count == 0
    assert run.get_metrics() == {
        "risk_score_percent": 0,
        "connected_account_count": 0,
        "connected_asset_count": 0,
        "suspicious_edge_count": 0,
    }
    assert run.final[SEED] == 0.0


def test_single_ordinary_payment(ledger):
    ledger.history(SEED, [payment(SEED, BOB)])
    ledger.history(BOB, spaced([payment(BOB, SEED) for _ in range(10)]))

    run = NetworkAnalyzer(ledger).analyze(SEED)

    assert run.store.node_count == 2
    assert run.store.edge_count == 1
    edge = run.store.find_edge(SEED, BOB)
    assert edge.is_suspicious is False
    assert edge.kind is RelationshipKind.PAYMENT
    assert run.store.find_node(BOB).risk_level < 0.5
    assert run.store.find_node(BOB).depth == 1


def test_known_high_risk_counterparty(ledger):
    ledger.history(SEED, [payment(SEED, KNOWN_BAD)])

    run = NetworkAnalyzer(ledger).analyze(SEED)

    bad = run.store.find_node(KNOWN_BAD)
    assert bad.risk_level == 1.0
    assert bad.is_known_high_risk
    assert run.store.find_edge(SEED, KNOWN_BAD).is_suspicious
    finding = find_finding(run.findings, "known_high_risk_wallets")
    assert finding is not None
    assert finding.severity == "critical"
    assert KNOWN_BAD in finding.details["accounts"]


def test_buzzword_asset_with_few_holders(ledger):
    ledger.issue(SEED, "MOON", "5")

    run = NetworkAnalyzer(ledger).analyze(SEED)

    asset = run.store.find_node(asset_node_id("MOON", SEED))
    assert asset.kind is NodeKind.ASSET
    # name penalty 0.4 + low-holder penalty 0.8 * (1 - 5/10)
    assert asset.risk_level == pytest.approx(0.8)
    assert asset.issue_date_estimated
    assert asset.estimated_holder_count == 10
    assert run.store.find_edge(SEED, asset.id).kind is RelationshipKind.ASSET_ISSUANCE
    assert run.store.find_node(SEED).is_creator_account
    assert find_finding(run.findings, "high_risk_assets") is not None
    assert SEED in run.scam_creators


def test_cycles_terminate_and_each_account_expands_once(ledger):
    ledger.history(SEED, [payment(SEED, BOB)])
    ledger.history(BOB, [payment(BOB, SEED), payment(BOB, DAVE)])
    ledger.history(DAVE, [payment(DAVE, BOB), payment(DAVE, SEED)])

    run = NetworkAnalyzer(ledger).analyze(SEED, max_depth=3)

    assert run.state is RunState.COMPLETE
    assert len(run.expansion_order) == len(set(run.expansion_order))
    assert run.expansion_order == [SEED, BOB, DAVE]
    scans = [c for c in ledger.calls if c[0] == "get_account_transactions" and c[1] == BOB]
    # one for expansion, one for the base-risk activity check
    assert len(scans) == 2


def test_depth_limit_stops_expansion(ledger):
    ledger.history(SEED, [payment(SEED, BOB)])
    ledger.history(BOB, [payment(BOB, DAVE)])

    run = NetworkAnalyzer(ledger).analyze(SEED, max_depth=1)

    assert run.expansion_order == [SEED]
    assert run.store.has_node(BOB)
    assert not run.store.has_node(DAVE)
    assert all(n.depth is None or n.depth <= 1 for n in run.store.nodes())


def test_depth_is_clamped(ledger):
    run = NetworkAnalyzer(ledger).analyze(SEED, max_depth=9)
    assert run.limits.max_depth == 3

    run = NetworkAnalyzer(ledger).analyze(SEED, max_depth=0)
    assert run.limits.max_depth == 1


def test_node_budget_is_respected(ledger):
    ledger.history(SEED, [payment(SEED, other) for other in (BOB, DAVE, ERIN, FRANK, GINA, HANK)])

    run = NetworkAnalyzer(ledger).analyze(SEED, max_nodes=3)

    assert run.store.node_count <= 3
    # discovery order follows the transaction order
    assert [n.id for n in run.store.nodes()] == [SEED, BOB, DAVE]


def test_high_risk_neighbour_is_recorded_but_not_expanded(ledger):
    ledger.history(SEED, [payment(SEED, KNOWN_BAD)])
    ledger.history(KNOWN_BAD, [payment(KNOWN_BAD, DAVE)])

    run = NetworkAnalyzer(ledger).analyze(SEED)

    assert run.store.has_node(KNOWN_BAD)
    assert KNOWN_BAD not in run.visited
    assert not run.store.has_node(DAVE)


def test_failure_on_one_neighbour_does_not_abort(ledger):
    ledger.history(SEED, [payment(SEED, BOB), payment(SEED, DAVE)])
    ledger.history(DAVE, [payment(DAVE, ERIN)])
    ledger.fail("get_account_transactions", BOB, LedgerUnavailable("timeout", address=BOB))

    run = NetworkAnalyzer(ledger).analyze(SEED)

    assert run.state is RunState.COMPLETE
    bob = run.store.find_node(BOB)
    assert bob.base_risk_degraded
    assert run.store.has_node(ERIN)


def test_unreachable_seed_fails_the_run(ledger):
    ledger.fail("get_account_transactions", SEED, LedgerUnavailable("down", address=SEED))
    analyzer = NetworkAnalyzer(ledger)

    with pytest.raises(LedgerUnavailable):
        analyzer.analyze(SEED)

    assert analyzer.run.state is RunState.FAILED
    assert "down" in analyzer.run.error
    assert analyzer.run.store.has_node(SEED)


def test_invalid_seed_is_rejected_before_any_lookup(ledger):
    analyzer = NetworkAnalyzer(ledger)

    with pytest.raises(InvalidAddress):
        analyzer.analyze("not-an-address")

    assert analyzer.run.state is RunState.FAILED
    assert ledger.calls == []


def test_runs_are_deterministic(ledger):
    ledger.history(SEED, [payment(SEED, BOB), payment(SEED, DAVE), payment(SEED, KNOWN_BAD)])
    ledger.history(BOB, spaced([payment(BOB, DAVE), payment(BOB, ERIN), payment(BOB, SEED)]))
    ledger.history(DAVE, [payment(DAVE, FRANK)])
    ledger.issue(BOB, "SAFEMOON", "3")

    first = NetworkAnalyzer(ledger).analyze(SEED).to_payload()
    second = NetworkAnalyzer(ledger).analyze(SEED).to_payload()

    assert first == second


def test_runs_do_not_share_state(ledger):
    ledger.history(SEED, [payment(SEED, BOB)])
    analyzer = NetworkAnalyzer(ledger)

    first = analyzer.analyze(SEED)
    second = analyzer.analyze(DAVE)

    assert first.store is not second.store
    assert second.store.node_count == 1
    assert not second.store.has_node(BOB)


def test_early_participants_are_ranked_by_first_appearance(ledger):
    ledger.issue(SEED, "USD", "1000000")
    ledger.history(SEED, [issued_payment(SEED, FRANK, "USD", SEED), trust_set(ERIN, SEED, "USD")])

    run = NetworkAnalyzer(ledger).analyze(SEED)

    asset_id = asset_node_id("USD", SEED)
    erin = run.store.find_node(ERIN)
    frank = run.store.find_node(FRANK)
    assert erin.is_early_participant and frank.is_early_participant
    assert "position 1" in erin.early_info
    assert "position 2" in frank.early_info
    assert run.store.find_node(asset_id).early_participant_count == 2

    erin_edge = run.store.find_edge(ERIN, asset_id)
    frank_edge = run.store.find_edge(FRANK, asset_id)
    assert erin_edge.kind is RelationshipKind.EARLY_ASSET_ACTIVITY
    assert erin_edge.weight == pytest.approx(5.0)
    assert frank_edge.weight == pytest.approx(3.5)
    # base 0.7 plus the early-participant bonus
    assert run.final[ERIN] == pytest.approx(0.85)


def test_progress_walks_the_lifecycle(ledger):
    ledger.history(SEED, [payment(SEED, BOB)])
    states = []

    NetworkAnalyzer(ledger).analyze(SEED, on_progress=lambda e: states.append(e.state))

    seen = list(dict.fromkeys(states))
    assert seen == [
        RunState.VALIDATING,
        RunState.EXPANDING,
        RunState.IDENTIFYING_EARLY_PARTICIPANTS,
        RunState.ENRICHING,
        RunState.FINALIZING_RISK,
        RunState.GENERATING_FINDINGS,
        RunState.COMPLETE,
    ]


def test_exactly_one_network_assessment(ledger):
    ledger.history(SEED, [payment(SEED, BOB), payment(SEED, KNOWN_BAD)])

    run = NetworkAnalyzer(ledger).analyze(SEED)

    kinds = [f["kind"] for f in run.get_findings()]
    assert kinds.count("network_risk_assessment") == 1
    assert kinds[0] == "network_risk_assessment"


def test_tagged_seed_keeps_its_counterparties(ledger):
    tagged = f"{SEED}:42"
    ledger.history(tagged, [payment(SEED, BOB), trust_set(SEED, DAVE, "USD")])
    ledger.history(BOB, [payment(BOB, SEED)])

    run = NetworkAnalyzer(ledger).analyze(tagged)

    assert run.state is RunState.COMPLETE
    assert {n.id for n in run.store.nodes()} == {tagged, BOB, DAVE}
    assert run.store.find_edge(tagged, BOB).kind is RelationshipKind.PAYMENT
    assert run.store.find_edge(tagged, DAVE).kind is RelationshipKind.TRUST_ESTABLISHMENT
    assert run.store.edge_count == 2
    assert run.get_metrics()["connected_account_count"] == 2


@pytest.mark.parametrize(
    "tx",
    [
        payment(SEED, BOB, drops="1" + "0" * 400),
        payment(SEED, BOB, drops="9" * 30),
        payment(SEED, BOB, drops="-5"),
        payment(SEED, BOB, drops="not-a-number"),
        issued_payment(SEED, BOB, "USD", DAVE, value="1e400"),
        issued_payment(SEED, BOB, "USD", DAVE, value="NaN"),
        issued_payment(SEED, BOB, "USD", DAVE, value="-1"),
    ],
)
def test_any_amount_keeps_risk_in_range(ledger, tx):
    ledger.history(SEED, [tx])
    ledger.history(BOB, [tx, payment(BOB, ERIN, drops="1" + "0" * 400)])
    ledger.issue(SEED, "MOON", "1e400")

    run = NetworkAnalyzer(ledger).analyze(SEED)

    assert run.state is RunState.COMPLETE
    assert all(0.0 <= n.risk_level <= 1.0 for n in run.store.nodes())
    assert all(0.0 <= e.weight < float("inf") for e in run.store.edges())
    assert 0 <= run.risk_score_percent <= 100


def test_node_details_label_each_connection(ledger):
    ledger.issue(SEED, "USD", "1000000")
    ledger.history(SEED, [trust_set(ERIN, SEED, "USD"), payment(SEED, KNOWN_BAD, drops="50000000000")])

    run = NetworkAnalyzer(ledger).analyze(SEED)

    details = run.node_details(asset_node_id("USD", SEED))
    by_id = {c["id"]: c for c in details["connections"]}
    assert by_id[ERIN]["relationship"] == "early transaction"
    assert by_id[ERIN]["is_early_participant"] is True
    assert by_id[SEED]["link_kind"] == "asset_issuance"

    seed = run.node_details(SEED)
    assert seed["kind"] == "account"
    assert {c["relationship"] for c in seed["connections"] if c["id"] == KNOWN_BAD} == {"suspicious"}
    assert run.node_details("nowhere") is None


def test_wallet_history_outside_a_run(ledger):
    ledger.history(SEED, [payment(SEED, BOB)])
    analyzer = NetworkAnalyzer(ledger)

    history = analyzer.wallet_history(SEED)

    assert history.counterparties == [BOB]
    assert analyzer.run is None
    with pytest.raises(InvalidAddress):
        analyzer.wallet_history("nope")
