from ledger_risk.network.graph_store import GraphStore, NodeKind, RelationshipKind
from ledger_risk.scoring.config import RiskModel
from ledger_risk.scoring.final_pass import collect_inputs, compute_final_risk
from ledger_risk.scoring.findings import (
    NETWORK_RISK_ASSESSMENT,
    find_finding,
    generate_findings,
    top_accounts_frame,
)

MODEL = RiskModel()


def _findings(store, seed="S"):
    final = compute_final_risk(store, collect_inputs(store, seed), seed, MODEL)
    return final, generate_findings(store, seed, final, MODEL)


def test_lonely_seed_reports_limited_activity():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0)

    _, findings = _findings(store)

    assert [f.kind for f in findings] == [NETWORK_RISK_ASSESSMENT, "limited_network_activity", "no_major_red_flags"]
    assessment = findings[0]
    assert assessment.severity == "low"
    assert assessment.details["score"] == 0.0
    assert assessment.details["risk_score_percent"] == 0
    assert find_finding(findings, "limited_network_activity").severity == "medium"


def test_top_accounts_are_sorted_with_reasons():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0)
    store.upsert_node("A", NodeKind.ACCOUNT, risk_level=0.2)
    store.upsert_node("B", NodeKind.ACCOUNT, risk_level=0.6, is_creator_account=True)
    store.upsert_node("C", NodeKind.ACCOUNT, risk_level=0.2)
    final, findings = _findings(store)

    top = top_accounts_frame(store, final, "S", top_n=2)

    assert list(top["account"]) == ["B", "A"]
    assert "issues assets" in top.loc[0, "reasons"]
    top_finding = find_finding(findings, "top_risk_accounts")
    assert top_finding.severity == "high"
    assert top_finding.details["accounts"][0]["account"] == "B"


def test_risky_assets_and_suspicious_edges():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0, is_creator_account=True)
    store.upsert_node("MOON.S", NodeKind.ASSET, risk_level=0.8, issuer_id="S", asset_code="MOON")
    store.upsert_edge("S", "MOON.S", 5.0, True, RelationshipKind.ASSET_ISSUANCE)

    _, findings = _findings(store)

    assets = find_finding(findings, "high_risk_assets")
    assert assets.details["assets"][0]["code"] == "MOON"
    assert find_finding(findings, "creator_accounts").severity == "high"
    assert len(find_finding(findings, "suspicious_connections").details["edges"]) == 1


def test_pairings_between_high_risk_accounts():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0)
    store.upsert_node("A", NodeKind.ACCOUNT, risk_level=0.9)
    store.upsert_node("B", NodeKind.ACCOUNT, risk_level=0.9)
    store.upsert_edge("A", "B")

    _, findings = _findings(store)

    pairs = find_finding(findings, "high_risk_pairings")
    assert pairs is not None
    assert pairs.details["edges"][0]["source"] == "A"


def test_many_assets():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0)
    for code in ("AAA", "BBB", "CCC", "DDD"):
        store.upsert_node(f"{code}.S", NodeKind.ASSET, risk_level=0.1, issuer_id="S", asset_code=code)

    _, findings = _findings(store)

    assert find_finding(findings, "multiple_asset_connections").severity == "medium"
    assert [f.kind for f in findings].count(NETWORK_RISK_ASSESSMENT) == 1


def test_quiet_network_gets_an_all_clear():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0)
    for node_id in ("A", "B", "C"):
        store.upsert_node(node_id, NodeKind.ACCOUNT, risk_level=0.1)
        store.upsert_edge("S", node_id)

    _, findings = _findings(store)

    clear = find_finding(findings, "no_major_red_flags")
    assert clear.severity == "low"
    assert [f.kind for f in findings] == [NETWORK_RISK_ASSESSMENT, "top_risk_accounts", "no_major_red_flags"]


def test_no_all_clear_when_risk_is_high():
    store = GraphStore()
    store.upsert_node("S", NodeKind.ACCOUNT, risk_level=0.0)
    for i in range(9):
        store.upsert_node(f"A{i}", NodeKind.ACCOUNT, risk_level=0.6)
        store.upsert_edge("S", f"A{i}")

    final, findings = _findings(store)

    assert final.risk_score_percent >= 30
    assert find_finding(findings, "no_major_red_flags") is None
