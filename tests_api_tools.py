#!/usr/bin/env python3
"""
Tests for the analysis tools, the CLI and the HTTP round API

Validates:
1. table_report matches MultiplierTable and the binomial weights
2. simulate_drops runs real balls and accounts for every wager
3. simulate_crash returns close to 1 - house edge
4. CLI sub-commands exit 0, engine errors exit 1
5. POST /round/start debits, events show the payout once settled
6. Error kinds map to 400/402/409/422, unknown rounds to 404
7. Risk changes are deferred while a ball is in flight
"""

import sys
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from api.app import create_app  # noqa: E402
from api.round_routes import STATUS_BY_KIND, create_table_service  # noqa: E402
from game_engine.core.errors import ErrorKind  # noqa: E402
from game_engine.plinko.multipliers import MultiplierTable  # noqa: E402
from tools.analysis import simulate_crash, simulate_drops, table_report  # noqa: E402
from tools.casino_cli import main  # noqa: E402


def _client():
    service = create_table_service(seed=1, balance=100, realtime=False)
    app = create_app(service)
    app.config["TESTING"] = True
    return app.test_client(), service


def _settle(client, round_id, attempts=20):
    for _ in range(attempts):
        body = client.get(f"/round/{round_id}/events?ticks=600").get_json()
        if body["status"] == "settled":
            return body
    raise AssertionError(f"round {round_id} never settled")


# ============================================================
# Analysis
# ============================================================

def test_table_report():
    report = table_report("low", 10)
    assert report["pocket_count"] == 10
    assert len(report["pockets"]) == 10
    assert abs(sum(p["probability"] for p in report["pockets"]) - 1.0) < 1e-5
    assert [p["multiplier"] for p in report["pockets"]] == list(MultiplierTable.generate("low", 10))

    calibrated = table_report("high", 12, target_rtp=0.97)
    assert calibrated["binomial_rtp"] <= 0.97
    print("✅ table_report: multipliers + probabilities")


def test_simulate_drops_small_run():
    result = simulate_drops(drops=60, risk="medium", pocket_count=10, seed=3, batch=30)
    assert result.rounds == 60
    assert result.total_wagered == 60.0
    assert sum(result.histogram.values()) == 60
    assert result.ticks > 0
    assert result.measured_rtp > 0
    assert "PLINKO" in result.summary()
    assert result.to_dict()["parameters"]["batch"] == 30
    print(f"✅ simulate_drops: 60 balls, measured RTP {result.measured_rtp:.3f}")


def test_landing_distribution_is_centre_heavy():
    result = simulate_drops(drops=600, risk="low", pocket_count=10, seed=5, batch=50)
    share = {int(k): v / result.rounds for k, v in result.histogram.items()}
    assert result.rounds == 600
    assert share[4] + share[5] > 0.25, share
    assert share[0] + share[9] < 0.05, share
    assert sum(share[i] for i in range(3, 7)) > 0.6, share
    assert result.theoretical_rtp <= 0.97
    assert result.measured_rtp < 1.1
    print(f"✅ 600 balls land centre-heavy, measured RTP {result.measured_rtp:.3f}")


def test_simulate_crash_rtp():
    result = simulate_crash(rounds=4_000, auto_cashout=2.0, seed=9)
    assert abs(result.theoretical_rtp - 0.97) < 1e-9
    assert 0.85 < result.measured_rtp < 1.1
    assert set(result.histogram) <= {"0x", "2x"}
    print(f"✅ simulate_crash: measured RTP {result.measured_rtp:.3f}")


# ============================================================
# CLI
# ============================================================

def test_cli_commands():
    assert main(["table", "--risk", "low", "--pockets", "10"]) == 0
    assert main(["table", "--risk", "high", "--pockets", "16", "--json"]) == 0
    assert main(["simulate", "--drops", "20", "--batch", "10", "--seed", "4"]) == 0
    assert main(["simulate", "--game", "crash", "--rounds", "200", "--json"]) == 0
    assert main(["play", "--balls", "2", "--seed", "1", "--balance", "50"]) == 0
    assert main(["play", "--balls", "1", "--seed", "2", "--raw"]) == 0
    print("✅ CLI: table / simulate / play")


def test_cli_reports_engine_errors():
    # 40 pockets is outside the table generator's range
    assert main(["table", "--pockets", "40"]) == 1
    print("✅ CLI: GameError → exit 1")


# ============================================================
# HTTP API
# ============================================================

def test_health():
    client, _ = _client()
    assert client.get("/health").get_json() == {"status": "ok"}
    print("✅ /health")


def test_start_round_and_settle():
    client, service = _client()
    response = client.post("/round/start", json={"wager": 10})
    assert response.status_code == 201
    body = response.get_json()
    assert body["balance"] == "90"
    assert body["risk"] == service.session.risk.value

    settled = _settle(client, body["round_id"])
    names = [e["event"] for e in settled["events"]]
    assert names[0] == "round.state_changed"
    assert "ball.dropped" in names
    assert "payout.credited" in names
    assert settled["result"]["round_id"] == body["round_id"]
    assert service.session.ledger.balance == 90 + service.session.results[0].payout
    print(f"✅ Round {body['round_id']} settled with payout {settled['result']['payout']}")


def test_start_round_errors():
    client, service = _client()
    cases = [
        ({}, ErrorKind.INVALID_AMOUNT),
        ({"wager": -1}, ErrorKind.INVALID_AMOUNT),
        ({"wager": "ten"}, ErrorKind.INVALID_AMOUNT),
        ({"wager": 1000}, ErrorKind.INSUFFICIENT_FUNDS),
        ({"wager": 1, "risk": "extreme"}, ErrorKind.CONFIGURATION_ERROR),
    ]
    for payload, kind in cases:
        response = client.post("/round/start", json=payload)
        assert response.status_code == STATUS_BY_KIND[kind], payload
        assert response.get_json()["error"] == kind.value
    assert service.session.ledger.balance == 100
    print("✅ Rejected drops map to their status codes")


def test_risk_locked_while_ball_in_flight():
    client, service = _client()
    current = service.session.risk.value
    other = "high" if current != "high" else "low"
    assert client.post("/round/start", json={"wager": 1}).status_code == 201

    response = client.post("/round/start", json={"wager": 1, "risk": other})
    assert response.status_code == 409
    assert response.get_json()["error"] == "invalid_state_transition"

    deferred = client.post("/session/risk", json={"risk": other})
    assert deferred.status_code == 202
    assert deferred.get_json() == {"requested": other, "risk": current, "deferred": True}

    for _ in range(20):
        state = client.get("/session/state?ticks=600").get_json()
        if state["risk"] == other:
            break
    assert state["risk"] == other
    assert state["balls_in_flight"] == 0
    print(f"✅ Risk {current} → {other} applied after the ball settled")


def test_purged_balls_do_not_open_new_rounds():
    client, service = _client()
    ids = [client.post("/round/start", json={"wager": 1}).get_json()["round_id"]
           for _ in range(3)]
    for _ in range(20):
        client.get("/session/state?ticks=600")
        if not service.session.balls:
            break
    assert service.session.balls == []
    assert list(service.events) == ids
    for round_id in ids:
        names = [e["event"] for e in service.events[round_id]]
        assert "ball.purged" in names
        assert names.count("round.state_changed") == 3, names
    print("✅ Purged rounds close in their own event log")


def test_unknown_round():
    client, _ = _client()
    response = client.get("/round/does-not-exist/events")
    assert response.status_code == 404
    print("✅ Unknown round → 404")


def test_session_state_manual_ticks():
    client, _ = _client()
    first = client.get("/session/state").get_json()
    assert first["ticks_advanced"] == 0
    state = client.get("/session/state?ticks=3").get_json()
    assert state["ticks_advanced"] == 3
    assert state["tick"] == 3
    assert state["balance"] == "100"
    assert len(state["multipliers"]) == 10
    print("✅ /session/state advances by ?ticks")


def test_unknown_risk_on_session():
    client, _ = _client()
    response = client.post("/session/risk", json={"risk": "wild"})
    assert response.status_code == 422
    print("✅ Unknown risk → 422")


if __name__ == "__main__":
    tests = [
        test_table_report,
        test_simulate_drops_small_run,
        test_landing_distribution_is_centre_heavy,
        test_simulate_crash_rtp,
        test_cli_commands,
        test_cli_reports_engine_errors,
        test_health,
        test_start_round_and_settle,
        test_start_round_errors,
        test_risk_locked_while_ball_in_flight,
        test_purged_balls_do_not_open_new_rounds,
        test_unknown_round,
        test_session_state_manual_ticks,
        test_unknown_risk_on_session,
    ]

    print(f"\n{'='*60}")
    print(f"API + Tools Tests — {len(tests)} tests")
    print(f"{'='*60}\n")

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"❌ {test.__name__}: {e}")
            failed += 1
        print()

    print(f"{'='*60}")
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")
    print(f"{'='*60}")

    sys.exit(0 if failed == 0 else 1)
