"""
CASINOCORE — Round API

Flask blueprint exposing a Plinko table over HTTP:

    POST /round/start               {"wager": 10, "risk": "low"} → {"round_id", "ball_id"}
    GET  /round/<round_id>/events   ball state + every event of that round
    GET  /session/state             table snapshot
    POST /session/risk              {"risk": "high"}, applied once no ball is in flight

There is no background thread: each request first catches the simulation up
to wall-clock time (or by `?ticks=N` when given), then answers. Engine
errors come back as {"error": kind, "message": ...} with the status code
mapped from their kind.
"""

import logging
import threading
import time
from collections import OrderedDict
from decimal import Decimal
from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from config.game_schema import default_plinko_config
from config.settings import Settings
from game_engine.core.errors import ErrorKind, GameError
from game_engine.core.events import WILDCARD, Event
from game_engine.core.ledger import InMemoryBalanceService, PayoutLedger
from game_engine.core.rng import make_random_source
from game_engine.plinko.session import PlinkoSession

logger = logging.getLogger("casinocore.api")

rounds_bp = Blueprint("rounds", __name__)

STATUS_BY_KIND = {
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 402,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.SIMULATION_ANOMALY: 500,
    ErrorKind.CONFIGURATION_ERROR: 422,
}

MAX_CATCHUP_TICKS = 600
MAX_TRACKED_ROUNDS = 500


class TableService:
    """One Plinko session plus a per-round event log, shared by all requests."""

    def __init__(self, session: PlinkoSession, realtime: bool = True):
        self.session = session
        self.realtime = realtime
        self.events: "OrderedDict[str, list[dict]]" = OrderedDict()
        self.ball_rounds: dict[int, str] = {}
        self._lock = threading.RLock()
        self._last_tick = time.monotonic()
        session.bus.subscribe(WILDCARD, self._record)

    def _record(self, event: Event) -> None:
        round_id = event.payload.get("round_id")
        ball_id = event.payload.get("ball_id")
        if round_id is None and ball_id is not None:
            round_id = self.ball_rounds.get(ball_id)
        if round_id is None:
            return
        with self._lock:
            if ball_id is not None:
                self.ball_rounds.setdefault(ball_id, round_id)
            log = self.events.setdefault(round_id, [])
            log.append({"event": event.name, "timestamp": event.timestamp,
                        **{k: _plain(v) for k, v in event.payload.items()}})
            while len(self.events) > MAX_TRACKED_ROUNDS:
                _, dropped = self.events.popitem(last=False)
                for ball in {e.get("ball_id") for e in dropped}:
                    self.ball_rounds.pop(ball, None)

    def catch_up(self, ticks: Optional[int] = None) -> int:
        """Advance the table; wall-clock driven unless `ticks` is given."""
        with self._lock:
            now = time.monotonic()
            if ticks is None:
                if not self.realtime:
                    return 0
                ticks = int((now - self._last_tick) / self.session.config.nominal_dt)
            ticks = max(0, min(ticks, MAX_CATCHUP_TICKS))
            for _ in range(ticks):
                self.session.tick()
            if ticks:
                self._last_tick = now
            return ticks

    def drop(self, wager, risk=None):
        with self._lock:
            self.catch_up()
            return self.session.drop(wager, risk=risk)

    def set_risk(self, risk):
        with self._lock:
            self.catch_up()
            return self.session.set_risk(risk)

    def round_ball(self, round_id: str) -> Optional[int]:
        with self._lock:
            for ball_id, rid in self.ball_rounds.items():
                if rid == round_id:
                    return ball_id
        return None


def _plain(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def create_table_service(seed: Optional[int] = None, balance: Optional[float] = None,
                         realtime: bool = True) -> TableService:
    ledger = PayoutLedger(InMemoryBalanceService(
        Decimal(str(balance if balance is not None else Settings.STARTING_BALANCE))))
    config = default_plinko_config(risk=Settings.DEFAULT_RISK, target_rtp=Settings.target_rtp())
    config = config.model_copy(update={
        "tick_rate": 1.0 / Settings.tick_interval(),
        "result_history": Settings.RESULT_HISTORY or config.result_history,
    })
    session = PlinkoSession(ledger, config=config,
                            rng=make_random_source(seed if seed is not None else Settings.SEED))
    return TableService(session, realtime=realtime)


def _service() -> TableService:
    return current_app.extensions["casinocore"]


def _error(error: GameError):
    status = STATUS_BY_KIND.get(error.kind, 500)
    logger.info(f"{request.method} {request.path} → {status} {error.kind.value}: {error.message}")
    return jsonify(error.to_dict()), status


def _requested_ticks() -> Optional[int]:
    raw = request.args.get("ticks")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


# ═══════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════

@rounds_bp.route("/round/start", methods=["POST"])
def start_round():
    data = request.get_json(silent=True) or {}
    if "wager" not in data:
        return jsonify({"error": ErrorKind.INVALID_AMOUNT.value,
                        "message": "wager required"}), 400

    service = _service()
    result = service.drop(data["wager"], risk=data.get("risk"))
    if not result.ok:
        return _error(result.error)

    ball_id = result.value
    round_id = service.session.find(ball_id)["round_id"]
    return jsonify({
        "round_id": round_id,
        "ball_id": ball_id,
        "risk": service.session.risk.value,
        "balance": str(service.session.ledger.balance),
    }), 201


@rounds_bp.route("/round/<round_id>/events", methods=["GET"])
def round_events(round_id):
    service = _service()
    service.catch_up(_requested_ticks())
    ball_id = service.round_ball(round_id)
    if ball_id is None:
        return jsonify({"error": "not_found", "message": f"unknown round {round_id}"}), 404

    found = service.session.find(ball_id) or {"status": "expired", "ball": None, "result": None}
    with service._lock:
        events = list(service.events.get(round_id, []))
    return jsonify({
        "round_id": round_id,
        "ball_id": ball_id,
        "status": found["status"],
        "ball": found.get("ball"),
        "result": found.get("result"),
        "events": events,
    })


@rounds_bp.route("/session/state", methods=["GET"])
def session_state():
    service = _service()
    ticks = service.catch_up(_requested_ticks())
    snapshot = service.session.snapshot()
    snapshot["ticks_advanced"] = ticks
    return jsonify(snapshot)


@rounds_bp.route("/session/risk", methods=["POST"])
def session_risk():
    data = request.get_json(silent=True) or {}
    service = _service()
    result = service.set_risk(data.get("risk"))
    if not result.ok:
        return _error(result.error)
    return jsonify({
        "requested": result.value.value,
        "risk": service.session.risk.value,
        "deferred": service.session.risk_locked and result.value != service.session.risk,
    }), 202


@rounds_bp.errorhandler(GameError)
def handle_game_error(error: GameError):
    return _error(error)


def init_app(app, service: Optional[TableService] = None) -> None:
    app.extensions["casinocore"] = service or create_table_service()
    app.register_blueprint(rounds_bp)
