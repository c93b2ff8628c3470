"""
CASINOCORE — Error Taxonomy & Result Type

Engines raise `GameError` subclasses internally; every public operation a
caller (session, HTTP route, CLI) touches converts them into a `Result`, so
expected user-input conditions never escape as faults.

    result = machine.place_bet(Decimal("10"))
    if not result.ok:
        print(result.error.kind, result.error.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    SIMULATION_ANOMALY = "simulation_anomaly"
    CONFIGURATION_ERROR = "configuration_error"


class GameError(Exception):
    """Base class for every condition the engine reports."""
    kind: ErrorKind = ErrorKind.CONFIGURATION_ERROR

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value
        self.context = context

    def to_dict(self) -> dict:
        data = {"error": self.kind.value, "message": self.message}
        if self.context:
            data["context"] = {k: _jsonable(v) for k, v in self.context.items()}
        return data


class InvalidAmount(GameError):
    kind = ErrorKind.INVALID_AMOUNT


class InsufficientFunds(GameError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class InvalidStateTransition(GameError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class SimulationAnomaly(GameError):
    """Numerical blow-up inside the physics step. Recovered, never surfaced."""
    kind = ErrorKind.SIMULATION_ANOMALY


class ConfigurationError(GameError):
    kind = ErrorKind.CONFIGURATION_ERROR


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Enum):
        return value.value
    return str(value)


@dataclass
class Result:
    """Outcome of a caller-facing operation."""
    ok: bool
    value: Any = None
    error: Optional[GameError] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: GameError) -> "Result":
        return cls(ok=False, error=error)

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    def unwrap(self) -> Any:
        """Return the value or raise the carried error."""
        if not self.ok:
            raise self.error
        return self.value

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "value": _jsonable_value(self.value)}
        return {"ok": False, **self.error.to_dict()}


def _jsonable_value(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable_value(v) for v in value]
    return _jsonable(value)
