"""
CASINOCORE — Event Bus & Presentation Ports

State changes are announced explicitly by the engines, synchronously, at the
moment they happen. Renderers, sound players and loggers subscribe to the
bus; nothing downstream has to infer what happened by diffing output.

Ports consumed from the host:
    PresentationSink.publish(snapshot)   per-tick state for a renderer
    SoundSink.open() / play(cue) / close()
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger("casinocore.events")

# Event names
ROUND_STATE_CHANGED = "round.state_changed"
BALL_DROPPED = "ball.dropped"
BALL_PEG_HIT = "ball.peg_hit"
BALL_NUDGED = "ball.nudged"
BALL_POCKETED = "ball.pocketed"
BALL_ANOMALY = "ball.anomaly"
BALL_PURGED = "ball.purged"
PAYOUT_CREDITED = "payout.credited"
RISK_CHANGED = "risk.changed"
RISK_DEFERRED = "risk.deferred"
WAGER_CHANGED = "wager.changed"
MINES_REVEALED = "mines.revealed"
CARD_DEALT = "blackjack.card_dealt"
CRASH_TICK = "crash.tick"
CRASH_BUSTED = "crash.busted"
WILDCARD = "*"


@dataclass
class Event:
    name: str
    payload: dict = field(default_factory=dict)
    timestamp: float = 0

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()


Handler = Callable[[Event], None]


class EventBus:
    """Synchronous publisher/subscriber with per-name and wildcard handlers."""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Register `handler`; returns a callable that unsubscribes it."""
        self._handlers[name].append(handler)

        def _unsubscribe():
            if handler in self._handlers.get(name, []):
                self._handlers[name].remove(handler)
        return _unsubscribe

    def emit(self, name: str, **payload: Any) -> Event:
        event = Event(name=name, payload=payload)
        for handler in list(self._handlers.get(name, ())) + list(self._handlers.get(WILDCARD, ())):
            try:
                handler(event)
            except Exception as e:
                # A broken subscriber must not abort a tick halfway.
                logger.error(f"Event handler for {name} failed: {e}", exc_info=True)
        return event


# ═══════════════════════════════════════════════════════════════
# Presentation & sound ports
# ═══════════════════════════════════════════════════════════════

class PresentationSink(Protocol):
    def publish(self, snapshot: dict) -> None:
        ...


class SoundSink(Protocol):
    def open(self) -> None:
        ...

    def play(self, cue: str) -> None:
        ...

    def close(self) -> None:
        ...


class NullSoundSink:
    """Silent sink with the full lifecycle, for headless runs."""

    def __init__(self):
        self.is_open = False

    def open(self) -> None:
        self.is_open = True

    def play(self, cue: str) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


# Event → sound cue
DEFAULT_SOUND_CUES = {
    BALL_DROPPED: "plinko_drop",
    BALL_PEG_HIT: "plinko_peg",
    BALL_POCKETED: "plinko_win",
    MINES_REVEALED: "mines_reveal",
    CARD_DEALT: "card_deal",
    CRASH_BUSTED: "crash_bust",
    PAYOUT_CREDITED: "coins",
}


class SoundCueRouter:
    """Owns a SoundSink for one session: opens it on attach, closes on detach."""

    def __init__(self, sink: SoundSink, cues: Optional[dict[str, str]] = None):
        self.sink = sink
        self.cues = dict(cues if cues is not None else DEFAULT_SOUND_CUES)
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self, bus: EventBus) -> None:
        self.sink.open()
        for name in self.cues:
            self._unsubscribers.append(bus.subscribe(name, self._on_event))

    def _on_event(self, event: Event) -> None:
        cue = self.cues.get(event.name)
        if cue:
            self.sink.play(cue)

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.sink.close()
