"""
Signal Gate Engine

Real-time decision gate between webhook trade signals and the execution
venue.

Core Principle:
    The gate decides WHETHER an arm, entry or exit may happen, NOT how it
    executes.

Flow:
    Tick stream ─┐
                 ├→ Gate Engine → Execution Sink → Venue signal bot
    Intents ─────┘

Responsibilities:
    1. Tick store and tick-derived TREND/RANGE regime (with hysteresis)
    2. Crash lock on fast adverse moves (1m / 5m)
    3. Activation (READY) lifecycle: TTL, drift auto-expire, disarm
    4. Entry admission: cooldowns, heartbeat, drift, conservative mode
    5. Adaptive trailing profit lock
    6. Loss-streak equity stabilizer
    7. Bounded re-entry windows and buffered pending entries

Output:
    Acknowledgments for every event, transitions for approved entries/exits
"""

from brainrelay.gate_engine.config import GateEngineConfig
from brainrelay.gate_engine.clock import ManualClock, SystemClock
from brainrelay.gate_engine.schemas import (
    Acknowledgment,
    AckStatus,
    EventKind,
    Instrument,
    Regime,
    TradeDirection,
    Transition,
)
from brainrelay.gate_engine.engine import SignalGateEngine
from brainrelay.gate_engine.payload import PayloadError, parse_event

__version__ = "2.9.0"

__all__ = [
    'GateEngineConfig',
    'SignalGateEngine',
    'ManualClock',
    'SystemClock',
    'Acknowledgment',
    'AckStatus',
    'EventKind',
    'Instrument',
    'Regime',
    'TradeDirection',
    'Transition',
    'PayloadError',
    'parse_event',
]
