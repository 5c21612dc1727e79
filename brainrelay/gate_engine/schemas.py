"""
Gate Engine Schemas

Defines data structures for ticks, activation and position contexts,
cooldown windows, re-entry windows, transitions and acknowledgments.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class Regime(str, Enum):
    """Tick-derived market regime"""
    TREND = "TREND"
    RANGE = "RANGE"


class TradeDirection(int, Enum):
    """Side the engine trades"""
    LONG = 1
    SHORT = -1

    @property
    def label(self) -> str:
        return self.name.lower()


class EventKind(str, Enum):
    """Inbound event kinds"""
    TICK = "tick"
    ARM = "arm"
    DISARM = "disarm"
    ENTER = "enter"
    EXIT = "exit"
    UNKNOWN = "unknown"


class TransitionAction(str, Enum):
    """Outbound transition actions"""
    ENTER = "enter"
    EXIT = "exit"


class EntryPath(str, Enum):
    """Which admission path approved an entry"""
    ACTIVATION = "activation"
    REENTRY = "reentry"


class AckStatus(str, Enum):
    """Acknowledgment status returned for every inbound event"""
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    IGNORED = "IGNORED"
    DUPLICATE = "DUPLICATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID = "INVALID"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Instrument:
    """Venue + symbol pair (e.g. BINANCE:SOLUSDT)"""

    venue: str
    symbol: str

    @property
    def key(self) -> str:
        if self.venue:
            return f"{self.venue}:{self.symbol}"
        return self.symbol

    @classmethod
    def parse(cls, text: str) -> "Instrument":
        """Parse 'VENUE:SYMBOL' or a bare symbol"""
        text = text.strip()
        if ":" in text:
            venue, symbol = text.split(":", 1)
            return cls(venue=venue.strip().upper(), symbol=symbol.strip().upper())
        return cls(venue="", symbol=text.upper())

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class TickSample:
    """Single timestamped price, immutable once appended"""
    instrument: str
    price: float
    timestamp_ms: int


@dataclass
class RegimeSnapshot:
    """Latest regime classification for one instrument"""

    regime: Regime = Regime.RANGE
    slope_pct: Optional[float] = None
    volatility_pct: Optional[float] = None
    updated_at_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'regime': self.regime.value,
            'slope_pct': self.slope_pct,
            'volatility_pct': self.volatility_pct,
            'updated_at_ms': self.updated_at_ms,
        }


@dataclass
class CooldownWindow:
    """
    Time window that blocks activity until `until_ms`.

    Re-triggering composes via max(); a window never shrinks.
    """

    until_ms: int = 0

    def is_active(self, now_ms: int) -> bool:
        return now_ms < self.until_ms

    def extend_to(self, until_ms: int) -> bool:
        """Extend the window, returns True if it actually grew"""
        if until_ms > self.until_ms:
            self.until_ms = until_ms
            return True
        return False

    def remaining_ms(self, now_ms: int) -> int:
        return max(0, self.until_ms - now_ms)

    def to_dict(self, now_ms: int) -> dict:
        return {
            'active': self.is_active(now_ms),
            'until_ms': self.until_ms,
            'remaining_ms': self.remaining_ms(now_ms),
        }


@dataclass
class ActivationContext:
    """Armed reference price that a subsequent entry must satisfy"""

    instrument: str
    reference_price: float
    armed_at_ms: int
    timeframe: str = ""
    expires_at_ms: Optional[int] = None
    active: bool = True
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'active': self.active,
            'instrument': self.instrument,
            'reference_price': self.reference_price,
            'timeframe': self.timeframe,
            'armed_at_ms': self.armed_at_ms,
            'expires_at_ms': self.expires_at_ms,
            'meta': dict(self.meta),
        }


@dataclass
class PositionContext:
    """
    Open position tracked by the exit controller.

    `extreme_price` is the best price since entry: max for LONG, min for SHORT.
    """

    instrument: str
    direction: TradeDirection
    entry_price: float
    extreme_price: float
    opened_at_ms: int
    open: bool = True
    exit_armed: bool = False
    originated_from_reentry: bool = False
    last_price: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'open': self.open,
            'instrument': self.instrument,
            'direction': self.direction.name,
            'entry_price': self.entry_price,
            'extreme_price': self.extreme_price,
            'exit_armed': self.exit_armed,
            'opened_at_ms': self.opened_at_ms,
            'originated_from_reentry': self.originated_from_reentry,
            'last_price': self.last_price,
            'meta': dict(self.meta),
        }


@dataclass
class ClosedPosition:
    """Outcome of a closed position, handed to the stabilizer and re-entry manager"""

    instrument: str
    direction: TradeDirection
    entry_price: float
    exit_price: float
    extreme_price: float
    pnl_pct: float
    reason: str
    opened_at_ms: int
    closed_at_ms: int
    originated_from_reentry: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'instrument': self.instrument,
            'direction': self.direction.name,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'extreme_price': self.extreme_price,
            'pnl_pct': self.pnl_pct,
            'reason': self.reason,
            'opened_at_ms': self.opened_at_ms,
            'closed_at_ms': self.closed_at_ms,
            'originated_from_reentry': self.originated_from_reentry,
        }


@dataclass
class ReentryWindow:
    """Bounded-time, bounded-try opportunity to re-enter after an exit"""

    instrument: str
    reference_price: float
    regime_at_exit: Regime
    tries_max: int
    opened_at_ms: int
    expires_at_ms: int
    tries_used: int = 0
    active: bool = True
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def tries_remaining(self) -> int:
        return max(0, self.tries_max - self.tries_used)

    def to_dict(self) -> dict:
        return {
            'active': self.active,
            'instrument': self.instrument,
            'reference_price': self.reference_price,
            'regime_at_exit': self.regime_at_exit.value,
            'tries_used': self.tries_used,
            'tries_max': self.tries_max,
            'opened_at_ms': self.opened_at_ms,
            'expires_at_ms': self.expires_at_ms,
            'meta': dict(self.meta),
        }


@dataclass
class PendingEntryRequest:
    """Enter-intent buffered while no activation exists"""

    instrument: str
    price: float
    received_at_ms: int
    expires_at_ms: int
    event_id: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)
    indicators: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'instrument': self.instrument,
            'price': self.price,
            'received_at_ms': self.received_at_ms,
            'expires_at_ms': self.expires_at_ms,
            'event_id': self.event_id,
        }


@dataclass
class CrashResult:
    """Outcome of a crash check"""

    triggered: bool = False
    horizon: Optional[str] = None
    move_pct: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'triggered': self.triggered,
            'horizon': self.horizon,
            'move_pct': self.move_pct,
        }


@dataclass
class ExitSignal:
    """Trailing-exit breach detected by the exit controller"""

    price: float
    level: float
    extreme_price: float
    giveback_pct: float

    def to_dict(self) -> dict:
        return {
            'price': self.price,
            'level': self.level,
            'extreme_price': self.extreme_price,
            'giveback_pct': self.giveback_pct,
        }


@dataclass
class AdmissionDecision:
    """
    Complete entry decision with gate details.

    Provides an audit trail for every enter-intent.
    """

    approved: bool = False
    reason: str = ""
    path: Optional[EntryPath] = None
    regime: Regime = Regime.RANGE
    drift_pct: Optional[float] = None
    max_drift_pct: Optional[float] = None
    move_pct: Optional[float] = None
    gate_detail: str = ""
    position: Optional[PositionContext] = None

    def to_dict(self) -> dict:
        return {
            'approved': self.approved,
            'reason': self.reason,
            'path': self.path.value if self.path else None,
            'regime': self.regime.value,
            'drift_pct': self.drift_pct,
            'max_drift_pct': self.max_drift_pct,
            'move_pct': self.move_pct,
            'gate_detail': self.gate_detail,
        }


@dataclass
class InboundEvent:
    """Normalized inbound event after field resolution"""

    kind: EventKind
    instrument: Optional[Instrument] = None
    price: Optional[float] = None
    timestamp: Optional[str] = None
    event_id: str = ""
    explicit_exit_reason: str = ""
    timeframe: str = ""
    ttl_min: Optional[float] = None
    raw_kind: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)
    indicators: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'instrument': self.instrument.key if self.instrument else None,
            'price': self.price,
            'timestamp': self.timestamp,
            'event_id': self.event_id,
            'explicit_exit_reason': self.explicit_exit_reason,
            'timeframe': self.timeframe,
            'raw_kind': self.raw_kind,
            'indicators': self.indicators,
        }


@dataclass
class Transition:
    """Approved transition relayed to the execution sink"""

    action: TransitionAction
    direction: TradeDirection
    instrument: Instrument
    price: float
    timestamp: str
    reason: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)
    idempotency_context: Dict[str, Any] = field(default_factory=dict)

    @property
    def wire_action(self) -> str:
        """Venue action name, e.g. enter_long / exit_short"""
        return f"{self.action.value}_{self.direction.label}"

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'wire_action': self.wire_action,
            'instrument': self.instrument.key,
            'price': self.price,
            'timestamp': self.timestamp,
            'reason': self.reason,
            'idempotency_context': dict(self.idempotency_context),
        }


@dataclass
class SinkResult:
    """Delivery outcome reported by the execution sink"""

    accepted: bool
    detail: str = ""
    status_code: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'accepted': self.accepted,
            'detail': self.detail,
            'status_code': self.status_code,
        }


@dataclass
class Acknowledgment:
    """Synchronous answer for every inbound event"""

    accepted: bool
    status: AckStatus
    kind: EventKind = EventKind.UNKNOWN
    instrument: Optional[str] = None
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    transitions: List[Transition] = field(default_factory=list)
    sink_results: List[SinkResult] = field(default_factory=list)

    @property
    def sink_ok(self) -> bool:
        return all(r.accepted for r in self.sink_results)

    def to_dict(self) -> dict:
        return {
            'accepted': self.accepted,
            'status': self.status.value,
            'kind': self.kind.value,
            'instrument': self.instrument,
            'reason': self.reason,
            'details': dict(self.details),
            'transitions': [t.to_dict() for t in self.transitions],
            'sink': [r.to_dict() for r in self.sink_results],
            'sink_ok': self.sink_ok,
        }


@dataclass
class InstrumentState:
    """
    Mutable state region for one instrument (or the whole engine in
    global scope).

    Holds at most one activation, one position, one re-entry window and
    one pending entry. An open position implies no live activation.
    """

    key: str
    activation: Optional[ActivationContext] = None
    position: Optional[PositionContext] = None
    reentry: Optional[ReentryWindow] = None
    pending: Optional[PendingEntryRequest] = None

    cooldown: CooldownWindow = field(default_factory=CooldownWindow)
    crash_lock: CooldownWindow = field(default_factory=CooldownWindow)
    conservative: CooldownWindow = field(default_factory=CooldownWindow)
    pump_cooldown: CooldownWindow = field(default_factory=CooldownWindow)
    loss_streak: int = 0

    # Heartbeat cache
    last_tick_ms: Optional[int] = None
    last_tick_price: Optional[float] = None
    last_tick_instrument: str = ""

    last_event_id: str = ""
    last_action: str = "none"

    @property
    def in_position(self) -> bool:
        return self.position is not None and self.position.open

    @property
    def activation_live(self) -> bool:
        return self.activation is not None and self.activation.active

    def to_dict(self, now_ms: int) -> dict:
        return {
            'key': self.key,
            'activation': self.activation.to_dict() if self.activation else None,
            'position': self.position.to_dict() if self.position else None,
            'reentry': self.reentry.to_dict() if self.reentry else None,
            'pending_entry': self.pending.to_dict() if self.pending else None,
            'cooldown': self.cooldown.to_dict(now_ms),
            'crash_lock': self.crash_lock.to_dict(now_ms),
            'conservative_mode': self.conservative.to_dict(now_ms),
            'pump_cooldown': self.pump_cooldown.to_dict(now_ms),
            'loss_streak': self.loss_streak,
            'last_tick_ms': self.last_tick_ms,
            'last_tick_price': self.last_tick_price,
            'last_tick_instrument': self.last_tick_instrument,
            'last_action': self.last_action,
        }


@dataclass
class GateEngineHealth:
    """Health metrics for Gate Engine monitoring"""

    events_processed: int = 0
    ticks_processed: int = 0
    entries_approved: int = 0
    entries_rejected: int = 0
    exits_emitted: int = 0
    exits_rejected: int = 0
    arms_accepted: int = 0
    arms_ignored: int = 0
    crash_locks: int = 0
    invalid_events: int = 0
    unauthorized_events: int = 0
    errors: int = 0
    sink_failures: int = 0
    rejections_by_reason: Dict[str, int] = field(default_factory=dict)
    avg_processing_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            'events_processed': self.events_processed,
            'ticks_processed': self.ticks_processed,
            'entries_approved': self.entries_approved,
            'entries_rejected': self.entries_rejected,
            'exits_emitted': self.exits_emitted,
            'exits_rejected': self.exits_rejected,
            'arms_accepted': self.arms_accepted,
            'arms_ignored': self.arms_ignored,
            'crash_locks': self.crash_locks,
            'invalid_events': self.invalid_events,
            'unauthorized_events': self.unauthorized_events,
            'errors': self.errors,
            'sink_failures': self.sink_failures,
            'rejections_by_reason': dict(self.rejections_by_reason),
            'avg_processing_time_ms': float(self.avg_processing_time_ms),
        }
