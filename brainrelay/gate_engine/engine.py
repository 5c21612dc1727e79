"""
Signal Gate Engine

Core engine that orchestrates:
1. Field resolution and authentication of inbound events
2. Tick processing (tick store → regime → crash lock → auto-expire → profit lock)
3. Activation (arm / disarm) with pending-entry replay
4. Entry admission (state gates, producer indicator gates, activation or re-entry path)
5. Exit intents (profit filter, explicit reasons)
6. Delivery of approved transitions to the execution sink

Design Principles:
    - Atomic: every event for a state region runs under that region's lock
    - Authoritative: local state is committed before the sink is called and
      is never rolled back on a failed delivery
    - Total: every inbound event receives an acknowledgment, no exception
      escapes event processing
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from brainrelay.gate_engine.activation import ActivationGate
from brainrelay.gate_engine.admission import EntryAdmissionController
from brainrelay.gate_engine.clock import SystemClock
from brainrelay.gate_engine.config import GateEngineConfig
from brainrelay.gate_engine.crash_monitor import CrashMonitor
from brainrelay.gate_engine.equity import EquityStabilizer
from brainrelay.gate_engine.indicator_gates import IndicatorGates
from brainrelay.gate_engine.payload import PayloadError, parse_event, resolve_kind, validate_event, verify_secret
from brainrelay.gate_engine.position import PositionController
from brainrelay.gate_engine.primitives import PricePrimitives as PP
from brainrelay.gate_engine.reentry import ReentryWindowManager
from brainrelay.gate_engine.regime import RegimeClassifier
from brainrelay.gate_engine.schemas import (
    Acknowledgment,
    AckStatus,
    ClosedPosition,
    EventKind,
    GateEngineHealth,
    InboundEvent,
    Instrument,
    InstrumentState,
    Regime,
    SinkResult,
    TradeDirection,
    Transition,
    TransitionAction,
)
from brainrelay.gate_engine.state_manager import InstrumentStateStore
from brainrelay.gate_engine.tick_store import TickStore

LOG = logging.getLogger(__name__)


class SignalGateEngine:
    """
    Signal Gate Engine

    Decides every tick, arm, disarm, enter and exit event and relays
    approved transitions to an execution sink.
    """

    def __init__(self, config: Optional[GateEngineConfig] = None, clock=None, sink=None):
        """
        Initialize Signal Gate Engine.

        Args:
            config: Engine configuration (uses defaults if None)
            clock: Object with now_ms() (SystemClock if None)
            sink: Execution sink with deliver(transition); transitions are
                only recorded in acknowledgments when None
        """
        self.config = config or GateEngineConfig()
        self.config_hash = self.config.compute_hash()
        self.clock = clock or SystemClock()
        self.sink = sink
        self.direction = TradeDirection[self.config.direction]

        # Components
        self.ticks = TickStore(self.config.tick_store)
        self.regime = RegimeClassifier(self.config.regime)
        self.crash = CrashMonitor(self.config.crash, self.direction)
        self.activation = ActivationGate(self.config.activation)
        self.positions = PositionController(self.config.profit_lock, self.direction)
        self.equity = EquityStabilizer(self.config.equity)
        self.reentry = ReentryWindowManager(self.config.reentry, self.direction)
        self.indicator_gates = IndicatorGates(self.config.indicator_gates, self.direction)
        self.admission = EntryAdmissionController(
            self.config.admission,
            self.config.reentry,
            self.config.pending_entry,
            self.activation,
            self.positions,
            self.reentry,
            self.equity,
            self.indicator_gates,
        )
        self.states = InstrumentStateStore(self.config.state_scope)

        # Health tracking
        self.health = GateEngineHealth()
        self._health_lock = threading.Lock()

        LOG.info(
            f"Signal gate engine ready | direction={self.direction.name} "
            f"scope={self.config.state_scope} config_hash={self.config_hash}"
        )

    # Entry points

    def process_payload(self, payload: Any) -> Acknowledgment:
        """
        Authenticate, resolve and process a raw inbound payload.

        Never raises.
        """
        start_time = time.perf_counter()
        try:
            is_object = isinstance(payload, Mapping)
            if self.config.webhook_secret and (not is_object or not verify_secret(payload, self.config.webhook_secret)):
                LOG.warning("Secret mismatch, event blocked")
                ack = Acknowledgment(
                    accepted=False,
                    status=AckStatus.UNAUTHORIZED,
                    kind=resolve_kind(payload, self.direction) if is_object else EventKind.UNKNOWN,
                    reason="secret_mismatch",
                )
            else:
                ack = self._run(parse_event(payload, self.direction))
        except PayloadError as e:
            LOG.warning(f"Invalid payload ({e.reason}): {e}")
            ack = Acknowledgment(
                accepted=False,
                status=AckStatus.INVALID,
                kind=resolve_kind(payload, self.direction) if isinstance(payload, Mapping) else EventKind.UNKNOWN,
                reason=e.reason,
                details={'error': str(e)},
            )
        except Exception as e:
            LOG.error(f"Event processing failed: {e}", exc_info=True)
            ack = Acknowledgment(
                accepted=False,
                status=AckStatus.ERROR,
                reason="internal_error",
                details={'error': str(e)},
            )

        self._update_health(ack, start_time)
        return ack

    def process_event(self, event: InboundEvent) -> Acknowledgment:
        """Process an already-resolved event. Never raises."""
        start_time = time.perf_counter()
        try:
            ack = self._run(validate_event(event))
        except PayloadError as e:
            LOG.warning(f"Invalid event ({e.reason}): {e}")
            ack = Acknowledgment(
                accepted=False,
                status=AckStatus.INVALID,
                kind=event.kind,
                reason=e.reason,
                details={'error': str(e)},
            )
        except Exception as e:
            LOG.error(f"Event processing failed: {e}", exc_info=True)
            ack = Acknowledgment(
                accepted=False,
                status=AckStatus.ERROR,
                kind=event.kind,
                reason="internal_error",
                details={'error': str(e)},
            )

        self._update_health(ack, start_time)
        return ack

    def _run(self, event: InboundEvent) -> Acknowledgment:
        """Decide under the region lock, then deliver outside it"""
        ack = self._decide(event)
        if ack.transitions:
            ack.sink_results = [self._deliver(t) for t in ack.transitions]
        return ack

    def _decide(self, event: InboundEvent) -> Acknowledgment:
        if event.kind == EventKind.UNKNOWN:
            LOG.info(f"Unknown event kind '{event.raw_kind}' acknowledged as no-op")
            return Acknowledgment(
                accepted=True,
                status=AckStatus.IGNORED,
                kind=EventKind.UNKNOWN,
                instrument=event.instrument.key if event.instrument else None,
                reason="unknown_kind",
                details={'raw_kind': event.raw_kind},
            )

        if event.instrument is None:
            raise PayloadError("missing_instrument", f"{event.kind.value} event requires an instrument")

        key = event.instrument.key
        now = self.clock.now_ms()
        transitions: List[Transition] = []

        with self.states.locked(key) as state:
            if event.event_id and event.event_id == state.last_event_id:
                LOG.info(f"Duplicate event {event.event_id} for {key} ignored")
                return Acknowledgment(
                    accepted=True,
                    status=AckStatus.DUPLICATE,
                    kind=event.kind,
                    instrument=key,
                    reason="duplicate_event",
                )
            if event.event_id:
                state.last_event_id = event.event_id

            self._expire_windows(state, now)

            if event.kind == EventKind.TICK:
                ack = self._on_tick(state, event, now, transitions)
            elif event.kind == EventKind.ARM:
                ack = self._on_arm(state, event, now, transitions)
            elif event.kind == EventKind.DISARM:
                ack = self._on_disarm(state, event)
            elif event.kind == EventKind.ENTER:
                ack = self._on_enter(state, event, now, transitions)
            else:
                ack = self._on_exit(state, event, now, transitions)

        ack.transitions = transitions
        return ack

    # Handlers (caller holds the region lock)

    def _expire_windows(self, state: InstrumentState, now: int):
        self.activation.check_ttl(state, now)
        self.admission.expire_pending(state, now)
        self.reentry.active_window(state, now)

    def _on_tick(self, state: InstrumentState, event: InboundEvent, now: int, transitions: List[Transition]) -> Acknowledgment:
        key = event.instrument.key
        price = event.price

        # Heartbeat cache
        state.last_tick_ms = now
        state.last_tick_price = price
        state.last_tick_instrument = key

        window = self.ticks.window(key)
        window.append(price, now)
        self._count('ticks_processed')

        snapshot = self.regime.update(key, window, now)

        crash = self.crash.check(state, window, now)
        crash_exit = None
        if crash.triggered:
            self._count('crash_locks')
            self.reentry.clear(state, "crash_lock")
            if (
                self.config.crash.exit_open_position
                and state.in_position
                and state.position.instrument == key
            ):
                crash_exit = self._close_position(
                    state, event, price, "crash_lock", now, transitions, crash_exit=True
                )

        expired, drift = self.activation.check_auto_expire(state, key, price)

        profit_exit = None
        if crash_exit is None and state.in_position:
            signal = self.positions.on_tick(
                state, key, price, self._regime_for(key), self.regime.current_volatility(key, window, now)
            )
            if signal is not None:
                closed = self._close_position(state, event, price, "profit_lock", now, transitions)
                profit_exit = {'signal': signal.to_dict(), 'closed': closed.to_dict()}

        return Acknowledgment(
            accepted=True,
            status=AckStatus.ACCEPTED,
            kind=EventKind.TICK,
            instrument=key,
            reason="tick",
            details={
                'regime': (snapshot or self.regime.snapshot(key)).to_dict(),
                'crash': crash.to_dict(),
                'crash_exit': crash_exit.to_dict() if crash_exit else None,
                'activation_expired': expired,
                'activation_drift_pct': drift,
                'profit_lock': profit_exit,
                'armed': state.activation_live,
                'in_position': state.in_position,
            },
        )

    def _on_arm(self, state: InstrumentState, event: InboundEvent, now: int, transitions: List[Transition]) -> Acknowledgment:
        key = event.instrument.key
        armed, reason, context = self.activation.arm(
            state, key, event.price, now,
            timeframe=event.timeframe,
            ttl_min=event.ttl_min,
            meta=event.meta,
        )
        if not armed:
            self._count('arms_ignored', reason)
            return Acknowledgment(
                accepted=False,
                status=AckStatus.IGNORED,
                kind=EventKind.ARM,
                instrument=key,
                reason=reason,
            )

        self._count('arms_accepted')
        self.reentry.clear(state, "new_arm")
        details: Dict[str, Any] = {'activation': context.to_dict()}

        pending = self.admission.take_matching_pending(state, key, event.price, now)
        if pending is not None:
            LOG.info(f"PENDING entry for {key} matched arm, replaying @ {pending.price}")
            replay = InboundEvent(
                kind=EventKind.ENTER,
                instrument=event.instrument,
                price=pending.price,
                timestamp=event.timestamp,
                event_id=pending.event_id,
                meta=pending.meta,
                indicators=pending.indicators,
            )
            decision = self._admit(state, replay, now, transitions, buffer=False)
            details['pending_entry'] = decision.to_dict()

        return Acknowledgment(
            accepted=True,
            status=AckStatus.ACCEPTED,
            kind=EventKind.ARM,
            instrument=key,
            reason="armed",
            details=details,
        )

    def _on_disarm(self, state: InstrumentState, event: InboundEvent) -> Acknowledgment:
        cleared = self.activation.clear(state, "disarm")
        if cleared:
            state.last_action = "disarmed"
        return Acknowledgment(
            accepted=cleared,
            status=AckStatus.ACCEPTED if cleared else AckStatus.IGNORED,
            kind=EventKind.DISARM,
            instrument=event.instrument.key,
            reason="disarmed" if cleared else "no_activation",
        )

    def _on_enter(self, state: InstrumentState, event: InboundEvent, now: int, transitions: List[Transition]) -> Acknowledgment:
        decision = self._admit(state, event, now, transitions, buffer=True)
        details: Dict[str, Any] = {'decision': decision.to_dict()}
        if state.pending is not None and not decision.approved:
            details['pending_entry'] = state.pending.to_dict()

        return Acknowledgment(
            accepted=decision.approved,
            status=AckStatus.ACCEPTED if decision.approved else AckStatus.REJECTED,
            kind=EventKind.ENTER,
            instrument=event.instrument.key,
            reason=decision.reason,
            details=details,
        )

    def _admit(self, state: InstrumentState, event: InboundEvent, now: int, transitions: List[Transition], buffer: bool):
        key = event.instrument.key
        decision = self.admission.admit(
            state, key, event.price, now, self._regime_for(key), event.meta, event.indicators
        )

        if decision.approved:
            self._count('entries_approved')
            position = decision.position
            transitions.append(self._transition(
                TransitionAction.ENTER, event, position.entry_price, decision.path.value, now, state, position.opened_at_ms, position.meta
            ))
            return decision

        self._count('entries_rejected', decision.reason)
        if buffer and decision.reason == "not_ready":
            self.admission.buffer_pending(
                state, key, event.price, now, event.event_id, event.meta, event.indicators
            )
        return decision

    def _on_exit(self, state: InstrumentState, event: InboundEvent, now: int, transitions: List[Transition]) -> Acknowledgment:
        key = event.instrument.key

        def reject(reason: str, **details) -> Acknowledgment:
            self._count('exits_rejected', reason)
            return Acknowledgment(
                accepted=False,
                status=AckStatus.REJECTED,
                kind=EventKind.EXIT,
                instrument=key,
                reason=reason,
                details=details,
            )

        if not state.in_position:
            LOG.info(f"EXIT ignored for {key} (no position)")
            return reject("no_position")

        position = state.position
        if position.instrument and position.instrument != key:
            return reject("instrument_mismatch", position_instrument=position.instrument)

        price = event.price if event.price is not None else state.last_tick_price
        if price is None:
            return reject("missing_price")

        min_profit = self.config.admission.min_profit_to_accept_exit_pct
        if min_profit > 0 and not event.explicit_exit_reason:
            pnl = PP.favorable_pct(position.entry_price, price, position.direction)
            if pnl is None or pnl < min_profit:
                LOG.info(f"EXIT ignored for {key}: profit {pnl}% < {min_profit}%")
                return reject("profit_filter", pnl_pct=pnl, min_profit_pct=min_profit)

        reason = event.explicit_exit_reason or "exit_intent"
        closed = self._close_position(state, event, price, reason, now, transitions)
        return Acknowledgment(
            accepted=True,
            status=AckStatus.ACCEPTED,
            kind=EventKind.EXIT,
            instrument=key,
            reason=reason,
            details={'closed': closed.to_dict()},
        )

    def _close_position(
        self,
        state: InstrumentState,
        event: InboundEvent,
        price: float,
        reason: str,
        now: int,
        transitions: List[Transition],
        crash_exit: bool = False
    ) -> ClosedPosition:
        """Close, start cooldowns, feed stabilizer and re-entry manager, emit exit"""
        closed = self.positions.close(state, price, reason, now)
        self.activation.clear(state, "position_closed")

        cooldown_min = self.config.admission.exit_cooldown_min
        if cooldown_min > 0 and state.cooldown.extend_to(now + int(cooldown_min * 60 * 1000)):
            LOG.info(f"Cooldown started for {state.key} ({cooldown_min} min) reason={reason}")

        self.equity.record_close(state, closed.pnl_pct, now)
        regime = self.regime.regime_of(closed.instrument)
        self.reentry.on_close(state, closed, regime, now, crash_exit=crash_exit)

        state.last_action = f"exit_{reason}"
        self._count('exits_emitted')
        transitions.append(self._transition(
            TransitionAction.EXIT, event, price, reason, now, state, closed.opened_at_ms, closed.meta
        ))
        return closed

    # Helpers

    def _regime_for(self, key: str) -> Optional[Regime]:
        """Current regime, None when classification is disabled"""
        if not self.config.regime.enabled:
            return None
        return self.regime.regime_of(key)

    def _transition(
        self,
        action: TransitionAction,
        event: InboundEvent,
        price: float,
        reason: str,
        now: int,
        state: InstrumentState,
        opened_at_ms: int,
        meta: Dict[str, Any]
    ) -> Transition:
        instrument = event.instrument
        timestamp = event.timestamp or datetime.fromtimestamp(now / 1000.0, tz=timezone.utc).isoformat()
        transition = Transition(
            action=action,
            direction=self.direction,
            instrument=instrument,
            price=price,
            timestamp=timestamp,
            reason=reason,
            meta=dict(meta or {}),
        )
        transition.idempotency_context = {
            'transition_id': f"{instrument.key}:{opened_at_ms}:{transition.wire_action}",
            'event_id': event.event_id,
            'state_key': state.key,
            'position_opened_at_ms': opened_at_ms,
            'decided_at_ms': now,
        }
        return transition

    def _deliver(self, transition: Transition) -> SinkResult:
        """Hand a committed transition to the sink; failures are reported only"""
        if self.sink is None:
            return SinkResult(accepted=True, detail="no_sink")
        try:
            result = self.sink.deliver(transition)
        except Exception as e:
            LOG.error(f"Sink raised while delivering {transition.wire_action}: {e}", exc_info=True)
            result = SinkResult(accepted=False, detail=f"sink_error: {e}")
        if not result.accepted:
            LOG.error(
                f"Delivery failed for {transition.wire_action} {transition.instrument.key} "
                f"({result.detail}); local state kept"
            )
        return result

    def _count(self, counter: str, reason: Optional[str] = None):
        with self._health_lock:
            if hasattr(self.health, counter):
                setattr(self.health, counter, getattr(self.health, counter) + 1)
            if reason:
                by_reason = self.health.rejections_by_reason
                by_reason[reason] = by_reason.get(reason, 0) + 1

    def _update_health(self, ack: Acknowledgment, start_time: float):
        """Update health metrics"""
        processing_time = (time.perf_counter() - start_time) * 1000
        with self._health_lock:
            self.health.events_processed += 1
            if ack.status == AckStatus.INVALID:
                self.health.invalid_events += 1
            elif ack.status == AckStatus.UNAUTHORIZED:
                self.health.unauthorized_events += 1
            elif ack.status == AckStatus.ERROR:
                self.health.errors += 1
            self.health.sink_failures += sum(1 for r in ack.sink_results if not r.accepted)

            n = self.health.events_processed
            self.health.avg_processing_time_ms = (
                (self.health.avg_processing_time_ms * (n - 1) + processing_time) / n
            )

    # Introspection

    def snapshot(self, instrument: str) -> dict:
        """Read-only view of one instrument"""
        key = Instrument.parse(instrument).key
        now = self.clock.now_ms()
        state_view = None
        if self.states.peek(key) is not None:
            with self.states.locked(key) as state:
                state_view = state.to_dict(now)
        return {
            'instrument': key,
            'now_ms': now,
            'regime': self.regime.snapshot(key).to_dict(),
            'tick_count': self.ticks.tick_count(key),
            'state': state_view,
        }

    def snapshot_all(self) -> dict:
        """Read-only view of every tracked region"""
        now = self.clock.now_ms()
        summary = self.states.get_state_summary(now)
        summary['now_ms'] = now
        summary['direction'] = self.direction.name
        summary['regimes'] = {
            key: self.regime.snapshot(key).to_dict() for key in self.ticks.instruments()
        }
        return summary

    def get_health(self) -> dict:
        with self._health_lock:
            health = self.health.to_dict()
        health['config_hash'] = self.config_hash
        health['config_version'] = self.config.config_version
        describe = getattr(self.sink, 'describe', None)
        health['sink'] = describe() if describe is not None else None
        return health

    def reset(self, instrument: Optional[str] = None):
        """Reset one instrument (or everything) back to a fresh state"""
        if instrument is None:
            self.states.reset_all()
            self.ticks.reset()
            self.regime.reset()
            LOG.warning("Gate engine state reset (all instruments)")
            return
        key = Instrument.parse(instrument).key
        self.states.reset(key)
        self.ticks.reset(key)
        self.regime.reset(key)
        LOG.warning(f"Gate engine state reset for {key}")
