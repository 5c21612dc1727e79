"""
Entry Admission Controller

Decides every enter-intent. Gates run in a fixed order and short-circuit
on the first failure:

    1. Crash lock
    2. Already in position
    3. Cooldown (a qualifying re-entry may bypass it)
    4. Heartbeat freshness
    5. Conservative mode (TREND only)
    6. Producer indicators (spike cooldown, spike, HTF bias, trend strength)

Then one of two paths:

    Activation path  drift from the armed reference price, regime-adjusted
                     bound; a breach clears the activation (hard reset)
    Re-entry path    band around the last exit price, bounded tries

Anything else is "not ready"; the intent may be buffered as a pending
entry and replayed when a matching arm arrives.
"""

import logging
from typing import Any, Dict, Optional

from brainrelay.gate_engine.activation import ActivationGate
from brainrelay.gate_engine.config import AdmissionConfig, PendingEntryConfig, ReentryConfig
from brainrelay.gate_engine.equity import EquityStabilizer
from brainrelay.gate_engine.indicator_gates import IndicatorGates
from brainrelay.gate_engine.position import PositionController
from brainrelay.gate_engine.primitives import PricePrimitives as PP
from brainrelay.gate_engine.reentry import ReentryWindowManager
from brainrelay.gate_engine.schemas import (
    AdmissionDecision,
    EntryPath,
    InstrumentState,
    PendingEntryRequest,
    Regime,
)

LOG = logging.getLogger(__name__)


class EntryAdmissionController:
    """
    Gate 1: entry admission.

    Approval opens the position through the PositionController, so the
    decision and the state mutation happen in the same call.
    """

    def __init__(
        self,
        config: AdmissionConfig,
        reentry_config: ReentryConfig,
        pending_config: PendingEntryConfig,
        activation: ActivationGate,
        positions: PositionController,
        reentry: ReentryWindowManager,
        equity: EquityStabilizer,
        indicator_gates: IndicatorGates
    ):
        self.config = config
        self.reentry_config = reentry_config
        self.pending_config = pending_config
        self.activation = activation
        self.positions = positions
        self.reentry = reentry
        self.equity = equity
        self.indicator_gates = indicator_gates

    def max_drift_for(self, regime: Optional[Regime]) -> float:
        """Regime-adjusted drift bound"""
        if regime == Regime.TREND and self.config.max_drift_pct_trend is not None:
            return self.config.max_drift_pct_trend
        if regime == Regime.RANGE and self.config.max_drift_pct_range is not None:
            return self.config.max_drift_pct_range
        return self.config.max_drift_pct

    def _reentry_candidate(self, state: InstrumentState, now_ms: int):
        """Active re-entry window usable without an activation, or None"""
        if state.activation_live:
            return None
        if self.reentry_config.requires_activation:
            return None
        return self.reentry.active_window(state, now_ms)

    def admit(
        self,
        state: InstrumentState,
        instrument: str,
        price: Optional[float],
        now_ms: int,
        regime: Optional[Regime],
        meta: Optional[Dict[str, Any]] = None,
        indicators: Optional[Dict[str, Dict[str, Any]]] = None
    ) -> AdmissionDecision:
        """
        Evaluate an enter-intent.

        Args:
            state: Instrument state region (caller holds its lock)
            instrument: Instrument key of the intent
            price: Intent price
            now_ms: Current time
            regime: Current regime, None when classification is disabled
            meta: Venue metadata carried into the position
            indicators: Producer indicator sections (ind / htf / reg)

        Returns:
            AdmissionDecision; `position` is set when approved
        """
        decision = AdmissionDecision(regime=regime or Regime.RANGE)

        if state.crash_lock.is_active(now_ms):
            return self._reject(decision, instrument, "crash_lock_active")

        if state.in_position:
            return self._reject(decision, instrument, "already_in_position")

        candidate = self._reentry_candidate(state, now_ms)

        if state.cooldown.is_active(now_ms):
            bypass = candidate is not None and self.reentry_config.bypass_cooldown
            if not bypass:
                return self._reject(decision, instrument, "cooldown_active")

        if not self.activation.heartbeat_fresh(state, now_ms):
            return self._reject(decision, instrument, "stale_heartbeat")

        if self.equity.is_conservative(state, now_ms) and regime != Regime.TREND:
            return self._reject(decision, instrument, "conservative_blocks_range")

        passed, reason, detail = self.indicator_gates.check(state, indicators or {}, now_ms)
        if not passed:
            decision.gate_detail = detail
            return self._reject(decision, instrument, reason)

        if state.activation_live:
            return self._activation_path(decision, state, instrument, price, now_ms, regime, meta)

        if candidate is not None:
            return self._reentry_path(decision, state, candidate, instrument, price, now_ms, regime, meta)

        return self._reject(decision, instrument, "not_ready")

    def _activation_path(self, decision, state, instrument, price, now_ms, regime, meta) -> AdmissionDecision:
        context = state.activation
        if context.instrument and instrument and context.instrument != instrument:
            return self._reject(decision, instrument, "instrument_mismatch")

        drift = PP.pct_diff(context.reference_price, price)
        if drift is None:
            return self._reject(decision, instrument, "missing_prices")

        max_drift = self.max_drift_for(regime)
        decision.drift_pct = drift
        decision.max_drift_pct = max_drift

        if drift > max_drift:
            self.activation.clear(state, "price_drift_reset")
            state.last_action = "activation_reset_drift"
            LOG.info(
                f"ENTRY rejected {instrument}: drift {drift:.3f}% > {max_drift}% "
                f"(ref={context.reference_price}, px={price}), activation reset"
            )
            return self._reject(decision, instrument, "price_drift_reset", log=False)

        entry_meta = dict(context.meta)
        entry_meta.update(meta or {})
        decision.position = self.positions.open(state, instrument, price, now_ms, False, entry_meta)
        decision.approved = True
        decision.reason = "approved"
        decision.path = EntryPath.ACTIVATION
        state.last_action = "entry_approved"
        LOG.info(f"ENTRY approved {instrument} via activation | drift={drift:.3f}% <= {max_drift}%")
        return decision

    def _reentry_path(self, decision, state, window, instrument, price, now_ms, regime, meta) -> AdmissionDecision:
        passed, reason, move = self.reentry.evaluate(window, instrument, price, regime)
        decision.move_pct = move
        if not passed:
            return self._reject(decision, instrument, reason)

        entry_meta = dict(window.meta)
        entry_meta.update(meta or {})
        self.reentry.consume_try(state, window)
        decision.position = self.positions.open(state, instrument, price, now_ms, True, entry_meta)
        decision.approved = True
        decision.reason = "approved_reentry"
        decision.path = EntryPath.REENTRY
        state.last_action = "reentry_approved"
        LOG.info(f"ENTRY approved {instrument} via re-entry | move={move:.3f}%")
        return decision

    def _reject(self, decision: AdmissionDecision, instrument: str, reason: str, log: bool = True) -> AdmissionDecision:
        decision.approved = False
        decision.reason = reason
        if log:
            LOG.info(f"ENTRY rejected {instrument}: {reason}")
        return decision

    # Pending entry buffer

    def buffer_pending(
        self,
        state: InstrumentState,
        instrument: str,
        price: Optional[float],
        now_ms: int,
        event_id: str = "",
        meta: Optional[Dict[str, Any]] = None,
        indicators: Optional[Dict[str, Dict[str, Any]]] = None
    ) -> Optional[PendingEntryRequest]:
        """Buffer a not-ready enter-intent, replacing any previous one"""
        if not self.pending_config.enabled or price is None:
            return None
        pending = PendingEntryRequest(
            instrument=instrument,
            price=price,
            received_at_ms=now_ms,
            expires_at_ms=now_ms + int(self.pending_config.ttl_sec * 1000),
            event_id=event_id,
            meta=dict(meta or {}),
            indicators=dict(indicators or {}),
        )
        state.pending = pending
        LOG.info(f"PENDING entry buffered for {instrument} @ {price} ({self.pending_config.ttl_sec}s)")
        return pending

    def expire_pending(self, state: InstrumentState, now_ms: int) -> bool:
        pending = state.pending
        if pending is None or now_ms < pending.expires_at_ms:
            return False
        state.pending = None
        LOG.info(f"PENDING entry expired for {pending.instrument}")
        return True

    def take_matching_pending(
        self,
        state: InstrumentState,
        instrument: str,
        reference_price: float,
        now_ms: int
    ) -> Optional[PendingEntryRequest]:
        """
        Pop the buffered intent if it matches a fresh arm.

        A non-matching buffered intent is discarded.
        """
        self.expire_pending(state, now_ms)
        pending = state.pending
        if pending is None:
            return None
        state.pending = None

        if pending.instrument and instrument and pending.instrument != instrument:
            LOG.info(f"PENDING entry discarded for {pending.instrument} (instrument mismatch)")
            return None

        diff = PP.pct_diff(pending.price, reference_price)
        if diff is None or diff > self.pending_config.match_tolerance_pct:
            LOG.info(
                f"PENDING entry discarded for {pending.instrument} "
                f"(arm {reference_price} vs buffered {pending.price})"
            )
            return None
        return pending
