"""
Activation Gate

Arms and disarms the reference-price context (READY) for an instrument.

An arm is ignored while a crash lock or cooldown is active, while the tick
heartbeat is stale, or while a position is open. Arming replaces any
previous context. A live context is cleared by explicit disarm, TTL
expiry, drift-based auto-expiry, entry consumption or a crash lock.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from brainrelay.gate_engine.config import ActivationConfig
from brainrelay.gate_engine.primitives import PricePrimitives as PP
from brainrelay.gate_engine.schemas import ActivationContext, InstrumentState

LOG = logging.getLogger(__name__)


class ActivationGate:
    """Gate 0: activation context lifecycle"""

    def __init__(self, config: ActivationConfig):
        self.config = config

    def heartbeat_fresh(self, state: InstrumentState, now_ms: int) -> bool:
        """True when the tick stream delivered within the allowed age"""
        if not self.config.require_fresh_heartbeat:
            return True
        if state.last_tick_ms is None:
            return False
        return now_ms - state.last_tick_ms <= self.config.heartbeat_max_age_sec * 1000

    def can_arm(self, state: InstrumentState, now_ms: int) -> Tuple[bool, str]:
        """
        Check whether an arm event may create a context.

        Returns:
            (allowed: bool, reason: str)
        """
        if state.crash_lock.is_active(now_ms):
            return False, "crash_lock_active"
        if state.cooldown.is_active(now_ms):
            return False, "cooldown_active"
        if not self.heartbeat_fresh(state, now_ms):
            return False, "stale_heartbeat"
        if state.in_position:
            return False, "in_position"
        return True, "ok"

    def arm(
        self,
        state: InstrumentState,
        instrument: str,
        reference_price: float,
        now_ms: int,
        timeframe: str = "",
        ttl_min: Optional[float] = None,
        meta: Optional[Dict[str, Any]] = None
    ) -> Tuple[bool, str, Optional[ActivationContext]]:
        """
        Arm (or re-arm) the activation context.

        Args:
            state: Instrument state region
            instrument: Instrument key the context is bound to
            reference_price: Price an entry must stay close to
            now_ms: Current time
            timeframe: Signal timeframe label
            ttl_min: Per-arm TTL override in minutes (None uses config, 0 disables)
            meta: Venue metadata carried to the execution sink

        Returns:
            (armed: bool, reason: str, context)
        """
        allowed, reason = self.can_arm(state, now_ms)
        if not allowed:
            LOG.info(f"ARM ignored for {instrument} ({reason})")
            state.last_action = f"arm_ignored_{reason}"
            return False, reason, None

        ttl = self.config.ttl_min if ttl_min is None else ttl_min
        expires_at = now_ms + int(ttl * 60 * 1000) if ttl and ttl > 0 else None

        replaced = state.activation is not None
        context = ActivationContext(
            instrument=instrument,
            reference_price=reference_price,
            armed_at_ms=now_ms,
            timeframe=timeframe,
            expires_at_ms=expires_at,
            meta=dict(meta or {}),
        )
        state.activation = context
        state.last_action = "armed"

        LOG.info(
            f"ARM ON {instrument} | ref={reference_price} tf={timeframe or '-'} "
            f"ttl={ttl}min{' (replaced previous)' if replaced else ''}"
        )
        return True, "armed", context

    def clear(self, state: InstrumentState, reason: str) -> bool:
        """Clear the activation context, returns True if one existed"""
        if state.activation is None:
            return False
        state.activation = None
        LOG.info(f"Activation cleared for {state.key} ({reason})")
        return True

    def check_auto_expire(
        self,
        state: InstrumentState,
        instrument: str,
        current_price: float
    ) -> Tuple[bool, Optional[float]]:
        """
        Clear the context when price drifts beyond the auto-expire threshold.

        Only applies with no open position and when the tick belongs to the
        context's instrument.

        Returns:
            (expired: bool, drift_pct)
        """
        if not self.config.auto_expire_enabled:
            return False, None
        if not state.activation_live or state.in_position:
            return False, None

        context = state.activation
        if context.instrument and instrument and context.instrument != instrument:
            return False, None

        drift = PP.pct_diff(context.reference_price, current_price)
        if drift is None:
            return False, None

        if drift > self.config.auto_expire_pct:
            LOG.info(
                f"AUTO-EXPIRE activation {instrument}: drift {drift:.3f}% > "
                f"{self.config.auto_expire_pct}% (ref={context.reference_price}, px={current_price})"
            )
            self.clear(state, "auto_expire_drift")
            state.last_action = "activation_autoexpired_drift"
            return True, drift
        return False, drift

    def check_ttl(self, state: InstrumentState, now_ms: int) -> bool:
        """Clear the context once its TTL has elapsed"""
        context = state.activation
        if context is None or context.expires_at_ms is None:
            return False
        if now_ms > context.expires_at_ms:
            self.clear(state, "ttl_expired")
            state.last_action = "activation_ttl_expired"
            return True
        return False
