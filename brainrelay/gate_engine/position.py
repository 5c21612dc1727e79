"""
Position & Adaptive Exit Controller

Tracks the open position's favorable extreme and evaluates the trailing
profit lock on every tick.

Thresholds:
    fixed     arm_pct / giveback_pct
    adaptive  base * regime factor * volatility %, then clamped

LONG exits when price <= extreme * (1 - giveback%),
SHORT exits when price >= extreme * (1 + giveback%).
"""

import logging
from typing import Any, Dict, Optional, Tuple

from brainrelay.gate_engine.config import ProfitLockConfig
from brainrelay.gate_engine.primitives import PricePrimitives as PP
from brainrelay.gate_engine.schemas import (
    ClosedPosition,
    ExitSignal,
    InstrumentState,
    PositionContext,
    Regime,
    TradeDirection,
)

LOG = logging.getLogger(__name__)


def _clamp(value: float, lower: float, upper: float) -> float:
    """Clamp with 0 meaning 'no bound'"""
    if lower > 0:
        value = max(value, lower)
    if upper > 0:
        value = min(value, upper)
    return value


class PositionController:
    """
    Gate for exits: owns the PositionContext lifecycle.

    Arming is monotonic; once `exit_armed` is set it stays set until the
    position closes.
    """

    def __init__(self, config: ProfitLockConfig, direction: TradeDirection = TradeDirection.LONG):
        self.config = config
        self.direction = direction

    def open(
        self,
        state: InstrumentState,
        instrument: str,
        entry_price: float,
        now_ms: int,
        originated_from_reentry: bool = False,
        meta: Optional[Dict[str, Any]] = None
    ) -> PositionContext:
        """Open a position, consuming any activation context"""
        position = PositionContext(
            instrument=instrument,
            direction=self.direction,
            entry_price=entry_price,
            extreme_price=entry_price,
            opened_at_ms=now_ms,
            originated_from_reentry=originated_from_reentry,
            last_price=entry_price,
            meta=dict(meta or {}),
        )
        state.position = position
        state.activation = None

        LOG.info(
            f"POSITION OPEN {self.direction.name} {instrument} @ {entry_price} "
            f"(reentry={originated_from_reentry})"
        )
        return position

    def thresholds(self, regime: Optional[Regime], volatility_pct: Optional[float]) -> Tuple[float, float]:
        """
        Compute (arm_pct, giveback_pct).

        With regime classification disabled (regime=None) the TREND factors
        apply. Unknown volatility falls back to the fixed thresholds.
        """
        cfg = self.config
        if not cfg.adaptive_enabled or volatility_pct is None or volatility_pct <= 0:
            arm, giveback = cfg.arm_pct, cfg.giveback_pct
        else:
            if regime == Regime.RANGE:
                arm_factor, giveback_factor = cfg.arm_factor_range, cfg.giveback_factor_range
            else:
                arm_factor, giveback_factor = cfg.arm_factor_trend, cfg.giveback_factor_trend
            arm = cfg.adaptive_base_arm * arm_factor * volatility_pct
            giveback = cfg.adaptive_base_giveback * giveback_factor * volatility_pct

        arm = _clamp(arm, cfg.min_arm_pct, cfg.max_arm_pct)
        giveback = _clamp(giveback, cfg.min_giveback_pct, cfg.max_giveback_pct)
        return arm, giveback

    def exit_level(self, position: PositionContext, giveback_pct: float) -> float:
        """Trailing floor (LONG) or ceiling (SHORT)"""
        if position.direction == TradeDirection.LONG:
            return position.extreme_price * (100.0 - giveback_pct) / 100.0
        return position.extreme_price * (100.0 + giveback_pct) / 100.0

    def _update_extreme(self, position: PositionContext, price: float):
        if position.direction == TradeDirection.LONG:
            position.extreme_price = max(position.extreme_price, price)
        else:
            position.extreme_price = min(position.extreme_price, price)

    def on_tick(
        self,
        state: InstrumentState,
        instrument: str,
        price: float,
        regime: Optional[Regime],
        volatility_pct: Optional[float]
    ) -> Optional[ExitSignal]:
        """
        Evaluate the trailing exit for one tick.

        Returns an ExitSignal when the armed level is breached; the caller
        closes the position.
        """
        position = state.position
        if position is None or not position.open:
            return None
        if position.instrument and instrument and position.instrument != instrument:
            return None

        position.last_price = price
        self._update_extreme(position, price)

        if not self.config.enabled:
            return None

        arm_pct, giveback_pct = self.thresholds(regime, volatility_pct)

        if not position.exit_armed:
            excursion = PP.favorable_pct(position.entry_price, position.extreme_price, position.direction)
            if excursion is not None and excursion >= arm_pct:
                position.exit_armed = True
                LOG.info(
                    f"PROFIT LOCK ARMED {instrument} | entry={position.entry_price} "
                    f"extreme={position.extreme_price} excursion={excursion:.3f}% >= {arm_pct:.3f}%"
                )

        if not position.exit_armed:
            return None

        level = self.exit_level(position, giveback_pct)
        if position.direction == TradeDirection.LONG:
            breached = price <= level
        else:
            breached = price >= level

        if not breached:
            return None

        LOG.info(
            f"PROFIT LOCK EXIT {instrument} | price={price} level={level:.6f} "
            f"extreme={position.extreme_price} giveback={giveback_pct:.3f}%"
        )
        return ExitSignal(
            price=price,
            level=level,
            extreme_price=position.extreme_price,
            giveback_pct=giveback_pct,
        )

    def close(self, state: InstrumentState, exit_price: float, reason: str, now_ms: int) -> Optional[ClosedPosition]:
        """Close the open position and report its realized P&L"""
        position = state.position
        if position is None or not position.open:
            return None

        pnl = PP.favorable_pct(position.entry_price, exit_price, position.direction)
        position.open = False
        state.position = None

        closed = ClosedPosition(
            instrument=position.instrument,
            direction=position.direction,
            entry_price=position.entry_price,
            exit_price=exit_price,
            extreme_price=position.extreme_price,
            pnl_pct=pnl if pnl is not None else 0.0,
            reason=reason,
            opened_at_ms=position.opened_at_ms,
            closed_at_ms=now_ms,
            originated_from_reentry=position.originated_from_reentry,
            meta=dict(position.meta),
        )
        LOG.info(
            f"POSITION CLOSED {position.direction.name} {position.instrument} | "
            f"entry={position.entry_price} exit={exit_price} pnl={closed.pnl_pct:.3f}% reason={reason}"
        )
        return closed
