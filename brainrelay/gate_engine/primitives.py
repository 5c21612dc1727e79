"""
Price Primitives

Percentage helpers shared by the gates and the exit controller.
All helpers return None instead of raising on degenerate inputs.
"""

import math
from typing import Optional

from brainrelay.gate_engine.schemas import TradeDirection


class PricePrimitives:
    """Percentage arithmetic on prices"""

    @staticmethod
    def pct_diff(reference: Optional[float], price: Optional[float]) -> Optional[float]:
        """Absolute % distance of price from reference"""
        if reference is None or price is None:
            return None
        if not math.isfinite(reference) or not math.isfinite(price) or reference == 0:
            return None
        return abs(price - reference) / abs(reference) * 100.0

    @staticmethod
    def pct_change(reference: Optional[float], price: Optional[float]) -> Optional[float]:
        """Signed % change from reference to price"""
        if reference is None or price is None:
            return None
        if not math.isfinite(reference) or not math.isfinite(price) or reference == 0:
            return None
        return (price - reference) / reference * 100.0

    @staticmethod
    def favorable_pct(
        entry: Optional[float],
        price: Optional[float],
        direction: TradeDirection
    ) -> Optional[float]:
        """
        Signed % move in the trade's favor.

        Positive when LONG and price rose, or SHORT and price fell.
        """
        change = PricePrimitives.pct_change(entry, price)
        if change is None:
            return None
        return change if direction == TradeDirection.LONG else -change
