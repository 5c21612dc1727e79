"""
Gate Engine Demo

Replays synthetic webhook streams through the Signal Gate Engine on a
manual clock.
"""

from brainrelay.execution_sink import DemoSink
from brainrelay.gate_engine.clock import ManualClock
from brainrelay.gate_engine.config import (
    AdmissionConfig,
    CrashConfig,
    GateEngineConfig,
    ProfitLockConfig,
)
from brainrelay.gate_engine.engine import SignalGateEngine

T0 = 1_700_000_000_000
SYMBOL = "BINANCE:SOLUSDT"


def create_engine(config: GateEngineConfig):
    clock = ManualClock(T0)
    sink = DemoSink()
    return SignalGateEngine(config, clock=clock, sink=sink), clock, sink


def send(engine, clock, offset_sec: float, kind: str, price=None, **fields):
    """Move the clock to T0 + offset and post one event"""
    clock.set(T0 + int(offset_sec * 1000))
    payload = {"kind": kind, "symbol": SYMBOL}
    if price is not None:
        payload["price"] = price
    payload.update(fields)

    ack = engine.process_payload(payload)
    marker = "✓" if ack.accepted else "✗"
    price_text = f"{price:>8.2f}" if price is not None else " " * 8
    print(f"  t={offset_sec:>6.0f}s  {kind:<6} {price_text}  {marker} {ack.status.value:<9} {ack.reason}")
    for transition in ack.transitions:
        print(f"           → {transition.wire_action} @ {transition.price} ({transition.reason})")
    return ack


def scenario_profit_lock_and_reentry():
    """Arm, enter, trail out on giveback, then re-enter once"""
    print("Scenario 1: activation entry → profit lock → single re-entry")
    print("-" * 80)

    config = GateEngineConfig(
        crash=CrashConfig(enabled=False),
        profit_lock=ProfitLockConfig(adaptive_enabled=False, arm_pct=0.6, giveback_pct=0.35),
    )
    engine, clock, sink = create_engine(config)

    send(engine, clock, 0, "tick", 84.00)
    send(engine, clock, 5, "arm", 84.00, tf="5")
    send(engine, clock, 10, "enter", 84.30)

    for i, price in enumerate([84.50, 84.90, 85.10, 84.95, 84.80]):
        send(engine, clock, 30 * (i + 1), "tick", price)

    send(engine, clock, 200, "enter", 84.85)
    send(engine, clock, 260, "exit", 84.60)
    send(engine, clock, 270, "enter", 84.60)

    print(f"  Delivered to sink: {[r['wire_action'] for r in sink.records]}")
    print()


def scenario_crash_lock():
    """A 1m dump exits the open position and locks the instrument"""
    print("Scenario 2: crash lock")
    print("-" * 80)

    config = GateEngineConfig(admission=AdmissionConfig(max_drift_pct_trend=1.5))
    engine, clock, sink = create_engine(config)

    series = [50.00, 50.14, 50.03, 50.17, 50.06, 50.20, 50.09, 50.23, 50.12, 50.26, 50.15]
    for i, price in enumerate(series):
        send(engine, clock, 30 * i, "tick", price)
    print(f"  Regime: {engine.regime.snapshot(SYMBOL).to_dict()}")

    send(engine, clock, 305, "arm", 50.00)
    send(engine, clock, 310, "enter", 50.70)
    send(engine, clock, 330, "tick", 48.90)
    send(engine, clock, 331, "arm", 48.90)
    send(engine, clock, 332, "enter", 48.90)

    state = engine.snapshot(SYMBOL)['state']
    print(f"  Crash lock: {state['crash_lock']}")
    print()


def run_demo():
    """Run gate engine demo scenarios"""

    print("=" * 80)
    print("SIGNAL GATE ENGINE - DEMONSTRATION")
    print("=" * 80)
    print()

    scenario_profit_lock_and_reentry()
    scenario_crash_lock()

    print("=" * 80)
    print("DEMO COMPLETE")
    print("=" * 80)


if __name__ == "__main__":
    run_demo()
