"""
Payload Field Resolution

Turns a raw inbound JSON object into an InboundEvent. Every field has one
resolution function with an explicit, ordered list of accepted aliases so
that producers (TradingView alerts, tick relays, indicator webhooks) can
keep their existing payload shapes.

Precedence (first non-empty wins):
    secret      sharedSecret, secret, tv_secret, token, passphrase
    instrument  symbol, tv_exchange + tv_instrument, exchange + ticker,
                pair, instrument, tv_instrument, ticker
    price       price, close, trigger_price  (arm: trigger_price first)
    kind        kind, intent, action, src  (+ legacy src=ray with side)
    indicators  ind | indicators, htf, reg  (nested objects)
"""

import hmac
import math
from typing import Any, Dict, Mapping, Optional

from brainrelay.gate_engine.schemas import EventKind, InboundEvent, Instrument, TradeDirection


class PayloadError(ValueError):
    """Raised when an inbound payload lacks fields its kind requires"""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


SECRET_FIELDS = ("sharedSecret", "secret", "tv_secret", "token", "passphrase")
KIND_FIELDS = ("kind", "intent", "action", "src")

_KIND_ALIASES = {
    "tick": EventKind.TICK,
    "heartbeat": EventKind.TICK,
    "arm": EventKind.ARM,
    "ready": EventKind.ARM,
    "activate": EventKind.ARM,
    "disarm": EventKind.DISARM,
    "ready_off": EventKind.DISARM,
    "deactivate": EventKind.DISARM,
    "enter": EventKind.ENTER,
    "entry": EventKind.ENTER,
    "exit": EventKind.EXIT,
    "close": EventKind.EXIT,
}

_DIRECTIONAL_ALIASES = {
    "enter_long": (EventKind.ENTER, TradeDirection.LONG),
    "exit_long": (EventKind.EXIT, TradeDirection.LONG),
    "enter_short": (EventKind.ENTER, TradeDirection.SHORT),
    "exit_short": (EventKind.EXIT, TradeDirection.SHORT),
    "sell_short": (EventKind.ENTER, TradeDirection.SHORT),
    "close_short": (EventKind.EXIT, TradeDirection.SHORT),
    "buy_to_cover": (EventKind.EXIT, TradeDirection.SHORT),
}

INDICATOR_SECTIONS = {
    "ind": ("ind", "indicators"),
    "htf": ("htf",),
    "reg": ("reg",),
}

# Fields each kind cannot do without
REQUIRED_FIELDS = {
    EventKind.TICK: ("instrument", "price"),
    EventKind.ARM: ("instrument", "price"),
    EventKind.DISARM: ("instrument",),
    EventKind.ENTER: ("instrument", "price"),
    EventKind.EXIT: ("instrument",),
    EventKind.UNKNOWN: (),
}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def resolve_secret(payload: Mapping[str, Any]) -> str:
    for name in SECRET_FIELDS:
        value = _text(payload.get(name))
        if value:
            return value
    return ""


def verify_secret(payload: Mapping[str, Any], expected: str) -> bool:
    """Constant-time comparison; an empty expected secret accepts everything"""
    if not expected:
        return True
    supplied = resolve_secret(payload)
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def resolve_kind(payload: Mapping[str, Any], direction: TradeDirection = TradeDirection.LONG) -> EventKind:
    """
    Map the producer's intent field onto an EventKind.

    Directional names for the other side (e.g. enter_short on a LONG
    engine) resolve to UNKNOWN. The legacy form src=ray with side=BUY|SELL
    maps BUY to enter and SELL to exit for LONG, mirrored for SHORT.
    """
    if _text(payload.get("src")).lower() == "ray":
        side = _text(payload.get("side")).upper()
        if side in ("BUY", "SELL"):
            opens = "BUY" if direction == TradeDirection.LONG else "SELL"
            return EventKind.ENTER if side == opens else EventKind.EXIT
        return EventKind.UNKNOWN

    for name in KIND_FIELDS:
        raw = _text(payload.get(name)).lower()
        if not raw:
            continue
        if raw in _KIND_ALIASES:
            return _KIND_ALIASES[raw]
        if raw in _DIRECTIONAL_ALIASES:
            kind, side = _DIRECTIONAL_ALIASES[raw]
            return kind if side == direction else EventKind.UNKNOWN
        return EventKind.UNKNOWN
    return EventKind.UNKNOWN


def resolve_raw_kind(payload: Mapping[str, Any]) -> str:
    for name in KIND_FIELDS:
        raw = _text(payload.get(name))
        if raw:
            return raw
    return ""


def resolve_instrument(payload: Mapping[str, Any]) -> Optional[Instrument]:
    symbol = _text(payload.get("symbol"))
    if symbol:
        return Instrument.parse(symbol)

    for venue_field, symbol_field in (("tv_exchange", "tv_instrument"), ("exchange", "ticker")):
        venue = _text(payload.get(venue_field))
        sym = _text(payload.get(symbol_field))
        if venue and sym:
            return Instrument(venue=venue.upper(), symbol=sym.upper())

    for name in ("pair", "instrument", "tv_instrument", "ticker"):
        value = _text(payload.get(name))
        if value:
            return Instrument.parse(value)
    return None


def resolve_price(payload: Mapping[str, Any], kind: EventKind = EventKind.UNKNOWN) -> Optional[float]:
    """Arm events prefer trigger_price; everything else prefers price"""
    if kind == EventKind.ARM:
        order = ("trigger_price", "price", "close")
    else:
        order = ("price", "close", "trigger_price")
    for name in order:
        value = _number(payload.get(name))
        if value is not None:
            return value
    return None


def resolve_timestamp(payload: Mapping[str, Any]) -> Optional[str]:
    for name in ("timestamp", "time", "ts"):
        value = _text(payload.get(name))
        if value:
            return value
    return None


def resolve_venue_meta(payload: Mapping[str, Any], instrument: Optional[Instrument]) -> Dict[str, str]:
    """Venue identifiers forwarded to the execution sink"""
    meta = {}
    exchange = _text(payload.get("tv_exchange")) or _text(payload.get("exchange"))
    symbol = _text(payload.get("tv_instrument")) or _text(payload.get("ticker"))
    if not exchange and instrument is not None:
        exchange = instrument.venue
    if not symbol and instrument is not None:
        symbol = instrument.symbol
    if exchange:
        meta["tv_exchange"] = exchange
    if symbol:
        meta["tv_instrument"] = symbol
    return meta


def _flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    lowered = _text(value).lower()
    if lowered in ("1", "true", "yes", "y", "on"):
        return True
    if lowered in ("0", "false", "no", "n", "off"):
        return False
    return None


def resolve_indicators(payload: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Producer-computed indicator sections, keyed ind / htf / reg.

        ind   atr, candleRange, rocPct             numbers
        htf   closeBelowEma200, rsiBelow50, ...    booleans
        reg   adx, slopePctPerBar                  numbers

    Values that do not parse are dropped, so the gates treat them as absent.
    """
    indicators = {}
    for section, names in INDICATOR_SECTIONS.items():
        raw = None
        for name in names:
            if isinstance(payload.get(name), Mapping):
                raw = payload[name]
                break
        if raw is None:
            continue

        convert = _flag if section == "htf" else _number
        values = {}
        for name, value in raw.items():
            converted = convert(value)
            if converted is not None:
                values[str(name)] = converted
        if values:
            indicators[section] = values
    return indicators


def validate_event(event: InboundEvent) -> InboundEvent:
    """
    Check that a resolved event carries what its kind requires.

    Raises:
        PayloadError: a required field is missing, or the price is not
            a finite positive number
    """
    price = event.price
    if price is not None:
        if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price):
            raise PayloadError("invalid_price", f"price must be a finite number, got {price!r}")
        if price <= 0:
            raise PayloadError("invalid_price", f"price must be positive, got {price}")

    for required in REQUIRED_FIELDS[event.kind]:
        if required == "instrument" and event.instrument is None:
            raise PayloadError("missing_instrument", f"{event.kind.value} event requires an instrument")
        if required == "price" and price is None:
            raise PayloadError("missing_price", f"{event.kind.value} event requires a price")
    return event


def parse_event(payload: Any, direction: TradeDirection = TradeDirection.LONG) -> InboundEvent:
    """
    Resolve a raw payload into an InboundEvent.

    Raises:
        PayloadError: payload is not an object, or a field the kind
            requires is missing or not a finite positive number
    """
    if not isinstance(payload, Mapping):
        raise PayloadError("invalid_payload", "payload must be a JSON object")

    kind = resolve_kind(payload, direction)
    instrument = resolve_instrument(payload)
    price = resolve_price(payload, kind)
    ttl = _number(payload.get("ttl_min", payload.get("ttlMin")))

    return validate_event(InboundEvent(
        kind=kind,
        instrument=instrument,
        price=price,
        timestamp=resolve_timestamp(payload),
        event_id=_text(payload.get("eventId") or payload.get("event_id")),
        explicit_exit_reason=_text(
            payload.get("explicitExitReason") or payload.get("exitReason") or payload.get("exit_reason")
        ),
        timeframe=_text(payload.get("tf") or payload.get("timeframe") or payload.get("interval")),
        ttl_min=ttl,
        raw_kind=resolve_raw_kind(payload),
        meta=resolve_venue_meta(payload, instrument),
        indicators=resolve_indicators(payload),
    ))
