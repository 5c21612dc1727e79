"""
Execution Sinks

Deliver approved transitions outward. The engine's local state is already
committed when a sink is called; a failed delivery is reported, never
rolled back.

Sinks:
    ThreeCommasSink  POSTs the signal-bot webhook body with a timeout
    DemoSink         records transitions in memory, never posts
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from brainrelay.gate_engine.config import SinkConfig
from brainrelay.gate_engine.schemas import SinkResult, Transition

LOG = logging.getLogger(__name__)


class ExecutionSink:
    """Base sink: deliver(transition) -> SinkResult, must not raise"""

    name = "base"

    def deliver(self, transition: Transition) -> SinkResult:
        raise NotImplementedError

    def describe(self) -> dict:
        return {'sink': self.name}


class DemoSink(ExecutionSink):
    """
    Records transitions instead of posting them.

    Used when posting is disabled or credentials are missing, and in tests.
    """

    name = "demo"

    def __init__(self, max_records: int = 500):
        self.max_records = max_records
        self._records: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def deliver(self, transition: Transition) -> SinkResult:
        record = transition.to_dict()
        with self._lock:
            self._records.append(record)
            if len(self._records) > self.max_records:
                self._records = self._records[-self.max_records:]
        LOG.info(
            f"DEMO sink: {transition.wire_action} {transition.instrument.key} @ {transition.price} "
            f"({transition.reason})"
        )
        return SinkResult(accepted=True, detail="demo")

    @property
    def records(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._records)

    def clear(self):
        with self._lock:
            self._records.clear()


class ThreeCommasSink(ExecutionSink):
    """
    3Commas signal-bot webhook client.

    Venue identifiers resolve in order: transition meta, configured
    defaults, then the instrument itself.
    """

    name = "3commas"

    def __init__(self, config: SinkConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session

    def build_body(self, transition: Transition) -> Dict[str, str]:
        meta = transition.meta or {}
        tv_exchange = (
            meta.get("tv_exchange")
            or self.config.default_tv_exchange
            or transition.instrument.venue
        )
        tv_instrument = (
            meta.get("tv_instrument")
            or self.config.default_tv_instrument
            or transition.instrument.symbol
        )
        timestamp = transition.timestamp or datetime.now(timezone.utc).isoformat()

        return {
            "secret": self.config.secret,
            "max_lag": str(self.config.max_lag),
            "timestamp": timestamp,
            "trigger_price": str(transition.price) if transition.price is not None else "",
            "tv_exchange": str(tv_exchange or ""),
            "tv_instrument": str(tv_instrument or ""),
            "action": transition.wire_action,
            "bot_uuid": self.config.bot_uuid,
        }

    def deliver(self, transition: Transition) -> SinkResult:
        if not self.config.is_configured():
            LOG.warning("3Commas not configured (missing bot uuid / secret), skipping")
            return SinkResult(accepted=False, detail="not_configured")

        body = self.build_body(transition)
        try:
            post = self.session.post if self.session is not None else requests.post
            response = post(
                self.config.webhook_url,
                json=body,
                timeout=self.config.timeout_ms / 1000.0
            )
        except requests.Timeout:
            LOG.error(f"3Commas POST timed out -> {body['action']} ({self.config.timeout_ms} ms)")
            return SinkResult(accepted=False, detail="timeout")
        except requests.RequestException as e:
            LOG.error(f"3Commas POST failed -> {body['action']}: {e}")
            return SinkResult(accepted=False, detail=f"request_error: {e}")

        text = response.text or ""
        if not response.ok:
            LOG.error(f"3Commas POST rejected -> {body['action']} | status={response.status_code} | resp={text}")
            return SinkResult(accepted=False, detail=text[:500], status_code=response.status_code)

        LOG.info(f"3Commas POST -> {body['action']} | status={response.status_code} | resp={text}")
        return SinkResult(accepted=True, detail=text[:500], status_code=response.status_code)

    def describe(self) -> dict:
        return {
            'sink': self.name,
            'webhook_url': self.config.webhook_url,
            'configured': self.config.is_configured(),
            'timeout_ms': self.config.timeout_ms,
        }


def build_sink(config: SinkConfig) -> ExecutionSink:
    """Pick the live sink when posting is enabled and configured, else demo"""
    if config.enable_post and config.is_configured():
        return ThreeCommasSink(config)
    if config.enable_post:
        LOG.warning("Posting enabled but 3Commas credentials missing, using demo sink")
    return DemoSink()
