"""
Execution Sink

Outbound boundary of the gate engine: maps approved transitions onto the
execution venue's signal API.

The sink is a best-effort notification. Local engine state is
authoritative and is never rolled back on a failed delivery.
"""

from brainrelay.execution_sink.sinks import (
    ExecutionSink,
    DemoSink,
    ThreeCommasSink,
    build_sink
)

__all__ = [
    "ExecutionSink",
    "DemoSink",
    "ThreeCommasSink",
    "build_sink",
]
