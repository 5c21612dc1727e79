"""
Gate Engine FastAPI Interface

Webhook intake plus read-only introspection for the Signal Gate Engine.
"""

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import json
import logging

from brainrelay.gate_engine.engine import SignalGateEngine
from brainrelay.gate_engine.config import GateEngineConfig
from brainrelay.gate_engine.schemas import Acknowledgment, AckStatus
from brainrelay.execution_sink import build_sink

LOG = logging.getLogger(__name__)

API_VERSION = "2.9.0"


# ========================================
# RESPONSE SCHEMAS
# ========================================

class AcknowledgmentResponse(BaseModel):
    """Decision returned for every inbound webhook"""
    accepted: bool = Field(..., description="True when the event was applied")
    status: str = Field(..., description="ACCEPTED, REJECTED, IGNORED, DUPLICATE, UNAUTHORIZED, INVALID or ERROR")
    kind: str = Field("unknown", description="Resolved event kind")
    instrument: Optional[str] = Field(None, description="VENUE:SYMBOL the event applied to")
    reason: str = Field("", description="Machine-readable decision reason")
    details: Dict[str, Any] = Field(default_factory=dict)
    transitions: List[Dict[str, Any]] = Field(default_factory=list)
    sink: List[Dict[str, Any]] = Field(default_factory=list)
    sink_ok: bool = True


class ResetResponse(BaseModel):
    """Operator reset result"""
    reset: bool
    instrument: Optional[str] = None
    timestamp: str


# Create FastAPI app
app = FastAPI(
    title="Signal Gate Engine API",
    description="Activation, admission and adaptive exit gating for webhook trade signals",
    version=API_VERSION
)

# Global engine instance
_engine: Optional[SignalGateEngine] = None


def get_engine() -> SignalGateEngine:
    """Get or create engine instance"""
    global _engine
    if _engine is None:
        config = GateEngineConfig.from_env()
        _engine = SignalGateEngine(config, sink=build_sink(config.sink))
        LOG.info("Signal Gate Engine initialized")
    return _engine


def set_engine(engine: Optional[SignalGateEngine]):
    """Install a pre-built engine (tests, embedding)"""
    global _engine
    _engine = engine


def _to_response(ack: Acknowledgment) -> AcknowledgmentResponse:
    return AcknowledgmentResponse(**ack.to_dict())


@app.on_event("startup")
async def startup_event():
    """Initialize engine on startup"""
    get_engine()
    LOG.info("Gate Engine API started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    LOG.info("Gate Engine API shutting down")


@app.get("/")
async def root():
    """Service summary"""
    engine = get_engine()
    return {
        "service": "Signal Gate Engine",
        "version": API_VERSION,
        "direction": engine.direction.name,
        "state_scope": engine.config.state_scope,
        "config_hash": engine.config_hash,
        "instruments": engine.ticks.instruments(),
    }


@app.post("/webhook", response_model=AcknowledgmentResponse)
async def webhook(request: Request, response: Response):
    """
    Inbound event intake.

    Every request gets an acknowledgment; authentication failures answer
    401, undecodable bodies 400, everything else 200.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        LOG.warning(f"Webhook body is not valid JSON: {e}")
        response.status_code = status.HTTP_400_BAD_REQUEST
        return AcknowledgmentResponse(
            accepted=False,
            status=AckStatus.INVALID.value,
            reason="invalid_json",
            details={"error": str(e)},
        )

    engine = get_engine()
    ack = await run_in_threadpool(engine.process_payload, payload)

    if ack.status == AckStatus.UNAUTHORIZED:
        response.status_code = status.HTTP_401_UNAUTHORIZED
    return _to_response(ack)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        API status and engine health metrics
    """
    try:
        engine = get_engine()
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "engine_health": engine.get_health(),
            "config_hash": engine.config_hash
        }
    except Exception as e:
        LOG.error(f"Health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )


@app.get("/config")
async def get_config():
    """Current engine configuration (credentials masked)"""
    try:
        engine = get_engine()
        return {
            "config": engine.config.to_dict(),
            "config_hash": engine.config_hash,
            "engine_version": API_VERSION
        }
    except Exception as e:
        LOG.error(f"Failed to retrieve config: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@app.get("/state/all")
async def get_all_states():
    """Read-only snapshot of every state region"""
    try:
        return get_engine().snapshot_all()
    except Exception as e:
        LOG.error(f"Failed to get states: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@app.get("/state/{instrument}")
async def get_state(instrument: str):
    """
    Read-only snapshot for one instrument.

    Args:
        instrument: VENUE:SYMBOL (e.g. BINANCE:SOLUSDT)
    """
    try:
        return get_engine().snapshot(instrument)
    except Exception as e:
        LOG.error(f"Failed to get state for {instrument}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@app.post("/state/reset/{instrument}", response_model=ResetResponse)
async def reset_state(instrument: str):
    """Reset state, ticks and regime for one instrument"""
    try:
        get_engine().reset(instrument)
        return ResetResponse(
            reset=True,
            instrument=instrument,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
    except Exception as e:
        LOG.error(f"Failed to reset state for {instrument}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@app.post("/reset", response_model=ResetResponse)
async def reset_all():
    """Reset every instrument"""
    try:
        get_engine().reset()
        return ResetResponse(reset=True, timestamp=datetime.now(timezone.utc).isoformat())
    except Exception as e:
        LOG.error(f"Failed to reset engine: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
