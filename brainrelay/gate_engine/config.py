"""
Gate Engine Configuration

Defines all gating thresholds, hysteresis bands, cooldown durations and
exit-controller parameters. Defaults mirror the production deployment.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Mapping, Optional
import hashlib
import json
import os


@dataclass
class TickStoreConfig:
    """Tick retention configuration"""

    # Sliding window retention (seconds)
    retention_sec: float = 1800.0


@dataclass
class RegimeConfig:
    """Regime classifier configuration"""

    enabled: bool = True

    # Windows used for slope and volatility estimation
    slope_window_sec: float = 300.0
    volatility_window_sec: float = 300.0
    min_ticks: int = 10

    # Hysteresis thresholds (absolute % move over slope window)
    trend_engage_pct: float = 0.25
    trend_disengage_pct: float = 0.18
    range_engage_pct: float = 0.12
    range_disengage_pct: float = 0.16

    # Volatility % must reach this floor for TREND to engage
    volatility_floor_pct: float = 0.20


@dataclass
class CrashConfig:
    """Crash protection configuration"""

    enabled: bool = True
    drop_1m_pct: float = 2.0
    drop_5m_pct: float = 4.0
    cooldown_min: float = 45.0

    # Close an open position when the lock triggers
    exit_open_position: bool = True


@dataclass
class ActivationConfig:
    """Activation (READY) gate configuration"""

    # READY TTL in minutes, 0 disables
    ttl_min: float = 0.0

    # Auto-expire when price drifts away from the reference price
    auto_expire_enabled: bool = True
    auto_expire_pct: float = 1.2

    # Heartbeat freshness (tick stream)
    require_fresh_heartbeat: bool = True
    heartbeat_max_age_sec: float = 240.0


@dataclass
class AdmissionConfig:
    """Entry admission configuration"""

    # Entry drift gate (% from activation reference price)
    max_drift_pct: float = 1.2
    max_drift_pct_trend: Optional[float] = None
    max_drift_pct_range: Optional[float] = None

    # Cooldown after any exit (minutes), 0 disables
    exit_cooldown_min: float = 0.0

    # Ignore exit intents below this profit unless an explicit reason is given (0 disables)
    min_profit_to_accept_exit_pct: float = 0.0


@dataclass
class ProfitLockConfig:
    """Adaptive trailing exit configuration"""

    enabled: bool = True

    # Fixed thresholds (used when adaptive mode is off or volatility unknown)
    arm_pct: float = 0.6
    giveback_pct: float = 0.35

    # Adaptive thresholds: base * regime factor * volatility %
    adaptive_enabled: bool = True
    adaptive_base_arm: float = 1.0
    adaptive_base_giveback: float = 1.0
    arm_factor_trend: float = 2.2
    giveback_factor_trend: float = 1.2
    arm_factor_range: float = 1.2
    giveback_factor_range: float = 0.7

    # Clamps, 0 disables a bound
    min_arm_pct: float = 0.0
    max_arm_pct: float = 0.0
    min_giveback_pct: float = 0.0
    max_giveback_pct: float = 0.0


@dataclass
class EquityConfig:
    """Loss-streak equity stabilizer configuration"""

    enabled: bool = True
    loss_streak_2_cooldown_min: float = 15.0
    loss_streak_3_cooldown_min: float = 45.0
    conservative_min: float = 45.0


@dataclass
class ReentryConfig:
    """Post-exit re-entry window configuration"""

    enabled: bool = True
    window_min: float = 10.0
    tries_max: int = 1

    # Closes below this realized P&L (%) never open a window
    skip_below_pnl_pct: float = -1.0

    # Price band around the exit price
    max_fall_pct: float = 0.8
    max_rise_pct: float = 0.4

    require_trend: bool = False
    requires_activation: bool = False
    bypass_cooldown: bool = True


@dataclass
class PendingEntryConfig:
    """Buffered enter-intent configuration"""

    enabled: bool = True
    ttl_sec: float = 30.0

    # Arm reference price must be within this % of the buffered price
    match_tolerance_pct: float = 0.15


@dataclass
class IndicatorGateConfig:
    """
    Producer-indicator entry gates.

    Each gate only runs when the enter-intent carries the fields it
    reads; intents without indicator fields pass untouched.
    """

    # Adverse spike against the trade direction (ind.atr / candleRange / rocPct)
    pump_protect_enabled: bool = True
    pump_atr_mult: float = 1.8
    pump_roc_pct: float = 0.45
    pump_cooldown_min: float = 5.0

    # Higher-timeframe bias booleans (htf.*)
    htf_bias_enabled: bool = True

    # Trend strength (reg.adx / reg.slopePctPerBar)
    trend_strength_enabled: bool = True
    adx_min: float = 18.0
    slope_min_pct: float = 0.08


@dataclass
class SinkConfig:
    """Execution sink (3Commas signal bot) configuration"""

    enable_post: bool = True
    webhook_url: str = "https://api.3commas.io/signal_bots/webhooks"
    bot_uuid: str = ""
    secret: str = ""
    max_lag: str = "300"
    timeout_ms: float = 8000.0

    # Fallbacks when neither the event nor the context carries venue metadata
    default_tv_exchange: str = ""
    default_tv_instrument: str = ""

    def is_configured(self) -> bool:
        return bool(self.bot_uuid and self.secret)

    def to_dict(self) -> dict:
        """Convert to dictionary (credentials masked)"""
        data = asdict(self)
        data['bot_uuid'] = "(set)" if self.bot_uuid else "(missing)"
        data['secret'] = "(set)" if self.secret else "(missing)"
        return data


@dataclass
class GateEngineConfig:
    """
    Complete Gate Engine configuration.

    All thresholds and decision parameters.
    """

    # Sub-configurations
    tick_store: TickStoreConfig = field(default_factory=TickStoreConfig)
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    crash: CrashConfig = field(default_factory=CrashConfig)
    activation: ActivationConfig = field(default_factory=ActivationConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    profit_lock: ProfitLockConfig = field(default_factory=ProfitLockConfig)
    equity: EquityConfig = field(default_factory=EquityConfig)
    reentry: ReentryConfig = field(default_factory=ReentryConfig)
    pending_entry: PendingEntryConfig = field(default_factory=PendingEntryConfig)
    indicator_gates: IndicatorGateConfig = field(default_factory=IndicatorGateConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)

    # "LONG" or "SHORT"
    direction: str = "LONG"

    # "instrument" keys state per instrument, "global" shares one region
    state_scope: str = "instrument"

    # Inbound shared secret (empty accepts all)
    webhook_secret: str = ""

    # Version tracking
    config_version: str = "2.9.0"

    def __post_init__(self):
        """Validate enumerated settings"""
        self.direction = self.direction.upper()
        if self.direction not in ("LONG", "SHORT"):
            raise ValueError(f"direction must be LONG or SHORT, got {self.direction}")
        if self.state_scope not in ("instrument", "global"):
            raise ValueError(f"state_scope must be 'instrument' or 'global', got {self.state_scope}")
        if self.regime.trend_disengage_pct > self.regime.trend_engage_pct:
            raise ValueError("trend_disengage_pct must not exceed trend_engage_pct")

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        data = asdict(self)
        data['sink'] = self.sink.to_dict()
        data['webhook_secret'] = "(set)" if self.webhook_secret else "(missing)"
        data['config_hash'] = self.compute_hash()
        return data

    def compute_hash(self) -> str:
        """
        Compute deterministic hash of configuration.

        Credentials are excluded so the hash can be shared in logs.
        """
        config_dict = asdict(self)
        config_dict.pop('webhook_secret', None)
        config_dict['sink'].pop('secret', None)
        config_dict['sink'].pop('bot_uuid', None)

        config_json = json.dumps(config_dict, sort_keys=True, default=str)
        return hashlib.sha256(config_json.encode()).hexdigest()[:12]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GateEngineConfig":
        """
        Build configuration from environment variables.

        Variable names match the ones the webhook brain has always used,
        so existing deployments keep their settings.
        """
        env = _Env(os.environ if environ is None else environ)

        max_drift = env.get_float("READY_MAX_MOVE_PCT", 1.2)

        return cls(
            tick_store=TickStoreConfig(
                retention_sec=env.get_float("TICK_BUFFER_SEC", 1800.0),
            ),
            regime=RegimeConfig(
                enabled=env.get_bool("REGIME_ENABLED", True),
                slope_window_sec=env.get_float("SLOPE_WINDOW_SEC", 300.0),
                volatility_window_sec=env.get_float("ATR_WINDOW_SEC", 300.0),
                min_ticks=env.get_int("REGIME_MIN_TICKS", 10),
                trend_engage_pct=env.get_float("REGIME_TREND_SLOPE_ON_PCT", 0.25),
                trend_disengage_pct=env.get_float("REGIME_TREND_SLOPE_OFF_PCT", 0.18),
                range_engage_pct=env.get_float("REGIME_RANGE_SLOPE_ON_PCT", 0.12),
                range_disengage_pct=env.get_float("REGIME_RANGE_SLOPE_OFF_PCT", 0.16),
                volatility_floor_pct=env.get_float("REGIME_VOL_MIN_ATR_PCT", 0.20),
            ),
            crash=CrashConfig(
                enabled=env.get_bool("CRASH_PROTECT_ENABLED", True),
                drop_1m_pct=env.get_float("CRASH_DUMP_1M_PCT", 2.0),
                drop_5m_pct=env.get_float("CRASH_DUMP_5M_PCT", 4.0),
                cooldown_min=env.get_float("CRASH_COOLDOWN_MIN", 45.0),
                exit_open_position=env.get_bool("CRASH_EXIT_OPEN_POSITION", True),
            ),
            activation=ActivationConfig(
                ttl_min=env.get_float("READY_TTL_MIN", 0.0),
                auto_expire_enabled=env.get_bool("READY_AUTOEXPIRE_ENABLED", True),
                auto_expire_pct=env.get_float("READY_AUTOEXPIRE_PCT", max_drift),
                require_fresh_heartbeat=env.get_bool("REQUIRE_FRESH_HEARTBEAT", True),
                heartbeat_max_age_sec=env.get_float("HEARTBEAT_MAX_AGE_SEC", 240.0),
            ),
            admission=AdmissionConfig(
                max_drift_pct=max_drift,
                max_drift_pct_trend=env.get_optional_float("READY_MAX_MOVE_PCT_TREND"),
                max_drift_pct_range=env.get_optional_float("READY_MAX_MOVE_PCT_RANGE"),
                exit_cooldown_min=env.get_float("EXIT_COOLDOWN_MIN", 0.0),
                min_profit_to_accept_exit_pct=env.get_float(
                    "PROFIT_LOCK_MIN_PROFIT_TO_ACCEPT_RAY_SELL_PCT", 0.0
                ),
            ),
            profit_lock=ProfitLockConfig(
                enabled=env.get_bool("PROFIT_LOCK_ENABLED", True),
                arm_pct=env.get_float("PROFIT_LOCK_ARM_PCT", 0.6),
                giveback_pct=env.get_float("PROFIT_LOCK_GIVEBACK_PCT", 0.35),
                adaptive_enabled=env.get_bool("PL_ADAPTIVE_ENABLED", True),
                arm_factor_trend=env.get_float("PL_START_ATR_MULT_TREND", 2.2),
                giveback_factor_trend=env.get_float("PL_GIVEBACK_ATR_MULT_TREND", 1.2),
                arm_factor_range=env.get_float("PL_START_ATR_MULT_RANGE", 1.2),
                giveback_factor_range=env.get_float("PL_GIVEBACK_ATR_MULT_RANGE", 0.7),
                min_arm_pct=env.get_float("PL_MIN_ARM_PCT", 0.0),
                max_arm_pct=env.get_float("PL_MAX_ARM_PCT", 0.0),
                min_giveback_pct=env.get_float("PL_MIN_GIVEBACK_PCT", 0.0),
                max_giveback_pct=env.get_float("PL_MAX_GIVEBACK_PCT", 0.0),
            ),
            equity=EquityConfig(
                enabled=env.get_bool("EQUITY_STABILIZER_ENABLED", True),
                loss_streak_2_cooldown_min=env.get_float("ES_LOSS_STREAK_2_COOLDOWN_MIN", 15.0),
                loss_streak_3_cooldown_min=env.get_float("ES_LOSS_STREAK_3_COOLDOWN_MIN", 45.0),
                conservative_min=env.get_float("ES_CONSERVATIVE_MIN", 45.0),
            ),
            reentry=ReentryConfig(
                enabled=env.get_bool("REENTRY_ENABLED", True),
                window_min=env.get_float("REENTRY_WINDOW_MIN", 10.0),
                tries_max=env.get_int("REENTRY_MAX_TRIES", 1),
                skip_below_pnl_pct=env.get_float("REENTRY_SKIP_BELOW_PNL_PCT", -1.0),
                max_fall_pct=env.get_float("REENTRY_MAX_FALL_PCT", 0.8),
                max_rise_pct=env.get_float("REENTRY_MAX_RISE_PCT", 0.4),
                require_trend=env.get_bool("REENTRY_REQUIRE_TREND", False),
                requires_activation=env.get_bool("REENTRY_REQUIRES_READY", False),
                bypass_cooldown=env.get_bool("REENTRY_BYPASS_COOLDOWN", True),
            ),
            pending_entry=PendingEntryConfig(
                enabled=env.get_bool("PENDING_ENTRY_ENABLED", True),
                ttl_sec=env.get_float("PENDING_ENTRY_TTL_SEC", 30.0),
                match_tolerance_pct=env.get_float("PENDING_ENTRY_TOLERANCE_PCT", 0.15),
            ),
            indicator_gates=IndicatorGateConfig(
                pump_protect_enabled=env.get_bool("ENABLE_PUMP_PROTECT", True),
                pump_atr_mult=env.get_float("PUMP_ATR_MULT", 1.8),
                pump_roc_pct=env.get_float("PUMP_ROC_PCT", 0.45),
                pump_cooldown_min=env.get_float("PUMP_COOLDOWN_MIN", 5.0),
                htf_bias_enabled=env.get_bool("ENABLE_HTF_BIAS", True),
                trend_strength_enabled=env.get_bool("ENABLE_REGIME_GATE", True),
                adx_min=env.get_float("REG_ADX_MIN", 18.0),
                slope_min_pct=env.get_float("REG_SLOPE_MIN", 0.08),
            ),
            sink=SinkConfig(
                enable_post=env.get_bool("ENABLE_POST_3C", True),
                webhook_url=env.get_str(
                    "THREECOMMAS_WEBHOOK_URL", "https://api.3commas.io/signal_bots/webhooks"
                ),
                bot_uuid=env.get_str("THREECOMMAS_BOT_UUID", ""),
                secret=env.get_str("THREECOMMAS_SECRET", ""),
                max_lag=env.get_str("THREECOMMAS_MAX_LAG", "300"),
                timeout_ms=env.get_float("THREECOMMAS_TIMEOUT_MS", 8000.0),
                default_tv_exchange=env.get_str("THREECOMMAS_TV_EXCHANGE", ""),
                default_tv_instrument=env.get_str("THREECOMMAS_TV_INSTRUMENT", ""),
            ),
            direction=env.get_str("TRADE_DIRECTION", "LONG"),
            state_scope=env.get_str("STATE_SCOPE", "instrument"),
            webhook_secret=env.get_str("WEBHOOK_SECRET", ""),
        )


class _Env:
    """Typed lookups over an environment mapping"""

    _TRUE = ("1", "true", "yes", "y", "on")
    _FALSE = ("0", "false", "no", "n", "off")

    def __init__(self, environ: Mapping[str, str]):
        self._environ: Dict[str, str] = dict(environ)

    def _raw(self, name: str) -> Optional[str]:
        value = self._environ.get(name)
        if value is None or str(value).strip() == "":
            return None
        return str(value).strip()

    def get_str(self, name: str, default: str) -> str:
        value = self._raw(name)
        return default if value is None else value

    def get_float(self, name: str, default: float) -> float:
        value = self.get_optional_float(name)
        return default if value is None else value

    def get_optional_float(self, name: str) -> Optional[float]:
        value = self._raw(name)
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Environment variable {name} is not a number: {value!r}")

    def get_int(self, name: str, default: int) -> int:
        value = self._raw(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Environment variable {name} is not an integer: {value!r}")

    def get_bool(self, name: str, default: bool) -> bool:
        value = self._raw(name)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in self._TRUE:
            return True
        if lowered in self._FALSE:
            return False
        return default
