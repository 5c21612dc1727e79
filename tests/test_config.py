"""
Test Suite for Gate Engine Configuration
"""

import pytest

from brainrelay.gate_engine.config import GateEngineConfig, RegimeConfig


class TestFromEnv:
    """Test environment loading"""

    def test_defaults(self):
        config = GateEngineConfig.from_env({})

        assert config.direction == "LONG"
        assert config.admission.max_drift_pct == 1.2
        assert config.activation.auto_expire_pct == 1.2
        assert config.crash.cooldown_min == 45.0
        assert config.reentry.tries_max == 1

    def test_drift_bound_feeds_auto_expire(self):
        config = GateEngineConfig.from_env({"READY_MAX_MOVE_PCT": "1.5"})

        assert config.admission.max_drift_pct == 1.5
        assert config.activation.auto_expire_pct == 1.5

    def test_overrides(self):
        config = GateEngineConfig.from_env({
            "TRADE_DIRECTION": "short",
            "READY_MAX_MOVE_PCT_TREND": "2.0",
            "PROFIT_LOCK_ENABLED": "false",
            "REENTRY_MAX_TRIES": "2",
            "STATE_SCOPE": "global",
            "WEBHOOK_SECRET": "abc",
        })

        assert config.direction == "SHORT"
        assert config.admission.max_drift_pct_trend == 2.0
        assert config.admission.max_drift_pct_range is None
        assert not config.profit_lock.enabled
        assert config.reentry.tries_max == 2
        assert config.state_scope == "global"
        assert config.webhook_secret == "abc"

    def test_bad_number_raises(self):
        with pytest.raises(ValueError, match="CRASH_DUMP_1M_PCT"):
            GateEngineConfig.from_env({"CRASH_DUMP_1M_PCT": "two"})


class TestValidation:
    def test_invalid_direction(self):
        with pytest.raises(ValueError):
            GateEngineConfig(direction="SIDEWAYS")

    def test_invalid_scope(self):
        with pytest.raises(ValueError):
            GateEngineConfig(state_scope="account")

    def test_hysteresis_order(self):
        with pytest.raises(ValueError):
            GateEngineConfig(regime=RegimeConfig(trend_engage_pct=0.1, trend_disengage_pct=0.2))


class TestHashing:
    """Test config hashing and masking"""

    def test_hash_is_deterministic(self):
        assert GateEngineConfig().compute_hash() == GateEngineConfig().compute_hash()

    def test_hash_ignores_credentials(self):
        plain = GateEngineConfig()
        with_secret = GateEngineConfig(webhook_secret="abc")
        with_secret.sink.secret = "3c"

        assert plain.compute_hash() == with_secret.compute_hash()

    def test_hash_tracks_thresholds(self):
        assert GateEngineConfig().compute_hash() != GateEngineConfig.from_env({"CRASH_DUMP_1M_PCT": "3"}).compute_hash()

    def test_to_dict_masks_credentials(self):
        config = GateEngineConfig(webhook_secret="abc")
        config.sink.bot_uuid = "bot"

        data = config.to_dict()

        assert data['webhook_secret'] == "(set)"
        assert data['sink']['bot_uuid'] == "(set)"
        assert data['sink']['secret'] == "(missing)"
        assert data['config_hash'] == config.compute_hash()


class TestIndicatorGateEnv:
    def test_defaults_enable_every_gate(self):
        gates = GateEngineConfig.from_env({}).indicator_gates

        assert gates.pump_protect_enabled
        assert gates.htf_bias_enabled
        assert gates.trend_strength_enabled
        assert gates.pump_atr_mult == 1.8
        assert gates.adx_min == 18.0

    def test_overrides(self):
        gates = GateEngineConfig.from_env({
            "ENABLE_HTF_BIAS": "false",
            "PUMP_ROC_PCT": "0.7",
            "PUMP_COOLDOWN_MIN": "10",
            "REG_SLOPE_MIN": "0.05",
        }).indicator_gates

        assert not gates.htf_bias_enabled
        assert gates.pump_roc_pct == 0.7
        assert gates.pump_cooldown_min == 10.0
        assert gates.slope_min_pct == 0.05
