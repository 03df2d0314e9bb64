"""
Unit tests for Adaptive Sizing Engine
"""

import pytest
import sys
sys.path.insert(0, 'src')

from admission_control.engines.adaptive_sizing import (
    AdaptiveSizingEngine,
    compute_multiplier_value,
    create_trading_state,
    is_trading_blocked,
    normalize_score,
)
from admission_control.core.config import AdaptiveSizingConfig


class TestNormalizeScore:
    """Test input normalization."""

    def test_clamps_out_of_range(self):
        """Test values outside [0, 1] are clamped."""
        assert normalize_score(-0.5) == 0.0
        assert normalize_score(1.7) == 1.0
        assert normalize_score(0.42) == pytest.approx(0.42)

    def test_non_finite_becomes_zero(self):
        """Test NaN and inf are treated as zero signal."""
        assert normalize_score(float('nan')) == 0.0
        assert normalize_score(float('inf')) == 0.0
        assert normalize_score(None) == 0.0


class TestAdaptiveSizingEngine:
    """Test suite for the regime power-curve multiplier."""

    def test_all_max_signals(self):
        """Test a perfect signal vector yields multiplier 1.0."""
        engine = AdaptiveSizingEngine()
        state = create_trading_state(1.0, 1.0, 1.0, 1.0, 1.0)

        result = engine.compute_position_multiplier(state)

        assert result.raw_score == pytest.approx(1.0)
        assert result.regime_confidence == pytest.approx(1.0)
        assert result.position_multiplier == pytest.approx(1.0)
        assert not result.trading_blocked
        assert result.reason.startswith("NEAR-MAX")

    def test_timestamp_uses_clock(self):
        """Test result timestamps come from the injected clock."""
        engine = AdaptiveSizingEngine(clock=lambda: 1_234.5)

        result = engine.compute_position_multiplier(create_trading_state(1.0, 1.0, 1.0, 1.0, 1.0))

        assert result.timestamp == 1_234.5

    def test_power_curve(self):
        """Test regime confidence is raw score to the 1.5 power."""
        engine = AdaptiveSizingEngine()
        state = create_trading_state(0.5, 0.5, 0.5, 0.5, 0.5)

        result = engine.compute_position_multiplier(state)

        assert result.raw_score == pytest.approx(0.5)
        assert result.regime_confidence == pytest.approx(0.5 ** 1.5)
        assert result.position_multiplier == pytest.approx(0.5 ** 1.5)
        assert result.reason.startswith("SCALED-DOWN")

    def test_weak_signal_blocks(self):
        """Test regime confidence below 0.20 gives exactly zero."""
        engine = AdaptiveSizingEngine()
        state = create_trading_state(migration_confidence=0.3)

        result = engine.compute_position_multiplier(state)

        assert result.trading_blocked
        assert result.position_multiplier == 0.0
        assert result.reason.startswith("BLOCKED")
        assert engine.is_trading_blocked(state)

    def test_block_boundary(self):
        """Test multiplier is zero iff regime confidence < 0.20."""
        engine = AdaptiveSizingEngine()

        for value in [0.0, 0.1, 0.2, 0.3, 0.34, 0.35, 0.4, 0.6, 0.8, 1.0]:
            state = create_trading_state(value, value, value, value, value)
            result = engine.compute_position_multiplier(state)

            assert 0.0 <= result.position_multiplier <= 1.8
            assert (result.position_multiplier == 0) == (result.regime_confidence < 0.20)

    def test_weights_applied(self):
        """Test the migration weight dominates the raw score."""
        engine = AdaptiveSizingEngine()

        migration_only = engine.compute_position_multiplier(create_trading_state(migration_confidence=1.0))
        velocity_only = engine.compute_position_multiplier(create_trading_state(velocity=1.0))

        assert migration_only.raw_score == pytest.approx(0.35)
        assert velocity_only.raw_score == pytest.approx(0.10)

    def test_non_finite_inputs(self):
        """Test NaN inputs never raise and contribute nothing."""
        engine = AdaptiveSizingEngine()
        state = create_trading_state(float('nan'), 1.0, 1.0, 1.0, 1.0)

        result = engine.compute_position_multiplier(state)

        assert result.raw_score == pytest.approx(0.85)

    def test_max_multiplier_clamp(self):
        """Test a custom exponent cannot push the multiplier past the cap."""
        config = AdaptiveSizingConfig(power_exponent=0.5, max_multiplier=0.8)
        state = create_trading_state(1.0, 1.0, 1.0, 1.0, 1.0)

        assert compute_multiplier_value(state, config) == pytest.approx(0.8)

    def test_module_helpers(self):
        """Test stateless module-level helpers."""
        strong = create_trading_state(0.9, 0.9, 0.9, 0.9, 0.9)
        weak = create_trading_state()

        assert compute_multiplier_value(strong) > 0
        assert not is_trading_blocked(strong)
        assert is_trading_blocked(weak)

    def test_get_state(self):
        """Test configuration snapshot."""
        state = AdaptiveSizingEngine().get_state()

        assert state['min_regime_confidence'] == 0.20
        assert state['max_multiplier'] == 1.8
        assert state['weights']['migration_confidence'] == 0.35


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
