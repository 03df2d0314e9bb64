"""
Unit tests for Capital Integration
"""

import pytest
import sys
sys.path.insert(0, 'src')

from admission_control.risk.capital_integration import CapitalIntegration
from admission_control.core.types import Regime


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_integration(equity: float = 10000.0, positions=None, warm: bool = True):
    clock = FakeClock()
    integration = CapitalIntegration(clock=clock, enable_metrics=False)
    integration.initialize(equity, positions)
    if warm:
        for _ in range(15):
            clock.advance(60)
            integration.update_cycle(equity, 'NEUTRAL', False, 0, 80, 0.9)
    return integration, clock


class TestCapitalIntegration:
    """Test suite for the capital bridge."""

    def test_uninitialized_denies(self):
        """Test sizing before initialization is denied."""
        integration = CapitalIntegration(clock=FakeClock(), enable_metrics=False)

        decision = integration.get_adaptive_position_size('poolA', 'SOL-USDC', 1e6, 0.5, 0.5, 0.2)

        assert not decision.allowed
        assert decision.size_usd == 0.0
        assert decision.reason == 'Capital integration not initialized'

    def test_uninitialized_cycle_ignored(self):
        """Test cycle updates before initialization are no-ops."""
        integration = CapitalIntegration(clock=FakeClock(), enable_metrics=False)

        integration.update_cycle(10000, 'NEUTRAL', False, 0, 80, 0.9)
        integration.record_position_entry('poolA', 500)

        assert integration.cycle_count == 0
        assert integration.capital_manager.total_deployed_usd == 0

    def test_initialize_with_positions(self):
        """Test existing positions are restored."""
        integration, _ = make_integration(positions=[('poolA', 500), ('poolB', 400)], warm=False)

        assert integration.is_initialized()
        assert integration.capital_manager.total_deployed_usd == 900

    def test_warmup_through_cycles(self):
        """Test fifteen one-minute cycles complete warmup."""
        integration, _ = make_integration()

        assert integration.cycle_count == 15
        assert integration.get_dynamic_deploy_cap_pct() == pytest.approx(0.40)
        assert not integration.capital_manager.get_state().is_in_warmup
        assert integration.confidence.get_metrics_history_length() == 15

    def test_cycle_feeds_confidence(self):
        """Test market metrics reach the capital manager's score."""
        integration, _ = make_integration()

        # Flat PnL after three cycles lifts stability from 0.5 to 1.0
        assert 0.759 < integration.get_confidence_score() < 0.811
        assert not integration.is_max_capacity_unlocked()

    def test_kill_switch_cooldown(self):
        """Test kill-switch cooldown flows through to the cap."""
        integration, clock = make_integration()

        clock.advance(60)
        integration.update_cycle(10000, 'BEAR', True, clock.now + 600, 80, 0.9)

        assert integration.get_dynamic_deploy_cap_pct() == pytest.approx(0.25)
        assert integration.get_per_pool_max_cap_pct() == pytest.approx(0.05)

    def test_adaptive_size_allowed(self):
        """Test sizing and availability chain into an executable size."""
        integration, _ = make_integration()

        decision = integration.get_adaptive_position_size('poolA', 'SOL-USDC', 1e6, 0.5, 0.5, 0.2)

        assert decision.allowed
        assert decision.size_usd == 600
        assert decision.sizing.recommended_size_usd == 600
        assert decision.check.allowed

    def test_adaptive_size_skipped(self):
        """Test an amortization skip is surfaced with its reason."""
        integration, _ = make_integration(warm=False)

        decision = integration.get_adaptive_position_size(
            'poolA', 'SOL-USDC', 1e6, 1.5, 1.5, 0.1, observed_fee_rate=0.5
        )

        assert not decision.allowed
        assert decision.sizing.skip_entry
        assert decision.check is None
        assert decision.reason.startswith("Amortization")

    def test_adaptive_size_capacity_denied(self):
        """Test a full pool is denied by the availability check."""
        integration, _ = make_integration()
        integration.record_position_entry('poolA', 700)

        decision = integration.get_adaptive_position_size('poolA', 'SOL-USDC', 1e6, 0.5, 0.5, 0.2)

        assert not decision.allowed
        assert decision.size_usd == 0.0
        assert "< min" in decision.reason

    def test_exit_records_fee_history(self):
        """Test exits release capital and store fee samples."""
        integration, _ = make_integration()
        integration.record_position_entry('poolA', 600)

        integration.record_position_exit('poolA', 600, 3.0, 7200)

        cm = integration.capital_manager
        assert cm.total_deployed_usd == 0
        assert len(cm.pool_fee_history['poolA']) == 1

    def test_exit_without_fees_skips_history(self):
        """Test zero-fee exits do not pollute fee history."""
        integration, _ = make_integration()
        integration.record_position_entry('poolA', 600)

        integration.record_position_exit('poolA', 600, 0.0, 7200)

        assert 'poolA' not in integration.capital_manager.pool_fee_history

    def test_accessors(self):
        """Test static sizing accessors."""
        integration, _ = make_integration(warm=False)

        assert integration.get_min_position_size_usd() == 400
        assert integration.get_target_position_size_usd('BULL') == 1200
        assert integration.get_target_position_size_usd(Regime.BEAR) == 600
        assert integration.get_target_position_size_usd('sideways') == 900

    def test_full_state(self):
        """Test the combined state snapshot."""
        integration, _ = make_integration()

        state = integration.get_full_capital_state()

        assert state['cycle_count'] == 15
        assert state['state']['dynamic_deploy_cap_pct'] == pytest.approx(0.40)
        assert state['confidence']['samples_count'] == 15

    def test_legacy_shim(self):
        """Test the legacy wrapper delegates with estimated costs."""
        integration, _ = make_integration()

        result = integration.legacy_calculate_position_size(
            'poolA', 'SOL-USDC', 10000, 5000, 1e6, 0.8, 'NEUTRAL'
        )

        assert result == {'size': 400, 'blocked': False, 'reason': 'OK'}

    def test_invariant_violation_logged(self, caplog):
        """Test invariant violations are logged and the cycle continues."""
        integration, clock = make_integration()
        integration.record_position_entry('poolA', 7000)

        clock.advance(60)
        with caplog.at_level('ERROR'):
            integration.update_cycle(10000, 'NEUTRAL', False, 0, 80, 0.9)

        assert 'Invariant violations' in caplog.text
        assert integration.cycle_count == 16


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
