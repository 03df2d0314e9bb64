"""
Unit tests for Confidence Score Calculator
"""

import pytest
import sys
sys.path.insert(0, 'src')

from admission_control.risk.confidence_score import (
    ConfidenceScoreCalculator,
    check_unlock_conditions,
    compute_confidence_score,
)
from admission_control.core.config import ConfidenceConfig
from admission_control.core.types import ConfidenceInputs


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def healthy_inputs(**overrides) -> ConfidenceInputs:
    values = dict(
        exit_suppression_rate=0.9,
        forced_exit_rate=0.0,
        avg_health_score=0.8,
        pnl_stability_inverse=0.9,
        market_health=70.0,
        alive_ratio=0.8,
        data_quality=1.0,
    )
    values.update(overrides)
    return ConfidenceInputs(**values)


class TestConfidenceScore:
    """Test the pure scoring and unlock functions."""

    def test_neutral_score(self):
        """Test neutral inputs produce the documented mid score."""
        score = compute_confidence_score(ConfidenceInputs.neutral())

        assert score == pytest.approx(0.52)

    def test_score_bounds(self):
        """Test the score stays in [0, 1] at the extremes."""
        worst = ConfidenceInputs(0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0)
        best = ConfidenceInputs(1.0, 0.0, 1.0, 1.0, 100.0, 1.0, 1.0)

        assert compute_confidence_score(worst) == pytest.approx(0.0)
        assert compute_confidence_score(best) == pytest.approx(1.0)

    def test_unlock_all_conditions(self):
        """Test healthy inputs unlock."""
        unlocked, failed = check_unlock_conditions(healthy_inputs())

        assert unlocked
        assert failed == []

    @pytest.mark.parametrize("override,name", [
        ({'market_health': 30.0}, 'marketHealth'),
        ({'alive_ratio': 0.2}, 'aliveRatio'),
        ({'forced_exit_rate': 0.2}, 'forcedExitRate'),
        ({'exit_suppression_rate': 0.5}, 'exitSuppressionRate'),
        ({'avg_health_score': 0.5}, 'avgHealthScore'),
    ])
    def test_single_failing_condition(self, override, name):
        """Test any single failing condition blocks unlock and is named."""
        unlocked, failed = check_unlock_conditions(healthy_inputs(**override))

        assert not unlocked
        assert len(failed) == 1
        assert failed[0].startswith(name)

    def test_unlock_boundaries_inclusive(self):
        """Test thresholds are inclusive."""
        inputs = healthy_inputs(
            market_health=35.0,
            alive_ratio=0.35,
            forced_exit_rate=0.10,
            exit_suppression_rate=0.60,
            avg_health_score=0.55,
        )

        unlocked, _ = check_unlock_conditions(inputs)

        assert unlocked


class TestConfidenceScoreCalculator:
    """Test suite for the rolling-window calculator."""

    def test_zero_samples_neutral(self):
        """Test an empty history yields neutral inputs."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)

        inputs = calc.compute_confidence_inputs()

        assert inputs == ConfidenceInputs.neutral()
        assert 0.0 <= calc.compute_confidence_score() <= 1.0

    def test_no_exits_defaults(self):
        """Test a quiet cycle treats absence of churn as good."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        calc.record_market_metrics(80, 0.9)
        calc.complete_cycle()

        inputs = calc.compute_confidence_inputs()

        assert inputs.exit_suppression_rate == pytest.approx(0.8)
        assert inputs.forced_exit_rate == 0.0
        assert inputs.avg_health_score == pytest.approx(0.5)
        assert inputs.pnl_stability_inverse == pytest.approx(0.5)
        assert inputs.market_health == pytest.approx(80.0)
        assert inputs.alive_ratio == pytest.approx(0.9)
        assert inputs.data_quality == pytest.approx(1.0)
        assert calc.compute_confidence_score(inputs) == pytest.approx(0.76)

    def test_exit_rates(self):
        """Test suppression and forced-exit rates."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        for _ in range(4):
            calc.record_exit_triggered()
        for _ in range(3):
            calc.record_exit_suppressed()
        calc.record_exit_executed()
        calc.record_exit_executed()
        calc.record_exit_executed()
        calc.record_forced_exit()
        calc.complete_cycle()

        inputs = calc.compute_confidence_inputs()

        assert inputs.exit_suppression_rate == pytest.approx(0.75)
        assert inputs.forced_exit_rate == pytest.approx(0.25)

    def test_suppression_rate_capped(self):
        """Test suppression above triggers is capped at 1."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        calc.record_exit_triggered()
        calc.record_exit_suppressed()
        calc.record_exit_suppressed()
        calc.complete_cycle()

        assert calc.compute_confidence_inputs().exit_suppression_rate == 1.0

    def test_pnl_stability(self):
        """Test PnL stability from population std over three cycles."""
        clock = FakeClock()
        calc = ConfidenceScoreCalculator(clock=clock, enable_metrics=False)

        for pnl in [0.0, 100.0, 200.0]:
            calc.record_unrealized_pnl(pnl)
            calc.complete_cycle()
            clock.advance(10)

        inputs = calc.compute_confidence_inputs()

        std = (20000 / 3) ** 0.5
        assert inputs.pnl_stability_inverse == pytest.approx(1 - std / 100)

    def test_data_quality(self):
        """Test data quality from errors over requests."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        for _ in range(8):
            calc.record_successful_request()
        calc.record_rpc_error()
        calc.record_api_error()
        calc.complete_cycle()

        assert calc.compute_confidence_inputs().data_quality == pytest.approx(0.75)

    def test_health_scores_averaged(self):
        """Test health scores are averaged across the window."""
        clock = FakeClock()
        calc = ConfidenceScoreCalculator(clock=clock, enable_metrics=False)
        calc.record_position_health(0.4)
        calc.record_position_health(0.6)
        calc.complete_cycle()
        clock.advance(60)
        calc.record_position_health(0.8)
        calc.complete_cycle()

        assert calc.compute_confidence_inputs().avg_health_score == pytest.approx(0.6)

    def test_window_pruning(self):
        """Test samples older than the window are dropped."""
        clock = FakeClock()
        calc = ConfidenceScoreCalculator(clock=clock, enable_metrics=False)
        calc.record_market_metrics(90, 0.9)
        calc.complete_cycle()

        clock.advance(2701)
        assert calc.compute_confidence_inputs() == ConfidenceInputs.neutral()

        calc.complete_cycle()
        assert calc.get_metrics_history_length() == 1

    def test_max_samples(self):
        """Test history is capped by sample count."""
        calc = ConfidenceScoreCalculator(
            config=ConfidenceConfig(max_samples=5),
            clock=FakeClock(),
            enable_metrics=False
        )
        for _ in range(10):
            calc.complete_cycle()

        assert calc.get_metrics_history_length() == 5

    def test_missing_market_metrics_default(self):
        """Test a cycle without market metrics stores neutral values."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)

        sample = calc.complete_cycle()

        assert sample.market_health == 50.0
        assert sample.alive_ratio == 0.5
        assert sample.total_requests == 1

    def test_zero_market_health_kept(self):
        """Test an explicit zero market health is not replaced."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        calc.record_market_metrics(0, 0)

        sample = calc.complete_cycle()

        assert sample.market_health == 0.0
        assert sample.alive_ratio == 0.0

    def test_accumulator_resets_each_cycle(self):
        """Test counters do not leak into the next cycle."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        calc.record_exit_triggered()
        first = calc.complete_cycle()
        second = calc.complete_cycle()

        assert first.exits_triggered == 1
        assert second.exits_triggered == 0

    def test_summary_and_reset(self):
        """Test summary fields and reset."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        calc.complete_cycle()

        summary = calc.get_confidence_summary()
        assert summary['samples_count'] == 1
        assert summary['window_sec'] == 2700
        assert 0.0 <= summary['score'] <= 1.0
        assert summary['unlocked'] is False

        calc.reset()
        assert calc.get_metrics_history_length() == 0

    def test_log_breakdown(self, caplog):
        """Test breakdown logging has no side effects."""
        calc = ConfidenceScoreCalculator(clock=FakeClock(), enable_metrics=False)
        calc.complete_cycle()

        with caplog.at_level('INFO'):
            calc.log_confidence_breakdown()

        assert 'Confidence score=' in caplog.text
        assert calc.get_metrics_history_length() == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
