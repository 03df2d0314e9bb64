"""
ADMISSION CONTROL - Confidence Score Calculator
================================================

Turns recent operational telemetry into a [0, 1] trust score and decides
whether the maximum deployment cap may be unlocked.

Per decision cycle:
    1. record_*() calls accumulate into the current-cycle accumulator
    2. complete_cycle() snapshots the accumulator into the rolling history
    3. compute_confidence_inputs() aggregates the window

Missing data never raises; each input falls back to a fixed default.

Version: 1.0
"""

import logging
import time
from collections import deque
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..core.config import ConfidenceConfig, ConfidenceWeights, UnlockThresholds
from ..core.types import ConfidenceInputs, MetricsSample
from ..core import metrics

logger = logging.getLogger(__name__)


def compute_confidence_score(inputs: ConfidenceInputs, weights: ConfidenceWeights = None) -> float:
    """
    Weighted sum of confidence inputs, clamped to [0, 1].

    Forced exits contribute inverted; market health is rescaled from [0, 100].
    """
    if weights is None:
        weights = ConfidenceWeights()

    score = (
        weights.exit_suppression * inputs.exit_suppression_rate +
        weights.forced_exit_inverse * (1 - inputs.forced_exit_rate) +
        weights.avg_health * inputs.avg_health_score +
        weights.pnl_stability * inputs.pnl_stability_inverse +
        weights.market_health * (inputs.market_health / 100) +
        weights.alive_ratio * inputs.alive_ratio +
        weights.data_quality * inputs.data_quality
    )
    return float(np.clip(score, 0.0, 1.0))


def check_unlock_conditions(
    inputs: ConfidenceInputs,
    thresholds: UnlockThresholds = None
) -> Tuple[bool, List[str]]:
    """
    Check all five unlock conditions.

    Returns:
        Tuple of (unlocked, failed_conditions)
    """
    if thresholds is None:
        thresholds = UnlockThresholds()

    failed = []

    if inputs.market_health < thresholds.min_market_health:
        failed.append(f"marketHealth {inputs.market_health:.1f} < {thresholds.min_market_health:g}")

    if inputs.alive_ratio < thresholds.min_alive_ratio:
        failed.append(f"aliveRatio {inputs.alive_ratio:.2f} < {thresholds.min_alive_ratio:g}")

    if inputs.forced_exit_rate > thresholds.max_forced_exit_rate:
        failed.append(f"forcedExitRate {inputs.forced_exit_rate:.2f} > {thresholds.max_forced_exit_rate:g}")

    if inputs.exit_suppression_rate < thresholds.min_exit_suppression_rate:
        failed.append(
            f"exitSuppressionRate {inputs.exit_suppression_rate:.2f} < {thresholds.min_exit_suppression_rate:g}"
        )

    if inputs.avg_health_score < thresholds.min_avg_health_score:
        failed.append(f"avgHealthScore {inputs.avg_health_score:.2f} < {thresholds.min_avg_health_score:g}")

    return len(failed) == 0, failed


class _CycleAccumulator:
    """Counts recorded during the current decision cycle."""

    def __init__(self):
        self.exits_triggered = 0
        self.exits_suppressed = 0
        self.exits_executed = 0
        self.forced_exits = 0
        self.health_scores: List[float] = []
        self.unrealized_pnl_usd: Optional[float] = None
        self.market_health: Optional[float] = None
        self.alive_ratio: Optional[float] = None
        self.rpc_errors = 0
        self.api_errors = 0
        self.successful_requests = 0


class ConfidenceScoreCalculator:
    """
    Rolling-window confidence calculator.

    Samples are pruned by age (window_sec) and by count (max_samples)
    on every write.
    """

    def __init__(
        self,
        config: ConfidenceConfig = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True
    ):
        if config is None:
            config = ConfidenceConfig()

        self.config = config
        self.clock = clock
        self.enable_metrics = enable_metrics

        self._history: deque = deque(maxlen=config.max_samples)
        self._current = _CycleAccumulator()
        self._cycle_start_time = clock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_exit_triggered(self):
        self._current.exits_triggered += 1

    def record_exit_suppressed(self):
        self._current.exits_suppressed += 1

    def record_exit_executed(self):
        self._current.exits_executed += 1

    def record_forced_exit(self):
        self._current.forced_exits += 1

    def record_position_health(self, health_score: float):
        self._current.health_scores.append(float(health_score))

    def record_unrealized_pnl(self, pnl_usd: float):
        """Latest portfolio unrealized PnL for this cycle (last write wins)."""
        self._current.unrealized_pnl_usd = float(pnl_usd)

    def record_market_metrics(self, market_health: float, alive_ratio: float):
        self._current.market_health = float(market_health)
        self._current.alive_ratio = float(alive_ratio)

    def record_rpc_error(self):
        self._current.rpc_errors += 1

    def record_api_error(self):
        self._current.api_errors += 1

    def record_successful_request(self):
        self._current.successful_requests += 1

    # ------------------------------------------------------------------
    # Cycle management
    # ------------------------------------------------------------------

    def complete_cycle(self) -> MetricsSample:
        """
        Snapshot the current accumulator into the history and reset it.

        Must be called exactly once per decision cycle, before computing
        inputs for that cycle.
        """
        now = self.clock()
        acc = self._current

        sample = MetricsSample(
            timestamp=now,
            exits_triggered=acc.exits_triggered,
            exits_suppressed=acc.exits_suppressed,
            exits_executed=acc.exits_executed,
            forced_exits=acc.forced_exits,
            position_health_scores=list(acc.health_scores),
            unrealized_pnl_usd=acc.unrealized_pnl_usd if acc.unrealized_pnl_usd is not None else 0.0,
            market_health=acc.market_health if acc.market_health is not None else 50.0,
            alive_ratio=acc.alive_ratio if acc.alive_ratio is not None else 0.5,
            rpc_errors=acc.rpc_errors,
            api_errors=acc.api_errors,
            total_requests=acc.successful_requests or 1,
        )

        self._history.append(sample)
        self._prune(now)

        self._current = _CycleAccumulator()
        self._cycle_start_time = now

        if self.enable_metrics:
            try:
                metrics.record_confidence_samples(len(self._history))
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

        return sample

    def _prune(self, now: float):
        cutoff = now - self.config.window_sec
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def compute_confidence_inputs(self, window_sec: float = None) -> ConfidenceInputs:
        """
        Aggregate all samples in the window into ConfidenceInputs.

        Args:
            window_sec: Override of the configured window

        Returns:
            ConfidenceInputs (neutral when the window is empty)
        """
        cfg = self.config
        window = cfg.window_sec if window_sec is None else window_sec
        cutoff = self.clock() - window

        samples = [s for s in self._history if s.timestamp >= cutoff]
        if not samples:
            return ConfidenceInputs.neutral()

        triggered = sum(s.exits_triggered for s in samples)
        suppressed = sum(s.exits_suppressed for s in samples)
        executed = sum(s.exits_executed for s in samples)
        forced = sum(s.forced_exits for s in samples)
        health_scores = [h for s in samples for h in s.position_health_scores]
        pnl_values = [s.unrealized_pnl_usd for s in samples]
        errors = sum(s.rpc_errors + s.api_errors for s in samples)
        requests = sum(s.total_requests for s in samples)

        # Absence of churn is good, not neutral
        if triggered > 0:
            exit_suppression_rate = min(1.0, suppressed / triggered)
        else:
            exit_suppression_rate = cfg.default_exit_suppression_rate

        total_exits = executed + forced
        forced_exit_rate = forced / total_exits if total_exits > 0 else 0.0

        avg_health_score = float(np.mean(health_scores)) if health_scores else cfg.default_health_score

        if len(pnl_values) >= cfg.min_pnl_samples:
            std = float(np.std(pnl_values))
            pnl_stability_inverse = 1 - min(1.0, std / cfg.pnl_std_scale_usd)
        else:
            pnl_stability_inverse = cfg.default_pnl_stability

        market_health = float(np.mean([s.market_health for s in samples]))
        alive_ratio = float(np.mean([s.alive_ratio for s in samples]))

        if requests > 0:
            data_quality = max(0.0, 1 - errors / requests)
        else:
            data_quality = cfg.default_data_quality

        return ConfidenceInputs(
            exit_suppression_rate=exit_suppression_rate,
            forced_exit_rate=forced_exit_rate,
            avg_health_score=avg_health_score,
            pnl_stability_inverse=pnl_stability_inverse,
            market_health=market_health,
            alive_ratio=alive_ratio,
            data_quality=data_quality,
        )

    def compute_confidence_score(self, inputs: ConfidenceInputs = None) -> float:
        if inputs is None:
            inputs = self.compute_confidence_inputs()
        return compute_confidence_score(inputs, self.config.weights)

    def check_unlock_conditions(self, inputs: ConfidenceInputs = None) -> Tuple[bool, List[str]]:
        if inputs is None:
            inputs = self.compute_confidence_inputs()
        return check_unlock_conditions(inputs, self.config.unlock)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def log_confidence_breakdown(self):
        """Log the current inputs, score and unlock state."""
        inputs = self.compute_confidence_inputs()
        score = self.compute_confidence_score(inputs)
        unlocked, failed = self.check_unlock_conditions(inputs)

        logger.info(
            f"Confidence score={score:.0%} "
            f"exitSuppress={inputs.exit_suppression_rate:.0%} "
            f"forcedExit={inputs.forced_exit_rate:.0%} "
            f"health={inputs.avg_health_score:.0%} "
            f"mktHealth={inputs.market_health:.0f} "
            f"aliveRatio={inputs.alive_ratio:.0%} "
            f"dataQuality={inputs.data_quality:.0%} "
            f"unlocked={unlocked}"
        )

        if not unlocked and failed:
            logger.debug(f"Unlock blocked: {' | '.join(failed)}")

    def get_metrics_history_length(self) -> int:
        return len(self._history)

    def get_confidence_summary(self) -> Dict:
        inputs = self.compute_confidence_inputs()
        unlocked, _ = self.check_unlock_conditions(inputs)
        return {
            'samples_count': len(self._history),
            'window_sec': self.config.window_sec,
            'score': self.compute_confidence_score(inputs),
            'unlocked': unlocked,
        }

    def reset(self):
        """Clear history and the current-cycle accumulator."""
        self._history.clear()
        self._current = _CycleAccumulator()
        self._cycle_start_time = self.clock()
        logger.info("Confidence state reset")
