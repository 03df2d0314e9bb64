"""
ADMISSION CONTROL - Network Congestion Tracker
===============================================

Reference implementation of the congestion collaborator consumed by the
entry validation pipeline through score().

Score is a weighted sum of normalized signals (0 = healthy, 1 = congested):
confirmation time 0.30, failed-tx rate 0.30, blocktime deviation 0.15,
pending signatures 0.10, RPC latency 0.15.

Version: 1.0
"""

import logging
import time
from collections import deque
from typing import Callable, List, Optional

import numpy as np

from ..core.config import CongestionConfig
from ..core.types import CongestionLevel, CongestionResult, CongestionSample, NetworkMetrics
from ..core import metrics

logger = logging.getLogger(__name__)


def _normalize(value: float, baseline: float, maximum: float) -> float:
    if value <= baseline:
        return 0.0
    if value >= maximum:
        return 1.0
    return (value - baseline) / (maximum - baseline)


class CongestionTracker:
    """Rolling window of transaction, RPC and blocktime samples."""

    def __init__(
        self,
        config: CongestionConfig = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True
    ):
        if config is None:
            config = CongestionConfig()

        self.config = config
        self.clock = clock
        self.enable_metrics = enable_metrics

        self._samples: deque = deque(maxlen=config.max_samples)
        self.pending_signature_count = 0

    # ========================================================================
    # Recording
    # ========================================================================

    def record_tx_sample(
        self,
        success: bool,
        confirmation_time_ms: Optional[float] = None,
        rpc_latency_ms: Optional[float] = None
    ):
        self._samples.append(CongestionSample(
            timestamp=self.clock(),
            tx_success=success,
            confirmation_time_ms=confirmation_time_ms,
            rpc_latency_ms=rpc_latency_ms,
        ))

    def record_rpc_latency(self, latency_ms: float):
        self._samples.append(CongestionSample(timestamp=self.clock(), rpc_latency_ms=latency_ms))

    def record_blocktime_deviation(self, deviation: float):
        self._samples.append(CongestionSample(timestamp=self.clock(), blocktime_deviation=deviation))

    def update_pending_signatures(self, count: int):
        self.pending_signature_count = max(0, int(count))

    # ========================================================================
    # Metrics
    # ========================================================================

    def _samples_in_window(self) -> List[CongestionSample]:
        cutoff = self.clock() - self.config.metrics_window_sec
        return [s for s in self._samples if s.timestamp >= cutoff]

    def compute_network_metrics(self) -> NetworkMetrics:
        """Window averages; missing signals default to their baselines."""
        cfg = self.config
        samples = self._samples_in_window()

        confirmations = [s.confirmation_time_ms for s in samples if s.confirmation_time_ms is not None]
        # Pure RPC and blocktime samples carry no tx outcome
        tx_samples = [s for s in samples if s.confirmation_time_ms is not None or not s.tx_success]
        blocktimes = [s.blocktime_deviation for s in samples if s.blocktime_deviation is not None]
        rpc = [s.rpc_latency_ms for s in samples if s.rpc_latency_ms is not None]

        failed = sum(1 for s in tx_samples if not s.tx_success)

        return NetworkMetrics(
            avg_confirmation_time_ms=float(np.mean(confirmations)) if confirmations else cfg.baseline_confirmation_ms,
            failed_tx_rate=failed / len(tx_samples) if tx_samples else 0.0,
            blocktime_deviation=float(np.mean(blocktimes)) if blocktimes else 0.0,
            pending_signature_count=self.pending_signature_count,
            rpc_latency_ms=float(np.mean(rpc)) if rpc else cfg.baseline_rpc_latency_ms,
        )

    # ========================================================================
    # Scoring
    # ========================================================================

    def get_congestion_level(self, score: float) -> CongestionLevel:
        cfg = self.config
        if score >= cfg.block_threshold:
            return CongestionLevel.SEVERE
        if score >= cfg.half_position_threshold:
            return CongestionLevel.HIGH
        if score >= cfg.reduce_frequency_threshold:
            return CongestionLevel.ELEVATED
        return CongestionLevel.NORMAL

    def position_multiplier(self, score: float) -> float:
        cfg = self.config
        if score >= cfg.block_threshold:
            return 0.0
        if score >= cfg.half_position_threshold:
            return 0.5
        if score >= cfg.reduce_frequency_threshold:
            span = cfg.half_position_threshold - cfg.reduce_frequency_threshold
            return 0.5 + (cfg.half_position_threshold - score) / span * 0.5
        return 1.0

    def frequency_multiplier(self, score: float) -> float:
        cfg = self.config
        if score >= cfg.block_threshold:
            return 0.0
        if score >= cfg.half_position_threshold:
            return 0.5
        if score >= cfg.reduce_frequency_threshold:
            return 0.75
        return 1.0

    def compute_congestion_score(self, network_metrics: NetworkMetrics = None) -> CongestionResult:
        """
        Score current (or supplied) network metrics.

        Args:
            network_metrics: Metrics to score; computed from the window if None

        Returns:
            CongestionResult
        """
        cfg = self.config
        w = cfg.weights
        m = network_metrics if network_metrics is not None else self.compute_network_metrics()

        score = float(np.clip(
            _normalize(m.avg_confirmation_time_ms, cfg.baseline_confirmation_ms, cfg.max_confirmation_ms) * w.confirmation_time +
            float(np.clip(m.failed_tx_rate, 0.0, 1.0)) * w.failed_tx_rate +
            _normalize(m.blocktime_deviation, cfg.baseline_blocktime_deviation, cfg.max_blocktime_deviation) * w.blocktime_deviation +
            min(1.0, m.pending_signature_count / cfg.pending_signature_critical) * w.pending_signatures +
            _normalize(m.rpc_latency_ms, cfg.baseline_rpc_latency_ms, cfg.max_rpc_latency_ms) * w.rpc_latency,
            0.0, 1.0
        ))

        level = self.get_congestion_level(score)

        parts = [{
            CongestionLevel.SEVERE: 'SEVERE CONGESTION',
            CongestionLevel.HIGH: 'HIGH CONGESTION',
            CongestionLevel.ELEVATED: 'ELEVATED CONGESTION',
            CongestionLevel.NORMAL: 'NORMAL',
        }[level], f"score={score:.1%}"]
        if m.failed_tx_rate > 0.1:
            parts.append(f"failRate={m.failed_tx_rate:.1%}")
        if m.avg_confirmation_time_ms > cfg.baseline_confirmation_ms * 2:
            parts.append(f"confirmTime={m.avg_confirmation_time_ms:.0f}ms")
        if m.rpc_latency_ms > cfg.baseline_rpc_latency_ms * 2:
            parts.append(f"rpcLatency={m.rpc_latency_ms:.0f}ms")
        reason = ' | '.join(parts)

        if level == CongestionLevel.SEVERE:
            logger.warning(reason)
        elif level == CongestionLevel.HIGH:
            logger.info(reason)
        elif level == CongestionLevel.ELEVATED:
            logger.debug(reason)

        if self.enable_metrics:
            try:
                metrics.record_congestion(score)
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

        return CongestionResult(
            congestion_score=score,
            level=level,
            position_multiplier=self.position_multiplier(score),
            frequency_multiplier=self.frequency_multiplier(score),
            block_trading=score >= cfg.block_threshold,
            reduce_positions=score >= cfg.half_position_threshold,
            reduce_frequency=score >= cfg.reduce_frequency_threshold,
            reason=reason,
            metrics=m,
            timestamp=self.clock(),
        )

    def score(self) -> float:
        """Current congestion score in [0, 1]."""
        return self.compute_congestion_score().congestion_score

    def get_sample_count(self) -> int:
        return len(self._samples)

    def has_sufficient_samples(self, min_samples: int = 5) -> bool:
        return len(self._samples) >= min_samples

    def clear(self):
        self._samples.clear()
        self.pending_signature_count = 0
        logger.info("Congestion samples cleared")
