"""
ADMISSION CONTROL - Execution Quality Tracker
==============================================

Reference implementation of the execution-quality collaborator consumed by
the entry validation pipeline through score().

    execution_quality =
        (1 - normalized_slippage) * 0.40 +
        tx_success_rate           * 0.35 +
        normalized_latency        * 0.25

With fewer than min_executions_required events in the window the tracker
reports an optimistic 0.85.

Version: 1.0
"""

import logging
import time
import uuid
from collections import deque
from typing import Callable, List, Optional

import numpy as np

from ..core.config import ExecutionQualityConfig
from ..core.types import ExecutionEvent, ExecutionMetrics, ExecutionQualityResult
from ..core import metrics

logger = logging.getLogger(__name__)


class ExecutionQualityTracker:
    """
    Rolling window of on-chain execution events.

    Events are capped at config.max_events; metrics only consider events
    initiated inside metrics_window_sec.
    """

    def __init__(
        self,
        config: ExecutionQualityConfig = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True
    ):
        if config is None:
            config = ExecutionQualityConfig()

        self.config = config
        self.clock = clock
        self.enable_metrics = enable_metrics
        self._events: deque = deque(maxlen=config.max_events)

    # ========================================================================
    # Recording
    # ========================================================================

    def record_successful_execution(
        self,
        pool_address: str,
        trade_type: str,
        expected_slippage: float,
        realized_slippage: float,
        expected_price: float,
        actual_price: float,
        attempts: int,
        latency_ms: float,
        signature: Optional[str] = None
    ) -> ExecutionEvent:
        now = self.clock()
        event = ExecutionEvent(
            id=str(uuid.uuid4()),
            pool_address=pool_address,
            trade_type=trade_type,
            initiated_at=now - latency_ms / 1000,
            completed_at=now,
            success=True,
            expected_slippage=expected_slippage,
            realized_slippage=realized_slippage,
            expected_price=expected_price,
            actual_price=actual_price,
            attempts=attempts,
            signature=signature,
        )
        self._events.append(event)
        return event

    def record_failed_execution(
        self,
        pool_address: str,
        trade_type: str,
        expected_slippage: float,
        expected_price: float,
        attempts: int,
        latency_ms: float,
        failure_reason: str,
        reverted: bool = False
    ) -> ExecutionEvent:
        now = self.clock()
        event = ExecutionEvent(
            id=str(uuid.uuid4()),
            pool_address=pool_address,
            trade_type=trade_type,
            initiated_at=now - latency_ms / 1000,
            completed_at=now,
            success=False,
            expected_slippage=expected_slippage,
            expected_price=expected_price,
            attempts=attempts,
            failure_reason=f"REVERTED: {failure_reason}" if reverted else failure_reason,
        )
        self._events.append(event)
        return event

    # ========================================================================
    # Metrics
    # ========================================================================

    def get_events_in_window(self, window_sec: float = None) -> List[ExecutionEvent]:
        if window_sec is None:
            window_sec = self.config.metrics_window_sec
        cutoff = self.clock() - window_sec
        return [e for e in self._events if e.initiated_at >= cutoff]

    def compute_execution_metrics(self) -> ExecutionMetrics:
        cfg = self.config
        now = self.clock()
        events = self.get_events_in_window()

        if not events:
            return ExecutionMetrics(
                window_start=now - cfg.metrics_window_sec,
                window_end=now,
                total_executions=0,
                successful_executions=0,
                failed_executions=0,
                tx_success_rate=1.0,
                avg_slippage_deviation=0.0,
                max_slippage=0.0,
                avg_latency_ms=0.0,
                avg_attempts_per_execution=1.0,
                avg_fill_price_deviation=0.0,
                reverted_tx_count=0,
            )

        successful = [e for e in events if e.success]
        failed = [e for e in events if not e.success]
        reverted = [e for e in failed if (e.failure_reason or '').startswith('REVERTED')]

        slippage_events = [e for e in successful if e.realized_slippage is not None]
        if slippage_events:
            avg_slippage_deviation = float(np.mean(
                [e.realized_slippage - e.expected_slippage for e in slippage_events]
            ))
            max_slippage = max(e.realized_slippage for e in slippage_events)
        else:
            avg_slippage_deviation = 0.0
            max_slippage = 0.0

        latencies = [(e.completed_at - e.initiated_at) * 1000 for e in events if e.completed_at is not None]
        avg_latency_ms = float(np.mean(latencies)) if latencies else cfg.baseline_latency_ms

        price_events = [
            e for e in successful
            if e.actual_price is not None and e.expected_price > 0
        ]
        if price_events:
            avg_fill_price_deviation = float(np.mean(
                [abs(e.actual_price - e.expected_price) / e.expected_price for e in price_events]
            ))
        else:
            avg_fill_price_deviation = 0.0

        return ExecutionMetrics(
            window_start=now - cfg.metrics_window_sec,
            window_end=now,
            total_executions=len(events),
            successful_executions=len(successful),
            failed_executions=len(failed),
            tx_success_rate=len(successful) / len(events),
            avg_slippage_deviation=avg_slippage_deviation,
            max_slippage=max_slippage,
            avg_latency_ms=avg_latency_ms,
            avg_attempts_per_execution=float(np.mean([e.attempts for e in events])),
            avg_fill_price_deviation=avg_fill_price_deviation,
            reverted_tx_count=len(reverted),
        )

    # ========================================================================
    # Scoring
    # ========================================================================

    def _normalize_slippage(self, deviation: float) -> float:
        """0 = at or better than baseline, 1 = max."""
        cfg = self.config
        if deviation <= 0:
            return 0.0
        span = cfg.max_slippage - cfg.baseline_slippage
        if span <= 0:
            return 0.0
        return float(np.clip((deviation - cfg.baseline_slippage) / span, 0.0, 1.0))

    def _normalize_latency(self, latency_ms: float) -> float:
        """1 = at or below baseline, 0 = at or above max."""
        cfg = self.config
        if latency_ms <= cfg.baseline_latency_ms:
            return 1.0
        if latency_ms >= cfg.max_latency_ms:
            return 0.0
        excess = latency_ms - cfg.baseline_latency_ms
        return float(np.clip(1 - excess / (cfg.max_latency_ms - cfg.baseline_latency_ms), 0.0, 1.0))

    def position_multiplier(self, score: float) -> float:
        cfg = self.config
        if score < cfg.block_threshold:
            return 0.0
        if score < cfg.reduce_threshold:
            return cfg.reduction_factor
        if score >= cfg.normal_threshold:
            return 1.0
        progress = (score - cfg.reduce_threshold) / (cfg.normal_threshold - cfg.reduce_threshold)
        return cfg.reduction_factor + progress * (1.0 - cfg.reduction_factor)

    def compute_execution_quality(self) -> ExecutionQualityResult:
        cfg = self.config
        m = self.compute_execution_metrics()
        now = self.clock()

        if m.total_executions < cfg.min_executions_required:
            score = cfg.insufficient_data_score
            return ExecutionQualityResult(
                score=score,
                block_entries=False,
                position_multiplier=1.0,
                reason=(
                    f"Insufficient execution data "
                    f"({m.total_executions}/{cfg.min_executions_required} required)"
                ),
                metrics=m,
                timestamp=now,
            )

        w = cfg.weights
        score = float(np.clip(
            (1 - self._normalize_slippage(m.avg_slippage_deviation)) * w.slippage +
            m.tx_success_rate * w.tx_success_rate +
            self._normalize_latency(m.avg_latency_ms) * w.latency,
            0.0, 1.0
        ))

        block = score < cfg.block_threshold
        multiplier = self.position_multiplier(score)

        if block:
            reason = (
                f"BLOCKED: execution quality {score:.3f} < {cfg.block_threshold} threshold | "
                f"txSuccess={m.tx_success_rate:.1%} | avgLatency={m.avg_latency_ms:.0f}ms | "
                f"slippage={m.avg_slippage_deviation:.2%}"
            )
            logger.warning(reason)
        elif score < cfg.reduce_threshold:
            reason = (
                f"REDUCED ({cfg.reduction_factor:.0%}): execution quality {score:.3f} | "
                f"txSuccess={m.tx_success_rate:.1%}"
            )
            logger.info(reason)
        elif score >= cfg.normal_threshold:
            reason = f"NORMAL: execution quality {score:.3f} ≥ {cfg.normal_threshold}"
        else:
            reason = f"SCALED: execution quality {score:.3f} | txSuccess={m.tx_success_rate:.1%}"

        if self.enable_metrics:
            try:
                metrics.record_execution_quality(score)
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

        return ExecutionQualityResult(
            score=score,
            block_entries=block,
            position_multiplier=multiplier,
            reason=reason,
            metrics=m,
            timestamp=now,
        )

    def score(self) -> float:
        """Current execution quality in [0, 1]."""
        return self.compute_execution_quality().score

    def get_event_count(self) -> int:
        return len(self._events)

    def get_recent_failures(self, count: int = 10) -> List[ExecutionEvent]:
        return [e for e in self._events if not e.success][-count:]

    def clear(self):
        self._events.clear()
        logger.info("Execution events cleared")
