"""
ADMISSION CONTROL - Prometheus Metrics Module
==============================================

Prometheus metrics for admission-control monitoring.

Covers:
- Capital manager caps, deployment and invariants
- Confidence score and unlock state
- Reversal guard detections and cooldowns
- Entry validation decisions
- Execution quality and network congestion

Version: 1.0
"""

from prometheus_client import Counter, Gauge, Histogram
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# CAPITAL MANAGER METRICS
# ============================================================================

capital_deploy_cap_pct = Gauge(
    'admission_capital_deploy_cap_pct',
    'Dynamic total deployment cap as fraction of equity'
)

capital_deployed_pct = Gauge(
    'admission_capital_deployed_pct',
    'Currently deployed capital as fraction of equity'
)

capital_equity_usd = Gauge(
    'admission_capital_equity_usd',
    'Current equity in USD'
)

capital_warmup_progress = Gauge(
    'admission_capital_warmup_progress',
    'Warmup progress [0, 1]'
)

capital_invariant_violations = Counter(
    'admission_capital_invariant_violations_total',
    'Capital invariant violations detected'
)

capital_checks = Counter(
    'admission_capital_checks_total',
    'Capital availability checks',
    ['outcome']  # allowed, denied
)

capital_sizing_decisions = Counter(
    'admission_capital_sizing_decisions_total',
    'Position sizing decisions',
    ['mode']  # normal, probe, skip
)

capital_amortization_hours = Histogram(
    'admission_capital_amortization_hours',
    'Estimated hours to amortize entry costs',
    buckets=[0.5, 1, 2, 2.5, 4, 6, 8, 12, 24]
)


# ============================================================================
# CONFIDENCE METRICS
# ============================================================================

confidence_score = Gauge(
    'admission_confidence_score',
    'Operational confidence score [0, 1]'
)

confidence_unlocked = Gauge(
    'admission_confidence_unlocked',
    'Whether maximum deployment cap is unlocked (1/0)'
)

confidence_samples = Gauge(
    'admission_confidence_samples',
    'Samples in the confidence window'
)


# ============================================================================
# REVERSAL GUARD METRICS
# ============================================================================

reversal_detections = Counter(
    'admission_reversal_detections_total',
    'Direction flips detected by the reversal guard'
)

reversal_blocks = Counter(
    'admission_reversal_blocks_total',
    'Entries blocked by the reversal guard',
    ['cause']  # cooldown, reversal, outflow, insufficient, entropy
)


# ============================================================================
# ENTRY VALIDATION METRICS
# ============================================================================

entry_validation_decisions = Counter(
    'admission_entry_validation_decisions_total',
    'Entry validation decisions by blocking stage',
    ['stage']  # no_trade_regime, reversal_guard, ..., combined_multiplier, valid
)

entry_final_multiplier = Histogram(
    'admission_entry_final_multiplier',
    'Final combined position multiplier for valid entries',
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)


# ============================================================================
# COLLABORATOR METRICS
# ============================================================================

execution_quality_score = Gauge(
    'admission_execution_quality_score',
    'Composite execution quality score [0, 1]'
)

congestion_score = Gauge(
    'admission_congestion_score',
    'Composite network congestion score [0, 1]'
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_capital_state(state, equity: float):
    """Record capital manager state gauges."""
    capital_deploy_cap_pct.set(state.dynamic_deploy_cap_pct)
    capital_deployed_pct.set(state.deployed_pct)
    capital_equity_usd.set(equity)
    capital_warmup_progress.set(state.warmup_progress)
    confidence_score.set(state.confidence_score)
    confidence_unlocked.set(1 if state.confidence_unlocked else 0)


def record_capital_check(allowed: bool):
    capital_checks.labels(outcome='allowed' if allowed else 'denied').inc()


def record_sizing_decision(sizing):
    """Record a PositionSizingResult."""
    if sizing.skip_entry:
        mode = 'skip'
    elif sizing.is_probe_mode:
        mode = 'probe'
    else:
        mode = 'normal'
    capital_sizing_decisions.labels(mode=mode).inc()
    capital_amortization_hours.observe(sizing.estimated_amortization_hours)


def record_invariant_violations(count: int):
    if count > 0:
        capital_invariant_violations.inc(count)


def record_confidence_samples(count: int):
    confidence_samples.set(count)


def record_reversal_block(cause: str, reversal: bool = False):
    reversal_blocks.labels(cause=cause).inc()
    if reversal:
        reversal_detections.inc()


def record_entry_validation(stage: str, final_multiplier: float = None):
    """Record an entry validation decision."""
    entry_validation_decisions.labels(stage=stage).inc()
    if final_multiplier is not None:
        entry_final_multiplier.observe(final_multiplier)


def record_execution_quality(score: float):
    execution_quality_score.set(score)


def record_congestion(score: float):
    congestion_score.set(score)
