"""
ADMISSION CONTROL - Configuration
==================================

Complete configuration for the admission-control core.
Every threshold, weight and time window used by the components lives here.

Times are in seconds.

Version: 1.0
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace
from typing import Any, Dict, Mapping

from .types import ConfigurationException


@dataclass
class ConfidenceWeights:
    """Weights of the confidence score (sum to 1.0)."""
    exit_suppression: float = 0.20
    forced_exit_inverse: float = 0.15
    avg_health: float = 0.20
    pnl_stability: float = 0.10
    market_health: float = 0.20
    alive_ratio: float = 0.10
    data_quality: float = 0.05

    def total(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))


@dataclass
class UnlockThresholds:
    """All five must hold for the maximum deployment cap."""
    min_market_health: float = 35.0
    min_alive_ratio: float = 0.35
    max_forced_exit_rate: float = 0.10
    min_exit_suppression_rate: float = 0.60
    min_avg_health_score: float = 0.55


@dataclass
class ConfidenceConfig:
    """Configuration for the Confidence Score Calculator."""

    # Rolling window (45 min)
    window_sec: float = 45 * 60
    max_samples: int = 360

    # Defaults when a component has no data
    default_exit_suppression_rate: float = 0.8
    default_health_score: float = 0.5
    default_pnl_stability: float = 0.5
    default_data_quality: float = 0.9
    min_pnl_samples: int = 3
    pnl_std_scale_usd: float = 100.0

    weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    unlock: UnlockThresholds = field(default_factory=UnlockThresholds)


@dataclass
class CapitalConfig:
    """Configuration for the Capital Manager."""

    # Portfolio deployment caps (fraction of equity)
    min_total_deploy_cap: float = 0.25
    base_total_deploy_cap: float = 0.40
    max_total_deploy_cap: float = 0.60
    hard_reserve_pct: float = 0.35

    # Concentration
    per_pool_max_pct: float = 0.08
    per_pool_max_pct_bear: float = 0.05
    max_single_position_pct: float = 0.06

    # Position sizes (USD)
    min_position_usd: float = 400.0
    target_size_neutral_usd: float = 900.0
    target_size_bull_usd: float = 1200.0
    target_size_bear_usd: float = 600.0

    # Warmup
    warmup_duration_sec: float = 15 * 60
    post_cooldown_warmup_sec: float = 10 * 60
    warmup_initial_cap: float = 0.15

    # Cost amortization
    target_hours_to_amortize: float = 2.5
    max_hours_to_amortize: float = 6.0
    conservative_fee_rate: float = 0.35     # USD per $1000 per hour
    cost_buffer_multiplier: float = 0.15
    min_cost_buffer_usd: float = 0.50
    min_fee_rate: float = 0.01
    fee_history_size: int = 20
    min_fee_history_samples: int = 2
    min_fee_sample_hold_sec: float = 30 * 60

    # Regime scaling
    bear_size_multiplier: float = 0.75
    bull_unlocked_size_multiplier: float = 1.15

    # Stress downshift
    stress_confidence_threshold: float = 0.35

    # Invariant checker tolerance
    invariant_tolerance: float = 0.01
    cap_invariant_tolerance: float = 0.001

    default_equity_usd: float = 10000.0
    status_log_interval_sec: float = 5 * 60


@dataclass
class ReversalGuardConfig:
    """Configuration for the Reversal Guard."""
    recent_tick_count: int = 3
    historical_tick_count: int = 10
    min_sustained_migrations: int = 3
    cooldown_seconds: float = 60.0
    max_cooldown_seconds: float = 120.0
    entropy_change_threshold: float = 0.15
    flow_in_threshold: float = 0.6
    flow_out_threshold: float = 0.4
    max_history: int = 50


@dataclass
class AdaptiveSizingWeights:
    migration_confidence: float = 0.35
    liquidity_flow: float = 0.25
    entropy: float = 0.15
    consistency: float = 0.15
    velocity: float = 0.10

    def total(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))


@dataclass
class AdaptiveSizingConfig:
    """Configuration for the Adaptive Sizing Engine."""
    min_regime_confidence: float = 0.20
    max_multiplier: float = 1.8
    power_exponent: float = 1.5
    weights: AdaptiveSizingWeights = field(default_factory=AdaptiveSizingWeights)


@dataclass
class EntryValidationConfig:
    """Configuration for the Entry Validation Pipeline."""

    enable_no_trade_check: bool = True
    enable_reversal_check: bool = True
    enable_execution_check: bool = True
    enable_congestion_check: bool = True

    # Execution quality
    execution_block_threshold: float = 0.35
    execution_reduce_threshold: float = 0.50
    execution_normal_threshold: float = 0.80
    execution_reduction_factor: float = 0.40

    # Congestion
    congestion_block_threshold: float = 0.85
    congestion_half_threshold: float = 0.70
    congestion_reduce_threshold: float = 0.60

    min_combined_multiplier: float = 0.10

    default_cooldown_seconds: float = 60.0
    max_cooldown_seconds: float = 300.0


@dataclass
class ExecutionQualityWeights:
    slippage: float = 0.40
    tx_success_rate: float = 0.35
    latency: float = 0.25


@dataclass
class ExecutionQualityConfig:
    """Configuration for the execution-quality tracker."""
    block_threshold: float = 0.35
    reduce_threshold: float = 0.50
    normal_threshold: float = 0.80
    reduction_factor: float = 0.40

    metrics_window_sec: float = 15 * 60
    min_executions_required: int = 3
    insufficient_data_score: float = 0.85
    max_events: int = 500

    baseline_latency_ms: float = 500.0
    max_latency_ms: float = 10000.0
    baseline_slippage: float = 0.005
    max_slippage: float = 0.10

    weights: ExecutionQualityWeights = field(default_factory=ExecutionQualityWeights)


@dataclass
class CongestionWeights:
    confirmation_time: float = 0.30
    failed_tx_rate: float = 0.30
    blocktime_deviation: float = 0.15
    pending_signatures: float = 0.10
    rpc_latency: float = 0.15


@dataclass
class CongestionConfig:
    """Configuration for the network congestion tracker."""
    block_threshold: float = 0.85
    half_position_threshold: float = 0.70
    reduce_frequency_threshold: float = 0.60

    baseline_confirmation_ms: float = 500.0
    max_confirmation_ms: float = 30000.0
    baseline_rpc_latency_ms: float = 100.0
    max_rpc_latency_ms: float = 5000.0
    baseline_blocktime_deviation: float = 0.05
    max_blocktime_deviation: float = 0.50
    pending_signature_warning: int = 10
    pending_signature_critical: int = 50

    metrics_window_sec: float = 5 * 60
    max_samples: int = 500

    weights: CongestionWeights = field(default_factory=CongestionWeights)


# ============================================================================
# PRESETS
# ============================================================================

DEFAULT_ENTRY_VALIDATION_CONFIG = EntryValidationConfig()

CONSERVATIVE_ENTRY_VALIDATION_CONFIG = EntryValidationConfig(
    execution_block_threshold=0.45,
    execution_reduce_threshold=0.60,
    execution_normal_threshold=0.85,
    congestion_block_threshold=0.75,
    congestion_half_threshold=0.60,
    min_combined_multiplier=0.20,
    default_cooldown_seconds=120.0,
)

AGGRESSIVE_ENTRY_VALIDATION_CONFIG = EntryValidationConfig(
    execution_block_threshold=0.25,
    execution_reduce_threshold=0.40,
    execution_normal_threshold=0.70,
    congestion_block_threshold=0.90,
    congestion_half_threshold=0.80,
    min_combined_multiplier=0.05,
    default_cooldown_seconds=30.0,
)

CONSERVATIVE_CONGESTION_CONFIG = CongestionConfig(
    block_threshold=0.75,
    half_position_threshold=0.60,
    reduce_frequency_threshold=0.50,
    baseline_confirmation_ms=400.0,
    max_confirmation_ms=20000.0,
)


def create_entry_validation_config(**overrides) -> EntryValidationConfig:
    """Default entry validation config with keyword overrides."""
    return _apply_overrides(EntryValidationConfig(), overrides)


@dataclass
class AdmissionConfig:
    """Complete configuration for the admission-control core."""
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    capital: CapitalConfig = field(default_factory=CapitalConfig)
    reversal: ReversalGuardConfig = field(default_factory=ReversalGuardConfig)
    sizing: AdaptiveSizingConfig = field(default_factory=AdaptiveSizingConfig)
    entry_validation: EntryValidationConfig = field(default_factory=EntryValidationConfig)
    execution_quality: ExecutionQualityConfig = field(default_factory=ExecutionQualityConfig)
    congestion: CongestionConfig = field(default_factory=CongestionConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'AdmissionConfig':
        """
        Build a config from a nested mapping (e.g. parsed YAML).

        Missing sections and keys keep their defaults.

        Raises:
            ConfigurationException: On unknown sections or keys
        """
        return _apply_overrides(cls(), dict(data or {}))

    def validate(self) -> None:
        """
        Check cross-field consistency.

        Raises:
            ConfigurationException: If any constraint is violated
        """
        errors = validate_admission_config(self)
        if errors:
            raise ConfigurationException("; ".join(errors))


def validate_admission_config(config: AdmissionConfig) -> list:
    """Return a list of human-readable constraint violations (empty if valid)."""
    errors = []
    cap = config.capital

    if abs(config.confidence.weights.total() - 1.0) > 1e-6:
        errors.append(f"confidence weights sum to {config.confidence.weights.total():.4f}, expected 1.0")
    if abs(config.sizing.weights.total() - 1.0) > 1e-6:
        errors.append(f"sizing weights sum to {config.sizing.weights.total():.4f}, expected 1.0")

    if not (0 < cap.hard_reserve_pct < 1):
        errors.append(f"hard_reserve_pct {cap.hard_reserve_pct} must be in (0, 1)")
    if not (cap.min_total_deploy_cap <= cap.base_total_deploy_cap <= cap.max_total_deploy_cap):
        errors.append("deploy caps must satisfy min <= base <= max")
    if cap.max_total_deploy_cap > 1 - cap.hard_reserve_pct + 1e-9:
        errors.append(
            f"max_total_deploy_cap {cap.max_total_deploy_cap} exceeds 1 - reserve "
            f"({1 - cap.hard_reserve_pct:.2f})"
        )
    if cap.warmup_initial_cap > cap.base_total_deploy_cap:
        errors.append("warmup_initial_cap must not exceed base_total_deploy_cap")
    if cap.min_position_usd <= 0:
        errors.append("min_position_usd must be positive")

    ev = config.entry_validation
    if not (ev.execution_block_threshold <= ev.execution_reduce_threshold <= ev.execution_normal_threshold):
        errors.append("execution thresholds must satisfy block <= reduce <= normal")
    if not (ev.congestion_reduce_threshold <= ev.congestion_half_threshold <= ev.congestion_block_threshold):
        errors.append("congestion thresholds must satisfy reduce <= half <= block")

    rev = config.reversal
    if rev.cooldown_seconds > rev.max_cooldown_seconds:
        errors.append("reversal cooldown_seconds exceeds max_cooldown_seconds")
    if rev.recent_tick_count < 1 or rev.max_history < rev.recent_tick_count:
        errors.append("reversal tick counts are inconsistent")

    return errors


def _apply_overrides(obj, overrides: Mapping[str, Any]):
    """Recursively replace dataclass fields from a mapping."""
    known = {f.name: f for f in fields(obj)}
    changes = {}
    for key, value in overrides.items():
        if key not in known:
            raise ConfigurationException(
                f"Unknown config key '{key}' for {type(obj).__name__}"
            )
        current = getattr(obj, key)
        if is_dataclass(current) and isinstance(value, Mapping):
            changes[key] = _apply_overrides(current, value)
        else:
            changes[key] = value
    return replace(obj, **changes)
