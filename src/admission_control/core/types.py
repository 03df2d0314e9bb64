"""
ADMISSION CONTROL - Core Type Definitions
==========================================

Core data types, enums, and dataclasses shared by the admission-control
components: signal vectors, confidence inputs, capital state, reversal
history, and the result records returned to the trade executor.

Version: 1.0
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, List
import time


# ============================================================================
# ENUMS
# ============================================================================

class Regime(Enum):
    """Coarse market-direction classification supplied by the regime subsystem."""
    BULL = "BULL"
    NEUTRAL = "NEUTRAL"
    BEAR = "BEAR"

    @classmethod
    def from_value(cls, value) -> 'Regime':
        """
        Convert a regime string (any case) or enum to Regime.

        Unknown values map to NEUTRAL.
        """
        if isinstance(value, cls):
            return value
        mapping = {
            'BULL': cls.BULL,
            'NEUTRAL': cls.NEUTRAL,
            'BEAR': cls.BEAR,
        }
        return mapping.get(str(value).upper(), cls.NEUTRAL)


class MigrationDirection(Enum):
    """Direction of liquidity migration observed for an opportunity."""
    IN = "in"
    OUT = "out"
    NEUTRAL = "neutral"

    @classmethod
    def from_value(cls, value) -> 'MigrationDirection':
        if isinstance(value, cls):
            return value
        mapping = {
            'in': cls.IN,
            'out': cls.OUT,
            'neutral': cls.NEUTRAL,
        }
        return mapping.get(str(value).lower(), cls.NEUTRAL)


class CongestionLevel(Enum):
    """Network congestion severity."""
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    SEVERE = "severe"


# ============================================================================
# DATACLASSES - INPUT SIGNALS
# ============================================================================

@dataclass
class TradingState:
    """
    Normalized per-opportunity signal vector, each field in [0, 1].

    execution_quality is a fixed placeholder of 1.0 reserved for future use.
    """
    entropy: float = 0.0
    liquidity_flow: float = 0.0
    migration_confidence: float = 0.0
    consistency: float = 0.0
    velocity: float = 0.0
    execution_quality: float = 1.0


@dataclass
class EntryValidationState(TradingState):
    """TradingState plus the opportunity identity consumed by the Reversal Guard."""
    pool_address: str = 'global'
    migration_direction: Optional[MigrationDirection] = None


@dataclass
class ConfidenceInputs:
    """Aggregated operational telemetry over the confidence window."""
    exit_suppression_rate: float
    forced_exit_rate: float
    avg_health_score: float
    pnl_stability_inverse: float
    market_health: float            # [0, 100]
    alive_ratio: float
    data_quality: float

    @classmethod
    def neutral(cls) -> 'ConfidenceInputs':
        """Neutral inputs used when no samples exist in the window."""
        return cls(
            exit_suppression_rate=0.5,
            forced_exit_rate=0.5,
            avg_health_score=0.5,
            pnl_stability_inverse=0.5,
            market_health=50.0,
            alive_ratio=0.5,
            data_quality=0.9,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricsSample:
    """One completed decision cycle of confidence telemetry."""
    timestamp: float
    exits_triggered: int = 0
    exits_suppressed: int = 0
    exits_executed: int = 0
    forced_exits: int = 0
    position_health_scores: List[float] = field(default_factory=list)
    unrealized_pnl_usd: float = 0.0
    market_health: float = 50.0
    alive_ratio: float = 0.5
    rpc_errors: int = 0
    api_errors: int = 0
    total_requests: int = 1


# ============================================================================
# DATACLASSES - CAPITAL STATE
# ============================================================================

@dataclass
class CapitalManagerState:
    """The single authoritative capacity record owned by CapitalManager."""
    dynamic_deploy_cap_pct: float = 0.15
    per_pool_max_pct: float = 0.08
    confidence_score: float = 0.5
    confidence_unlocked: bool = False

    is_in_warmup: bool = True
    warmup_progress: float = 0.0
    warmup_start_time: float = 0.0

    is_in_cooldown: bool = False
    cooldown_end_time: float = 0.0
    post_cooldown_warmup_active: bool = False

    current_regime: Regime = Regime.NEUTRAL

    deployed_pct: float = 0.0
    reserve_pct: float = 0.35
    available_capacity_pct: float = 0.15
    last_update_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data['current_regime'] = self.current_regime.value
        return data


@dataclass
class FeeHistorySample:
    """Realized fee accrual of one closed position."""
    fees_earned_usd: float
    hold_time_sec: float
    position_size_usd: float
    timestamp: float


@dataclass
class CapitalCheckResult:
    """Outcome of a capital availability check."""
    allowed: bool
    requested_usd: float
    adjusted_size_usd: float
    reason: str
    constraints_hit: List[str] = field(default_factory=list)
    available_capacity_usd: float = 0.0
    pool_remaining_usd: float = 0.0
    available_after_reserve_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PositionSizingResult:
    """Cost-amortization sizing recommendation for one opportunity."""
    recommended_size_usd: float
    min_size_usd: float
    max_size_usd: float
    target_size_usd: float
    expected_fee_rate: float
    estimated_amortization_hours: float
    cost_target_usd: float
    is_probe_mode: bool
    skip_entry: bool
    skip_reason: Optional[str]
    size_reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdaptiveSizeDecision:
    """Sizing and availability chained into one executable dollar amount."""
    size_usd: float
    allowed: bool
    reason: str
    sizing: Optional[PositionSizingResult] = None
    check: Optional[CapitalCheckResult] = None


# ============================================================================
# DATACLASSES - REVERSAL GUARD
# ============================================================================

@dataclass
class HistoryTick:
    """One recorded signal tick for an opportunity."""
    timestamp: float
    migration_direction: MigrationDirection
    entropy: float
    liquidity_flow: float
    velocity: Optional[float] = None


@dataclass
class PoolCooldownState:
    """Per-opportunity cooldown record."""
    pool_address: str
    started_at: float
    duration_seconds: float
    reason: str

    def is_active(self, now: float) -> bool:
        return now - self.started_at < self.duration_seconds


@dataclass
class ReversalDetectionResult:
    should_block: bool
    reversal_detected: bool
    cooldown_seconds: float
    reason: str
    recent_directions: List[MigrationDirection] = field(default_factory=list)
    sustained_count: int = 0
    required_sustained: int = 3
    cooldown_expires_at: Optional[float] = None


# ============================================================================
# DATACLASSES - SIZING AND VALIDATION OUTPUT
# ============================================================================

@dataclass
class RegimeMultiplierResult:
    """Output of the Adaptive Sizing Engine."""
    position_multiplier: float
    raw_score: float
    regime_confidence: float
    trading_blocked: bool
    reason: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class NoTradeResult:
    """Verdict of the external no-trade-regime collaborator."""
    is_no_trade_regime: bool
    confidence: float = 0.0
    reason: str = ''
    cooldown_seconds: Optional[float] = None


@dataclass
class CheckResult:
    """Result of one stage in the entry validation chain."""
    check: str
    passed: bool
    blocked: bool
    reason: str
    value: Optional[float] = None
    multiplier: Optional[float] = None
    cooldown_seconds: Optional[float] = None


@dataclass
class EntryValidationResult:
    can_enter: bool
    blocked: bool
    reason: str
    final_position_multiplier: float
    execution_quality: float
    congestion_multiplier: float
    regime_multiplier: float
    checks: List[CheckResult] = field(default_factory=list)
    cooldown_seconds: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'can_enter': self.can_enter,
            'blocked': self.blocked,
            'reason': self.reason,
            'final_position_multiplier': self.final_position_multiplier,
            'execution_quality': self.execution_quality,
            'congestion_multiplier': self.congestion_multiplier,
            'regime_multiplier': self.regime_multiplier,
            'checks': [asdict(c) for c in self.checks],
            'cooldown_seconds': self.cooldown_seconds,
            'timestamp': self.timestamp,
            'timestamp_iso': time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(self.timestamp)),
        }


@dataclass
class MultiplierBreakdown:
    """Combined multiplier without running the ordered guard chain."""
    final_multiplier: float
    regime_multiplier: float
    execution_multiplier: float
    congestion_multiplier: float
    blocked: bool
    reason: str


# ============================================================================
# DATACLASSES - COLLABORATOR REFERENCE IMPLEMENTATIONS
# ============================================================================

@dataclass
class ExecutionEvent:
    """A single on-chain execution attempt."""
    id: str
    pool_address: str
    trade_type: str                     # 'entry' | 'exit'
    initiated_at: float
    success: bool
    expected_slippage: float
    expected_price: float
    attempts: int
    completed_at: Optional[float] = None
    realized_slippage: Optional[float] = None
    actual_price: Optional[float] = None
    failure_reason: Optional[str] = None
    signature: Optional[str] = None


@dataclass
class ExecutionMetrics:
    window_start: float
    window_end: float
    total_executions: int
    successful_executions: int
    failed_executions: int
    tx_success_rate: float
    avg_slippage_deviation: float
    max_slippage: float
    avg_latency_ms: float
    avg_attempts_per_execution: float
    avg_fill_price_deviation: float
    reverted_tx_count: int


@dataclass
class ExecutionQualityResult:
    score: float
    block_entries: bool
    position_multiplier: float
    reason: str
    metrics: ExecutionMetrics
    timestamp: float


@dataclass
class CongestionSample:
    timestamp: float
    tx_success: bool = True
    confirmation_time_ms: Optional[float] = None
    rpc_latency_ms: Optional[float] = None
    blocktime_deviation: Optional[float] = None


@dataclass
class NetworkMetrics:
    avg_confirmation_time_ms: float
    failed_tx_rate: float
    blocktime_deviation: float
    pending_signature_count: int
    rpc_latency_ms: float


@dataclass
class CongestionResult:
    congestion_score: float
    level: CongestionLevel
    position_multiplier: float
    frequency_multiplier: float
    block_trading: bool
    reduce_positions: bool
    reduce_frequency: bool
    reason: str
    metrics: NetworkMetrics
    timestamp: float


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ConfigurationException(Exception):
    """Raised when configuration is invalid."""
    pass
