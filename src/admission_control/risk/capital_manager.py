"""
ADMISSION CONTROL - Capital Manager
====================================

Owns the dynamic capacity budget, enforces reserve and concentration
invariants, and sizes positions via cost-amortization economics.

Cap state machine (evaluated in priority order on every recalculation):

    1. Cooldown                      -> MIN cap (0.25)
    2. Warmup / post-cooldown warmup -> ramp 0.15 -> BASE (0.40)
    3. Confidence unlocked           -> MAX cap (0.60)
    4. Confidence < 0.35 (stress)    -> MIN cap
    5. Otherwise                     -> BASE cap

BEAR regime caps the result at BASE; everything is clamped to
1 - HARD_RESERVE_PCT so the reserve cannot be breached by construction.

Version: 1.0
"""

import logging
import time
from collections import deque
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..core.config import CapitalConfig, ConfidenceConfig
from ..core.types import (
    CapitalCheckResult,
    CapitalManagerState,
    ConfidenceInputs,
    FeeHistorySample,
    PositionSizingResult,
    Regime,
)
from ..core import metrics
from .confidence_score import check_unlock_conditions, compute_confidence_score

logger = logging.getLogger(__name__)


class CapitalManager:
    """
    Authoritative capacity state for the whole portfolio.

    Callers must invoke the mutating methods from a single decision cycle
    at a time; nothing here is synchronized.
    """

    def __init__(
        self,
        config: CapitalConfig = None,
        confidence_config: ConfidenceConfig = None,
        initial_equity_usd: float = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True
    ):
        """
        Initialize capital manager.

        Args:
            config: CapitalConfig with caps, sizes and amortization parameters
            confidence_config: Weights, unlock thresholds and window for confidence
            initial_equity_usd: Seed equity (defaults to config.default_equity_usd)
            clock: Time source in seconds
            enable_metrics: Record Prometheus metrics
        """
        if config is None:
            config = CapitalConfig()
        if confidence_config is None:
            confidence_config = ConfidenceConfig()

        self.config = config
        self.confidence_config = confidence_config
        self.clock = clock
        self.enable_metrics = enable_metrics

        self.reset(initial_equity_usd)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def reset(self, initial_equity_usd: float = None):
        """Replace all state (restart or testing)."""
        cfg = self.config
        now = self.clock()

        if initial_equity_usd is None:
            initial_equity_usd = cfg.default_equity_usd

        self.total_equity_usd = max(1.0, float(initial_equity_usd))
        self.total_deployed_usd = 0.0
        self.pool_deployments: Dict[str, float] = {}
        self.pool_fee_history: Dict[str, deque] = {}
        self._confidence_history: deque = deque()

        self.state = CapitalManagerState(
            dynamic_deploy_cap_pct=cfg.warmup_initial_cap,
            per_pool_max_pct=cfg.per_pool_max_pct,
            confidence_score=0.5,
            confidence_unlocked=False,
            is_in_warmup=True,
            warmup_progress=0.0,
            warmup_start_time=now,
            is_in_cooldown=False,
            cooldown_end_time=0.0,
            post_cooldown_warmup_active=False,
            current_regime=Regime.NEUTRAL,
            deployed_pct=0.0,
            reserve_pct=cfg.hard_reserve_pct,
            available_capacity_pct=cfg.warmup_initial_cap,
            last_update_time=now,
        )

        logger.info(f"Capital manager reset. Equity: ${self.total_equity_usd:,.2f}")

    # ========================================================================
    # Mutators
    # ========================================================================

    def update_equity(self, equity_usd: float):
        self.total_equity_usd = max(1.0, float(equity_usd))
        self.recalculate_state()

    def update_regime(self, regime):
        regime = Regime.from_value(regime)
        self.state.current_regime = regime

        if regime == Regime.BEAR:
            self.state.per_pool_max_pct = self.config.per_pool_max_pct_bear
        else:
            self.state.per_pool_max_pct = self.config.per_pool_max_pct

        self.recalculate_state()

    def set_cooldown_state(self, is_active: bool, end_time: float = 0.0):
        """
        Mirror the kill-switch cooldown.

        Leaving cooldown starts the post-cooldown warmup ramp.
        """
        was_in_cooldown = self.state.is_in_cooldown
        self.state.is_in_cooldown = is_active
        self.state.cooldown_end_time = end_time

        if was_in_cooldown and not is_active:
            self.state.post_cooldown_warmup_active = True
            self.state.warmup_start_time = self.clock()
            self.state.warmup_progress = 0.0
            logger.info("Post-cooldown warmup started")

        self.recalculate_state()

    def update_confidence(self, inputs: ConfidenceInputs):
        """
        Feed one cycle of confidence inputs.

        The held confidence score is a time-weighted rolling average;
        unlock is decided on the latest inputs only.
        """
        now = self.clock()
        self._confidence_history.append((inputs, now))

        cutoff = now - self.confidence_config.window_sec
        while self._confidence_history and self._confidence_history[0][1] < cutoff:
            self._confidence_history.popleft()

        self.state.confidence_score = self._rolling_confidence_score(now)
        self.state.confidence_unlocked, _ = check_unlock_conditions(
            inputs, self.confidence_config.unlock
        )

        self.recalculate_state()

    def record_deployment(self, pool_address: str, size_usd: float):
        self.pool_deployments[pool_address] = self.pool_deployments.get(pool_address, 0.0) + size_usd
        self.total_deployed_usd += size_usd
        self.recalculate_state()

    def record_exit(self, pool_address: str, size_usd: float):
        remaining = max(0.0, self.pool_deployments.get(pool_address, 0.0) - size_usd)

        if remaining <= 0:
            self.pool_deployments.pop(pool_address, None)
        else:
            self.pool_deployments[pool_address] = remaining

        self.total_deployed_usd = max(0.0, self.total_deployed_usd - size_usd)
        self.recalculate_state()

    def record_pool_fee_history(
        self,
        pool_address: str,
        fees_accrued_usd: float,
        hold_time_sec: float,
        position_size_usd: float
    ):
        """Append a realized fee sample (bounded ring per opportunity)."""
        history = self.pool_fee_history.get(pool_address)
        if history is None:
            history = deque(maxlen=self.config.fee_history_size)
            self.pool_fee_history[pool_address] = history

        history.append(FeeHistorySample(
            fees_earned_usd=fees_accrued_usd,
            hold_time_sec=hold_time_sec,
            position_size_usd=position_size_usd,
            timestamp=self.clock(),
        ))

    def sync_deployments(self, positions: Iterable[Tuple[str, float]]):
        """
        Rebuild the deployment map from external bookkeeping.

        Args:
            positions: Iterable of (pool_address, size_usd)
        """
        positions = list(positions)
        self.pool_deployments = {}
        self.total_deployed_usd = 0.0

        for pool_address, size_usd in positions:
            self.pool_deployments[pool_address] = self.pool_deployments.get(pool_address, 0.0) + size_usd
            self.total_deployed_usd += size_usd

        self.recalculate_state()
        logger.info(
            f"Synced {len(positions)} positions, total deployed: ${self.total_deployed_usd:,.2f}"
        )

    # ========================================================================
    # Capital checks
    # ========================================================================

    def check_capital_availability(self, pool_address: str, requested_size_usd: float) -> CapitalCheckResult:
        """
        Clamp a requested size to every capacity limit.

        Args:
            pool_address: Opportunity id
            requested_size_usd: Desired position size

        Returns:
            CapitalCheckResult with adjusted size and the constraints that bound it
        """
        self.recalculate_state()
        cfg = self.config
        equity = self.total_equity_usd

        available_capacity = max(0.0, equity * self.state.dynamic_deploy_cap_pct - self.total_deployed_usd)
        pool_remaining = self.get_pool_remaining_capacity_usd(pool_address)
        available_after_reserve = equity - equity * cfg.hard_reserve_pct - self.total_deployed_usd
        max_single = equity * cfg.max_single_position_pct

        valid_request = bool(np.isfinite(requested_size_usd)) and requested_size_usd > 0
        adjusted = 0.0
        if valid_request:
            adjusted = min(requested_size_usd, available_capacity, pool_remaining, available_after_reserve, max_single)

        if not valid_request:
            result = CapitalCheckResult(
                allowed=False,
                requested_usd=requested_size_usd,
                adjusted_size_usd=0.0,
                reason=f"Invalid requested size {requested_size_usd}",
                available_capacity_usd=available_capacity,
                pool_remaining_usd=pool_remaining,
                available_after_reserve_usd=available_after_reserve,
            )
        elif adjusted < cfg.min_position_usd:
            result = CapitalCheckResult(
                allowed=False,
                requested_usd=requested_size_usd,
                adjusted_size_usd=0.0,
                reason=f"Adjusted size ${adjusted:.0f} < min ${cfg.min_position_usd:.0f}",
                available_capacity_usd=available_capacity,
                pool_remaining_usd=pool_remaining,
                available_after_reserve_usd=available_after_reserve,
            )
        elif self.state.is_in_cooldown:
            result = CapitalCheckResult(
                allowed=False,
                requested_usd=requested_size_usd,
                adjusted_size_usd=0.0,
                reason="Capital manager in cooldown mode",
                available_capacity_usd=available_capacity,
                pool_remaining_usd=pool_remaining,
                available_after_reserve_usd=available_after_reserve,
            )
        else:
            constraints_hit = []
            if adjusted < requested_size_usd:
                if adjusted == available_capacity:
                    constraints_hit.append('portfolio cap')
                if adjusted == pool_remaining:
                    constraints_hit.append('pool cap')
                if adjusted == available_after_reserve:
                    constraints_hit.append('reserve')
                if adjusted == max_single:
                    constraints_hit.append('single position cap')

            reason = f"Capped by {', '.join(constraints_hit)}" if constraints_hit else "OK"
            result = CapitalCheckResult(
                allowed=True,
                requested_usd=requested_size_usd,
                adjusted_size_usd=adjusted,
                reason=reason,
                constraints_hit=constraints_hit,
                available_capacity_usd=available_capacity,
                pool_remaining_usd=pool_remaining,
                available_after_reserve_usd=available_after_reserve,
            )

        if self.enable_metrics:
            try:
                metrics.record_capital_check(result.allowed)
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

        return result

    # ========================================================================
    # Sizing
    # ========================================================================

    def get_target_position_size_usd(self) -> float:
        regime = self.state.current_regime
        if regime == Regime.BULL:
            return self.config.target_size_bull_usd
        if regime == Regime.BEAR:
            return self.config.target_size_bear_usd
        return self.config.target_size_neutral_usd

    def estimate_pool_fee_rate(self, pool_address: str) -> float:
        """
        Expected fee accrual in USD per $1000 deployed per hour.

        Uses the mean of valid history samples (hold >= 30 min, size > 0)
        when at least min_fee_history_samples exist, else the conservative
        constant.
        """
        cfg = self.config
        rates = []

        for sample in self.pool_fee_history.get(pool_address, ()):
            if sample.hold_time_sec > cfg.min_fee_sample_hold_sec and sample.position_size_usd > 0:
                hours = sample.hold_time_sec / 3600
                rates.append(sample.fees_earned_usd / sample.position_size_usd * 1000 / hours)

        if len(rates) >= cfg.min_fee_history_samples:
            return sum(rates) / len(rates)

        return cfg.conservative_fee_rate

    def compute_position_size(
        self,
        pool_address: str,
        pool_name: str,
        entry_fees_usd: float,
        exit_fees_usd: float,
        slippage_usd: float,
        observed_fee_rate: Optional[float] = None
    ) -> PositionSizingResult:
        """
        Size a position so that its fee income repays round-trip costs.

        Args:
            pool_address: Opportunity id (used for fee history)
            pool_name: Human-readable name for logs
            entry_fees_usd: Expected entry fees
            exit_fees_usd: Expected exit fees
            slippage_usd: Expected slippage cost
            observed_fee_rate: USD per $1000 per hour; bypasses estimation

        Returns:
            PositionSizingResult
        """
        self.recalculate_state()
        cfg = self.config
        state = self.state
        regime = state.current_regime

        target_size = self.get_target_position_size_usd()

        base_costs = entry_fees_usd + exit_fees_usd + slippage_usd
        buffer = max(cfg.min_cost_buffer_usd, base_costs * cfg.cost_buffer_multiplier)
        cost_target = base_costs + buffer

        if observed_fee_rate is not None:
            fee_rate = observed_fee_rate
        else:
            fee_rate = self.estimate_pool_fee_rate(pool_address)

        if fee_rate > cfg.min_fee_rate:
            amortization_hours = cost_target / (fee_rate * target_size / 1000)
            required_size = cost_target * 1000 / (fee_rate * cfg.target_hours_to_amortize)
        else:
            amortization_hours = cfg.max_hours_to_amortize + 1
            required_size = target_size

        max_allowed = self.total_equity_usd * cfg.max_single_position_pct
        recommended = min(max(target_size, required_size), max_allowed)

        if state.is_in_warmup or state.post_cooldown_warmup_active:
            recommended *= min(1.0, 0.5 + 0.5 * state.warmup_progress)

        if regime == Regime.BEAR:
            recommended *= cfg.bear_size_multiplier
        elif regime == Regime.BULL and state.confidence_unlocked:
            recommended *= cfg.bull_unlocked_size_multiplier

        is_probe = False
        skip_entry = False
        skip_reason = None

        # Amortization gate
        if amortization_hours > cfg.max_hours_to_amortize:
            if recommended >= cfg.min_position_usd:
                recommended = cfg.min_position_usd
                is_probe = True
            else:
                skip_entry = True
                skip_reason = (
                    f"Amortization {amortization_hours:.1f}h > max {cfg.max_hours_to_amortize:g}h"
                )

        if recommended < cfg.min_position_usd and not skip_entry:
            recommended = cfg.min_position_usd
            is_probe = True

        size_reason = f"Target {target_size:.0f} | Regime {regime.value}"
        if is_probe:
            size_reason += " | PROBE"
        if state.is_in_warmup:
            size_reason += f" | Warmup {state.warmup_progress:.0%}"

        result = PositionSizingResult(
            recommended_size_usd=float(int(recommended)),
            min_size_usd=cfg.min_position_usd,
            max_size_usd=float(int(max_allowed)),
            target_size_usd=target_size,
            expected_fee_rate=fee_rate,
            estimated_amortization_hours=amortization_hours,
            cost_target_usd=cost_target,
            is_probe_mode=is_probe,
            skip_entry=skip_entry,
            skip_reason=skip_reason,
            size_reason=size_reason,
        )

        if skip_entry:
            logger.info(f"Skipping {pool_name}: {skip_reason}")
        else:
            logger.debug(f"Sizing {pool_name}: ${result.recommended_size_usd:,.0f} ({size_reason})")

        if self.enable_metrics:
            try:
                metrics.record_sizing_decision(result)
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

        return result

    # ========================================================================
    # State recalculation
    # ========================================================================

    def _rolling_confidence_score(self, now: float) -> float:
        """Linearly time-decayed mean of per-cycle scores (0.5 with no history)."""
        window = self.confidence_config.window_sec
        weighted_sum = 0.0
        total_weight = 0.0

        for inputs, timestamp in self._confidence_history:
            weight = 1 - (now - timestamp) / window
            if weight <= 0:
                continue
            weighted_sum += compute_confidence_score(inputs, self.confidence_config.weights) * weight
            total_weight += weight

        if total_weight == 0:
            return 0.5
        return min(1.0, max(0.0, weighted_sum / total_weight))

    def recalculate_state(self):
        """Advance warmup and re-derive the dynamic cap and capacity fields."""
        cfg = self.config
        state = self.state
        now = self.clock()

        if state.is_in_warmup or state.post_cooldown_warmup_active:
            duration = cfg.post_cooldown_warmup_sec if state.post_cooldown_warmup_active else cfg.warmup_duration_sec
            state.warmup_progress = min(1.0, (now - state.warmup_start_time) / duration)

            if state.warmup_progress >= 1:
                state.is_in_warmup = False
                state.post_cooldown_warmup_active = False
                logger.info("Warmup complete")

        if state.is_in_cooldown:
            cap = cfg.min_total_deploy_cap
        elif state.is_in_warmup or state.post_cooldown_warmup_active:
            cap = cfg.warmup_initial_cap + (cfg.base_total_deploy_cap - cfg.warmup_initial_cap) * state.warmup_progress
        elif state.confidence_unlocked:
            cap = cfg.max_total_deploy_cap
        elif state.confidence_score < cfg.stress_confidence_threshold:
            cap = cfg.min_total_deploy_cap
        else:
            cap = cfg.base_total_deploy_cap

        if state.current_regime == Regime.BEAR:
            cap = min(cap, cfg.base_total_deploy_cap)

        cap = min(cap, 1 - cfg.hard_reserve_pct)

        state.dynamic_deploy_cap_pct = cap
        state.deployed_pct = self.total_deployed_usd / self.total_equity_usd if self.total_equity_usd > 0 else 0.0
        state.reserve_pct = cfg.hard_reserve_pct
        state.available_capacity_pct = max(0.0, cap - state.deployed_pct)
        state.last_update_time = now

        if self.enable_metrics:
            try:
                metrics.record_capital_state(state, self.total_equity_usd)
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

    # ========================================================================
    # Accessors
    # ========================================================================

    def get_state(self) -> CapitalManagerState:
        """Copy of the current state, re-derived against the clock."""
        self.recalculate_state()
        return replace(self.state)

    def get_dynamic_deploy_cap_pct(self) -> float:
        self.recalculate_state()
        return self.state.dynamic_deploy_cap_pct

    def get_per_pool_max_pct(self) -> float:
        return self.state.per_pool_max_pct

    def get_available_capacity_usd(self) -> float:
        self.recalculate_state()
        return max(0.0, self.total_equity_usd * self.state.dynamic_deploy_cap_pct - self.total_deployed_usd)

    def get_pool_remaining_capacity_usd(self, pool_address: str) -> float:
        pool_max = self.total_equity_usd * self.state.per_pool_max_pct
        return max(0.0, pool_max - self.pool_deployments.get(pool_address, 0.0))

    def get_pool_deployment_usd(self, pool_address: str) -> float:
        return self.pool_deployments.get(pool_address, 0.0)

    def is_in_stress_mode(self) -> bool:
        self.recalculate_state()
        return (
            self.state.confidence_score < self.config.stress_confidence_threshold or
            self.state.is_in_cooldown or
            self.state.dynamic_deploy_cap_pct <= self.config.min_total_deploy_cap
        )

    def is_max_capacity_unlocked(self) -> bool:
        self.recalculate_state()
        return (
            self.state.confidence_unlocked and
            self.state.dynamic_deploy_cap_pct >= self.config.max_total_deploy_cap
        )

    # ========================================================================
    # Observability
    # ========================================================================

    def log_capital_manager_status(self):
        """One-line status summary."""
        s = self.state
        line = (
            f"Capital cap={s.dynamic_deploy_cap_pct:.0%} "
            f"deployed={s.deployed_pct:.1%} "
            f"avail={s.available_capacity_pct:.1%} "
            f"reserve={s.reserve_pct:.0%} "
            f"conf={s.confidence_score:.0%} "
            f"regime={s.current_regime.value} "
            f"poolCap={s.per_pool_max_pct:.0%}"
        )
        if s.is_in_warmup:
            line += f" warmup={s.warmup_progress:.0%}"
        if s.is_in_cooldown:
            line += " COOLDOWN"
        if s.confidence_unlocked:
            line += " UNLOCKED"
        logger.info(line)

    def log_capital_manager_debug(self):
        s = self.state
        logger.debug(
            "Capital debug: %s",
            {
                'dynamic_cap_pct': s.dynamic_deploy_cap_pct,
                'deployed_pct': s.deployed_pct,
                'confidence_score': s.confidence_score,
                'confidence_unlocked': s.confidence_unlocked,
                'regime': s.current_regime.value,
                'is_warmup': s.is_in_warmup,
                'is_cooldown': s.is_in_cooldown,
                'pool_count': len(self.pool_deployments),
                'total_deployed_usd': self.total_deployed_usd,
                'total_equity_usd': self.total_equity_usd,
            }
        )

    # ========================================================================
    # Invariants
    # ========================================================================

    def assert_capital_invariants(self) -> Tuple[bool, List[str]]:
        """
        Re-derive the capital invariants from current state.

        Violations are logged as errors and never raised.

        Returns:
            Tuple of (valid, errors)
        """
        cfg = self.config
        tol = cfg.invariant_tolerance
        state = self.state
        errors = []

        deployed_pct = self.total_deployed_usd / self.total_equity_usd if self.total_equity_usd > 0 else 0.0

        if deployed_pct > state.dynamic_deploy_cap_pct + tol:
            errors.append(f"Deployed {deployed_pct:.1%} > cap {state.dynamic_deploy_cap_pct:.1%}")

        reserve_actual = 1 - deployed_pct
        if reserve_actual < cfg.hard_reserve_pct - tol:
            errors.append(f"Reserve {reserve_actual:.1%} < hard reserve {cfg.hard_reserve_pct:.0%}")

        for pool_address, deployed in self.pool_deployments.items():
            pool_pct = deployed / self.total_equity_usd
            if pool_pct > state.per_pool_max_pct + tol:
                errors.append(
                    f"Pool {pool_address[:8]} at {pool_pct:.1%} > max {state.per_pool_max_pct:.0%}"
                )

        if state.dynamic_deploy_cap_pct > 1 - cfg.hard_reserve_pct + cfg.cap_invariant_tolerance:
            errors.append(f"Dynamic cap {state.dynamic_deploy_cap_pct:.1%} exceeds allowed max")

        for error in errors:
            logger.error(f"Capital invariant violated: {error}")

        if self.enable_metrics:
            try:
                metrics.record_invariant_violations(len(errors))
            except Exception as e:
                logger.debug(f"Metrics recording skipped: {e}")

        return len(errors) == 0, errors
