"""
ADMISSION CONTROL - Entry Validation Pipeline
==============================================

Ordered guard chain that composes every admission signal into one
allow/deny/size decision. Evaluation stops at the first blocking stage,
so later stages (and their side effects) never run.

    1. no_trade_regime    - market-wide chaos
    2. reversal_guard     - unconfirmed or reversing migration
    3. execution_quality  - block < 0.35, x0.40 < 0.50, x1.0 >= 0.80, linear between
    4. congestion_mode    - block >= 0.85, x0.5 >= 0.70, linear 0.5..1.0 over 0.70..0.60
    5. position_sizing    - regime multiplier, 0 is a block

final = regime x execution x congestion; below min_combined_multiplier blocks.

Version: 1.0
"""

import logging
import time
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..core.config import EntryValidationConfig
from ..core.types import (
    CheckResult,
    EntryValidationResult,
    EntryValidationState,
    MultiplierBreakdown,
    NoTradeResult,
    TradingState,
)
from ..core import metrics
from ..risk.reversal_guard import ReversalGuard
from .adaptive_sizing import AdaptiveSizingEngine
from .congestion import CongestionTracker
from .execution_quality import ExecutionQualityTracker

logger = logging.getLogger(__name__)


def permissive_no_trade_check(state: TradingState) -> NoTradeResult:
    """Default no-trade collaborator: never declares a no-trade regime."""
    return NoTradeResult(is_no_trade_regime=False, confidence=0.0, reason='No-trade regime check not configured')


def create_entry_validation_state(
    state: TradingState,
    pool_address: str,
    migration_direction=None
) -> EntryValidationState:
    """Attach opportunity identity to a TradingState."""
    return EntryValidationState(
        entropy=state.entropy,
        liquidity_flow=state.liquidity_flow,
        migration_confidence=state.migration_confidence,
        consistency=state.consistency,
        velocity=state.velocity,
        execution_quality=state.execution_quality,
        pool_address=pool_address,
        migration_direction=migration_direction,
    )


class EntryValidationPipeline:
    """
    Stateless orchestrator over the admission guards.

    Collaborators:
        reversal_guard:     ReversalGuard (owns per-opportunity history)
        execution_quality:  object exposing score() -> [0, 1], higher is better
        congestion:         object exposing score() -> [0, 1], higher is worse
        no_trade_check:     callable(state) -> NoTradeResult
        sizing_engine:      AdaptiveSizingEngine
    """

    def __init__(
        self,
        config: EntryValidationConfig = None,
        reversal_guard: ReversalGuard = None,
        execution_quality=None,
        congestion=None,
        no_trade_check: Callable[[TradingState], NoTradeResult] = None,
        sizing_engine: AdaptiveSizingEngine = None,
        enable_metrics: bool = True
    ):
        if config is None:
            config = EntryValidationConfig()

        self.config = config
        self.reversal_guard = reversal_guard if reversal_guard is not None else ReversalGuard()
        self.execution_quality = execution_quality if execution_quality is not None else ExecutionQualityTracker()
        self.congestion = congestion if congestion is not None else CongestionTracker()
        self.no_trade_check = no_trade_check if no_trade_check is not None else permissive_no_trade_check
        self.sizing_engine = sizing_engine if sizing_engine is not None else AdaptiveSizingEngine()
        self.enable_metrics = enable_metrics

    # ========================================================================
    # Multiplier curves
    # ========================================================================

    def execution_multiplier(self, quality: float) -> Tuple[bool, float, str]:
        """
        Map execution quality to a position multiplier.

        Returns:
            Tuple of (blocked, multiplier, reason)
        """
        cfg = self.config

        if not np.isfinite(quality):
            return True, 0.0, f"BLOCKED: execution quality unavailable ({quality})"

        if quality < cfg.execution_block_threshold:
            return True, 0.0, (
                f"BLOCKED: execution quality {quality:.1%} < "
                f"{cfg.execution_block_threshold:.0%} threshold"
            )

        if quality < cfg.execution_reduce_threshold:
            m = cfg.execution_reduction_factor
            return False, m, (
                f"REDUCED: execution quality {quality:.1%} < {cfg.execution_reduce_threshold:.0%}"
                f" - position reduced to {m:.0%}"
            )

        if quality >= cfg.execution_normal_threshold:
            return False, 1.0, (
                f"NORMAL: execution quality {quality:.1%} ≥ {cfg.execution_normal_threshold:.0%}"
            )

        span = cfg.execution_normal_threshold - cfg.execution_reduce_threshold
        progress = (quality - cfg.execution_reduce_threshold) / span
        m = cfg.execution_reduction_factor + progress * (1.0 - cfg.execution_reduction_factor)
        return False, m, f"SCALED: execution quality {quality:.1%} - position at {m:.0%}"

    def congestion_multiplier(self, score: float) -> Tuple[bool, float, str]:
        """
        Map congestion score to a position multiplier.

        Returns:
            Tuple of (blocked, multiplier, reason)
        """
        cfg = self.config

        if not np.isfinite(score):
            return True, 0.0, f"BLOCKED: congestion score unavailable ({score})"

        if score >= cfg.congestion_block_threshold:
            return True, 0.0, (
                f"BLOCKED: congestion score {score:.1%} ≥ {cfg.congestion_block_threshold:.0%}"
                f" - network too congested"
            )

        if score >= cfg.congestion_half_threshold:
            return False, 0.5, (
                f"HALVED: congestion score {score:.1%} ≥ {cfg.congestion_half_threshold:.0%}"
                f" - position halved"
            )

        if score >= cfg.congestion_reduce_threshold:
            span = cfg.congestion_half_threshold - cfg.congestion_reduce_threshold
            m = 0.5 + (cfg.congestion_half_threshold - score) / span * 0.5
            return False, m, f"REDUCED: congestion score {score:.1%} - position at {m:.0%}"

        return False, 1.0, (
            f"NORMAL: congestion score {score:.1%} < {cfg.congestion_reduce_threshold:.0%}"
        )

    # ========================================================================
    # Individual checks
    # ========================================================================

    def _run_no_trade_check(self, state: TradingState) -> CheckResult:
        result = self.no_trade_check(state)
        return CheckResult(
            check='no_trade_regime',
            passed=not result.is_no_trade_regime,
            blocked=result.is_no_trade_regime,
            value=result.confidence,
            reason=result.reason,
            cooldown_seconds=result.cooldown_seconds,
        )

    def _run_reversal_check(self, state: EntryValidationState) -> CheckResult:
        result = self.reversal_guard.detect_reversal(state)
        return CheckResult(
            check='reversal_guard',
            passed=not result.should_block,
            blocked=result.should_block,
            value=float(result.sustained_count),
            reason=result.reason,
            cooldown_seconds=result.cooldown_seconds,
        )

    def _run_execution_check(self) -> CheckResult:
        quality = float(self.execution_quality.score())
        blocked, multiplier, reason = self.execution_multiplier(quality)
        return CheckResult(
            check='execution_quality',
            passed=not blocked,
            blocked=blocked,
            value=quality,
            multiplier=multiplier,
            reason=reason,
        )

    def _run_congestion_check(self) -> CheckResult:
        score = float(self.congestion.score())
        blocked, multiplier, reason = self.congestion_multiplier(score)
        return CheckResult(
            check='congestion_mode',
            passed=not blocked,
            blocked=blocked,
            value=score,
            multiplier=multiplier,
            reason=reason,
        )

    def _run_position_check(self, state: TradingState) -> CheckResult:
        result = self.sizing_engine.compute_position_multiplier(state)
        return CheckResult(
            check='position_sizing',
            passed=not result.trading_blocked,
            blocked=result.trading_blocked,
            value=result.regime_confidence,
            multiplier=result.position_multiplier,
            reason=result.reason,
        )

    # ========================================================================
    # Pipeline
    # ========================================================================

    def run_entry_validation(self, state: EntryValidationState) -> EntryValidationResult:
        """
        Run the ordered guard chain for one opportunity.

        Must be called before sizing any new position.

        Args:
            state: Signal vector with opportunity identity

        Returns:
            EntryValidationResult
        """
        cfg = self.config
        checks: List[CheckResult] = []
        execution_quality = 1.0
        execution_mult = 1.0
        congestion_mult = 1.0

        if cfg.enable_no_trade_check:
            check = self._run_no_trade_check(state)
            checks.append(check)
            if check.blocked:
                return self._blocked('NO_TRADE_REGIME', check, checks, 0.0, 0.0, 0.0)

        if cfg.enable_reversal_check:
            check = self._run_reversal_check(state)
            checks.append(check)
            if check.blocked:
                return self._blocked('REVERSAL_GUARD', check, checks, 0.0, 0.0, 0.0)

        if cfg.enable_execution_check:
            check = self._run_execution_check()
            checks.append(check)
            execution_quality = check.value
            execution_mult = check.multiplier
            if check.blocked:
                return self._blocked('EXECUTION_QUALITY', check, checks, execution_quality, 0.0, 0.0)

        if cfg.enable_congestion_check:
            check = self._run_congestion_check()
            checks.append(check)
            congestion_mult = check.multiplier
            if check.blocked:
                return self._blocked('CONGESTION_MODE', check, checks, execution_quality, congestion_mult, 0.0)

        check = self._run_position_check(state)
        checks.append(check)
        regime_mult = check.multiplier
        if check.blocked:
            return self._blocked('POSITION_SIZING', check, checks, execution_quality, congestion_mult, regime_mult)

        final = regime_mult * execution_mult * congestion_mult

        if final < cfg.min_combined_multiplier:
            reason = (
                f"COMBINED_MULTIPLIER: {final:.1%} < {cfg.min_combined_multiplier:.0%} minimum"
            )
            logger.info(f"Entry blocked: {reason}")
            self._record('combined_multiplier')
            return EntryValidationResult(
                can_enter=False,
                blocked=True,
                reason=reason,
                final_position_multiplier=final,
                execution_quality=execution_quality,
                congestion_multiplier=congestion_mult,
                regime_multiplier=regime_mult,
                checks=checks,
                cooldown_seconds=min(cfg.default_cooldown_seconds, cfg.max_cooldown_seconds),
            )

        reason = (
            f"VALID: final multiplier {final:.1%} "
            f"(regime={regime_mult:.0%} × exec={execution_mult:.0%} × cong={congestion_mult:.0%})"
        )
        logger.debug(reason)
        self._record('valid', final)

        return EntryValidationResult(
            can_enter=True,
            blocked=False,
            reason=reason,
            final_position_multiplier=final,
            execution_quality=execution_quality,
            congestion_multiplier=congestion_mult,
            regime_multiplier=regime_mult,
            checks=checks,
            cooldown_seconds=0.0,
        )

    def _blocked(
        self,
        prefix: str,
        check: CheckResult,
        checks: List[CheckResult],
        execution_quality: float,
        congestion_mult: float,
        regime_mult: float
    ) -> EntryValidationResult:
        cfg = self.config

        if check.cooldown_seconds is not None and check.check in ('no_trade_regime', 'reversal_guard'):
            cooldown = check.cooldown_seconds
        else:
            cooldown = cfg.default_cooldown_seconds
        cooldown = min(max(0.0, cooldown), cfg.max_cooldown_seconds)

        reason = f"{prefix}: {check.reason}"
        logger.warning(f"Entry blocked: {reason}")
        self._record(check.check)

        return EntryValidationResult(
            can_enter=False,
            blocked=True,
            reason=reason,
            final_position_multiplier=0.0,
            execution_quality=execution_quality,
            congestion_multiplier=congestion_mult,
            regime_multiplier=regime_mult,
            checks=checks,
            cooldown_seconds=cooldown,
        )

    def _record(self, stage: str, final_multiplier: float = None):
        if not self.enable_metrics:
            return
        try:
            metrics.record_entry_validation(stage, final_multiplier)
        except Exception as e:
            logger.debug(f"Metrics recording skipped: {e}")

    # ========================================================================
    # Convenience queries
    # ========================================================================

    def get_position_sizing(self, state: TradingState) -> MultiplierBreakdown:
        """
        Combined multiplier without the no-trade and reversal stages.

        Does not touch reversal history.
        """
        regime_mult = self.sizing_engine.get_position_multiplier(state)

        execution_mult = 1.0
        if self.config.enable_execution_check:
            _, execution_mult, _ = self.execution_multiplier(float(self.execution_quality.score()))

        congestion_mult = 1.0
        if self.config.enable_congestion_check:
            _, congestion_mult, _ = self.congestion_multiplier(float(self.congestion.score()))

        final = regime_mult * execution_mult * congestion_mult
        blocked = final == 0

        if blocked:
            if regime_mult == 0:
                blocked_by = 'regime'
            elif execution_mult == 0:
                blocked_by = 'execution'
            else:
                blocked_by = 'congestion'
            reason = f"BLOCKED by {blocked_by}"
        else:
            reason = (
                f"Multiplier: {final:.1%} "
                f"(R={regime_mult:.0%} × E={execution_mult:.0%} × C={congestion_mult:.0%})"
            )

        return MultiplierBreakdown(
            final_multiplier=final,
            regime_multiplier=regime_mult,
            execution_multiplier=execution_mult,
            congestion_multiplier=congestion_mult,
            blocked=blocked,
            reason=reason,
        )

    def get_position_multiplier_value(self, state: TradingState) -> float:
        return self.get_position_sizing(state).final_multiplier

    def is_entry_blocked(self, state: EntryValidationState) -> bool:
        return self.run_entry_validation(state).blocked

    def are_trading_conditions_favorable(
        self,
        state: EntryValidationState,
        min_multiplier: float = 0.30
    ) -> bool:
        result = self.run_entry_validation(state)
        return result.can_enter and result.final_position_multiplier >= min_multiplier

    def get_validation_summary(self, state: EntryValidationState) -> str:
        """One-line summary of a full validation run."""
        result = self.run_entry_validation(state)
        status = 'VALID' if result.can_enter else 'BLOCKED'
        breakdown = (
            f"R={result.regime_multiplier:.0%} "
            f"E={result.execution_quality:.0%} "
            f"C={result.congestion_multiplier:.0%}"
        )
        return f"{status} | Mult: {result.final_position_multiplier:.1%} ({breakdown}) | {result.reason}"
