"""
ADMISSION CONTROL - Capital Integration
========================================

Bridge between the scan loop and the Capital Manager / Confidence Score
Calculator. Owns the per-cycle update order:

    equity -> regime -> cooldown -> market metrics -> complete_cycle
    -> update_confidence -> periodic status log -> invariant check

Version: 1.0
"""

import logging
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

from ..core.config import AdmissionConfig
from ..core.types import AdaptiveSizeDecision, Regime
from .capital_manager import CapitalManager
from .confidence_score import ConfidenceScoreCalculator

logger = logging.getLogger(__name__)


class CapitalIntegration:
    """
    Owns one CapitalManager and one ConfidenceScoreCalculator and drives
    them in a consistent once-per-cycle order.
    """

    def __init__(
        self,
        config: AdmissionConfig = None,
        capital_manager: CapitalManager = None,
        confidence: ConfidenceScoreCalculator = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True
    ):
        if config is None:
            config = AdmissionConfig()

        self.config = config
        self.clock = clock
        self.capital_manager = capital_manager if capital_manager is not None else CapitalManager(
            config=config.capital,
            confidence_config=config.confidence,
            clock=clock,
            enable_metrics=enable_metrics,
        )
        self.confidence = confidence if confidence is not None else ConfidenceScoreCalculator(
            config=config.confidence,
            clock=clock,
            enable_metrics=enable_metrics,
        )

        self.initialized = False
        self.cycle_count = 0
        self.last_status_log_time = 0.0

    def initialize(
        self,
        initial_equity_usd: float,
        existing_positions: Optional[Iterable[Tuple[str, float]]] = None
    ):
        """
        Reset capital state and optionally restore open positions.

        Args:
            initial_equity_usd: Seed equity
            existing_positions: Iterable of (pool_address, size_usd)
        """
        self.capital_manager.reset(initial_equity_usd)

        positions = list(existing_positions or [])
        if positions:
            self.capital_manager.sync_deployments(positions)

        self.initialized = True
        self.cycle_count = 0
        self.last_status_log_time = self.clock()

        logger.info(
            f"Capital integration initialized with equity=${initial_equity_usd:,.2f} "
            f"positions={len(positions)}"
        )

    def is_initialized(self) -> bool:
        return self.initialized

    def update_cycle(
        self,
        equity_usd: float,
        regime,
        kill_switch_active: bool,
        cooldown_end_time: float,
        market_health: float,
        alive_ratio: float
    ):
        """Run one decision cycle of capital bookkeeping."""
        if not self.initialized:
            logger.warning("Capital integration not initialized, skipping cycle update")
            return

        self.cycle_count += 1
        cm = self.capital_manager

        cm.update_equity(equity_usd)
        cm.update_regime(Regime.from_value(regime))
        cm.set_cooldown_state(kill_switch_active, cooldown_end_time)

        self.confidence.record_market_metrics(market_health, alive_ratio)
        self.confidence.complete_cycle()
        cm.update_confidence(self.confidence.compute_confidence_inputs())

        now = self.clock()
        if now - self.last_status_log_time >= self.config.capital.status_log_interval_sec:
            self.log_full_capital_status()
            self.last_status_log_time = now

        valid, errors = cm.assert_capital_invariants()
        if not valid:
            logger.error(f"Invariant violations: {' | '.join(errors)}")

    def get_adaptive_position_size(
        self,
        pool_address: str,
        pool_name: str,
        pool_tvl: float,
        entry_fees_usd: float,
        exit_fees_usd: float,
        slippage_usd: float,
        observed_fee_rate: Optional[float] = None
    ) -> AdaptiveSizeDecision:
        """
        Chain compute_position_size and check_capital_availability.

        pool_tvl is accepted for caller compatibility and not used in sizing.
        """
        if not self.initialized:
            return AdaptiveSizeDecision(
                size_usd=0.0,
                allowed=False,
                reason='Capital integration not initialized',
            )

        sizing = self.capital_manager.compute_position_size(
            pool_address,
            pool_name,
            entry_fees_usd,
            exit_fees_usd,
            slippage_usd,
            observed_fee_rate,
        )

        if sizing.skip_entry:
            return AdaptiveSizeDecision(
                size_usd=0.0,
                allowed=False,
                reason=sizing.skip_reason or 'Amortization not viable',
                sizing=sizing,
            )

        check = self.capital_manager.check_capital_availability(pool_address, sizing.recommended_size_usd)

        return AdaptiveSizeDecision(
            size_usd=check.adjusted_size_usd if check.allowed else 0.0,
            allowed=check.allowed,
            reason=check.reason,
            sizing=sizing,
            check=check,
        )

    def record_position_entry(self, pool_address: str, size_usd: float):
        if not self.initialized:
            return
        self.capital_manager.record_deployment(pool_address, size_usd)

    def record_position_exit(
        self,
        pool_address: str,
        size_usd: float,
        fees_accrued_usd: float,
        hold_time_sec: float
    ):
        """Release capital and feed realized fees into amortization history."""
        if not self.initialized:
            return

        self.capital_manager.record_exit(pool_address, size_usd)

        if fees_accrued_usd > 0 and hold_time_sec > 0:
            self.capital_manager.record_pool_fee_history(
                pool_address, fees_accrued_usd, hold_time_sec, size_usd
            )

    # ========================================================================
    # Accessors
    # ========================================================================

    def get_min_position_size_usd(self) -> float:
        return self.config.capital.min_position_usd

    def get_target_position_size_usd(self, regime) -> float:
        regime = Regime.from_value(regime)
        cfg = self.config.capital
        if regime == Regime.BULL:
            return cfg.target_size_bull_usd
        if regime == Regime.BEAR:
            return cfg.target_size_bear_usd
        return cfg.target_size_neutral_usd

    def get_dynamic_deploy_cap_pct(self) -> float:
        return self.capital_manager.get_dynamic_deploy_cap_pct()

    def get_per_pool_max_cap_pct(self) -> float:
        return self.capital_manager.get_per_pool_max_pct()

    def is_max_capacity_unlocked(self) -> bool:
        return self.capital_manager.get_state().confidence_unlocked

    def get_confidence_score(self) -> float:
        return self.capital_manager.get_state().confidence_score

    def get_full_capital_state(self) -> Dict:
        return {
            'state': self.capital_manager.get_state().to_dict(),
            'confidence': self.confidence.get_confidence_summary(),
            'cycle_count': self.cycle_count,
        }

    def log_full_capital_status(self):
        self.capital_manager.log_capital_manager_status()
        self.confidence.log_confidence_breakdown()

    # ========================================================================
    # Deprecated
    # ========================================================================

    def legacy_calculate_position_size(
        self,
        pool_address: str,
        pool_name: str,
        equity: float,
        balance: float,
        pool_tvl: float,
        micro_score: float,
        regime
    ) -> Dict:
        """
        Deprecated: use get_adaptive_position_size.

        Estimates costs from equity (0.3% entry, 0.3% exit, 0.2% slippage)
        and delegates. balance, micro_score and regime are ignored.
        """
        logger.debug("legacy_calculate_position_size is deprecated")
        result = self.get_adaptive_position_size(
            pool_address,
            pool_name,
            pool_tvl,
            equity * 0.003,
            equity * 0.003,
            equity * 0.002,
        )
        return {
            'size': result.size_usd,
            'blocked': not result.allowed,
            'reason': result.reason,
        }
