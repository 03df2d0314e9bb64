"""
ADMISSION CONTROL - Adaptive Sizing Engine
===========================================

Maps a normalized TradingState signal vector to a regime position multiplier.

    r = 0.35*migration + 0.25*flow + 0.15*entropy + 0.15*consistency + 0.10*velocity
    regime_confidence = r ** 1.5
    multiplier = 0 if regime_confidence < 0.20 else clamp(regime_confidence, 0, 1.8)

Deterministic and side-effect free.

Version: 1.0
"""

import logging
import time
from typing import Callable, Optional

import numpy as np

from ..core.config import AdaptiveSizingConfig
from ..core.types import TradingState, RegimeMultiplierResult

logger = logging.getLogger(__name__)


def normalize_score(score: float) -> float:
    """Non-finite values become 0, everything else is clamped to [0, 1]."""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0.0
    if not np.isfinite(value):
        return 0.0
    return float(np.clip(value, 0.0, 1.0))


def _sizing_reason(regime_confidence: float, trading_blocked: bool, min_confidence: float) -> str:
    if trading_blocked:
        return f"BLOCKED: regime confidence {regime_confidence:.3f} < {min_confidence:.2f}"
    if regime_confidence >= 0.80:
        return f"NEAR-MAX: regime confidence {regime_confidence:.3f} ≥ 0.80"
    if regime_confidence >= 0.60:
        return f"LARGE: regime confidence {regime_confidence:.3f} ≥ 0.60"
    if regime_confidence >= 0.50:
        return f"MODERATE: regime confidence {regime_confidence:.3f} ≥ 0.50"
    return f"SCALED-DOWN: regime confidence {regime_confidence:.3f} < 0.50"


class AdaptiveSizingEngine:
    """
    Power-curve regime multiplier.

    The curve exaggerates strong regimes and suppresses weak ones; anything
    below min_regime_confidence is a hard block (multiplier 0).
    """

    def __init__(self, config: AdaptiveSizingConfig = None, clock: Callable[[], float] = time.time):
        if config is None:
            config = AdaptiveSizingConfig()

        self.config = config
        self.clock = clock
        self.weights = config.weights

    def compute_position_multiplier(self, state: TradingState) -> RegimeMultiplierResult:
        """
        Compute the regime multiplier for one signal vector.

        Args:
            state: TradingState (values outside [0, 1] or non-finite are normalized)

        Returns:
            RegimeMultiplierResult
        """
        w = self.weights

        raw_score = (
            normalize_score(state.migration_confidence) * w.migration_confidence +
            normalize_score(state.liquidity_flow) * w.liquidity_flow +
            normalize_score(state.entropy) * w.entropy +
            normalize_score(state.consistency) * w.consistency +
            normalize_score(state.velocity) * w.velocity
        )

        regime_confidence = float(raw_score ** self.config.power_exponent)
        trading_blocked = regime_confidence < self.config.min_regime_confidence

        if trading_blocked:
            multiplier = 0.0
        else:
            multiplier = float(np.clip(regime_confidence, 0.0, self.config.max_multiplier))

        return RegimeMultiplierResult(
            position_multiplier=multiplier,
            raw_score=raw_score,
            regime_confidence=regime_confidence,
            trading_blocked=trading_blocked,
            reason=_sizing_reason(regime_confidence, trading_blocked, self.config.min_regime_confidence),
            timestamp=self.clock(),
        )

    def get_position_multiplier(self, state: TradingState) -> float:
        return self.compute_position_multiplier(state).position_multiplier

    def is_trading_blocked(self, state: TradingState) -> bool:
        return self.get_position_multiplier(state) == 0

    def get_state(self) -> dict:
        return {
            'min_regime_confidence': self.config.min_regime_confidence,
            'max_multiplier': self.config.max_multiplier,
            'power_exponent': self.config.power_exponent,
            'weights': vars(self.weights).copy(),
        }


_default_engine = AdaptiveSizingEngine()


def compute_multiplier_value(state: TradingState, config: Optional[AdaptiveSizingConfig] = None) -> float:
    """Regime multiplier as a bare float."""
    engine = _default_engine if config is None else AdaptiveSizingEngine(config)
    return engine.get_position_multiplier(state)


def get_position_multiplier(state: TradingState) -> float:
    return compute_multiplier_value(state)


def is_trading_blocked(state: TradingState) -> bool:
    return get_position_multiplier(state) == 0


def create_trading_state(
    entropy: float = 0.0,
    liquidity_flow: float = 0.0,
    migration_confidence: float = 0.0,
    consistency: float = 0.0,
    velocity: float = 0.0,
    execution_quality: float = 1.0,
) -> TradingState:
    """Build a TradingState with zero defaults (execution_quality defaults to 1)."""
    return TradingState(
        entropy=entropy,
        liquidity_flow=liquidity_flow,
        migration_confidence=migration_confidence,
        consistency=consistency,
        velocity=velocity,
        execution_quality=execution_quality,
    )
