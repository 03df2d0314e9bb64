"""Capital, confidence and reversal risk controls"""
from .confidence_score import (
    ConfidenceScoreCalculator,
    compute_confidence_score,
    check_unlock_conditions,
)
from .capital_manager import CapitalManager
from .reversal_guard import ReversalGuard, get_dominant_direction, GLOBAL_POOL
from .capital_integration import CapitalIntegration
