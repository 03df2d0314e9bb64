"""Sizing and entry validation engines"""

# Regime-confidence position multiplier
from .adaptive_sizing import (
    AdaptiveSizingEngine,
    compute_multiplier_value,
    create_trading_state,
    normalize_score,
)

# Execution and network collaborators
from .execution_quality import ExecutionQualityTracker
from .congestion import CongestionTracker

# Ordered guard chain
from .entry_validation import (
    EntryValidationPipeline,
    create_entry_validation_state,
    permissive_no_trade_check,
)
