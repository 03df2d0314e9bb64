"""Core modules for the admission-control layer"""
from .types import *
from .config_manager import ConfigManager

from .config import (
    ConfidenceWeights,
    UnlockThresholds,
    ConfidenceConfig,
    CapitalConfig,
    ReversalGuardConfig,
    AdaptiveSizingWeights,
    AdaptiveSizingConfig,
    EntryValidationConfig,
    ExecutionQualityWeights,
    ExecutionQualityConfig,
    CongestionWeights,
    CongestionConfig,
    AdmissionConfig,
    DEFAULT_ENTRY_VALIDATION_CONFIG,
    CONSERVATIVE_ENTRY_VALIDATION_CONFIG,
    AGGRESSIVE_ENTRY_VALIDATION_CONFIG,
    CONSERVATIVE_CONGESTION_CONFIG,
    create_entry_validation_config,
    validate_admission_config,
)
