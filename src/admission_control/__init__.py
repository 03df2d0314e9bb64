"""
Admission control for a liquidity-provisioning bot.

Decides whether a candidate entry may proceed and how large it may be:
confidence-gated capital capacity, reversal guarding, regime-confidence
sizing and an ordered entry validation pipeline.
"""

__version__ = "1.0.0"

from .core import *
from .engines import *
from .risk import *
