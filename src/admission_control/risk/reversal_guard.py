"""
ADMISSION CONTROL - Reversal Guard
===================================

Blocks entries made at the moment a liquidity-migration trend reverses.

Keeps a bounded per-opportunity tick history and an independent
per-opportunity cooldown record. Detection order:

1. Active cooldown          -> block (no tick recorded)
2. Record tick
3. Direction flip           -> block + cooldown
4. Sustained outflow        -> block
   Insufficient inflow run  -> block
5. Entropy instability      -> block + half cooldown
6. Otherwise allow

Version: 1.0
"""

import logging
import time
from collections import deque
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import ReversalGuardConfig
from ..core.types import (
    EntryValidationState,
    HistoryTick,
    MigrationDirection,
    PoolCooldownState,
    ReversalDetectionResult,
)
from ..core import metrics

logger = logging.getLogger(__name__)

GLOBAL_POOL = 'global'


def get_dominant_direction(directions: List[MigrationDirection]) -> MigrationDirection:
    """Strict majority over the other two directions, otherwise neutral."""
    if not directions:
        return MigrationDirection.NEUTRAL

    n_in = sum(1 for d in directions if d == MigrationDirection.IN)
    n_out = sum(1 for d in directions if d == MigrationDirection.OUT)
    n_neutral = len(directions) - n_in - n_out

    if n_in > n_out and n_in > n_neutral:
        return MigrationDirection.IN
    if n_out > n_in and n_out > n_neutral:
        return MigrationDirection.OUT
    return MigrationDirection.NEUTRAL


class ReversalGuard:
    """
    Per-opportunity history tracker and reversal detector.

    History and cooldowns are keyed by pool address and are independent
    of every other component.
    """

    def __init__(
        self,
        config: ReversalGuardConfig = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True
    ):
        if config is None:
            config = ReversalGuardConfig()

        self.config = config
        self.clock = clock
        self.enable_metrics = enable_metrics

        self._history: Dict[str, deque] = {}
        self._cooldowns: Dict[str, PoolCooldownState] = {}

    # ========================================================================
    # History
    # ========================================================================

    def record_tick(
        self,
        pool_address: str,
        migration_direction: MigrationDirection,
        entropy: float,
        liquidity_flow: float,
        velocity: Optional[float] = None
    ) -> HistoryTick:
        history = self._history.get(pool_address)
        if history is None:
            history = deque(maxlen=self.config.max_history)
            self._history[pool_address] = history

        tick = HistoryTick(
            timestamp=self.clock(),
            migration_direction=MigrationDirection.from_value(migration_direction),
            entropy=entropy,
            liquidity_flow=liquidity_flow,
            velocity=velocity,
        )
        history.append(tick)
        return tick

    def get_pool_history(self, pool_address: str) -> List[HistoryTick]:
        return list(self._history.get(pool_address, ()))

    def get_recent_ticks(self, pool_address: str, count: int = None) -> List[HistoryTick]:
        if count is None:
            count = self.config.recent_tick_count
        history = self.get_pool_history(pool_address)
        return history[-count:] if count > 0 else []

    def get_historical_ticks(
        self,
        pool_address: str,
        recent_count: int = None,
        historical_count: int = None
    ) -> List[HistoryTick]:
        """Ticks strictly before the recent window, up to historical_count of them."""
        if recent_count is None:
            recent_count = self.config.recent_tick_count
        if historical_count is None:
            historical_count = self.config.historical_tick_count

        history = self.get_pool_history(pool_address)
        end = max(0, len(history) - recent_count)
        start = max(0, end - historical_count)
        return history[start:end]

    def get_migration_direction_history(
        self,
        pool_address: str,
        count: int = None
    ) -> List[MigrationDirection]:
        history = self.get_pool_history(pool_address)
        if count:
            history = history[-count:]
        return [t.migration_direction for t in history]

    def clear_pool_history(self, pool_address: str):
        self._history.pop(pool_address, None)
        logger.debug(f"Cleared reversal history for {pool_address[:8]}...")

    def clear_all_history(self):
        self._history.clear()
        logger.info("Cleared all reversal guard history")

    # ========================================================================
    # Cooldowns
    # ========================================================================

    def set_cooldown(self, pool_address: str, duration_seconds: float, reason: str):
        self._cooldowns[pool_address] = PoolCooldownState(
            pool_address=pool_address,
            started_at=self.clock(),
            duration_seconds=duration_seconds,
            reason=reason,
        )
        logger.info(f"Cooldown set for {pool_address[:8]}...: {duration_seconds:.0f}s - {reason}")

    def is_in_cooldown(self, pool_address: str) -> bool:
        """Active iff now - started_at < duration; expired records are evicted."""
        state = self._cooldowns.get(pool_address)
        if state is None:
            return False

        if state.is_active(self.clock()):
            return True

        del self._cooldowns[pool_address]
        return False

    def get_remaining_cooldown(self, pool_address: str) -> float:
        state = self._cooldowns.get(pool_address)
        if state is None:
            return 0.0

        remaining = max(0.0, state.duration_seconds - (self.clock() - state.started_at))
        if remaining <= 0:
            del self._cooldowns[pool_address]
        return remaining

    def get_cooldown_state(self, pool_address: str) -> Optional[PoolCooldownState]:
        if not self.is_in_cooldown(pool_address):
            return None
        return self._cooldowns.get(pool_address)

    def clear_cooldown(self, pool_address: str):
        self._cooldowns.pop(pool_address, None)

    def clear_all_cooldowns(self):
        self._cooldowns.clear()
        logger.info("Cleared all reversal guard cooldowns")

    # ========================================================================
    # Analysis
    # ========================================================================

    def count_sustained_migrations(self, pool_address: str) -> Tuple[int, MigrationDirection]:
        """Consecutive same-direction ticks ending at the latest tick."""
        directions = self.get_migration_direction_history(pool_address)
        if not directions:
            return 0, MigrationDirection.NEUTRAL

        latest = directions[-1]
        count = 0
        for direction in reversed(directions):
            if direction != latest:
                break
            count += 1
        return count, latest

    def detect_direction_flip(
        self,
        pool_address: str
    ) -> Tuple[bool, MigrationDirection, MigrationDirection]:
        """
        Compare dominant direction of the recent and historical windows.

        A missing window (short history) means no flip is detectable.

        Returns:
            Tuple of (flipped, recent_direction, historical_direction)
        """
        recent = self.get_recent_ticks(pool_address)
        historical = self.get_historical_ticks(pool_address)

        if not recent or not historical:
            return False, MigrationDirection.NEUTRAL, MigrationDirection.NEUTRAL

        recent_dir = get_dominant_direction([t.migration_direction for t in recent])
        historical_dir = get_dominant_direction([t.migration_direction for t in historical])

        flipped = {recent_dir, historical_dir} == {MigrationDirection.IN, MigrationDirection.OUT}
        return flipped, recent_dir, historical_dir

    def infer_migration_direction(self, liquidity_flow: float) -> MigrationDirection:
        if liquidity_flow >= self.config.flow_in_threshold:
            return MigrationDirection.IN
        if liquidity_flow <= self.config.flow_out_threshold:
            return MigrationDirection.OUT
        return MigrationDirection.NEUTRAL

    def _entropy_change(self, ticks: List[HistoryTick]) -> float:
        """Relative entropy change between first and last tick (0 when undefined)."""
        if len(ticks) < 2:
            return 0.0
        first = ticks[0].entropy
        if first == 0:
            return 0.0
        return abs(ticks[-1].entropy - first) / first

    # ========================================================================
    # Detection
    # ========================================================================

    def detect_reversal(self, state: EntryValidationState) -> ReversalDetectionResult:
        """
        Run the reversal detection sequence for one opportunity tick.

        Args:
            state: Signal vector with pool_address and optional migration_direction

        Returns:
            ReversalDetectionResult
        """
        cfg = self.config
        pool = getattr(state, 'pool_address', None) or GLOBAL_POOL
        now = self.clock()

        if self.is_in_cooldown(pool):
            remaining = self.get_remaining_cooldown(pool)
            self._record_block('cooldown')
            return ReversalDetectionResult(
                should_block=True,
                reversal_detected=False,
                cooldown_seconds=remaining,
                cooldown_expires_at=now + remaining,
                reason=f"Pool in cooldown: {remaining:.0f}s remaining",
                recent_directions=self.get_migration_direction_history(pool, cfg.recent_tick_count),
                sustained_count=0,
                required_sustained=cfg.min_sustained_migrations,
            )

        direction = getattr(state, 'migration_direction', None)
        if direction is None:
            direction = self.infer_migration_direction(state.liquidity_flow)

        self.record_tick(pool, direction, state.entropy, state.liquidity_flow, state.velocity)
        recent_directions = self.get_migration_direction_history(pool, cfg.recent_tick_count)

        flipped, recent_dir, historical_dir = self.detect_direction_flip(pool)
        if flipped:
            duration = min(cfg.cooldown_seconds, cfg.max_cooldown_seconds)
            transition = f"{historical_dir.value} → {recent_dir.value}"
            self.set_cooldown(pool, duration, f"Direction flip: {transition}")
            logger.warning(f"Reversal detected for {pool[:8]}... - {transition}")
            self._record_block('reversal', reversal=True)
            return ReversalDetectionResult(
                should_block=True,
                reversal_detected=True,
                cooldown_seconds=duration,
                cooldown_expires_at=now + duration,
                reason=f"Reversal detected: {transition}",
                recent_directions=recent_directions,
                sustained_count=0,
                required_sustained=cfg.min_sustained_migrations,
            )

        count, sustained_dir = self.count_sustained_migrations(pool)

        if sustained_dir == MigrationDirection.OUT:
            self._record_block('outflow')
            return ReversalDetectionResult(
                should_block=True,
                reversal_detected=False,
                cooldown_seconds=0,
                reason=f"Migration direction is outflow ({count} consecutive)",
                recent_directions=recent_directions,
                sustained_count=count,
                required_sustained=cfg.min_sustained_migrations,
            )

        if sustained_dir == MigrationDirection.IN and count < cfg.min_sustained_migrations:
            self._record_block('insufficient')
            return ReversalDetectionResult(
                should_block=True,
                reversal_detected=False,
                cooldown_seconds=0,
                reason=f"Insufficient sustained migration: {count}/{cfg.min_sustained_migrations}",
                recent_directions=recent_directions,
                sustained_count=count,
                required_sustained=cfg.min_sustained_migrations,
            )

        change = self._entropy_change(self.get_recent_ticks(pool))
        if change > cfg.entropy_change_threshold:
            duration = min(cfg.cooldown_seconds * 0.5, cfg.max_cooldown_seconds)
            self.set_cooldown(pool, duration, f"Entropy instability: {change:.1%}")
            self._record_block('entropy')
            return ReversalDetectionResult(
                should_block=True,
                reversal_detected=False,
                cooldown_seconds=duration,
                cooldown_expires_at=now + duration,
                reason=f"Entropy instability: {change * 100:.1f}% change",
                recent_directions=recent_directions,
                sustained_count=count,
                required_sustained=cfg.min_sustained_migrations,
            )

        return ReversalDetectionResult(
            should_block=False,
            reversal_detected=False,
            cooldown_seconds=0,
            reason=(
                f"Sustained inflow: {count} consecutive "
                f"(≥{cfg.min_sustained_migrations} required)"
            ),
            recent_directions=recent_directions,
            sustained_count=count,
            required_sustained=cfg.min_sustained_migrations,
        )

    def should_block_entry_on_reversal(self, state: EntryValidationState) -> bool:
        return self.detect_reversal(state).should_block

    def _record_block(self, cause: str, reversal: bool = False):
        if not self.enable_metrics:
            return
        try:
            metrics.record_reversal_block(cause, reversal=reversal)
        except Exception as e:
            logger.debug(f"Metrics recording skipped: {e}")

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'tracked_pools': len(self._history),
            'active_cooldowns': sum(
                1 for s in self._cooldowns.values() if s.is_active(self.clock())
            ),
            'recent_tick_count': self.config.recent_tick_count,
            'historical_tick_count': self.config.historical_tick_count,
            'min_sustained_migrations': self.config.min_sustained_migrations,
        }

    def reset(self):
        self._history.clear()
        self._cooldowns.clear()
