"""
ADMISSION CONTROL - Hot-Reload Configuration Manager
=====================================================

File watcher-based configuration manager with validation and callbacks.

Features:
- Watch admission_config.yaml for changes
- Reload without restart (validation before applying)
- Callback notification on config change
- Thread-safe access
- Invalid files keep the previous configuration

Version: 1.0
"""

import yaml
import time
import os
from pathlib import Path
from typing import Dict, Callable, Optional, Any, List
from threading import Thread, Lock
import logging

from .config import AdmissionConfig, validate_admission_config
from .types import ConfigurationException

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Hot-reload configuration manager for the admission-control core.

    Holds both the raw YAML mapping (for dot-path lookups) and the typed
    AdmissionConfig built from it.
    """

    def __init__(self, config_path: str = "config/admission_config.yaml", poll_interval: int = 5):
        """
        Initialize config manager.

        Args:
            config_path: Path to configuration file
            poll_interval: Polling interval in seconds
        """
        self.config_path = Path(config_path)
        self.poll_interval = poll_interval

        self._config: Dict = {}
        self._admission_config = AdmissionConfig()
        self._lock = Lock()
        self._last_modified = 0.0
        self._callbacks: List[Callable[[Dict, Dict], None]] = []
        self._watcher_thread: Optional[Thread] = None
        self._running = False

        self.reload_config()

    def load_config(self) -> Dict:
        """Load config from YAML file."""
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f) or {}
            logger.info(f"Loaded config from {self.config_path}")
            return config
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}")
            return {}

    def validate_config(self, config: Dict) -> bool:
        """
        Validate config structure before applying.

        Args:
            config: Configuration dictionary

        Returns:
            True if valid, False otherwise
        """
        if not isinstance(config, dict):
            logger.error(f"Config root must be a mapping, got {type(config).__name__}")
            return False

        try:
            parsed = AdmissionConfig.from_dict(config)
        except (ConfigurationException, TypeError) as e:
            logger.error(f"Invalid config structure: {e}")
            return False

        errors = validate_admission_config(parsed)
        for error in errors:
            logger.error(f"Config validation error: {error}")

        return not errors

    def reload_config(self) -> bool:
        """
        Reload config if file changed.

        Returns:
            True if reloaded, False if no change or error
        """
        try:
            if not self.config_path.exists():
                logger.warning(f"Config file not found: {self.config_path}")
                return False

            current_mtime = os.path.getmtime(self.config_path)
            if current_mtime <= self._last_modified:
                return False

            new_config = self.load_config()

            if not self.validate_config(new_config):
                logger.error("Config validation failed. Keeping previous config.")
                return False

            with self._lock:
                old_config = self._config
                self._config = new_config
                self._admission_config = AdmissionConfig.from_dict(new_config)
                self._last_modified = current_mtime

            logger.info(f"Config reloaded successfully at {time.time()}")

            self._notify_callbacks(old_config, new_config)
            return True

        except Exception as e:
            logger.error(f"Error reloading config: {e}")
            return False

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get config value by dot-separated path.

        Example:
            >>> config.get('capital.hard_reserve_pct')
            0.35
        """
        with self._lock:
            value = self._config
            for key in key_path.split('.'):
                if isinstance(value, dict):
                    value = value.get(key)
                else:
                    return default

            return value if value is not None else default

    def get_admission_config(self) -> AdmissionConfig:
        """Typed configuration built from the last valid file (defaults if none)."""
        with self._lock:
            return self._admission_config

    def register_callback(self, callback: Callable[[Dict, Dict], None]):
        """
        Register callback for config changes.

        Args:
            callback: Function(old_config, new_config) -> None
        """
        self._callbacks.append(callback)
        logger.debug(f"Registered callback: {getattr(callback, '__name__', callback)}")

    def _notify_callbacks(self, old_config: Dict, new_config: Dict):
        """Notify registered callbacks of config change."""
        for callback in self._callbacks:
            try:
                callback(old_config, new_config)
            except Exception as e:
                logger.error(f"Callback error in {getattr(callback, '__name__', callback)}: {e}")

    def start_watcher(self):
        """Start background thread to watch for config changes."""
        if self._watcher_thread is not None:
            logger.warning("Config watcher already running")
            return

        self._running = True
        self._watcher_thread = Thread(target=self._watch_loop, daemon=True)
        self._watcher_thread.start()
        logger.info(f"Config watcher started (poll interval: {self.poll_interval}s)")

    def stop_watcher(self):
        """Stop config watcher thread."""
        self._running = False
        if self._watcher_thread is not None:
            self._watcher_thread.join(timeout=self.poll_interval + 1)
            self._watcher_thread = None
        logger.info("Config watcher stopped")

    def _watch_loop(self):
        while self._running:
            self.reload_config()
            time.sleep(self.poll_interval)

    def get_all(self) -> Dict:
        """Get complete configuration (thread-safe)."""
        with self._lock:
            return self._config.copy()

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'config_path': str(self.config_path),
            'config_exists': self.config_path.exists(),
            'last_modified': self._last_modified,
            'watcher_running': self._running,
            'callback_count': len(self._callbacks),
            'poll_interval_sec': self.poll_interval
        }
