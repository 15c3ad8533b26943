"""
numtab Config - Behaviour Configuration System

Provides property-based configuration for allocation, casting and data
source behaviour. Settings can be changed globally or overridden for the
current thread inside a ``config.local(...)`` block.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Any, List
import threading


# =============================================================================
# Configuration Classes
# =============================================================================

@dataclass
class AllocationConfig:
    """Configuration for storage allocation."""
    zero_fill: bool = True         # Zero-fill freshly allocated storage


@dataclass
class CastConfig:
    """Configuration for narrowing casts."""
    report_clamping: bool = False  # Log a warning when narrowing clamps values


@dataclass
class DataSourceConfig:
    """Configuration for text data sources."""
    delimiter: str = ","
    initial_max_rows: int = 10     # Growth step when loading all rows
    infer_categorical: bool = True # Map non-numeric tokens to category codes


# =============================================================================
# Global Configuration Manager
# =============================================================================

class NumTabConfig:
    """
    Global configuration manager for numtab.

    Provides thread-local configuration with context manager support.
    Configuration can be set globally or locally within a context.

    Example:
        # Global configuration
        numtab.config.allocation = AllocationConfig(zero_fill=False)

        # Local configuration (context manager)
        with numtab.config.local(cast=CastConfig(report_clamping=True)):
            table.release_block_of_rows(0, 2, block)
        # Back to global config
    """

    _SECTIONS = ("allocation", "cast", "data_source")

    def __init__(self):
        self._global_allocation = AllocationConfig()
        self._global_cast = CastConfig()
        self._global_data_source = DataSourceConfig()

        # Thread-local storage for context overrides
        self._local = threading.local()

        # Callbacks for config changes
        self._callbacks: Dict[str, List[Callable]] = {
            name: [] for name in self._SECTIONS
        }

    # -------------------------------------------------------------------------
    # Property Accessors (with thread-local override support)
    # -------------------------------------------------------------------------

    @property
    def allocation(self) -> AllocationConfig:
        """Get allocation configuration."""
        if getattr(self._local, "allocation", None) is not None:
            return self._local.allocation
        return self._global_allocation

    @allocation.setter
    def allocation(self, value: AllocationConfig):
        """Set global allocation configuration."""
        self._global_allocation = value
        self._notify("allocation", value)

    @property
    def cast(self) -> CastConfig:
        """Get cast configuration."""
        if getattr(self._local, "cast", None) is not None:
            return self._local.cast
        return self._global_cast

    @cast.setter
    def cast(self, value: CastConfig):
        """Set global cast configuration."""
        self._global_cast = value
        self._notify("cast", value)

    @property
    def data_source(self) -> DataSourceConfig:
        """Get data source configuration."""
        if getattr(self._local, "data_source", None) is not None:
            return self._local.data_source
        return self._global_data_source

    @data_source.setter
    def data_source(self, value: DataSourceConfig):
        """Set global data source configuration."""
        self._global_data_source = value
        self._notify("data_source", value)

    # -------------------------------------------------------------------------
    # Context Manager Support
    # -------------------------------------------------------------------------

    def local(self, **kwargs) -> "_LocalConfigContext":
        """
        Create a local configuration context.

        Args:
            **kwargs: Configuration overrides (allocation, cast, data_source)

        Returns:
            Context manager

        Raises:
            KeyError: If an unknown section name is given.
        """
        for key in kwargs:
            if key not in self._SECTIONS:
                raise KeyError(f"Unknown config section: {key!r}")
        return _LocalConfigContext(self, **kwargs)

    def _set_local(self, **kwargs) -> Dict[str, Any]:
        """Set thread-local configuration, returning the previous overrides."""
        previous = {}
        for key, value in kwargs.items():
            previous[key] = getattr(self._local, key, None)
            if value is not None:
                setattr(self._local, key, value)
        return previous

    def _restore_local(self, previous: Dict[str, Any]):
        """Restore thread-local overrides saved by ``_set_local``."""
        for key, value in previous.items():
            setattr(self._local, key, value)

    # -------------------------------------------------------------------------
    # Callback Registration
    # -------------------------------------------------------------------------

    def on_change(self, config_name: str, callback: Callable):
        """
        Register callback for configuration changes.

        Args:
            config_name: Name of config ("allocation", "cast", "data_source")
            callback: Function to call when config changes
        """
        if config_name in self._callbacks:
            self._callbacks[config_name].append(callback)

    def _notify(self, config_name: str, value: Any):
        for callback in self._callbacks.get(config_name, []):
            callback(value)

    # -------------------------------------------------------------------------
    # Reset
    # -------------------------------------------------------------------------

    def reset(self):
        """Reset all configurations to defaults."""
        self._global_allocation = AllocationConfig()
        self._global_cast = CastConfig()
        self._global_data_source = DataSourceConfig()

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return {
            "allocation": {
                "zero_fill": self.allocation.zero_fill,
            },
            "cast": {
                "report_clamping": self.cast.report_clamping,
            },
            "data_source": {
                "delimiter": self.data_source.delimiter,
                "initial_max_rows": self.data_source.initial_max_rows,
                "infer_categorical": self.data_source.infer_categorical,
            },
        }

    def __repr__(self) -> str:
        return f"NumTabConfig({self.to_dict()})"


class _LocalConfigContext:
    """Context manager for local configuration override."""

    def __init__(self, config: NumTabConfig, **kwargs):
        self._config = config
        self._kwargs = kwargs
        self._previous: Dict[str, Any] = {}

    def __enter__(self):
        self._previous = self._config._set_local(**self._kwargs)
        return self._config

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._config._restore_local(self._previous)
        return False


# =============================================================================
# Global Instance
# =============================================================================

config = NumTabConfig()


def get_config() -> NumTabConfig:
    """Get the global configuration instance."""
    return config


__all__ = [
    "AllocationConfig",
    "CastConfig",
    "DataSourceConfig",
    "NumTabConfig",
    "config",
    "get_config",
]
