"""Configuration management and presets.

This module provides configuration management through:
- RuntimeConfig: Runtime configuration from env vars, files, and CLI flags
- PresetConfig: Predefined configuration presets
- ConfigError: Exception for configuration errors
"""

from pr_review_resolver.config.exceptions import ConfigError
from pr_review_resolver.config.presets import PresetConfig
from pr_review_resolver.config.runtime_config import PRESET_NAMES, RuntimeConfig

__all__ = ["PRESET_NAMES", "ConfigError", "PresetConfig", "RuntimeConfig"]
