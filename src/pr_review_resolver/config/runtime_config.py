"""Runtime configuration management with environment variable and file support.

This module provides the RuntimeConfig system for managing application configuration
from multiple sources: defaults, config files (YAML/TOML), environment variables,
and CLI flags. Configuration precedence: CLI flags > env vars > config file > defaults.
"""

import logging
import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from pr_review_resolver.config.exceptions import ConfigError
from pr_review_resolver.config.presets import PresetConfig

if sys.version_info >= (3, 11):  # noqa: UP036
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

# Available configuration presets
PRESET_NAMES = {"conservative", "balanced", "fast"}

DEFAULT_API_URL = "https://api.github.com"


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Runtime configuration for the PR review resolver.

    This immutable configuration dataclass manages application settings from multiple
    sources with proper precedence. All fields are validated during initialization.

    Attributes:
        github_api_url: Base URL of the GitHub REST API.
        github_token: Token used to authenticate API requests. Never logged.
        request_timeout: Per-request timeout in seconds.
        request_retries: Automatic retries of failed GET requests (5xx, 429).
            Zero by default so every failure surfaces to the caller; writes
            are never retried.
        parallel_fetch: Read both sides of candidate files concurrently while
            discovering conflicts. Commits are always sequential.
        max_workers: Maximum number of worker threads for parallel fetches.
        retain_draft_on_failure: Keep a pending review's comments when the
            host rejects its submission.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to log file. If None, logs to stderr only.

    Example:
        >>> config = RuntimeConfig.from_env()
        >>> config = config.merge_with_cli(parallel_fetch=True, max_workers=8)
        >>> print(f"Parallel: {config.parallel_fetch}, workers: {config.max_workers}")
        Parallel: True, workers: 8
    """

    github_api_url: str = DEFAULT_API_URL
    github_token: str | None = field(default=None, repr=False)
    request_timeout: int = 30
    request_retries: int = 0
    parallel_fetch: bool = False
    max_workers: int = 4
    retain_draft_on_failure: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Raises:
            ConfigError: If any configuration value is invalid.
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level not in valid_levels:
            raise ConfigError(f"Invalid log level: {self.log_level}. Must be one of {valid_levels}")

        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.max_workers > 32:
            logger.warning(
                f"max_workers={self.max_workers} is very high. "
                f"Consider using <= 16 to stay clear of secondary rate limits."
            )

        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.request_retries < 0:
            raise ConfigError(f"request_retries must be >= 0, got {self.request_retries}")

        if not self.github_api_url.startswith(("https://", "http://")):
            raise ConfigError(f"github_api_url must be an http(s) URL, got '{self.github_api_url}'")

    @classmethod
    def from_defaults(cls) -> "RuntimeConfig":
        """Create configuration with default values.

        Returns:
            RuntimeConfig with safe default values.

        Example:
            >>> config = RuntimeConfig.from_defaults()
            >>> assert config.parallel_fetch is False
            >>> assert config.max_workers == 4
        """
        return cls()

    @classmethod
    def from_preset(cls, name: str) -> "RuntimeConfig":
        """Create configuration from a named preset.

        Args:
            name: One of ``conservative``, ``balanced`` or ``fast``.

        Returns:
            RuntimeConfig with the preset's settings applied over the defaults.

        Raises:
            ConfigError: If the preset name is unknown.
        """
        try:
            preset = PresetConfig.get(name)
        except KeyError as e:
            raise ConfigError(
                f"Unknown preset '{name}'. Must be one of {sorted(PRESET_NAMES)}"
            ) from e
        return replace(cls.from_defaults(), **preset)

    @classmethod
    def from_env(cls, base: "RuntimeConfig | None" = None) -> "RuntimeConfig":
        """Create configuration from environment variables.

        Loads configuration from environment variables with PRR_ prefix:
        - PRR_GITHUB_API_URL: API base URL (default: "https://api.github.com")
        - PRR_GITHUB_TOKEN: API token (falls back to GITHUB_TOKEN)
        - PRR_TIMEOUT: Request timeout in seconds (default: "30")
        - PRR_RETRIES: Retries of failed GET requests (default: "0")
        - PRR_PARALLEL: Parallel candidate fetches (default: "false")
        - PRR_MAX_WORKERS: Max worker threads (default: "4")
        - PRR_RETAIN_DRAFT: Keep drafts after a failed submit (default: "false")
        - PRR_LOG_LEVEL: Logging level (default: "INFO")
        - PRR_LOG_FILE: Log file path (default: None)

        Args:
            base: Configuration supplying values for unset variables. Defaults
                to ``from_defaults()``; pass a file-loaded config to layer env
                vars over it.

        Returns:
            RuntimeConfig loaded from environment variables.

        Raises:
            ConfigError: If environment variable has invalid value.

        Example:
            >>> os.environ["PRR_PARALLEL"] = "true"
            >>> config = RuntimeConfig.from_env()
            >>> assert config.parallel_fetch is True
        """
        defaults = base or cls.from_defaults()

        # Parse boolean values
        def parse_bool(env_var: str, default: bool) -> bool:
            """Parse boolean environment variable."""
            value = os.getenv(env_var, str(default)).lower()
            if value in ("true", "1", "yes", "on"):
                return True
            if value in ("false", "0", "no", "off"):
                return False
            raise ConfigError(
                f"Invalid {env_var}='{value}'. Must be true/false, 1/0, yes/no, or on/off"
            )

        # Parse integer values
        def parse_int(env_var: str, default: int, min_value: int = 1) -> int:
            """Parse integer environment variable."""
            value_str = os.getenv(env_var, str(default))
            try:
                value = int(value_str)
            except ValueError as e:
                raise ConfigError(f"Invalid {env_var}='{value_str}'. Must be an integer") from e
            if value < min_value:
                raise ConfigError(f"{env_var}={value} must be >= {min_value}")
            return value

        return cls(
            github_api_url=os.getenv("PRR_GITHUB_API_URL", defaults.github_api_url),
            github_token=(
                os.getenv("PRR_GITHUB_TOKEN") or os.getenv("GITHUB_TOKEN") or defaults.github_token
            ),
            request_timeout=parse_int("PRR_TIMEOUT", defaults.request_timeout),
            request_retries=parse_int("PRR_RETRIES", defaults.request_retries, min_value=0),
            parallel_fetch=parse_bool("PRR_PARALLEL", defaults.parallel_fetch),
            max_workers=parse_int("PRR_MAX_WORKERS", defaults.max_workers, min_value=1),
            retain_draft_on_failure=parse_bool(
                "PRR_RETAIN_DRAFT", defaults.retain_draft_on_failure
            ),
            log_level=os.getenv("PRR_LOG_LEVEL", defaults.log_level).upper(),
            log_file=os.getenv("PRR_LOG_FILE") or defaults.log_file,
        )

    @classmethod
    def from_file(cls, config_path: Path) -> "RuntimeConfig":
        """Load configuration from YAML or TOML file.

        Supports both YAML (.yaml, .yml) and TOML (.toml) formats.

        Args:
            config_path: Path to configuration file (YAML or TOML).

        Returns:
            RuntimeConfig loaded from file.

        Raises:
            ConfigError: If file doesn't exist, has invalid format, or contains invalid values.

        Example:
            >>> config = RuntimeConfig.from_file(Path("prr.yaml"))
            >>> config = RuntimeConfig.from_file(Path("/etc/prr/config.toml"))
        """
        try:
            config_path = Path(config_path).resolve()
        except (OSError, ValueError) as e:
            raise ConfigError(f"Invalid config file path: {e}") from e

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        if not config_path.is_file():
            raise ConfigError(f"Config path is not a file: {config_path}")

        suffix = config_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            return cls._load_from_yaml(config_path)
        elif suffix == ".toml":
            return cls._load_from_toml(config_path)
        else:
            raise ConfigError(
                f"Unsupported config file format: {suffix}. Must be .yaml, .yml, or .toml"
            )

    @classmethod
    def _load_from_yaml(cls, config_path: Path) -> "RuntimeConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigError: If YAML is malformed or contains invalid values.
        """
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping/dict, got {type(data).__name__}")

        return cls._from_dict(data, config_path)

    @classmethod
    def _load_from_toml(cls, config_path: Path) -> "RuntimeConfig":
        """Load configuration from TOML file.

        Raises:
            ConfigError: If TOML is malformed or contains invalid values.
        """
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read {config_path}: {e}") from e

        return cls._from_dict(data, config_path)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], source: Path) -> "RuntimeConfig":
        """Create RuntimeConfig from dictionary (internal helper).

        Recognized layout::

            preset: balanced
            github: {api_url: ..., timeout: 30, retries: 0}
            fetch: {parallel: true, max_workers: 8}   # or fetch: true
            review: {retain_draft_on_failure: true}
            logging: {level: DEBUG, file: prr.log}

        Tokens are deliberately not read from files; use the environment.

        Raises:
            ConfigError: If dictionary contains invalid values.
        """
        preset_name = data.get("preset")
        defaults = cls.from_preset(preset_name) if preset_name else cls.from_defaults()

        github = data.get("github", {})
        if not isinstance(github, dict):
            raise ConfigError(f"Invalid github type in {source}: {type(github).__name__}")
        if "token" in github:
            logger.warning(f"Ignoring github.token in {source}; set GITHUB_TOKEN instead")

        fetch = data.get("fetch", {})
        if isinstance(fetch, dict):
            parallel_fetch = fetch.get("parallel", defaults.parallel_fetch)
            max_workers = fetch.get("max_workers", defaults.max_workers)
        elif isinstance(fetch, bool):
            parallel_fetch = fetch
            max_workers = defaults.max_workers
        else:
            raise ConfigError(f"Invalid fetch type in {source}: {type(fetch).__name__}")

        review = data.get("review", {})
        if isinstance(review, dict):
            retain_draft = review.get("retain_draft_on_failure", defaults.retain_draft_on_failure)
        else:
            raise ConfigError(f"Invalid review type in {source}: {type(review).__name__}")

        logging_config = data.get("logging", {})
        if isinstance(logging_config, dict):
            log_level = logging_config.get("level", defaults.log_level)
            log_file = logging_config.get("file", defaults.log_file)
        else:
            log_level = defaults.log_level
            log_file = defaults.log_file

        try:
            return cls(
                github_api_url=str(github.get("api_url", defaults.github_api_url)),
                github_token=defaults.github_token,
                request_timeout=int(github.get("timeout", defaults.request_timeout)),
                request_retries=int(github.get("retries", defaults.request_retries)),
                parallel_fetch=bool(parallel_fetch),
                max_workers=int(max_workers),
                retain_draft_on_failure=bool(retain_draft),
                log_level=str(log_level).upper(),
                log_file=str(log_file) if log_file else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {source}: {e}") from e

    def merge_with_cli(self, **overrides: Any) -> "RuntimeConfig":  # noqa: ANN401
        """Create new config with CLI flag overrides.

        CLI flags take precedence over environment variables and config files.
        Only non-None values are applied.

        Args:
            **overrides: Keyword arguments matching RuntimeConfig fields.
                        None values are ignored (no override).

        Returns:
            New RuntimeConfig with overrides applied.

        Raises:
            ConfigError: If override value is invalid.

        Example:
            >>> config = RuntimeConfig.from_env()
            >>> config = config.merge_with_cli(parallel_fetch=True, log_level=None)
        """
        filtered_overrides = {k: v for k, v in overrides.items() if v is not None}

        known = {f.name for f in fields(self)}
        unknown = set(filtered_overrides) - known
        if unknown:
            raise ConfigError(f"Unknown configuration fields: {sorted(unknown)}")

        if "log_level" in filtered_overrides:
            filtered_overrides["log_level"] = str(filtered_overrides["log_level"]).upper()

        return replace(self, **filtered_overrides)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary with the token redacted.

        Example:
            >>> config = RuntimeConfig.from_defaults()
            >>> data = config.to_dict()
            >>> assert data["parallel_fetch"] is False
            >>> assert data["github_token"] is None
        """
        return {
            "github_api_url": self.github_api_url,
            "github_token": "***" if self.github_token else None,
            "request_timeout": self.request_timeout,
            "request_retries": self.request_retries,
            "parallel_fetch": self.parallel_fetch,
            "max_workers": self.max_workers,
            "retain_draft_on_failure": self.retain_draft_on_failure,
            "log_level": self.log_level,
            "log_file": self.log_file,
        }
