"""
Composed Proofs Configuration Loader.

Loads and manages configuration from config/composed_proofs.yaml with:
- Environment-specific overrides (``environments:`` section)
- Validation and defaults
- Singleton access pattern

Usage:
    from src.composed_proofs.config import get_composed_proof_config

    config = get_composed_proof_config()
    ttl = config.cache.ttl_seconds
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import BackoffStrategy, RetryPolicy

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION DATA CLASSES
# ============================================================================


@dataclass
class EngineSettings:
    """Scheduler defaults applied when a request leaves them unset."""

    default_max_parallelism: Optional[int] = None
    default_component_timeout_seconds: float = 120.0
    enable_caching: bool = True
    max_nesting_depth: int = 3
    register_builtin_templates: bool = True


@dataclass
class CacheSettings:
    ttl_seconds: float = 86400.0
    lock_stripes: int = 16


@dataclass
class RetrySettings:
    """Default retry policy."""

    max_retries: int = 1
    backoff_strategy: str = "FIXED"
    backoff_delay_seconds: float = 1.0
    retryable_errors: Optional[List[str]] = None

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_strategy=BackoffStrategy(self.backoff_strategy.upper()),
            backoff_delay_seconds=self.backoff_delay_seconds,
            retryable_errors=self.retryable_errors,
        )


@dataclass
class RetentionSettings:
    """Execution record retention."""

    retention_seconds: float = 3600.0
    max_executions: int = 1000


@dataclass
class BackendSettings:
    """Proving backend connection."""

    url_env: str = "ZK_PRET_SERVER_URL"
    default_url: str = "http://localhost:3001"
    execute_path: str = "/api/tools/execute"
    timeout_seconds: float = 300.0

    @property
    def url(self) -> str:
        """Backend URL from environment, falling back to default_url."""
        return os.getenv(self.url_env) or self.default_url


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================


@dataclass
class ComposedProofConfig:
    """Complete composed proof engine configuration."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    retention: RetentionSettings = field(default_factory=RetentionSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)

    _config_path: Optional[str] = None

    @classmethod
    def from_yaml(
        cls,
        config_path: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> "ComposedProofConfig":
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file (defaults to config/composed_proofs.yaml,
                or the COMPOSED_PROOFS_CONFIG env var when set)
            environment: Environment name for overrides (defaults to ENVIRONMENT env var)

        Returns:
            ComposedProofConfig instance
        """
        if config_path is None:
            config_path = os.getenv("COMPOSED_PROOFS_CONFIG")
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            config_path = str(project_root / "config" / "composed_proofs.yaml")

        if not Path(config_path).exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config file: {e}")
            return cls()

        env = (environment or os.getenv("ENVIRONMENT", "development")).lower()

        if "environments" in data and env in (data["environments"] or {}):
            data = _deep_merge(data, data["environments"][env])

        config = cls._parse_config(data)
        config._config_path = config_path

        logger.info(f"Loaded composed proof config from {config_path} (env: {env})")
        return config

    @classmethod
    def _parse_config(cls, data: Dict[str, Any]) -> "ComposedProofConfig":
        config = cls()
        if "engine" in data:
            config.engine = _parse_dataclass(EngineSettings, data["engine"])
        if "cache" in data:
            config.cache = _parse_dataclass(CacheSettings, data["cache"])
        if "retry" in data:
            config.retry = _parse_dataclass(RetrySettings, data["retry"])
        if "retention" in data:
            config.retention = _parse_dataclass(RetentionSettings, data["retention"])
        if "backend" in data:
            config.backend = _parse_dataclass(BackendSettings, data["backend"])
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": {
                "default_max_parallelism": self.engine.default_max_parallelism,
                "default_component_timeout_seconds": self.engine.default_component_timeout_seconds,
                "enable_caching": self.engine.enable_caching,
                "max_nesting_depth": self.engine.max_nesting_depth,
            },
            "cache": {"ttl_seconds": self.cache.ttl_seconds},
            "retry": {
                "max_retries": self.retry.max_retries,
                "backoff_strategy": self.retry.backoff_strategy,
                "backoff_delay_seconds": self.retry.backoff_delay_seconds,
            },
            "retention": {
                "retention_seconds": self.retention.retention_seconds,
                "max_executions": self.retention.max_executions,
            },
            "backend": {"url": self.backend.url, "timeout_seconds": self.backend.timeout_seconds},
            "config_path": self._config_path,
        }


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def _parse_dataclass(cls: type, data: Dict[str, Any]) -> Any:
    """Parse dictionary into dataclass, ignoring unknown fields."""
    if data is None:
        return cls()

    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered_data = {k: v for k, v in data.items() if k in valid_fields}

    return cls(**filtered_data)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in (override or {}).items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# ============================================================================
# SINGLETON ACCESS
# ============================================================================

_composed_proof_config: Optional[ComposedProofConfig] = None


def get_composed_proof_config(
    config_path: Optional[str] = None,
    environment: Optional[str] = None,
    force_reload: bool = False,
) -> ComposedProofConfig:
    """Get singleton ComposedProofConfig instance."""
    global _composed_proof_config

    if _composed_proof_config is None or force_reload:
        _composed_proof_config = ComposedProofConfig.from_yaml(config_path, environment)

    return _composed_proof_config


def reset_composed_proof_config() -> None:
    """Reset singleton instance (for testing)."""
    global _composed_proof_config
    _composed_proof_config = None
