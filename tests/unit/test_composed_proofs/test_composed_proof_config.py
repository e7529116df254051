"""
Tests for composed proof configuration loading.

Covers:
- Defaults when the file is missing or unreadable
- Environment overrides
- Singleton access
"""

from pathlib import Path

import pytest

from src.composed_proofs.config import (
    ComposedProofConfig,
    get_composed_proof_config,
    reset_composed_proof_config,
)
from src.composed_proofs.models import BackoffStrategy

PROJECT_CONFIG = Path(__file__).parents[3] / "config" / "composed_proofs.yaml"


@pytest.fixture(autouse=True)
def reset_config():
    reset_composed_proof_config()
    yield
    reset_composed_proof_config()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "composed_proofs.yaml"
    path.write_text(
        """
engine:
  default_max_parallelism: 4
  unknown_key: ignored
cache:
  ttl_seconds: 120
retry:
  max_retries: 3
  backoff_strategy: linear
environments:
  staging:
    engine:
      enable_caching: false
    retry:
      retryable_errors: [TRANSPORT_ERROR]
"""
    )
    return str(path)


class TestComposedProofConfig:
    """Test ComposedProofConfig.from_yaml."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = ComposedProofConfig.from_yaml(str(tmp_path / "absent.yaml"))

        assert config.engine.default_max_parallelism is None
        assert config.engine.max_nesting_depth == 3
        assert config.cache.ttl_seconds == 86400.0
        assert config.retry.max_retries == 1

    def test_invalid_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("engine: [unclosed")

        config = ComposedProofConfig.from_yaml(str(path))

        assert config.engine.default_component_timeout_seconds == 120.0

    def test_base_values(self, config_file):
        config = ComposedProofConfig.from_yaml(config_file, environment="development")

        assert config.engine.default_max_parallelism == 4
        assert config.engine.enable_caching is True
        assert config.cache.ttl_seconds == 120
        assert config.retry.to_policy().backoff_strategy == BackoffStrategy.LINEAR
        assert config.to_dict()["config_path"] == config_file

    def test_environment_override(self, config_file):
        config = ComposedProofConfig.from_yaml(config_file, environment="STAGING")

        assert config.engine.enable_caching is False
        assert config.engine.default_max_parallelism == 4
        assert config.retry.max_retries == 3
        assert config.retry.retryable_errors == ["TRANSPORT_ERROR"]

    def test_environment_from_env_var(self, config_file, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")

        assert ComposedProofConfig.from_yaml(config_file).engine.enable_caching is False

    def test_config_path_from_env_var(self, config_file, monkeypatch):
        monkeypatch.setenv("COMPOSED_PROOFS_CONFIG", config_file)

        assert ComposedProofConfig.from_yaml().cache.ttl_seconds == 120

    def test_project_config_production(self):
        config = ComposedProofConfig.from_yaml(str(PROJECT_CONFIG), environment="production")
        policy = config.retry.to_policy()

        assert config.engine.default_max_parallelism == 3
        assert policy.max_retries == 2
        assert policy.backoff_strategy == BackoffStrategy.EXPONENTIAL
        assert policy.retryable_errors == ["TRANSPORT_ERROR", "INVALID_RESPONSE"]

    def test_backend_url_from_env(self, monkeypatch):
        config = ComposedProofConfig()
        monkeypatch.delenv("ZK_PRET_SERVER_URL", raising=False)
        assert config.backend.url == "http://localhost:3001"

        monkeypatch.setenv("ZK_PRET_SERVER_URL", "http://prover:3001")
        assert config.backend.url == "http://prover:3001"


class TestConfigSingleton:
    def test_cached_until_reload(self, config_file):
        first = get_composed_proof_config(config_file)

        assert get_composed_proof_config() is first
        assert get_composed_proof_config(config_file, force_reload=True) is not first
