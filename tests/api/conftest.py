"""
Pytest fixtures for API endpoint tests.

Provides a ComposedProofService backed by a scripted executor adapter and
installs it as the singleton the routes resolve, so no proving backend is
contacted.
"""

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.composed_proofs import (
    ComposedProofService,
    reset_composed_proof_service,
    set_composed_proof_service,
)
from src.composed_proofs.config import ComposedProofConfig, RetrySettings
from tests.fixtures.scripted_adapter import ScriptedAdapter

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def adapter():
    return ScriptedAdapter()


@pytest.fixture
def service(adapter):
    """Service with retries disabled, installed for the duration of a test."""
    config = ComposedProofConfig(retry=RetrySettings(max_retries=0, backoff_delay_seconds=0))
    service = ComposedProofService(adapter=adapter, config=config)
    set_composed_proof_service(service)
    yield service
    reset_composed_proof_service()


@pytest.fixture
def client(service):
    """Test client sharing one event loop across requests (lifespan enabled)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def cleanup_dependency_overrides():
    """Clean up dependency overrides after each test."""
    yield
    app.dependency_overrides.clear()
