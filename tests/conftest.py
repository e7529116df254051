"""Root conftest.py - Global pytest setup.

This module:
1. Loads .env before any test module is collected
2. Selects the ``test`` configuration environment
3. Resets engine singletons between tests
"""

from __future__ import annotations

import os

import pytest
from dotenv import load_dotenv

# =============================================================================
# LOAD ENVIRONMENT VARIABLES from .env file IMMEDIATELY
# =============================================================================
load_dotenv()

# Selects environments.test in config/composed_proofs.yaml
os.environ.setdefault("ENVIRONMENT", "test")


# =============================================================================
# SINGLETON CLEANUP
# =============================================================================


@pytest.fixture(autouse=True)
def reset_engine_singletons():
    """Ensure config and service singletons don't leak between tests."""
    from src.composed_proofs import reset_composed_proof_config, reset_composed_proof_service

    yield
    reset_composed_proof_service()
    reset_composed_proof_config()
