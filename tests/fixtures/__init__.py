"""Shared fixtures for composed proof tests.

Structure:
- scripted_adapter.py: executor adapter with per-tool scripted outcomes,
  delays and gates

Usage:
    from tests.fixtures.scripted_adapter import FAIL, PASS, ScriptedAdapter
"""
