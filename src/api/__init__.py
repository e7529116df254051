"""
ZK-PRET Composed Proofs - API Layer
===================================

FastAPI-based REST API for the composed proof execution engine.

Components:
-----------
- routes/: API endpoint definitions
  - composed_proofs.py: templates, executions and cache endpoints
- middleware/: request context propagation and timing

Version: 1.0.0
"""

__version__ = "1.0.0"
