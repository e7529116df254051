"""
ZK-PRET Composed Proofs - API Routes
====================================

FastAPI route definitions for all API endpoints.

Available Routes:
-----------------
- composed_proofs: template registry, composed proof executions, proof cache
"""
