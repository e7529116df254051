"""
ZK-PRET Composed Proofs - API Middleware
"""

from src.api.middleware.request_context import REQUEST_ID_HEADER, RequestContextMiddleware

__all__ = ["RequestContextMiddleware", "REQUEST_ID_HEADER"]
