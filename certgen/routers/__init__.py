"""
FastAPI routers for the certificate service.
"""

from certgen.routers import certificate, health

__all__ = ["health", "certificate"]
