# src/taskcore/api/__init__.py
"""
HTTP adapter for taskcore (FastAPI).

- app: FastAPI instance + lifespan composition root
- routes: REST endpoints mapped onto the exposed operations
- deps: dependency injection helpers
"""

from .app import app

__all__ = ["app"]
