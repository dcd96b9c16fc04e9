"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from pinegate.api.routes import catalog, connections, grants, jobs

__all__ = [
    "catalog",
    "connections",
    "grants",
    "jobs",
]
