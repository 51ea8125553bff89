"""API route modules for the playbook engine."""

from .runs import router as runs_router

__all__ = ["runs_router"]
