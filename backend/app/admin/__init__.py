"""Admin HTTP surface for roles, users, settings and the audit log."""
from .router import router

__all__ = ["router"]
