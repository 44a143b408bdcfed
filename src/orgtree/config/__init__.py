"""
orgtree configuration.

Pydantic-based settings loaded from ORGTREE_* environment variables or a
.env file.
"""

from orgtree.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
