"""
CLI commands for orgtree.
"""

from orgtree.cli.apply import apply_command
from orgtree.cli.plan import plan_command

__all__ = ["apply_command", "plan_command"]
