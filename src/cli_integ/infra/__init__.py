"""Cloud-side helpers for cli-integ fixtures."""

from .stack_manager import StackManager

__all__ = ["StackManager"]
