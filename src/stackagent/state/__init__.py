"""State management helpers for stackagent."""

from .registry import StateRegistry, StateRegistryError, atomic_write_text

__all__ = ["StateRegistry", "StateRegistryError", "atomic_write_text"]
