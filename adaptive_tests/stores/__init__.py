"""Runtime and persistent stores for resolved discovery results."""

from .persistent_cache import PersistentCache, serialize_cache_value
from .runtime_cache import RuntimeCache, RuntimeEntry

__all__ = ["PersistentCache", "RuntimeCache", "RuntimeEntry", "serialize_cache_value"]
