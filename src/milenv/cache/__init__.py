"""Content-addressed cache APIs."""

from .keys import ToolchainCacheInput, cache_key
from .store import ToolchainStore

__all__ = ["ToolchainCacheInput", "ToolchainStore", "cache_key"]
