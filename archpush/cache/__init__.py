"""Build cache module.

This module handles:
- The shared, platform-qualified build cache store
- Digests of the build inputs recorded with every cache generation
"""

from archpush.cache.store import CacheRef, CacheStore

__all__ = ["CacheRef", "CacheStore"]
