"""Utility helpers package."""

from flashbox.utils.cache import CacheBackend, cache_backend

__all__ = ["CacheBackend", "cache_backend"]
