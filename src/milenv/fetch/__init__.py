"""Integrity-checked artifact retrieval."""

from .http import fetch

__all__ = ["fetch"]
