"""
Utility helpers.

This module contains:
- BackgroundWriter for detached best-effort writes
"""

from ai_resilience.utils.background import BackgroundWriter

__all__ = [
    "BackgroundWriter",
]
