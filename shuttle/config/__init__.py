"""
Shuttle Configuration Module
"""

from .engine import EngineConfig

__all__ = ["EngineConfig"]
