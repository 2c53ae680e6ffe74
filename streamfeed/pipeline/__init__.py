"""
StreamFeed Pipeline Module
=========================

Import cycle coordination.
"""

from .coordinator import CycleConfig, ImportCoordinator

__all__ = [
    "CycleConfig",
    "ImportCoordinator",
]
