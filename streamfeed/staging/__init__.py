"""
StreamFeed Staging Module
========================

Filesystem staging area between download and import.
"""

from .store import StagingStore

__all__ = ["StagingStore"]
