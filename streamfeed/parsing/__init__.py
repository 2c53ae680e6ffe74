"""
StreamFeed Parsing Module
========================

Staged XML documents to content records.
"""

from .content_parser import ContentParser

__all__ = ["ContentParser"]
