"""
StreamFeed Ingestion Module
==========================

Atomic downloads of queued documents and their media assets.
"""
