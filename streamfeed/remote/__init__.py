"""
StreamFeed Remote Module
=======================

Client for the remote Content Stream queue.
"""

from .queue_client import FeedCredentials, HttpQueueClient, RemoteQueueClient

__all__ = [
    "FeedCredentials",
    "HttpQueueClient",
    "RemoteQueueClient",
]
