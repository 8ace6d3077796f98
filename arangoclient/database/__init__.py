"""
Database Module
===============

ArangoDB cluster access: connection pooling across coordinators,
retry handling, streaming cursors and stream transactions.
"""

from .arango import Connection, Database

__all__ = ["Connection", "Database"]
