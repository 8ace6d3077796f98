"""arangoclient package.

Subpackages:
- database.arango: host pool, load balancing, retries, cursors, transactions
- config: pydantic configuration models
- logging: structlog setup
"""

from .database.arango import Connection, Database

__version__ = "0.3.0"

__all__ = ["Connection", "Database", "__version__"]
