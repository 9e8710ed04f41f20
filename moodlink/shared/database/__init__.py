"""Database access for moodlink services.

Provides connection pooling, health checks, the repository base class
and the sentiment record store used by the correlation and
anonymization services.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
    get_connection_manager,
)
from .repository import (
    BaseRepository,
    RepositoryError,
)
from .sentiment_repository import (
    SentimentRepository,
    InMemoryRecordStore,
)

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "get_connection_manager",
    "BaseRepository",
    "RepositoryError",
    "SentimentRepository",
    "InMemoryRecordStore",
]
