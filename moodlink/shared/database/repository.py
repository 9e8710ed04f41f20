"""Base repository pattern for database operations.

Provides query helpers that translate driver failures into
RepositoryError so services see one storage exception type.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses implement entity-specific row conversion while inheriting:
    - Connection management
    - Error handling
    - Logging patterns
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager
            table_name: Name of the primary database table
        """
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity.

        Args:
            row: Database row tuple

        Returns:
            Entity instance
        """
        pass

    def _fetch_all(
        self,
        query: str,
        params: Sequence[Any],
        converter: Optional[Callable[[tuple], Any]] = None,
    ) -> List[Any]:
        """Run a SELECT and convert every row.

        Rows go through ``converter`` when given, else ``_row_to_entity``.

        Raises:
            RepositoryError: If the query fails
        """
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except Exception as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Query on {self.table_name} failed: {e}") from e

        convert = converter or self._row_to_entity
        return [convert(row) for row in rows]

    def _execute(self, query: str, params: Sequence[Any]) -> int:
        """Run a write statement and commit.

        Returns:
            Number of affected rows

        Raises:
            RepositoryError: If the statement fails
        """
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    conn.commit()
                    return cur.rowcount
        except Exception as e:
            logger.error(
                "REPOSITORY_WRITE_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Write to {self.table_name} failed: {e}") from e

