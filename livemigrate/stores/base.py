"""Base document store interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
import logging

from ..models.schema import OrderBy, QueryConstraint, WriteOp

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """
    Base class for document stores.

    Stores hold named collections of JSON-like documents keyed by id.
    Every returned document includes its ``id``. Subcollections are
    addressed by path, e.g. ``conversations/<id>/messages``.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Read one document.

        Returns:
            The document, or None if it does not exist
        """
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        constraints: Optional[Sequence[QueryConstraint]] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        limit: Optional[int] = None,
        start_after: Optional[Any] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run a filtered, ordered query.

        Args:
            collection: Collection path
            constraints: Filters, all of which must match
            order_by: Sort clauses, applied in order
            limit: Maximum number of documents
            start_after: Cursor; value of the first order_by field after
                which results begin

        Raises:
            UnsupportedQueryError: if the store cannot serve the query shape
        """
        pass

    @abstractmethod
    async def batch_write(self, ops: List[WriteOp]) -> None:
        """
        Apply a list of writes atomically: all of them or none.

        Raises:
            TransientStoreError: on timeouts or network failures
            PermanentWriteError: if the store refuses the write
        """
        pass

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        pass

    async def collection_exists(self, collection: str) -> bool:
        """Whether a collection holds at least one document."""
        return await self.count(collection) > 0

    async def ping(self) -> bool:
        """Check the store is reachable."""
        return True
