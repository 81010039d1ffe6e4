"""Compatibility service base and the legacy-fallback query strategy."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from ..errors import InvalidArgumentError, StoreError
from ..models.record import ReadResult, ReadStatus
from ..models.schema import OrderBy, QueryConstraint
from ..stores.base import DocumentStore
from .validator import RecordValidator

logger = logging.getLogger(__name__)

QueryStep = Callable[[], Awaitable[List[Dict[str, Any]]]]


def dedupe_by_id(docs: Sequence[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Drop repeated documents, keeping the first occurrence of each id."""
    seen = set()
    result = []
    for doc in docs:
        doc_id = doc.get("id")
        if doc_id in seen:
            continue
        seen.add(doc_id)
        result.append(doc)
    return result


@dataclass
class FallbackQuery:
    """
    A query against modern fields with a legacy-field fallback.

    ``primary`` runs first. If it raises a StoreError, ``fallback`` runs and
    its own failure is surfaced. With ``merge`` the fallback also runs after
    a successful primary so legacy-only documents are still found while a
    collection is half migrated; a failing merge step is logged and ignored.
    ``merge_step`` replaces ``fallback`` for that merge when the two differ.
    """
    name: str
    primary: QueryStep
    fallback: Optional[QueryStep] = None
    merge: bool = True
    merge_step: Optional[QueryStep] = None

    async def run(self) -> List[Mapping[str, Any]]:
        """Execute the strategy and return de-duplicated raw documents."""
        try:
            docs = list(await self.primary())
        except StoreError as e:
            if self.fallback is None:
                raise
            logger.warning(f"{self.name}: primary query failed, using legacy fields: {e}")
            return dedupe_by_id(await self.fallback())

        legacy = self.merge_step or self.fallback
        if self.merge and legacy is not None:
            try:
                docs.extend(await legacy())
            except StoreError as e:
                logger.warning(f"{self.name}: legacy query failed, serving modern results only: {e}")

        return dedupe_by_id(docs)


class CompatibilityService(ABC):
    """
    Base class for per-entity compatibility services.

    Every document read goes through the entity normalizer. A document the
    normalizer rejects is served as a DEGRADED ReadResult carrying a
    placeholder, so one corrupt record never fails a whole listing.
    """

    entity_name = "entity"

    def __init__(self, store: DocumentStore, collection: str, validator: Optional[RecordValidator] = None):
        """
        Initialize the service.

        Args:
            store: Document store to read from
            collection: Collection holding this entity
            validator: Validator used by validate()
        """
        self.store = store
        self.collection = collection
        self.validator = validator or RecordValidator()

    @abstractmethod
    def normalize(self, raw: Mapping[str, Any]) -> Any:
        """Normalize one raw document; may raise."""
        pass

    @abstractmethod
    def placeholder(self, doc_id: str) -> Any:
        """Stand-in entity for a document that failed normalization."""
        pass

    def read_result(self, raw: Mapping[str, Any]) -> ReadResult:
        """Apply the degrade-on-error policy to one raw document."""
        doc_id = str(raw.get("id", "")) if isinstance(raw, Mapping) else ""
        try:
            entity = self.normalize(raw)
        except Exception as e:
            logger.warning(f"Degraded {self.entity_name} {doc_id}: {e}")
            return ReadResult(
                status=ReadStatus.DEGRADED,
                doc_id=doc_id,
                entity=self.placeholder(doc_id),
                error=str(e),
            )
        return ReadResult(status=ReadStatus.FOUND, doc_id=doc_id, entity=entity)

    def read_results(self, docs: Sequence[Mapping[str, Any]]) -> List[ReadResult]:
        return [self.read_result(doc) for doc in docs]

    async def get(self, doc_id: str) -> ReadResult:
        """
        Fetch one entity by id.

        Raises:
            InvalidArgumentError: if doc_id is empty or not a string
        """
        if not isinstance(doc_id, str) or not doc_id:
            raise InvalidArgumentError(f"{self.entity_name.capitalize()} id must be a non-empty string")

        raw = await self.store.get(self.collection, doc_id)
        if raw is None:
            return ReadResult(status=ReadStatus.NOT_FOUND, doc_id=doc_id)
        return self.read_result(raw)

    async def query(
        self,
        constraints: List[Any],
        limit: Optional[int] = None,
        order_by: Optional[List[OrderBy]] = None,
    ) -> List[ReadResult]:
        """
        Run a raw constraint query and normalize every hit.

        Args:
            constraints: QueryConstraints (or their dict form)
            limit: Maximum number of documents
            order_by: Sort clauses

        Raises:
            InvalidArgumentError: if constraints is not a list or limit < 1
        """
        if not isinstance(constraints, list):
            raise InvalidArgumentError("Constraints must be a list")
        if limit is not None and (not isinstance(limit, int) or limit < 1):
            raise InvalidArgumentError("Limit must be a positive integer")

        parsed = [
            c if isinstance(c, QueryConstraint) else QueryConstraint.from_dict(c)
            for c in constraints
        ]
        docs = await self.store.query(self.collection, parsed, order_by=order_by, limit=limit)
        return self.read_results(docs)

    def validate(self, entity: Any) -> bool:
        """Whether an entity passes structural validation."""
        return self.validator.is_valid(self.validator.validate(entity))

    def constraint_step(
        self,
        constraint_sets: Sequence[Sequence[QueryConstraint]],
        order_by: Optional[Sequence[OrderBy]] = None,
        limit: Optional[int] = None,
        collection: Optional[str] = None,
    ) -> QueryStep:
        """A query step running each constraint set and concatenating the hits."""
        target = collection or self.collection

        async def step() -> List[Dict[str, Any]]:
            docs: List[Dict[str, Any]] = []
            for constraints in constraint_sets:
                docs.extend(await self.store.query(target, list(constraints), order_by=order_by, limit=limit))
            return docs

        return step
