"""In-memory document store, used for tests, dry runs and file-backed runs."""

import asyncio
import copy
import json
import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .base import DocumentStore
from ..errors import InvalidArgumentError, PermanentWriteError, UnsupportedQueryError
from ..models.schema import (
    DOCUMENT_ID,
    Direction,
    Operator,
    OrderBy,
    QueryConstraint,
    WriteKind,
    WriteOp,
)

logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_field(doc_id: str, data: Mapping, path: str) -> Any:
    """Value at a dotted field path, or the document id for DOCUMENT_ID."""
    if path == DOCUMENT_ID:
        return doc_id
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _sort_key(value: Any):
    if value is _MISSING or value is None:
        return (0,)
    if isinstance(value, bool):
        return (1, 0, int(value))
    if isinstance(value, (int, float)):
        return (1, 1, value)
    if isinstance(value, str):
        return (1, 2, value)
    if isinstance(value, datetime):
        return (1, 3, value.timestamp())
    return (1, 4, str(value))


def _element_matches(element: Any, target: Any) -> bool:
    if element == target:
        return True
    # Skill-like maps match on their id or name
    if isinstance(element, Mapping) and isinstance(target, str):
        return target in (element.get("id"), element.get("name"))
    return False


def _compare(value: Any, operator: Operator, target: Any) -> bool:
    if operator == Operator.EQ:
        return value is not _MISSING and value == target
    if operator == Operator.NE:
        return value is not _MISSING and value != target
    if operator == Operator.IN:
        return value is not _MISSING and value in target
    if operator == Operator.NOT_IN:
        return value is not _MISSING and value not in target
    if operator == Operator.ARRAY_CONTAINS:
        return isinstance(value, list) and any(_element_matches(e, target) for e in value)
    if operator == Operator.ARRAY_CONTAINS_ANY:
        return isinstance(value, list) and any(
            _element_matches(e, t) for e in value for t in target
        )

    if value is _MISSING or value is None:
        return False
    try:
        if operator == Operator.LT:
            return value < target
        if operator == Operator.LTE:
            return value <= target
        if operator == Operator.GT:
            return value > target
        if operator == Operator.GTE:
            return value >= target
    except TypeError:
        return False
    return False


class InMemoryDocumentStore(DocumentStore):
    """
    Document store backed by dictionaries.

    Supports dotted field paths, all filter operators, ordering, cursors and
    limits. Fault injection hooks let tests simulate unsupported queries,
    failing writes and an unreachable store.
    """

    def __init__(
        self,
        collections: Optional[Dict[str, Any]] = None,
        unsupported_fields: Optional[Iterable[str]] = None,
        latency_ms: int = 0,
    ):
        """
        Initialize the store.

        Args:
            collections: Initial data, collection -> list of docs or id -> doc
            unsupported_fields: Field paths whose queries raise UnsupportedQueryError
            latency_ms: Simulated delay for every operation
        """
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.unsupported_fields = set(unsupported_fields or [])
        self.latency_ms = latency_ms
        self.available = True
        self.committed_writes: List[List[WriteOp]] = []
        self.batch_write_calls = 0
        self._write_faults: List[BaseException] = []
        self._write_fault_fn: Optional[Callable[[List[WriteOp]], Optional[BaseException]]] = None

        for collection, docs in (collections or {}).items():
            self.seed(collection, docs)

    # ------------------------------------------------------------------
    # Data setup
    # ------------------------------------------------------------------

    def seed(self, collection: str, docs: Union[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]) -> None:
        """Insert documents without going through batch_write."""
        if isinstance(docs, Mapping):
            items = [(doc_id, data) for doc_id, data in docs.items()]
        else:
            items = [(d.get("id"), d) for d in docs]

        target = self._collections.setdefault(collection, {})
        for doc_id, data in items:
            if not isinstance(doc_id, str) or not doc_id:
                raise InvalidArgumentError(f"Seed document in {collection} has no id")
            stored = copy.deepcopy(dict(data))
            stored.pop("id", None)
            target[doc_id] = stored

    def documents(self, collection: str) -> Dict[str, Dict[str, Any]]:
        """Copy of every document in a collection, keyed by id."""
        return {
            doc_id: self._with_id(doc_id, data)
            for doc_id, data in self._collections.get(collection, {}).items()
        }

    def collections(self) -> List[str]:
        return sorted(self._collections.keys())

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_next_writes(self, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` batch writes raise ``error``."""
        self._write_faults.extend([error] * times)

    def fail_writes_when(self, fn: Optional[Callable[[List[WriteOp]], Optional[BaseException]]]) -> None:
        """Install a hook returning an error to raise for a given batch (or None)."""
        self._write_fault_fn = fn

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        await self._tick()
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return self._with_id(doc_id, data)

    async def query(
        self,
        collection: str,
        constraints: Optional[Sequence[QueryConstraint]] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        limit: Optional[int] = None,
        start_after: Optional[Any] = None,
    ) -> List[Dict[str, Any]]:
        await self._tick()
        constraints = list(constraints or [])
        order_by = list(order_by or [])

        for path in [c.field for c in constraints] + [o.field for o in order_by]:
            if path in self.unsupported_fields:
                raise UnsupportedQueryError(f"Query on '{path}' requires an index that does not exist")

        for c in constraints:
            if c.operator in (Operator.IN, Operator.NOT_IN, Operator.ARRAY_CONTAINS_ANY):
                if not isinstance(c.value, (list, tuple)):
                    raise InvalidArgumentError(f"Operator {c.operator.value} requires a list value")

        rows = [
            (doc_id, data)
            for doc_id, data in self._collections.get(collection, {}).items()
            if all(_compare(resolve_field(doc_id, data, c.field), c.operator, c.value) for c in constraints)
        ]

        sort_clauses = order_by or [OrderBy(DOCUMENT_ID)]
        for clause in reversed(sort_clauses):
            rows.sort(
                key=lambda row: _sort_key(resolve_field(row[0], row[1], clause.field)),
                reverse=clause.direction == Direction.DESC,
            )

        if start_after is not None:
            first = sort_clauses[0]
            cursor = _sort_key(start_after)
            if first.direction == Direction.DESC:
                rows = [r for r in rows if _sort_key(resolve_field(r[0], r[1], first.field)) < cursor]
            else:
                rows = [r for r in rows if _sort_key(resolve_field(r[0], r[1], first.field)) > cursor]

        if limit is not None:
            rows = rows[:max(limit, 0)]

        return [self._with_id(doc_id, data) for doc_id, data in rows]

    async def batch_write(self, ops: List[WriteOp]) -> None:
        await self._tick()
        self.batch_write_calls += 1

        if self._write_faults:
            raise self._write_faults.pop(0)
        if self._write_fault_fn is not None:
            error = self._write_fault_fn(ops)
            if error is not None:
                raise error

        # Stage every change first so the batch applies all or nothing
        staged: Dict[str, Dict[str, Optional[Dict[str, Any]]]] = {}
        for op in ops:
            if not op.doc_id:
                raise PermanentWriteError(f"Write to {op.collection} is missing a document id")
            current = staged.get(op.collection, {}).get(
                op.doc_id, self._collections.get(op.collection, {}).get(op.doc_id)
            )
            if op.kind == WriteKind.DELETE:
                new_value = None
            elif not isinstance(op.data, Mapping):
                raise PermanentWriteError(f"Write to {op.collection}/{op.doc_id} has no document data")
            elif op.kind == WriteKind.UPDATE:
                if current is None:
                    raise PermanentWriteError(f"Cannot update missing document {op.collection}/{op.doc_id}")
                new_value = {**current, **copy.deepcopy(dict(op.data))}
            else:
                new_value = copy.deepcopy(dict(op.data))
            staged.setdefault(op.collection, {})[op.doc_id] = new_value

        for collection, changes in staged.items():
            target = self._collections.setdefault(collection, {})
            for doc_id, value in changes.items():
                if value is None:
                    target.pop(doc_id, None)
                else:
                    value.pop("id", None)
                    target[doc_id] = value

        self.committed_writes.append(list(ops))

    async def count(self, collection: str) -> int:
        await self._tick()
        return len(self._collections.get(collection, {}))

    async def ping(self) -> bool:
        await self._tick()
        return self.available

    # ------------------------------------------------------------------
    # JSON files
    # ------------------------------------------------------------------

    @classmethod
    def load_json(cls, path: Union[str, Path], **kwargs: Any) -> "InMemoryDocumentStore":
        """
        Build a store from a JSON file.

        The file maps collection paths to either a list of documents (each
        with an ``id``) or an object keyed by document id.
        """
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise InvalidArgumentError(f"{path} must contain a JSON object of collections")
        logger.info(f"Loaded {len(data)} collections from {path}")
        return cls(collections=data, **kwargs)

    def dump_json(self, path: Union[str, Path]) -> None:
        """Write every collection to a JSON file, keyed by document id."""
        output = {
            collection: {doc_id: data for doc_id, data in docs.items()}
            for collection, docs in self._collections.items()
        }
        with open(path, "w") as f:
            json.dump(output, f, indent=2, default=str)
        logger.info(f"Wrote {len(output)} collections to {path}")

    # ------------------------------------------------------------------

    @staticmethod
    def _with_id(doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        result = copy.deepcopy(data)
        result["id"] = doc_id
        return result

    async def _tick(self) -> None:
        # Always yield so concurrent batches interleave like real I/O
        await asyncio.sleep(self.latency_ms / 1000.0 if self.latency_ms else 0)
