"""Document store backends."""

from .base import DocumentStore
from .memory import InMemoryDocumentStore
from .rest_store import RestDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "RestDocumentStore",
]
