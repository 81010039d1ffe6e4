"""JSON-over-HTTP document store client."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import DocumentStore
from ..errors import (
    PermanentWriteError,
    StoreError,
    TransientStoreError,
    UnsupportedQueryError,
)
from ..models.schema import OrderBy, QueryConstraint, WriteOp

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}


class RestDocumentStore(DocumentStore):
    """
    Document store reached over a small REST API.

    Endpoints:
    - GET  /collections/<path>/docs/<id>
    - POST /collections/<path>/query
    - GET  /collections/<path>/count
    - POST /batch-write
    - GET  /health

    Blocking requests calls run in a worker thread so the engine's event
    loop keeps dispatching other batches.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        retry_config: Optional[Dict[str, Any]] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the store client.

        Args:
            base_url: Base URL of the store API
            api_key: Bearer token
            session: Custom requests session
            retry_config: Transport retry settings (max_retries, backoff_factor)
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.retry_config = retry_config or {}
        self.timeout = timeout
        self._session = session or self._create_session()

        if self.api_key:
            self._session.headers["Authorization"] = f"Bearer {self.api_key}"
        self._session.headers["Content-Type"] = "application/json"

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.retry_config.get("max_retries", 3),
            backoff_factor=self.retry_config.get("backoff_factor", 0.5),
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _collection_url(self, collection: str) -> str:
        return f"{self.base_url}/collections/{quote(collection, safe='/')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientStoreError(f"{method} {url} failed: {e}")
        except requests.exceptions.RequestException as e:
            raise StoreError(f"{method} {url} failed: {e}")

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                return str(data.get("message") or data.get("error") or data)
            return str(data)
        except ValueError:
            return response.text or response.reason or str(response.status_code)

    def _raise_for_status(self, response: requests.Response, write: bool = False, query: bool = False) -> None:
        status = response.status_code
        if status < 400:
            return
        message = f"Store returned {status}: {self._error_message(response)}"
        if status in TRANSIENT_STATUSES:
            raise TransientStoreError(message)
        if query and status == 400:
            raise UnsupportedQueryError(message)
        if write:
            raise PermanentWriteError(message)
        raise StoreError(message)

    # ------------------------------------------------------------------
    # Blocking calls
    # ------------------------------------------------------------------

    def _get_sync(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        url = f"{self._collection_url(collection)}/docs/{quote(doc_id, safe='')}"
        response = self._request("GET", url)
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        doc = response.json()
        doc.setdefault("id", doc_id)
        return doc

    def _query_sync(self, collection: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = self._request("POST", f"{self._collection_url(collection)}/query", json=body)
        self._raise_for_status(response, query=True)
        data = response.json()
        if isinstance(data, dict):
            return data.get("documents", [])
        return data

    def _batch_write_sync(self, ops: List[WriteOp]) -> None:
        body = {"writes": [op.to_dict() for op in ops]}
        response = self._request("POST", f"{self.base_url}/batch-write", json=body)
        self._raise_for_status(response, write=True)

    def _count_sync(self, collection: str) -> int:
        response = self._request("GET", f"{self._collection_url(collection)}/count")
        if response.status_code == 404:
            return 0
        self._raise_for_status(response)
        return int(response.json().get("count", 0))

    def _ping_sync(self) -> bool:
        try:
            response = self._request("GET", f"{self.base_url}/health")
            return response.status_code < 500
        except StoreError as e:
            logger.error(f"Store health check failed: {e}")
            return False

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get_sync, collection, doc_id)

    async def query(
        self,
        collection: str,
        constraints: Optional[Sequence[QueryConstraint]] = None,
        order_by: Optional[Sequence[OrderBy]] = None,
        limit: Optional[int] = None,
        start_after: Optional[Any] = None,
    ) -> List[Dict[str, Any]]:
        body: Dict[str, Any] = {
            "constraints": [c.to_dict() for c in constraints or []],
            "orderBy": [o.to_dict() for o in order_by or []],
        }
        if limit is not None:
            body["limit"] = limit
        if start_after is not None:
            body["startAfter"] = start_after
        return await asyncio.to_thread(self._query_sync, collection, body)

    async def batch_write(self, ops: List[WriteOp]) -> None:
        if not ops:
            return
        await asyncio.to_thread(self._batch_write_sync, ops)

    async def count(self, collection: str) -> int:
        return await asyncio.to_thread(self._count_sync, collection)

    async def ping(self) -> bool:
        return await asyncio.to_thread(self._ping_sync)
