"""
Elasticsearch-backed store for the rural bus backend.

One index per record type (routes, buses, schedules, bus_api_keys,
contact_messages), optionally prefixed per deployment. Indices are created
with explicit mappings when the store connects.

The official client is synchronous, so every call runs in the default
executor. Calls go through a circuit breaker: after 3 consecutive failures
the store rejects requests for 30 seconds with CIRCUIT_OPEN instead of
waiting on a dead cluster.
"""

import asyncio
import functools
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from elasticsearch import Elasticsearch, NotFoundError

from errors.exceptions import circuit_open, store_unavailable
from resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitOpenException
from store.base import BusStore
from store.models import (
    ApiKeyGrant,
    Bus,
    BusPositionUpdate,
    BusWithRoute,
    ContactMessage,
    RouteSummary,
    ScheduleWithRoute,
)

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 1000

INDEX_MAPPINGS: Dict[str, Dict[str, Any]] = {
    "routes": {
        "properties": {
            "id": {"type": "keyword"},
            "route_number": {"type": "keyword"},
            "name": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
            "description": {"type": "text"},
            "is_active": {"type": "boolean"},
            "created_at": {"type": "date"},
            "updated_at": {"type": "date"},
        }
    },
    "buses": {
        "properties": {
            "id": {"type": "keyword"},
            "bus_number": {"type": "keyword"},
            "route_id": {"type": "keyword"},
            "current_location": {"type": "text"},
            "latitude": {"type": "double"},
            "longitude": {"type": "double"},
            "speed": {"type": "float"},
            "heading": {"type": "float"},
            "is_active": {"type": "boolean"},
            "last_updated": {"type": "date"},
            "created_at": {"type": "date"},
        }
    },
    "schedules": {
        "properties": {
            "id": {"type": "keyword"},
            "route_id": {"type": "keyword"},
            "departure_time": {"type": "keyword"},
            "arrival_time": {"type": "keyword"},
            "frequency": {"type": "keyword"},
            "days_of_week": {"type": "keyword"},
            "is_active": {"type": "boolean"},
            "created_at": {"type": "date"},
        }
    },
    "bus_api_keys": {
        "properties": {
            "api_key": {"type": "keyword"},
            "bus_id": {"type": "keyword"},
            "is_active": {"type": "boolean"},
        }
    },
    "contact_messages": {
        "properties": {
            "id": {"type": "keyword"},
            "name": {"type": "text"},
            "email": {"type": "keyword"},
            "phone": {"type": "keyword"},
            "message": {"type": "text"},
            "status": {"type": "keyword"},
            "created_at": {"type": "date"},
        }
    },
}


class ElasticsearchBusStore(BusStore):
    """
    BusStore on Elasticsearch with circuit breaker protection.

    Args:
        endpoint: Cluster URL
        api_key: API key for the cluster
        index_prefix: Prepended to every index name
        client: Pre-built client; created on connect when omitted
        breaker: Circuit breaker; 3 failures / 30 s when omitted
        request_timeout: Per-request client timeout in seconds
    """

    backend_name = "elasticsearch"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        index_prefix: str = "",
        client: Optional[Elasticsearch] = None,
        breaker: Optional[CircuitBreaker] = None,
        request_timeout: int = 30,
    ) -> None:
        super().__init__()
        self.endpoint = endpoint
        self.api_key = api_key
        self.index_prefix = index_prefix
        self.client = client
        self.request_timeout = request_timeout
        self._circuit_breaker = breaker or CircuitBreaker(
            name="elasticsearch",
            config=CircuitBreakerConfig(failure_threshold=3, recovery_timeout=30.0),
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    def index_name(self, name: str) -> str:
        return f"{self.index_prefix}{name}"

    async def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking client call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a client call under the circuit breaker.

        Raises:
            AppException: CIRCUIT_OPEN when the breaker rejects the call,
                STORE_UNAVAILABLE when the call itself fails
        """
        if self.client is None:
            raise store_unavailable(details={"operation": operation})

        try:
            return await self._circuit_breaker.execute(self._run, func, *args, **kwargs)
        except CircuitOpenException as e:
            raise circuit_open(
                details={
                    "circuit_name": e.circuit_name,
                    "time_until_retry_seconds": int(e.retry_in_seconds or 0),
                    "operation": operation,
                },
            )
        except Exception as e:
            logger.error(
                f"Elasticsearch {operation} failed",
                extra={"extra_data": {"operation": operation, "error": str(e)}}
            )
            raise store_unavailable(details={"operation": operation}) from e

    # Lifecycle

    async def connect(self) -> None:
        """Create the client if needed, verify the cluster and ensure indices exist."""
        if self.client is None:
            if not self.endpoint or not self.api_key:
                raise ValueError("elastic_endpoint and elastic_api_key must be configured")
            self.client = Elasticsearch(
                self.endpoint,
                api_key=self.api_key,
                request_timeout=self.request_timeout,
            )

        if not await self._run(self.client.ping):
            raise ConnectionError("Failed to ping Elasticsearch")

        await self._run(self.setup_indices)
        logger.info(
            "Connected to Elasticsearch",
            extra={"extra_data": {"index_prefix": self.index_prefix}}
        )

    def setup_indices(self) -> None:
        """Create missing indices with their mappings."""
        for name, mappings in INDEX_MAPPINGS.items():
            index = self.index_name(name)
            if self.client.indices.exists(index=index):
                logger.debug(f"Index already exists: {index}")
                continue
            self.client.indices.create(index=index, mappings=mappings)
            logger.info(f"Created index: {index}")

    async def close(self) -> None:
        if self.client is not None:
            await self._run(self.client.close)
            self.client = None

    async def health_check(self) -> Dict[str, Any]:
        healthy = False
        error = None
        if self.client is not None:
            try:
                healthy = bool(await self._run(self.client.ping))
            except Exception as e:
                error = str(e)

        result: Dict[str, Any] = {
            "healthy": healthy,
            "backend": self.backend_name,
            "circuit": self._circuit_breaker.snapshot(),
        }
        if error:
            result["error"] = error
        return result

    # Blocking helpers, executed through _call

    def _get_source(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.get(index=index, id=doc_id)["_source"]
        except NotFoundError:
            return None

    def _update_source(self, index: str, doc_id: str, doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.update(
                index=index, id=doc_id, doc=doc, refresh=True, source=True
            )
        except NotFoundError:
            return None
        return response["get"]["_source"]

    def _index_document(self, index: str, doc_id: str, document: Dict[str, Any]) -> None:
        self.client.index(index=index, id=doc_id, document=document, refresh=True)

    def _search_sources(
        self, index: str, query: Dict[str, Any], sort: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Collect every matching document, one page at a time.

        Pages are chained with ``search_after``; ``id`` is appended to the
        sort so the order is total.
        """
        sort = sort + [{"id": {"order": "asc"}}]
        sources: List[Dict[str, Any]] = []
        search_after = None
        while True:
            page_kwargs: Dict[str, Any] = {"query": query, "sort": sort, "size": LIST_PAGE_SIZE}
            if search_after is not None:
                page_kwargs["search_after"] = search_after
            hits = self.client.search(index=index, **page_kwargs)["hits"]["hits"]
            sources.extend(hit["_source"] for hit in hits)
            if len(hits) < LIST_PAGE_SIZE:
                return sources
            search_after = hits[-1]["sort"]

    def _route_summaries(self, route_ids: List[str]) -> Dict[str, RouteSummary]:
        if not route_ids:
            return {}
        response = self.client.mget(index=self.index_name("routes"), ids=route_ids)
        summaries = {}
        for doc in response["docs"]:
            if doc.get("found"):
                source = doc["_source"]
                summaries[doc["_id"]] = RouteSummary(
                    route_number=source["route_number"],
                    name=source["name"],
                    description=source.get("description") or "",
                )
        return summaries

    # BusStore operations

    async def get_api_key_grant(self, api_key: str) -> Optional[ApiKeyGrant]:
        source = await self._call(
            "get_api_key_grant", self._get_source, self.index_name("bus_api_keys"), api_key
        )
        return ApiKeyGrant(**source) if source else None

    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        source = await self._call("get_bus", self._get_source, self.index_name("buses"), bus_id)
        return Bus(**source) if source else None

    async def update_bus_position(
        self, bus_id: str, update: BusPositionUpdate
    ) -> Optional[Bus]:
        source = await self._call(
            "update_bus_position",
            self._update_source,
            self.index_name("buses"),
            bus_id,
            update.as_document(),
        )
        if source is None:
            return None

        bus = Bus(**source)
        await self._emit_table_change("UPDATE", bus)
        return bus

    async def list_active_buses_with_route(self) -> List[BusWithRoute]:
        sources = await self._call(
            "list_active_buses",
            self._search_sources,
            self.index_name("buses"),
            query={"term": {"is_active": True}},
            sort=[{"bus_number": {"order": "asc"}}],
        )
        routes = await self._call(
            "get_routes",
            self._route_summaries,
            sorted({s["route_id"] for s in sources}),
        )
        return [BusWithRoute(**s, route=routes.get(s["route_id"])) for s in sources]

    async def list_active_schedules_with_route(self) -> List[ScheduleWithRoute]:
        sources = await self._call(
            "list_active_schedules",
            self._search_sources,
            self.index_name("schedules"),
            query={"term": {"is_active": True}},
            sort=[{"departure_time": {"order": "asc"}}],
        )
        routes = await self._call(
            "get_routes",
            self._route_summaries,
            sorted({s["route_id"] for s in sources}),
        )
        return [ScheduleWithRoute(**s, route=routes.get(s["route_id"])) for s in sources]

    async def create_contact_message(
        self,
        name: str,
        email: str,
        message: str,
        phone: Optional[str] = None,
    ) -> ContactMessage:
        record = ContactMessage(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            phone=phone,
            message=message,
        )
        await self._call(
            "create_contact_message",
            self._index_document,
            self.index_name("contact_messages"),
            record.id,
            record.model_dump(mode="json"),
        )
        return record
