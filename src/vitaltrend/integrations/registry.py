"""
Client Registry

Owns the retrieval clients of a pipeline, one per thread identifier, created
lazily on first use and reused afterwards. Creation is serialized by a lock
so concurrent first access for the same thread id yields a single client;
callers still own single-writer discipline for the state of a thread.
"""

from typing import Callable
import threading

import structlog

from vitaltrend.config import RetrievalSettings, get_settings
from vitaltrend.integrations.fhir import (
    FHIRObservationClient,
    ObservationSearchClient,
    build_demo_client,
)

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[str], ObservationSearchClient]


class ClientRegistry:
    """
    Thread id -> retrieval client cache.

    Usage:
        registry = ClientRegistry(lambda thread_id: FHIRObservationClient(url))
        client = registry.get("thread-1")
        ...
        await registry.aclose()
    """

    def __init__(self, factory: ClientFactory | None = None):
        self.factory = factory or default_client_factory()
        self._clients: dict[str, ObservationSearchClient] = {}
        self._lock = threading.Lock()

    def get(self, thread_id: str) -> ObservationSearchClient:
        client = self._clients.get(thread_id)
        if client is not None:
            return client
        with self._lock:
            client = self._clients.get(thread_id)
            if client is None:
                client = self.factory(thread_id)
                self._clients[thread_id] = client
                logger.debug("Created retrieval client", thread_id=thread_id)
        return client

    def __contains__(self, thread_id: str) -> bool:
        return thread_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def release(self, thread_id: str) -> None:
        """Close and forget the client of one thread."""
        with self._lock:
            client = self._clients.pop(thread_id, None)
        if client is not None:
            await client.aclose()

    async def aclose(self) -> None:
        """Close every cached client."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()


def default_client_factory(settings: RetrievalSettings | None = None) -> ClientFactory:
    """Factory for the configured retrieval provider."""
    settings = settings or get_settings().retrieval

    if settings.provider == "fhir":
        token = settings.token.get_secret_value() if settings.token else None

        def factory(thread_id: str) -> ObservationSearchClient:
            return FHIRObservationClient(
                settings.fhir_base_url,
                token=token,
                timeout=settings.timeout_seconds,
            )
        return factory

    demo = build_demo_client()
    return lambda thread_id: demo
