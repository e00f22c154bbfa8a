"""Explicit wiring of the long-lived components."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional

from .chat.engine import ChatOrchestrator
from .chat.llm import ModelClients, build_clients
from .chat.rag import Retriever
from .config import Settings
from .ingestion.knowledge import load_builtin_knowledge
from .storage.persistence import VectorPersistence
from .storage.tickets import TicketStore
from .storage.vector_store import VectorIndex

logger = logging.getLogger(__name__)

ClientsFactory = Callable[[Optional[str]], ModelClients]


@dataclass
class Services:
    settings: Settings
    index: VectorIndex
    retriever: Retriever
    tickets: TicketStore
    orchestrator: ChatOrchestrator
    clients_factory: ClientsFactory
    init_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


def build_services(
    settings: Settings,
    *,
    index: VectorIndex | None = None,
    tickets: TicketStore | None = None,
    clients_factory: ClientsFactory | None = None,
) -> Services:
    """Create the index, ticket store and orchestrator for ``settings``.

    Components passed in are used as they are; missing ones are built from
    the settings and loaded from their snapshots.
    """

    if index is None:
        index = VectorIndex(VectorPersistence(settings.vectors_path), autosave=settings.autosave)
    if tickets is None:
        tickets = TicketStore(settings.tickets_path)
        tickets.load()
    if clients_factory is None:
        clients_factory = partial(build_clients, settings)

    retriever = Retriever(index, timeout=settings.request_timeout)
    orchestrator = ChatOrchestrator(
        retriever,
        tickets,
        clients_factory,
        history_window=settings.history_window,
        rag_top_k=settings.rag_top_k,
        rag_threshold=settings.rag_threshold,
        stream_timeout=settings.stream_timeout,
    )
    return Services(
        settings=settings,
        index=index,
        retriever=retriever,
        tickets=tickets,
        orchestrator=orchestrator,
        clients_factory=clients_factory,
    )


async def initialize_builtin_knowledge(services: Services, api_key: str | None = None) -> int:
    """Vectorise the built-in knowledge bases unless they are already indexed.

    Concurrent callers are serialised, so the knowledge is indexed at most
    once. Returns the number of chunks added.
    """

    async with services.init_lock:
        if services.index.has_builtin():
            logger.info("Built-in knowledge already indexed, skipping")
            return 0

        items = load_builtin_knowledge(services.settings.knowledge_dir, services.settings)
        if not items:
            return 0
        clients = services.clients_factory(api_key)
        ids = await services.retriever.ingest(items, clients.embedder)
    logger.info("Built-in knowledge initialised: %s", services.index.get_stats())
    return len(ids)
