from __future__ import annotations

import os
from typing import Optional

import pytest

from support_desk.chat.llm import ModelClients
from support_desk.config import Settings
from support_desk.errors import ConfigurationError
from support_desk.services import build_services
from support_desk.storage.persistence import VectorPersistence
from support_desk.storage.tickets import TicketStore
from support_desk.storage.vector_store import VectorIndex

from .fakes import FakeChatModel, FakeEmbedder


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(os.environ):
        if name.startswith(("SUPPORT_DESK_", "OPENAI_")):
            monkeypatch.delenv(name)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def chat_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        api_key="test-key",
        data_dir=str(tmp_path / "data"),
        knowledge_dir=str(tmp_path / "knowledge"),
        auto_init_builtin=False,
    )


@pytest.fixture
def index(tmp_path) -> VectorIndex:
    return VectorIndex(VectorPersistence(tmp_path / "vectors.json"))


@pytest.fixture
def services(settings, embedder, chat_model):
    def factory(api_key: Optional[str]) -> ModelClients:
        if not (api_key or settings.api_key):
            raise ConfigurationError("An API key is required")
        return ModelClients(embedder=embedder, chat_model=chat_model)

    return build_services(
        settings,
        index=VectorIndex(VectorPersistence(settings.vectors_path)),
        tickets=TicketStore(settings.tickets_path),
        clients_factory=factory,
    )
