import asyncio
import json
from pathlib import Path

from support_desk.chat.llm import ModelClients
from support_desk.services import build_services, initialize_builtin_knowledge
from support_desk.storage.tickets import TicketStore

from .fakes import FakeChatModel, FakeEmbedder

HR_KNOWLEDGE = {
    "name": "HR知识库",
    "category": "hr",
    "documents": [
        {"id": "hr-leave", "title": "年假制度", "content": "员工入职满一年享有5天年假。"},
        {"id": "hr-pay", "title": "薪资发放", "content": "工资于每月10日发放。"},
    ],
}


class SlowEmbedder(FakeEmbedder):
    async def embed_batch(self, texts):
        await asyncio.sleep(0.05)
        return await super().embed_batch(texts)


def make_services(settings, embedder):
    directory = Path(settings.knowledge_dir)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "hr.json").write_text(json.dumps(HR_KNOWLEDGE, ensure_ascii=False), encoding="utf-8")
    return build_services(
        settings,
        tickets=TicketStore(settings.tickets_path),
        clients_factory=lambda api_key: ModelClients(embedder=embedder, chat_model=FakeChatModel()),
    )


async def test_concurrent_initialisation_indexes_builtin_knowledge_once(settings):
    embedder = SlowEmbedder()
    services = make_services(settings, embedder)

    added = await asyncio.gather(
        initialize_builtin_knowledge(services, "k"),
        initialize_builtin_knowledge(services, "k"),
    )

    assert sorted(added) == [0, 2]
    assert len(services.index) == 2
    assert len(embedder.calls) == 1


async def test_initialisation_is_skipped_once_builtin_knowledge_exists(settings):
    embedder = FakeEmbedder()
    services = make_services(settings, embedder)

    assert await initialize_builtin_knowledge(services, "k") == 2
    assert await initialize_builtin_knowledge(services, "k") == 0
    assert services.index.get_stats()["categoryCount"]["hr"] == 2
