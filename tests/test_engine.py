import asyncio
import contextlib
import time

import pytest

from support_desk.chat.engine import (
    DEFAULT_SYSTEM_PROMPT,
    STREAM_ERROR_MESSAGE,
    ChatOrchestrator,
    ChatRequest,
    TurnState,
    build_messages,
)
from support_desk.chat.llm import ModelClients
from support_desk.chat.rag import Retriever
from support_desk.errors import ConfigurationError, PersistenceError
from support_desk.models import ChatTurn
from support_desk.storage.tickets import TicketStore
from support_desk.storage.vector_store import VectorIndex

from .fakes import FakeChatModel, FakeEmbedder


def make_orchestrator(embedder=None, chat_model=None, tickets=None, **kwargs):
    embedder = embedder or FakeEmbedder()
    chat_model = chat_model or FakeChatModel()

    def factory(api_key):
        if not api_key:
            raise ConfigurationError("An API key is required")
        return ModelClients(embedder=embedder, chat_model=chat_model)

    retriever = Retriever(VectorIndex())
    orchestrator = ChatOrchestrator(retriever, tickets if tickets is not None else TicketStore(), factory, **kwargs)
    return orchestrator, retriever, chat_model


async def collect(orchestrator, request):
    return [event async for event in orchestrator.stream(request)]


async def test_full_turn_emits_ticket_sources_content_then_end():
    orchestrator, retriever, chat_model = make_orchestrator()
    await retriever.ingest(
        [{"content": "蓝屏时请记录错误代码并重启", "metadata": {"filename": "it.md"}}],
        FakeEmbedder(),
    )

    events = await collect(orchestrator, ChatRequest(message="电脑蓝屏了，完全无法工作", api_key="k"))

    assert [event.type for event in events] == ["ticket", "sources", "content", "content", "content", "end"]
    ticket = events[0].data
    assert (ticket.category, ticket.priority) == ("it", "urgent")
    assert orchestrator.tickets.get(ticket.id) is not None
    assert [r.filename for r in events[1].data] == ["it.md"]
    assert "".join(event.data for event in events[2:5]) == "你好，世界"
    assert "参考知识库内容" in chat_model.received[0][0]["content"]


async def test_plain_question_without_knowledge_only_streams():
    orchestrator, _, chat_model = make_orchestrator()

    events = await collect(orchestrator, ChatRequest(message="请问年假怎么计算", api_key="k"))

    assert [event.type for event in events] == ["content", "content", "content", "end"]
    assert chat_model.received[0][0]["content"] == DEFAULT_SYSTEM_PROMPT


async def test_rag_can_be_disabled():
    embedder = FakeEmbedder()
    orchestrator, _, _ = make_orchestrator(embedder=embedder)

    await collect(orchestrator, ChatRequest(message="年假", api_key="k", enable_rag=False))

    assert embedder.calls == []


async def test_retrieval_failure_still_ends_normally():
    orchestrator, _, _ = make_orchestrator(embedder=FakeEmbedder(fail=True))

    events = await collect(orchestrator, ChatRequest(message="年假", api_key="k"))

    assert [event.type for event in events][-1] == "end"
    assert "sources" not in [event.type for event in events]


async def test_stream_failure_emits_a_single_error():
    orchestrator, _, chat_model = make_orchestrator(chat_model=FakeChatModel(fail_after=1))

    events = await collect(orchestrator, ChatRequest(message="你好", api_key="k"))

    assert [event.type for event in events] == ["content", "error"]
    assert events[-1].data == STREAM_ERROR_MESSAGE
    assert chat_model.closed


async def test_stalled_stream_times_out_with_error():
    class StalledChat(FakeChatModel):
        async def stream_chat(self, messages):
            yield "开始"
            await asyncio.sleep(10)
            yield "永远不会到达"

    orchestrator, _, _ = make_orchestrator(chat_model=StalledChat(), stream_timeout=0.05)

    events = await collect(orchestrator, ChatRequest(message="你好", api_key="k"))

    assert [event.type for event in events] == ["content", "error"]


async def test_ticket_store_failure_does_not_break_the_turn():
    class BrokenTickets(TicketStore):
        def create(self, **kwargs):
            raise PersistenceError("disk full")

    orchestrator, _, _ = make_orchestrator(tickets=BrokenTickets())

    events = await collect(orchestrator, ChatRequest(message="打印机坏了", api_key="k"))

    assert [event.type for event in events] == ["content", "content", "content", "end"]


async def test_ticket_creation_runs_off_the_event_loop():
    class SlowTickets(TicketStore):
        def _commit(self, tickets):
            time.sleep(0.3)
            super()._commit(tickets)

    orchestrator, _, _ = make_orchestrator(tickets=SlowTickets())
    gaps = []

    async def ticker():
        loop = asyncio.get_running_loop()
        last = loop.time()
        while True:
            await asyncio.sleep(0.01)
            now = loop.time()
            gaps.append(now - last)
            last = now

    task = asyncio.create_task(ticker())
    await asyncio.sleep(0)
    events = await collect(orchestrator, ChatRequest(message="打印机坏了", api_key="k"))
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert events[0].type == "ticket"
    assert len(gaps) > 5
    assert max(gaps) < 0.2


async def test_closing_the_stream_early_closes_upstream():
    orchestrator, _, chat_model = make_orchestrator()
    turn = orchestrator.start_turn(ChatRequest(message="你好", api_key="k"))

    events = turn.events()
    first = await events.__anext__()
    await events.aclose()

    assert first.type == "content"
    assert chat_model.closed
    assert turn.state is TurnState.STREAMING


async def test_turn_reaches_terminal_state():
    orchestrator, _, _ = make_orchestrator()
    turn = orchestrator.start_turn(ChatRequest(message="你好", api_key="k"))

    events = [event async for event in turn.events()]

    assert turn.state is TurnState.END
    assert events[-1].to_dict() == {"type": "end"}


def test_missing_api_key_fails_before_streaming():
    orchestrator, _, _ = make_orchestrator()

    with pytest.raises(ConfigurationError):
        orchestrator.start_turn(ChatRequest(message="你好"))


def test_build_messages_keeps_recent_history_window():
    history = [ChatTurn(role="user" if i % 2 == 0 else "assistant", content=f"m{i}") for i in range(15)]

    messages = build_messages("now", history, system_prompt="SYS", context="CTX", history_window=10)

    assert len(messages) == 12
    assert messages[0] == {"role": "system", "content": "SYSCTX"}
    assert [m["content"] for m in messages[1:-1]] == [f"m{i}" for i in range(5, 15)]
    assert messages[-1] == {"role": "user", "content": "now"}


def test_build_messages_serialises_structured_history():
    history = [ChatTurn(role="assistant", content={"text": "好的"})]

    messages = build_messages("ok", history, history_window=10)

    assert messages[1]["content"] == '{"text": "好的"}'
