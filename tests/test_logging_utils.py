import json
import logging

from support_desk.chat.engine import ChatOrchestrator, ChatRequest
from support_desk.chat.llm import ModelClients
from support_desk.chat.rag import Retriever
from support_desk.logging_utils import (
    NO_SESSION,
    JSONFormatter,
    SessionFilter,
    build_handler,
    log_session,
    session_id_var,
)
from support_desk.storage.tickets import TicketStore
from support_desk.storage.vector_store import VectorIndex

from .fakes import FakeChatModel, FakeEmbedder


def make_record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("support_desk.test", logging.INFO, __file__, 1, message, None, None)


def test_records_are_tagged_with_the_active_session():
    outside = make_record()
    SessionFilter().filter(outside)

    with log_session("s-42"):
        inside = make_record()
        SessionFilter().filter(inside)

    assert outside.session_id == NO_SESSION
    assert inside.session_id == "s-42"
    assert session_id_var.get() == NO_SESSION


def test_nested_sessions_restore_the_outer_one():
    with log_session("outer"):
        with log_session(None):
            assert session_id_var.get() == NO_SESSION
        assert session_id_var.get() == "outer"


def test_json_formatter_includes_session_id():
    record = make_record("工单已创建")
    with log_session("s-1"):
        SessionFilter().filter(record)

    payload = json.loads(JSONFormatter().format(record))

    assert payload["session_id"] == "s-1"
    assert payload["message"] == "工单已创建"
    assert payload["level"] == "INFO"


def test_plain_handler_renders_session_id():
    handler = build_handler("plain")
    record = make_record("retrieved 3 chunks")
    with log_session("s-7"):
        for log_filter in handler.filters:
            log_filter.filter(record)

    assert handler.format(record) == "[INFO] support_desk.test [s-7] - retrieved 3 chunks"


async def test_chat_turn_runs_under_its_session_id():
    seen = []

    class RecordingChatModel(FakeChatModel):
        async def stream_chat(self, messages):
            seen.append(session_id_var.get())
            async for fragment in super().stream_chat(messages):
                yield fragment

    chat_model = RecordingChatModel()
    orchestrator = ChatOrchestrator(
        Retriever(VectorIndex()),
        TicketStore(),
        lambda api_key: ModelClients(embedder=FakeEmbedder(), chat_model=chat_model),
    )

    events = [event async for event in orchestrator.stream(ChatRequest(message="你好", session_id="s-9", api_key="k"))]

    assert events[-1].type == "end"
    assert seen == ["s-9"]
    assert session_id_var.get() == NO_SESSION
