"""Chat orchestration for the support desk.

A chat turn is driven by :class:`TurnStateMachine`, which walks through
``START -> TICKET_CHECK -> RETRIEVE -> PROMPT_BUILD -> STREAMING`` and ends in
``END`` or ``ERROR``. Every state may emit events; together they always come
out in the order ``ticket? sources? content* (end | error)``.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from ..logging_utils import log_session
from ..models import ChatEvent, ChatTurn, SearchResult, Ticket
from ..storage.tickets import TicketStore
from .llm import ModelClients
from .rag import Retriever, build_context
from .tickets import detect_ticket, extract_ticket_info

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """你是企业智能助手，专注于 HR 政策解答和 IT 技术支持。

你的职责：
1. 为企业员工提供 HR 政策咨询服务（薪资福利、考勤休假、招聘入职、培训发展、离职退休等）
2. 为企业员工提供 IT 技术支持（硬件故障、软件问题、网络问题、账号权限等）
3. 保持友好、专业的态度
4. 回答要简洁明了，重点突出

重要原则：
- 优先使用提供的知识库内容回答
- 如果知识库中没有相关信息，可以基于通用知识回答
- 不确定的情况下明确说明
- 保持回答的专业性和准确性

请用友好、专业的语言进行回答，让用户感到满意。"""

STREAM_ERROR_MESSAGE = "抱歉，我遇到了一些问题，请稍后再试。"


class TurnState(enum.Enum):
    START = "start"
    TICKET_CHECK = "ticket_check"
    RETRIEVE = "retrieve"
    PROMPT_BUILD = "prompt_build"
    STREAMING = "streaming"
    END = "end"
    ERROR = "error"


TERMINAL_STATES = frozenset({TurnState.END, TurnState.ERROR})


@dataclass
class ChatRequest:
    message: str
    session_id: Optional[str] = None
    history: Sequence[ChatTurn] = ()
    api_key: Optional[str] = None
    enable_rag: bool = True


def _history_content(content: Any) -> str:
    return content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)


@dataclass
class TurnStateMachine:
    """Runs a single chat turn and yields its events in contract order."""

    request: ChatRequest
    clients: ModelClients
    retriever: Retriever
    tickets: TicketStore
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    history_window: int = 10
    rag_top_k: int = 5
    rag_threshold: float = 0.5
    stream_timeout: float = 60.0

    state: TurnState = TurnState.START
    ticket: Optional[Ticket] = None
    sources: List[SearchResult] = field(default_factory=list)
    messages: List[Dict[str, str]] = field(default_factory=list)
    error: Optional[str] = None

    async def events(self) -> AsyncIterator[ChatEvent]:
        """Drive the turn to a terminal state, yielding events as they happen."""

        handlers: Dict[TurnState, Callable[[], AsyncIterator[ChatEvent]]] = {
            TurnState.START: self._start,
            TurnState.TICKET_CHECK: self._ticket_check,
            TurnState.RETRIEVE: self._retrieve,
            TurnState.PROMPT_BUILD: self._prompt_build,
            TurnState.STREAMING: self._stream,
        }
        with log_session(self.request.session_id):
            while self.state not in TERMINAL_STATES:
                async with aclosing(handlers[self.state]()) as step:
                    async for event in step:
                        yield event

            if self.state is TurnState.END:
                yield ChatEvent("end")
            else:
                yield ChatEvent("error", self.error or STREAM_ERROR_MESSAGE)

    def _transition(self, state: TurnState) -> None:
        logger.debug("Turn %s: %s -> %s", self.request.session_id, self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------
    async def _start(self) -> AsyncIterator[ChatEvent]:
        self._transition(TurnState.TICKET_CHECK)
        return
        yield  # pragma: no cover

    async def _ticket_check(self) -> AsyncIterator[ChatEvent]:
        detection = detect_ticket(self.request.message)
        self._transition(TurnState.RETRIEVE)
        if detection is None:
            return

        title, description = extract_ticket_info(self.request.message)
        try:
            self.ticket = await asyncio.to_thread(
                self.tickets.create,
                title=title,
                description=description,
                category=detection.category,
                priority=detection.priority,
            )
        except Exception:
            logger.exception("Could not create ticket for session %s", self.request.session_id)
            return
        logger.info("Opened ticket #%s from chat: %s", self.ticket.id, self.ticket.title)
        yield ChatEvent("ticket", self.ticket)

    async def _retrieve(self) -> AsyncIterator[ChatEvent]:
        if self.request.enable_rag:
            self.sources = await self.retriever.retrieve(
                self.request.message,
                self.clients.embedder,
                top_k=self.rag_top_k,
                threshold=self.rag_threshold,
            )
        self._transition(TurnState.PROMPT_BUILD)
        if self.sources:
            yield ChatEvent("sources", list(self.sources))

    async def _prompt_build(self) -> AsyncIterator[ChatEvent]:
        self.messages = build_messages(
            self.request.message,
            self.request.history,
            system_prompt=self.system_prompt,
            context=build_context(self.sources),
            history_window=self.history_window,
        )
        self._transition(TurnState.STREAMING)
        return
        yield  # pragma: no cover

    async def _stream(self) -> AsyncIterator[ChatEvent]:
        stream = self.clients.chat_model.stream_chat(self.messages)
        try:
            while True:
                try:
                    fragment = await asyncio.wait_for(stream.__anext__(), timeout=self.stream_timeout)
                except StopAsyncIteration:
                    break
                yield ChatEvent("content", fragment)
        except asyncio.TimeoutError:
            logger.warning("Chat stream stalled for %.1fs", self.stream_timeout)
            self.error = STREAM_ERROR_MESSAGE
            self._transition(TurnState.ERROR)
            return
        except Exception:
            logger.exception("Chat stream failed for session %s", self.request.session_id)
            self.error = STREAM_ERROR_MESSAGE
            self._transition(TurnState.ERROR)
            return
        finally:
            await stream.aclose()
        self._transition(TurnState.END)


def build_messages(
    message: str,
    history: Sequence[ChatTurn],
    *,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    context: str = "",
    history_window: int = 10,
) -> List[Dict[str, str]]:
    """Assemble system prompt (+ context), the recent history and the message."""

    messages = [{"role": "system", "content": system_prompt + context}]
    recent = list(history)[-history_window:] if history_window > 0 else []
    for turn in recent:
        messages.append({"role": turn.role, "content": _history_content(turn.content)})
    messages.append({"role": "user", "content": message})
    return messages


class ChatOrchestrator:
    """Glue together ticket detection, retrieval and generation."""

    def __init__(
        self,
        retriever: Retriever,
        tickets: TicketStore,
        clients_factory: Callable[[Optional[str]], ModelClients],
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_window: int = 10,
        rag_top_k: int = 5,
        rag_threshold: float = 0.5,
        stream_timeout: float = 60.0,
    ) -> None:
        self.retriever = retriever
        self.tickets = tickets
        self.clients_factory = clients_factory
        self.system_prompt = system_prompt
        self.history_window = history_window
        self.rag_top_k = rag_top_k
        self.rag_threshold = rag_threshold
        self.stream_timeout = stream_timeout

    def start_turn(self, request: ChatRequest) -> TurnStateMachine:
        """Prepare a turn; raises :class:`ConfigurationError` before any event."""

        clients = self.clients_factory(request.api_key)
        return TurnStateMachine(
            request=request,
            clients=clients,
            retriever=self.retriever,
            tickets=self.tickets,
            system_prompt=self.system_prompt,
            history_window=self.history_window,
            rag_top_k=self.rag_top_k,
            rag_threshold=self.rag_threshold,
            stream_timeout=self.stream_timeout,
        )

    async def stream(self, request: ChatRequest) -> AsyncIterator[ChatEvent]:
        async with aclosing(self.start_turn(request).events()) as events:
            async for event in events:
                yield event
