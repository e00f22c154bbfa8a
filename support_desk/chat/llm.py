"""Wrappers around OpenAI-compatible embedding and chat endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Dict, List, Optional, Protocol, Sequence

import numpy as np
import openai
from openai import AsyncOpenAI

from ..config import Settings
from ..errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class EmbeddingBackend(Protocol):
    """Anything that can turn text into vectors."""

    model_name: str

    async def embed(self, text: str) -> np.ndarray:  # pragma: no cover - interface
        ...

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:  # pragma: no cover - interface
        ...


class ChatBackend(Protocol):
    """Anything that streams a chat completion as text fragments and answers image questions."""

    def stream_chat(self, messages: Sequence[Dict[str, str]]) -> AsyncGenerator[str, None]:  # pragma: no cover
        ...

    async def chat_with_image(self, image_url: str, question: str) -> str:  # pragma: no cover - interface
        ...


def _client(settings: Settings, api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.base_url,
        timeout=settings.request_timeout,
        max_retries=1,
    )


class OpenAIEmbedder:
    """Thin wrapper around the embeddings endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str = "text-embedding-3-large",
        batch_size: int = 16,
    ) -> None:
        self.client = client
        self.model_name = model
        self.batch_size = batch_size

    async def _create(self, texts: List[str]) -> List[List[float]]:
        try:
            response = await self.client.embeddings.create(
                model=self.model_name,
                input=texts,
                encoding_format="float",
            )
        except openai.OpenAIError as exc:
            raise UpstreamError(f"Embedding request failed: {exc}") from exc
        vectors = [item.embedding for item in sorted(response.data, key=lambda item: item.index)]
        if len(vectors) != len(texts):
            raise UpstreamError(f"Expected {len(texts)} embeddings, received {len(vectors)}")
        return vectors

    async def embed(self, text: str) -> np.ndarray:
        vectors = await self._create([text])
        return np.asarray(vectors[0], dtype=np.float64)

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            vectors.extend(await self._create(list(texts[start : start + self.batch_size])))
        logger.debug("Embedded %d texts with %s", len(vectors), self.model_name)
        return np.asarray(vectors, dtype=np.float64)

    async def validate(self) -> tuple[bool, Optional[str]]:
        """Check the API key with a one-word embedding request.

        Returns ``(valid, error)`` where ``error`` is a message suitable for
        showing to the user.
        """

        try:
            response = await self.client.embeddings.create(
                model=self.model_name, input="test", encoding_format="float"
            )
        except openai.AuthenticationError:
            return False, "API 密钥无效或已过期"
        except openai.PermissionDeniedError:
            return False, "API 访问被拒绝，请检查密钥权限"
        except openai.RateLimitError:
            return False, "API 调用频率超限，请稍后再试"
        except (openai.APIConnectionError, openai.APITimeoutError):
            return False, "无法连接到 API 服务器，请检查网络"
        except openai.OpenAIError as exc:
            logger.warning("Key validation failed: %s", exc)
            return False, str(exc) or "密钥验证失败"

        if not response.data or not response.data[0].embedding:
            return False, "API 返回数据缺少向量字段"
        logger.info("API key validated, embedding dimension %d", len(response.data[0].embedding))
        return True, None


class OpenAIChatModel:
    """Wrapper around the Chat Completions API."""

    def __init__(self, client: AsyncOpenAI, *, model: str = "gpt-4o-mini") -> None:
        self.client = client
        self.model = model

    async def stream_chat(self, messages: Sequence[Dict[str, str]]) -> AsyncGenerator[str, None]:
        """Yield content fragments in generation order.

        The upstream HTTP stream is closed when this generator is closed,
        including when the consumer stops early.
        """

        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=list(messages),
                stream=True,
            )
        except openai.OpenAIError as exc:
            raise UpstreamError(f"Chat request failed: {exc}") from exc

        async with stream:
            try:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    content = chunk.choices[0].delta.content
                    if content:
                        yield content
            except openai.OpenAIError as exc:
                raise UpstreamError(f"Chat stream failed: {exc}") from exc

    async def chat_with_image(self, image_url: str, question: str) -> str:
        """Ask ``question`` about the image at ``image_url`` and return the full answer."""

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": question},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }
        ]
        try:
            response = await self.client.chat.completions.create(model=self.model, messages=messages)
        except openai.OpenAIError as exc:
            raise UpstreamError(f"Image chat request failed: {exc}") from exc
        if not response.choices:
            raise UpstreamError("Image chat returned no choices")
        return response.choices[0].message.content or ""


@dataclass
class ModelClients:
    embedder: EmbeddingBackend
    chat_model: ChatBackend


def build_clients(settings: Settings, api_key: Optional[str] = None) -> ModelClients:
    """Create embedding and chat clients, preferring a per-request key."""

    key = api_key or settings.api_key
    if not key:
        raise ConfigurationError("An API key is required")
    client = _client(settings, key)
    return ModelClients(
        embedder=OpenAIEmbedder(
            client, model=settings.embedding_model, batch_size=settings.embed_batch_size
        ),
        chat_model=OpenAIChatModel(client, model=settings.chat_model),
    )
