"""Runtime settings for the support desk.

Values are resolved in three layers: built-in defaults, environment
variables (``SUPPORT_DESK_*`` plus ``OPENAI_API_KEY``/``OPENAI_BASE_URL``),
then an optional JSON configuration file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SUPPORT_DESK_",
        env_file=".env",
        extra="forbid",
        frozen=True,
        populate_by_name=True,
    )

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPPORT_DESK_API_KEY", "OPENAI_API_KEY"),
    )
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPPORT_DESK_BASE_URL", "OPENAI_BASE_URL"),
    )
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-large"

    data_dir: str = "data"
    knowledge_dir: str = "data/knowledge"

    max_chunk_size: int = 500
    chunk_overlap: int = 50
    min_chunk_size: int = 100
    split_by_paragraph: bool = True

    rag_top_k: int = Field(default=5, ge=1)
    rag_threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    history_window: int = Field(default=10, ge=0)

    request_timeout: float = Field(default=30.0, gt=0)
    stream_timeout: float = Field(default=60.0, gt=0)
    embed_batch_size: int = Field(default=16, ge=1)

    autosave: bool = True
    auto_init_builtin: bool = True
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    @property
    def vectors_path(self) -> Path:
        return Path(self.data_dir) / "vectors.json"

    @property
    def tickets_path(self) -> Path:
        return Path(self.data_dir) / "tickets.json"


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Configuration file is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Configuration file must contain a JSON object")
    return payload


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Build validated settings from defaults, the environment and a file.

    File values are passed as init arguments, so they win over the
    environment.
    """

    overrides = _read_config_file(Path(config_path)) if config_path is not None else {}
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
