from __future__ import annotations

import logging
import os
import sys
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from rich.logging import RichHandler


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _resolve_data_dir() -> Path:
    override = _env("PITCHREVIEW_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent / "data"


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=_resolve_data_dir)
    database_url_override: str = Field(default_factory=lambda: _env("PITCHREVIEW_DATABASE_URL"))

    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "openai"))
    llm_model: str = Field(default_factory=lambda: _env("LLM_MODEL"))
    llm_base_url: str = Field(default_factory=lambda: _env("LLM_BASE_URL"))
    llm_timeout_seconds: float = Field(default_factory=lambda: float(_env("LLM_TIMEOUT_SECONDS", "90")))
    llm_max_retries: int = Field(default_factory=lambda: int(_env("LLM_MAX_RETRIES", "2")))
    llm_backoff_seconds: float = Field(default_factory=lambda: float(_env("LLM_BACKOFF_SECONDS", "1.0")))

    persist_attempts: int = Field(default_factory=lambda: int(_env("PITCHREVIEW_PERSIST_ATTEMPTS", "3")))
    host: str = Field(default_factory=lambda: _env("PITCHREVIEW_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(_env("PITCHREVIEW_PORT", "8001")))

    @property
    def database_path(self) -> Path:
        return self.data_dir / "pitchreview.db"

    @property
    def database_url(self) -> str:
        return self.database_url_override or f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(verbose: int = 1) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if sys.stderr.isatty():
        handlers = [RichHandler(show_time=True, show_path=False, markup=False)]
        fmt = "%(name)s: %(message)s"
    else:
        handlers = [logging.StreamHandler()]
        fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
