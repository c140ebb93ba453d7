from __future__ import annotations

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from surfacemap.repo.ignore import DEFAULT_IGNORES


class HandlerMode(str, Enum):
    """How page handlers sharing one page route are reported."""

    QUERY = "query"  # one operation per (page, verb), handler picked via ?handler=
    PATH = "path"  # one operation per handler, handler name as a path segment


class Settings(BaseModel):
    source_patterns: tuple[str, ...] = ("*.cs",)
    ignore_dirs: frozenset[str] = Field(default_factory=lambda: frozenset(DEFAULT_IGNORES))
    wwwroot_name: str = "wwwroot"
    handler_mode: HandlerMode = HandlerMode.QUERY
    assembly_name: Optional[str] = None
    log_level: str = "WARNING"


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def load_settings(**overrides) -> Settings:
    """
    Build Settings from SURFACEMAP_* environment variables, then apply overrides.
    Overrides set to None are ignored so CLI options can be passed straight through.
    """
    data: dict = {}

    mode = os.getenv("SURFACEMAP_HANDLER_MODE")
    if mode:
        data["handler_mode"] = mode.strip().lower()

    extra_ignores = os.getenv("SURFACEMAP_IGNORE_DIRS")
    if extra_ignores:
        data["ignore_dirs"] = frozenset(DEFAULT_IGNORES) | frozenset(_csv(extra_ignores))

    patterns = os.getenv("SURFACEMAP_SOURCE_PATTERNS")
    if patterns:
        data["source_patterns"] = tuple(_csv(patterns))

    if os.getenv("SURFACEMAP_WWWROOT"):
        data["wwwroot_name"] = os.environ["SURFACEMAP_WWWROOT"]
    if os.getenv("SURFACEMAP_ASSEMBLY_NAME"):
        data["assembly_name"] = os.environ["SURFACEMAP_ASSEMBLY_NAME"]
    if os.getenv("SURFACEMAP_LOG_LEVEL"):
        data["log_level"] = os.environ["SURFACEMAP_LOG_LEVEL"].upper()

    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
