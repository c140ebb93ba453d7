from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Protocol

from surfacemap.domain.models import Diagnostic, SurfaceKind

# First match wins.
BASE_MARKERS: tuple[tuple[str, SurfaceKind], ...] = (
    ("PageModel", SurfaceKind.PAGE_HANDLER),
    ("Controller", SurfaceKind.CONTROLLER_ACTION),
)


@dataclass(frozen=True)
class RawArgument:
    """One attribute argument. `literal` is set only for string literals."""

    text: str
    literal: Optional[str] = None
    name: Optional[str] = None  # Policy = "x" -> "Policy"


@dataclass(frozen=True)
class RawAttribute:
    name: str
    arguments: tuple[RawArgument, ...] = ()

    @property
    def short_name(self) -> str:
        # Microsoft.AspNetCore.Mvc.HttpGetAttribute -> HttpGet
        base = self.name.rsplit(".", 1)[-1]
        if "::" in base:
            base = base.rsplit("::", 1)[-1]
        if base.endswith("Attribute") and base != "Attribute":
            base = base[: -len("Attribute")]
        return base

    @property
    def positional(self) -> tuple[RawArgument, ...]:
        return tuple(a for a in self.arguments if a.name is None)

    def first_literal(self) -> Optional[str]:
        pos = self.positional
        return pos[0].literal if pos else None

    def named(self, key: str) -> Optional[RawArgument]:
        for a in self.arguments:
            if a.name is not None and a.name.lower() == key.lower():
                return a
        return None


@dataclass(frozen=True)
class RawParameter:
    name: str
    declared_type: str


@dataclass(frozen=True)
class RawMethod:
    name: str
    attributes: tuple[RawAttribute, ...] = ()
    parameters: tuple[RawParameter, ...] = ()
    line: Optional[int] = None


@dataclass(frozen=True)
class RawType:
    """
    A candidate container (controller or page model) as produced by a walker.
    Carries everything the resolver needs; nothing downstream re-reads files.
    """

    name: str
    kind: SurfaceKind
    namespace: str = ""
    base_types: tuple[str, ...] = ()
    attributes: tuple[RawAttribute, ...] = ()
    methods: tuple[RawMethod, ...] = ()
    origin: str = ""  # absolute file path or assembly path
    rel_path: str = ""  # display path relative to the walked root
    line: Optional[int] = None
    page_template: Optional[str] = None  # @page directive of the sibling .cshtml

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name


def classify_bases(base_types: tuple[str, ...] | list[str]) -> Optional[SurfaceKind]:
    """
    Textual heuristic: a type is a controller / page model when any entry of
    its base list contains the marker. No symbol resolution is attempted.
    """
    for marker, kind in BASE_MARKERS:
        if any(marker in b for b in base_types):
            return kind
    return None


class DeclarationWalker(Protocol):
    """Anything that turns a target (directory or binary) into RawTypes."""

    diagnostics: list[Diagnostic]

    def walk(self, target: Path) -> Iterator[RawType]:
        ...


@dataclass
class WalkStats:
    files_seen: int = 0
    types_found: int = 0
    failures: int = 0
