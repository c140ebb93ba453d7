from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from surfacemap.repo.scanner import scan_source_files

log = logging.getLogger(__name__)

ASSEMBLY_SUFFIXES = (".dll", ".exe")


@dataclass(frozen=True)
class ProjectLayout:
    root: Path
    name: str
    csproj: Optional[Path]
    source_files: tuple[str, ...]

    @property
    def has_sources(self) -> bool:
        return bool(self.source_files)


def is_assembly_path(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in ASSEMBLY_SUFFIXES


def first_csproj(root: Path) -> Optional[Path]:
    projects = sorted(root.glob("*.csproj"))
    return projects[0] if projects else None


def project_name(root: Path) -> str:
    csproj = first_csproj(root)
    return csproj.stem if csproj else root.name


def detect_project(root: Path, patterns=("*.cs",), ignores=None) -> ProjectLayout:
    """
    Best-effort description of a project directory: its name (from the first
    .csproj, else the directory name) and the source files a walker would see.
    """
    root = root.resolve()
    csproj = first_csproj(root)
    name = csproj.stem if csproj else root.name
    sources = scan_source_files(root, patterns=patterns, ignores=ignores)
    return ProjectLayout(root=root, name=name, csproj=csproj, source_files=tuple(sources))


def find_assembly(root: Path, name: str) -> Optional[Path]:
    """
    Locate the built assembly for a project under its bin/ directory.
    Prefers Release over Debug and, within one configuration, the
    lexicographically last target framework (usually the newest).
    """
    bin_dir = root / "bin"
    if not bin_dir.is_dir():
        return None

    wanted = f"{name}.dll".lower()
    candidates = [p for p in bin_dir.rglob("*") if p.is_file() and p.name.lower() == wanted]
    if not candidates:
        return None

    def rank(p: Path) -> tuple[int, str]:
        parts = [s.lower() for s in p.relative_to(bin_dir).parts]
        return (1 if "release" in parts else 0, p.as_posix())

    best = max(candidates, key=rank)
    log.debug("assembly candidates for %s: %s -> %s", name, candidates, best)
    return best
