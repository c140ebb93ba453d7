from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from surfacemap.catalog.builder import CatalogBuilder
from surfacemap.catalog.render import ReportBuffer, render_json, render_text
from surfacemap.config import Settings, load_settings
from surfacemap.domain.models import Catalog, Diagnostic, DiagnosticCode
from surfacemap.errors import RootPathNotFound
from surfacemap.extractors.assembly.walker import AssemblyWalker
from surfacemap.extractors.csharp.walker import SourceWalker
from surfacemap.extractors.declarations import DeclarationWalker
from surfacemap.repo.assets import inventory_static_assets
from surfacemap.repo.project import detect_project, find_assembly, is_assembly_path, project_name

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalkTarget:
    strategy: str  # "source" | "assembly"
    path: Path


@dataclass(frozen=True)
class CatalogResult:
    catalog: Catalog
    report: str
    targets: list[WalkTarget]
    files_scanned: int
    duplicates: int
    out_path: Optional[str]


def select_targets(
    target: Path,
    assembly: Optional[Path],
    settings: Settings,
) -> tuple[list[WalkTarget], Optional[Path]]:
    """
    Decide which walker runs over what, plus the project root (if any).

    - a directory with C# sources is walked as source
    - an explicit --assembly is always walked, after the sources
    - a directory without sources falls back to its built assembly under bin/
    - TARGET itself may be the assembly
    Raises RootPathNotFound when nothing usable is left.
    """
    targets: list[WalkTarget] = []
    project_root: Optional[Path] = None

    if target.is_dir():
        project_root = target.resolve()
        layout = detect_project(project_root, patterns=settings.source_patterns, ignores=settings.ignore_dirs)
        if layout.has_sources:
            targets.append(WalkTarget("source", project_root))
        if assembly is None and not layout.has_sources:
            assembly = find_assembly(project_root, settings.assembly_name or layout.name)
            if assembly is not None:
                log.info("no sources under %s, using built assembly %s", project_root, assembly)
    elif is_assembly_path(target):
        if assembly is None:
            assembly = target
    elif assembly is None:
        raise RootPathNotFound(target)

    if assembly is not None:
        if not assembly.exists() and project_root is None:
            raise RootPathNotFound(assembly)
        targets.append(WalkTarget("assembly", assembly.resolve()))

    return targets, project_root


def _walker_for(target: WalkTarget, settings: Settings) -> DeclarationWalker:
    if target.strategy == "source":
        return SourceWalker(patterns=settings.source_patterns, ignores=settings.ignore_dirs)
    return AssemblyWalker()


def build_catalog(
    target: Path,
    assembly: Optional[Path] = None,
    wwwroot: Optional[Path] = None,
    settings: Optional[Settings] = None,
) -> tuple[Catalog, list[WalkTarget], int, int]:
    settings = settings or load_settings()
    targets, project_root = select_targets(target, assembly, settings)

    builder = CatalogBuilder(handler_mode=settings.handler_mode)

    if wwwroot is None and project_root is not None:
        wwwroot = project_root / settings.wwwroot_name
    builder.set_assets(inventory_static_assets(wwwroot))

    if not targets:
        looked_in = project_root or target
        dll = f"{settings.assembly_name or project_name(looked_in)}.dll"
        log.warning("nothing to catalog under %s (no sources, no %s)", looked_in, dll)
        builder.add_diagnostics(
            [
                Diagnostic(
                    code=DiagnosticCode.NO_INPUT_FOUND,
                    subject=str(looked_in),
                    message=f"no {', '.join(settings.source_patterns)} sources and no {dll} under bin/",
                )
            ]
        )

    files_scanned = 0
    for t in targets:
        walker = _walker_for(t, settings)
        found = builder.add_types(walker.walk(t.path))
        builder.add_diagnostics(walker.diagnostics)
        files_scanned += walker.stats.files_seen
        log.info("%s walk of %s: %d declarations", t.strategy, t.path, found)

    return builder.build(), targets, files_scanned, builder.duplicates


def run_catalog(
    target: Path,
    assembly: Optional[Path] = None,
    wwwroot: Optional[Path] = None,
    out: Optional[Path] = None,
    fmt: str = "text",
    settings: Optional[Settings] = None,
) -> CatalogResult:
    """
    One complete, independent catalog run: walk, resolve, build, render and
    (when `out` is given) write the report. Nothing is cached between runs.
    """
    catalog, targets, files_scanned, duplicates = build_catalog(
        target, assembly=assembly, wwwroot=wwwroot, settings=settings
    )

    with ReportBuffer(out) as buf:
        if fmt == "json":
            buf.line(render_json(catalog))
        else:
            render_text(catalog, buf)
        report = buf.text()

    return CatalogResult(
        catalog=catalog,
        report=report,
        targets=targets,
        files_scanned=files_scanned,
        duplicates=duplicates,
        out_path=str(out) if out is not None else None,
    )
