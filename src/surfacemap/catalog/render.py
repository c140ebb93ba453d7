from __future__ import annotations

from pathlib import Path
from typing import Optional

from surfacemap.domain.models import Catalog, Container, Operation, Parameter, SurfaceKind

TITLE = "=== Project Documentation ==="
NO_DIRECTORY = "(No directory found)"
NO_HANDLERS = "(no handlers found)"
NO_ROUTE = "(no route)"

_SECTIONS = (
    (SurfaceKind.CONTROLLER_ACTION, "Controller Operations", "Controller"),
    (SurfaceKind.PAGE_HANDLER, "Page Handler Operations", "Page"),
)


class ReportBuffer:
    """
    Line buffer for one report. Used as a context manager it writes its
    contents to `target` exactly once, on a clean exit.
    """

    def __init__(self, target: Optional[Path] = None) -> None:
        self.target = target
        self._lines: list[str] = []

    def line(self, text: str = "") -> None:
        self._lines.append(text)

    def heading(self, title: str) -> None:
        self.line(f"== {title} ==")

    def text(self) -> str:
        return "\n".join(self._lines) + "\n"

    def __enter__(self) -> "ReportBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None and self.target is not None:
            self.target.parent.mkdir(parents=True, exist_ok=True)
            self.target.write_text(self.text(), encoding="utf-8")


def format_route(op: Operation) -> str:
    if op.route_template is None:
        return NO_ROUTE
    route = op.route_template or "/"
    if op.unresolved_tokens:
        route += f"  (unresolved: {' '.join(op.unresolved_tokens)})"
    return route


def format_operation(op: Operation) -> str:
    text = f"Method: {op.member_name}"
    if op.http_verb:
        text += f" [{op.http_verb}]"
    if op.authorization is not None:
        text += f" [{op.authorization.summary()}]"
    return text


def format_parameter(p: Parameter) -> str:
    text = f"- {p.name} : {p.declared_type}"
    if p.allowed_values:
        text += f" ({'|'.join(p.allowed_values)})"
    elif p.handler:
        text += f" ({p.handler})"
    return text


def format_handlers(op: Operation) -> str:
    if not op.handler_authorizations:
        return ", ".join(op.handlers)
    names = []
    for name, auth in zip(op.handlers, op.handler_authorizations):
        names.append(f"{name} [{auth.summary()}]" if auth is not None else name)
    return ", ".join(names)


def _container_header(label: str, c: Container) -> str:
    if c.kind == SurfaceKind.PAGE_HANDLER and c.source.endswith(".cshtml.cs"):
        return f"{label}: {c.source} ({c.name})"
    return f"{label}: {c.name}"


def _render_container(buf: ReportBuffer, label: str, c: Container) -> None:
    buf.line(_container_header(label, c))
    if c.authorization is not None:
        buf.line(f"  [{c.authorization.summary()}]")
    if not c.operations:
        buf.line(f"  {NO_HANDLERS}")
    for op in c.operations:
        buf.line(f"  {format_operation(op)}")
        buf.line(f"    Route: {format_route(op)}")
        if len(op.handlers) > 1:
            buf.line(f"    Handlers: {format_handlers(op)}")
        for p in op.parameters:
            buf.line(f"    {format_parameter(p)}")
    buf.line()


def render_text(catalog: Catalog, buf: Optional[ReportBuffer] = None) -> str:
    """
    Plain-text report, sections in fixed order: warnings, static assets,
    controller operations, page handler operations. Contains nothing
    time- or machine-dependent, so identical inputs give identical bytes.
    """
    buf = buf if buf is not None else ReportBuffer()

    buf.line(TITLE)
    buf.line()

    buf.heading("Warnings")
    if catalog.diagnostics:
        for d in catalog.diagnostics:
            buf.line(f"- {d.summary()}")
    else:
        buf.line("  (none)")
    buf.line()

    buf.heading("Static Asset Inventory")
    if not catalog.assets.found:
        buf.line(f"  {NO_DIRECTORY}")
    elif not catalog.assets.files:
        buf.line("  (empty)")
    for f in catalog.assets.files:
        buf.line(f"- {f}")
    buf.line()

    for kind, title, label in _SECTIONS:
        buf.heading(title)
        containers = catalog.containers_of(kind)
        if not containers:
            buf.line("  (none)")
            buf.line()
        for c in containers:
            _render_container(buf, label, c)

    return buf.text()


def render_json(catalog: Catalog) -> str:
    return catalog.model_dump_json(indent=2)
