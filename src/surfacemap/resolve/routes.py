from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Optional

CONTAINER_SUFFIXES = ("Controller", "PageModel")

_TOKEN = re.compile(r"\[([A-Za-z_][A-Za-z0-9_]*)\]")
_MULTI_SLASH = re.compile(r"/{2,}")
_PAGE_SUFFIX = ".cshtml.cs"


def token_name(container_name: str) -> str:
    """ReportsController -> Reports. A bare suffix is left alone."""
    for suffix in CONTAINER_SUFFIXES:
        if container_name.endswith(suffix) and container_name != suffix:
            return container_name[: -len(suffix)]
    return container_name


def substitute_tokens(
    template: str,
    container_name: str,
    member_name: str,
    area: Optional[str] = None,
) -> str:
    values = {"controller": token_name(container_name), "action": member_name}
    if area:
        values["area"] = area

    def repl(m: re.Match) -> str:
        return values.get(m.group(1).lower(), m.group(0))

    return _TOKEN.sub(repl, template)


def unresolved_tokens(route: Optional[str]) -> tuple[str, ...]:
    if not route:
        return ()
    return tuple(m.group(0) for m in _TOKEN.finditer(route))


def _is_absolute(fragment: str) -> bool:
    return fragment.startswith("/") or fragment.startswith("~/")


def normalize_route(route: str) -> str:
    """Collapse doubled slashes and drop leading/trailing ones. `..` is kept verbatim."""
    if route.startswith("~/"):
        route = route[1:]
    return _MULTI_SLASH.sub("/", route).strip("/")


def join_route(*fragments: Optional[str]) -> str:
    parts = [normalize_route(f) for f in fragments if f]
    return "/".join(p for p in parts if p)


def compose_route(
    container_fragment: Optional[str],
    method_fragment: Optional[str],
    container_name: str,
    member_name: str,
    area: Optional[str] = None,
) -> Optional[str]:
    """
    Final route for one member.

    1. no method fragment: the container fragment as declared (None if empty)
    2. tokens are substituted inside the method fragment only
    3. the two are joined with exactly one slash and no leading slash;
       a method fragment starting with "/" or "~/" replaces the container part
    """
    if not method_fragment:
        return container_fragment or None

    resolved = substitute_tokens(method_fragment, container_name, member_name, area=area)
    if _is_absolute(method_fragment):
        return normalize_route(resolved)
    return join_route(container_fragment, resolved)


def _after_last(parts: list[str], marker: str) -> list[str]:
    if marker not in parts:
        return parts
    last = len(parts) - 1 - parts[::-1].index(marker)
    return parts[last + 1 :]


def page_route_from_path(rel_path: str) -> Optional[str]:
    """
    Conventional Razor page route from the page model's path:
    Pages/Orders/Edit.cshtml.cs -> Orders/Edit, Pages/Index.cshtml.cs -> "".
    Paths without a Pages/ segment are taken relative to their own root.
    """
    p = PurePosixPath(rel_path.replace("\\", "/"))
    if not p.name.endswith(_PAGE_SUFFIX):
        return None

    parts = _after_last(list(p.parts), "Pages")

    leaf = parts[-1][: -len(_PAGE_SUFFIX)]
    segments = parts[:-1] + ([] if leaf == "Index" else [leaf])
    return "/".join(segments)


def page_route_from_namespace(namespace: str, class_name: str) -> Optional[str]:
    """Best guess for compiled pages: MyApp.Pages.Orders + EditModel -> Orders/Edit."""
    parts = namespace.split(".") if namespace else []
    if "Pages" not in parts:
        return None
    folder = _after_last(parts, "Pages")
    leaf = class_name[: -len("Model")] if class_name.endswith("Model") and class_name != "Model" else class_name
    if leaf == "PageModel" or not leaf:
        return None
    segments = folder + ([] if leaf == "Index" else [leaf])
    return "/".join(segments)


def apply_page_directive(default_route: Optional[str], directive: Optional[str]) -> Optional[str]:
    """
    `@page "x"` appends to the conventional route; `@page "/x"` replaces it.
    """
    if directive is None:
        return default_route
    if _is_absolute(directive):
        return normalize_route(directive)
    return join_route(default_route, directive)


def handler_route(page_route: Optional[str], handler: str) -> Optional[str]:
    """Path-segment handler selection: page route plus the handler name. No page route, no route."""
    if page_route is None:
        return None
    if not handler:
        return page_route
    return join_route(page_route, handler)
