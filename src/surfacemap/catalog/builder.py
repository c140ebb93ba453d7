from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from surfacemap.config import HandlerMode
from surfacemap.domain.models import (
    AssetInventory,
    Authorization,
    Catalog,
    Container,
    Diagnostic,
    DiagnosticCode,
    Operation,
    Parameter,
    SurfaceKind,
)
from surfacemap.extractors.declarations import RawMethod, RawType
from surfacemap.resolve.annotations import ContainerAnnotations, resolve_container, resolve_member
from surfacemap.resolve.routes import (
    apply_page_directive,
    compose_route,
    handler_route,
    page_route_from_namespace,
    page_route_from_path,
    unresolved_tokens,
)

log = logging.getLogger(__name__)

_HANDLER_NAME = re.compile(r"^On(Get|Post|Put|Delete|Patch|Head|Options)(.*?)(?:Async)?$")

_KIND_ORDER = {SurfaceKind.CONTROLLER_ACTION: 0, SurfaceKind.PAGE_HANDLER: 1}


def parse_handler(method_name: str) -> Optional[tuple[str, str]]:
    """OnPostSaveAsync -> ("POST", "Save"); OnGet -> ("GET", ""); Save -> None."""
    m = _HANDLER_NAME.match(method_name)
    if m is None:
        return None
    return m.group(1).upper(), m.group(2)


@dataclass
class _PageHandler:
    order: int
    method: RawMethod
    verb: str
    name: str
    authorization: Optional[Authorization]


@dataclass
class _ContainerDraft:
    raw: RawType
    route: Optional[str] = None
    authorization: Optional[Authorization] = None
    operations: dict[tuple[str, Optional[str]], Operation] = field(default_factory=dict)


class CatalogBuilder:
    """
    Accumulates declarations from any number of walkers and produces one
    immutable Catalog.

    Operations are unique per (container, member, verb); the first one seen
    wins, so when a source tree and an assembly describe the same code the
    strategy added first takes precedence.
    """

    def __init__(self, handler_mode: HandlerMode | str = HandlerMode.QUERY) -> None:
        self.handler_mode = HandlerMode(handler_mode)
        self.assets = AssetInventory()
        self.duplicates = 0
        self._containers: dict[tuple[SurfaceKind, str, str], _ContainerDraft] = {}
        self._diagnostics: list[Diagnostic] = []

    def set_assets(self, assets: AssetInventory) -> None:
        self.assets = assets

    def add_diagnostics(self, diagnostics: Iterable[Diagnostic]) -> None:
        self._diagnostics.extend(diagnostics)

    def add_types(self, types: Iterable[RawType]) -> int:
        count = 0
        for raw in types:
            self.add_type(raw)
            count += 1
        return count

    def _container_key(self, raw: RawType) -> tuple[SurfaceKind, str, str]:
        """
        Source pages are told apart by their file, since every folder may hold
        its own IndexModel. Anything else (an assembly page included) joins the
        first container already seen under the same qualified name.
        """
        if raw.kind == SurfaceKind.PAGE_HANDLER and raw.rel_path.endswith(".cshtml.cs"):
            return (raw.kind, raw.qualified_name, raw.rel_path)
        for key in self._containers:
            if key[:2] == (raw.kind, raw.qualified_name):
                return key
        return (raw.kind, raw.qualified_name, "")

    def add_type(self, raw: RawType) -> None:
        key = self._container_key(raw)
        container = resolve_container(raw.attributes)

        draft = self._containers.get(key)
        if draft is None:
            draft = _ContainerDraft(raw=raw, authorization=container.authorization)
            self._containers[key] = draft

        if raw.kind == SurfaceKind.PAGE_HANDLER:
            self._add_page(draft, raw, container)
        else:
            self._add_controller(draft, raw, container)

    # ----------------------------
    # Controllers
    # ----------------------------

    def _add_controller(self, draft: _ContainerDraft, raw: RawType, container: ContainerAnnotations) -> None:
        if draft.route is None:
            draft.route = container.route

        for order, method in enumerate(raw.methods):
            member = resolve_member(method.attributes, container, subject=f"{raw.name}.{method.name}")
            if member.excluded:
                continue

            params = tuple(Parameter(name=p.name, declared_type=p.declared_type) for p in method.parameters)
            for fragment in member.route_fragments or (None,):
                route = compose_route(container.route, fragment, raw.name, method.name, area=container.area)
                self._add_operation(
                    draft,
                    Operation(
                        surface_kind=SurfaceKind.CONTROLLER_ACTION,
                        container_name=raw.name,
                        member_name=method.name,
                        http_verb=member.verb,
                        route_template=route,
                        unresolved_tokens=unresolved_tokens(route),
                        authorization=member.authorization,
                        parameters=params,
                        order=order,
                    ),
                )

    # ----------------------------
    # Pages
    # ----------------------------

    @staticmethod
    def page_route(raw: RawType) -> Optional[str]:
        if raw.rel_path.endswith(".cshtml.cs"):
            default = page_route_from_path(raw.rel_path)
        else:
            default = page_route_from_namespace(raw.namespace, raw.name)
        return apply_page_directive(default, raw.page_template)

    def _add_page(self, draft: _ContainerDraft, raw: RawType, container: ContainerAnnotations) -> None:
        route = self.page_route(raw)
        if draft.route is None:
            draft.route = route

        handlers: list[_PageHandler] = []
        for order, method in enumerate(raw.methods):
            parsed = parse_handler(method.name)
            if parsed is None:
                continue
            member = resolve_member(method.attributes, container, subject=f"{raw.name}.{method.name}")
            if member.excluded:
                continue
            verb, name = parsed
            handlers.append(_PageHandler(order, method, verb, name, member.authorization))

        if self.handler_mode == HandlerMode.PATH:
            for h in handlers:
                target = handler_route(route, h.name)
                self._add_operation(
                    draft,
                    Operation(
                        surface_kind=SurfaceKind.PAGE_HANDLER,
                        container_name=raw.name,
                        member_name=h.method.name,
                        http_verb=h.verb,
                        route_template=target,
                        unresolved_tokens=unresolved_tokens(target),
                        authorization=h.authorization,
                        parameters=tuple(Parameter(name=p.name, declared_type=p.declared_type) for p in h.method.parameters),
                        handlers=(h.method.name,),
                        order=h.order,
                    ),
                )
            return

        by_verb: dict[str, list[_PageHandler]] = {}
        for h in handlers:
            by_verb.setdefault(h.verb, []).append(h)

        for verb, group in by_verb.items():
            self._add_operation(draft, self._collapsed(raw.name, route, verb, group))

    @staticmethod
    def _collapsed(container_name: str, route: Optional[str], verb: str, group: list[_PageHandler]) -> Operation:
        """One operation for every handler of a page sharing a verb; ?handler= picks one."""
        named: list[str] = []
        for h in group:
            if h.name and h.name not in named:
                named.append(h.name)

        params: list[Parameter] = []
        if named:
            params.append(Parameter(name="handler", declared_type="string", allowed_values=tuple(named)))
        for h in group:
            params.extend(
                Parameter(name=p.name, declared_type=p.declared_type, handler=h.method.name)
                for p in h.method.parameters
            )

        first = group[0]
        member_name = first.method.name if len(group) == 1 else f"On{verb.capitalize()}"

        # handlers that disagree keep their own authorization; the operation
        # reports the first one that requires any
        auths = [h.authorization for h in group]
        authorization = first.authorization
        handler_authorizations: tuple[Optional[Authorization], ...] = ()
        if any(a != first.authorization for a in auths):
            authorization = next((a for a in auths if a is not None and a.required), first.authorization)
            handler_authorizations = tuple(auths)

        return Operation(
            surface_kind=SurfaceKind.PAGE_HANDLER,
            container_name=container_name,
            member_name=member_name,
            http_verb=verb,
            route_template=route,
            unresolved_tokens=unresolved_tokens(route),
            authorization=authorization,
            parameters=tuple(params),
            handlers=tuple(h.method.name for h in group),
            handler_authorizations=handler_authorizations,
            order=first.order,
        )

    # ----------------------------
    # Shared
    # ----------------------------

    def _add_operation(self, draft: _ContainerDraft, op: Operation) -> None:
        key = (op.member_name, op.http_verb)
        if key in draft.operations:
            self.duplicates += 1
            log.debug("dropping duplicate %s.%s [%s]", op.container_name, op.member_name, op.http_verb)
            return

        draft.operations[key] = op
        if op.unresolved_tokens:
            log.warning("unresolved route tokens in %s.%s: %s", op.container_name, op.member_name, op.route_template)
            self._diagnostics.append(
                Diagnostic(
                    code=DiagnosticCode.ROUTE_TOKEN_UNRESOLVED,
                    subject=f"{op.container_name}.{op.member_name}",
                    message=f"{' '.join(op.unresolved_tokens)} left in '{op.route_template}'",
                )
            )

    def build(self) -> Catalog:
        containers = []
        for draft in self._containers.values():
            raw = draft.raw
            ops = sorted(draft.operations.values(), key=lambda o: o.order)
            containers.append(
                Container(
                    kind=raw.kind,
                    name=raw.name,
                    namespace=raw.namespace,
                    source=raw.rel_path,
                    route=draft.route,
                    authorization=draft.authorization,
                    operations=tuple(ops),
                )
            )

        containers.sort(key=lambda c: (_KIND_ORDER[c.kind], c.name, c.namespace, c.source))
        return Catalog(assets=self.assets, containers=tuple(containers), diagnostics=tuple(self._diagnostics))
