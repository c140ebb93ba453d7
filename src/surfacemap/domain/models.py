from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

HttpVerb = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


class SurfaceKind(str, Enum):
    CONTROLLER_ACTION = "ControllerAction"
    PAGE_HANDLER = "PageHandler"


class DiagnosticCode(str, Enum):
    PARSE_FAILED = "ParseFailed"
    ASSEMBLY_LOAD_FAILED = "AssemblyLoadFailed"
    ROUTE_TOKEN_UNRESOLVED = "RouteTokenUnresolved"
    NO_INPUT_FOUND = "NoInputFound"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Authorization(_Frozen):
    required: bool = True
    policy: Optional[str] = None
    roles: Optional[str] = None

    def summary(self) -> str:
        if not self.required:
            return "AllowAnonymous"
        parts = ["Authorize"]
        if self.policy:
            parts.append(self.policy)
        if self.roles:
            parts.append(f"Roles={self.roles}")
        return " ".join(parts)


class Parameter(_Frozen):
    name: str
    declared_type: str = "unknown"
    handler: Optional[str] = None  # page handler that declared it (collapsed pages)
    allowed_values: tuple[str, ...] = ()


class Operation(_Frozen):
    """One externally callable entry point."""

    surface_kind: SurfaceKind
    container_name: str
    member_name: str
    http_verb: Optional[HttpVerb] = None
    route_template: Optional[str] = None
    unresolved_tokens: tuple[str, ...] = ()
    authorization: Optional[Authorization] = None
    parameters: tuple[Parameter, ...] = ()
    handlers: tuple[str, ...] = ()
    # aligned with `handlers`; empty when every handler shares `authorization`
    handler_authorizations: tuple[Optional[Authorization], ...] = ()
    order: int = 0

    @property
    def key(self) -> tuple[str, str, Optional[str]]:
        return (self.container_name, self.member_name, self.http_verb)


class Container(_Frozen):
    kind: SurfaceKind
    name: str
    namespace: str = ""
    source: str = ""
    route: Optional[str] = None
    authorization: Optional[Authorization] = None
    operations: tuple[Operation, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name


class Diagnostic(_Frozen):
    code: DiagnosticCode
    subject: str
    message: str = ""

    def summary(self) -> str:
        text = f"{self.code.value}: {self.subject}"
        return f"{text} ({self.message})" if self.message else text


class AssetInventory(_Frozen):
    root: Optional[str] = None
    found: bool = False
    files: tuple[str, ...] = ()


class Catalog(_Frozen):
    assets: AssetInventory = AssetInventory()
    containers: tuple[Container, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()

    def containers_of(self, kind: SurfaceKind) -> list[Container]:
        return [c for c in self.containers if c.kind == kind]

    def operations_of(self, kind: SurfaceKind) -> list[Operation]:
        return [op for c in self.containers_of(kind) for op in c.operations]

    @property
    def operations(self) -> list[Operation]:
        return [op for c in self.containers for op in c.operations]
