from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator, Optional

import dnfile

from surfacemap.domain.models import Diagnostic, DiagnosticCode
from surfacemap.errors import AssemblyLoadFailed
from surfacemap.extractors.assembly.signatures import (
    BlobReader,
    MethodSig,
    SignatureError,
    decode_custom_attribute,
    decode_method_signature,
    decode_type,
)
from surfacemap.extractors.declarations import (
    RawArgument,
    RawAttribute,
    RawMethod,
    RawParameter,
    RawType,
    WalkStats,
    classify_bases,
)

log = logging.getLogger(__name__)

# MethodAttributes (ECMA-335 II.23.1.10)
MEMBER_ACCESS_MASK = 0x0007
ACCESS_PUBLIC = 0x0006
METHOD_STATIC = 0x0010
METHOD_SPECIAL_NAME = 0x0800


def _s(value: Any) -> str:
    """Heap strings come back as HeapItemString in recent dnfile releases."""
    v = getattr(value, "value", value)
    if isinstance(v, bytes):
        return v.decode("utf-8", errors="replace")
    return "" if v is None else str(v)


def _blob(value: Any) -> bytes:
    v = getattr(value, "value", value)
    if v is None:
        return b""
    return bytes(v)


def _target(index: Any) -> tuple[Optional[str], int]:
    """(table name, 1-based row index) of a coded or simple table index."""
    if index is None:
        return None, 0
    table = getattr(index, "table", None)
    name = getattr(table, "name", None) if table is not None else None
    return name, int(getattr(index, "row_index", 0) or 0)


def _rows(tables: Any, name: str) -> list:
    table = getattr(tables, name, None)
    if table is None:
        return []
    return list(getattr(table, "rows", None) or [])


def _raw_flags(row: Any) -> Optional[int]:
    raw = getattr(getattr(row, "struct", None), "Flags", None)
    if isinstance(raw, int):
        return raw
    flags = getattr(row, "Flags", None)
    try:
        return int(getattr(flags, "value", flags))
    except (TypeError, ValueError):
        return None


def is_public_instance(row: Any) -> bool:
    flags = _raw_flags(row)
    if flags is not None:
        return (
            flags & MEMBER_ACCESS_MASK == ACCESS_PUBLIC
            and not flags & METHOD_STATIC
            and not flags & METHOD_SPECIAL_NAME
        )
    parsed = getattr(row, "Flags", None)
    return (
        bool(getattr(parsed, "mdPublic", False))
        and not getattr(parsed, "mdStatic", False)
        and not getattr(parsed, "mdSpecialName", False)
    )


def _argument_text(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, list):
        return "[" + ", ".join(_argument_text(v) for v in value) + "]"
    return str(value)


class MetadataReader:
    """
    Read-only view over an assembly's metadata tables, producing RawTypes for
    every controller / page model defined in it.
    """

    def __init__(self, tables: Any, origin: str = "", display: str = "") -> None:
        self.origin = origin
        self.display = display or origin
        self.typedefs = _rows(tables, "TypeDef")
        self.typerefs = _rows(tables, "TypeRef")
        self.typespecs = _rows(tables, "TypeSpec")
        self.methoddefs = _rows(tables, "MethodDef")
        self.memberrefs = _rows(tables, "MemberRef")
        self.custom_attributes = _rows(tables, "CustomAttribute")
        self.nested = self._index_nested(_rows(tables, "NestedClass"))
        self.method_owner = self._index_method_owners()
        self.attrs_by_parent = self._index_custom_attributes()
        self._typespec_depth = 0

    # ----------------------------
    # Indexes
    # ----------------------------

    @staticmethod
    def _index_nested(rows: list) -> dict[int, int]:
        out: dict[int, int] = {}
        for row in rows:
            _, nested = _target(getattr(row, "NestedClass", None))
            _, enclosing = _target(getattr(row, "EnclosingClass", None))
            if nested and enclosing:
                out[nested] = enclosing
        return out

    def _index_method_owners(self) -> dict[int, int]:
        owners: dict[int, int] = {}
        for t_idx, td in enumerate(self.typedefs, start=1):
            for ref in getattr(td, "MethodList", None) or []:
                _, m_idx = _target(ref)
                if m_idx:
                    owners[m_idx] = t_idx
        return owners

    def _index_custom_attributes(self) -> dict[tuple[str, int], list]:
        out: dict[tuple[str, int], list] = {}
        for ca in self.custom_attributes:
            table, idx = _target(getattr(ca, "Parent", None))
            if table and idx:
                out.setdefault((table, idx), []).append(ca)
        return out

    # ----------------------------
    # Names
    # ----------------------------

    def _typedef(self, idx: int) -> Any:
        return self.typedefs[idx - 1] if 0 < idx <= len(self.typedefs) else None

    def _typedef_name(self, idx: int) -> str:
        td = self._typedef(idx)
        return _s(td.TypeName) if td is not None else f"TypeDef#{idx}"

    def _typedef_namespace(self, idx: int) -> str:
        enclosing = self.nested.get(idx)
        if enclosing:
            outer_ns = self._typedef_namespace(enclosing)
            outer = self._typedef_name(enclosing)
            return f"{outer_ns}.{outer}" if outer_ns else outer
        td = self._typedef(idx)
        return _s(td.TypeNamespace) if td is not None else ""

    def _typeref_name(self, idx: int, qualified: bool = False) -> str:
        if not 0 < idx <= len(self.typerefs):
            return f"TypeRef#{idx}"
        tr = self.typerefs[idx - 1]
        name = _s(tr.TypeName)
        ns = _s(getattr(tr, "TypeNamespace", ""))
        return f"{ns}.{name}" if qualified and ns else name

    def _typespec_name(self, idx: int) -> str:
        if not 0 < idx <= len(self.typespecs) or self._typespec_depth > 8:
            return f"TypeSpec#{idx}"
        self._typespec_depth += 1
        try:
            return decode_type(BlobReader(_blob(self.typespecs[idx - 1].Signature)), self.resolve).name
        except SignatureError:
            return f"TypeSpec#{idx}"
        finally:
            self._typespec_depth -= 1

    def resolve(self, table: str, idx: int) -> str:
        if table == "TypeDef":
            return self._typedef_name(idx)
        if table == "TypeRef":
            return self._typeref_name(idx)
        return self._typespec_name(idx)

    def _name_of(self, index: Any, qualified: bool = False) -> str:
        table, idx = _target(index)
        if table == "TypeRef":
            return self._typeref_name(idx, qualified=qualified)
        if table == "TypeDef":
            name = self._typedef_name(idx)
            ns = self._typedef_namespace(idx)
            return f"{ns}.{name}" if qualified and ns else name
        if table == "TypeSpec":
            return self._typespec_name(idx)
        return ""

    # ----------------------------
    # Types
    # ----------------------------

    def base_chain(self, idx: int) -> list[str]:
        """Base type names from the direct base outwards, stopping at the assembly boundary."""
        names: list[str] = []
        seen = {idx}
        td = self._typedef(idx)
        while td is not None:
            table, base_idx = _target(getattr(td, "Extends", None))
            if table != "TypeDef":
                name = self._name_of(getattr(td, "Extends", None))
                if name:
                    names.append(name)
                break
            if base_idx in seen:
                break
            seen.add(base_idx)
            names.append(self._typedef_name(base_idx))
            td = self._typedef(base_idx)
        return names

    def types(self) -> list[RawType]:
        out: list[RawType] = []
        for idx, td in enumerate(self.typedefs, start=1):
            name = _s(td.TypeName)
            if not name or name.startswith("<"):
                continue
            bases = tuple(self.base_chain(idx))
            kind = classify_bases(bases)
            if kind is None:
                continue

            methods = []
            for ref in getattr(td, "MethodList", None) or []:
                _, m_idx = _target(ref)
                if not 0 < m_idx <= len(self.methoddefs):
                    continue
                row = self.methoddefs[m_idx - 1]
                m_name = _s(row.Name)
                if m_name.startswith("<") or not is_public_instance(row):
                    continue
                methods.append(self._raw_method(m_idx, row))

            out.append(
                RawType(
                    name=name,
                    kind=kind,
                    namespace=self._typedef_namespace(idx),
                    base_types=bases,
                    attributes=self.attributes("TypeDef", idx),
                    methods=tuple(methods),
                    origin=self.origin,
                    rel_path=self.display,
                )
            )
        return out

    def _raw_method(self, idx: int, row: Any) -> RawMethod:
        try:
            sig: Optional[MethodSig] = decode_method_signature(_blob(row.Signature), self.resolve)
        except SignatureError as exc:
            log.debug("unreadable signature for %s: %s", _s(row.Name), exc)
            sig = None

        named: dict[int, str] = {}
        for ref in getattr(row, "ParamList", None) or []:
            prow = getattr(ref, "row", None)
            if prow is None:
                continue
            seq = int(getattr(prow, "Sequence", 0) or 0)
            if seq > 0:
                named[seq] = _s(prow.Name)

        params: list[RawParameter] = []
        count = len(sig.params) if sig is not None else len(named)
        for i in range(1, count + 1):
            ptype = sig.params[i - 1].name if sig is not None else "unknown"
            params.append(RawParameter(name=named.get(i, f"arg{i}"), declared_type=ptype))

        return RawMethod(
            name=_s(row.Name),
            attributes=self.attributes("MethodDef", idx),
            parameters=tuple(params),
        )

    # ----------------------------
    # Attributes
    # ----------------------------

    def attributes(self, table: str, idx: int) -> tuple[RawAttribute, ...]:
        out = []
        for ca in self.attrs_by_parent.get((table, idx), []):
            raw = self._raw_attribute(ca)
            if raw is not None:
                out.append(raw)
        return tuple(out)

    def _raw_attribute(self, ca: Any) -> Optional[RawAttribute]:
        ctor_table, ctor_idx = _target(getattr(ca, "Type", None))
        if ctor_table == "MemberRef" and 0 < ctor_idx <= len(self.memberrefs):
            ref = self.memberrefs[ctor_idx - 1]
            attr_name = self._name_of(getattr(ref, "Class", None), qualified=True)
            sig_blob = _blob(ref.Signature)
        elif ctor_table == "MethodDef" and 0 < ctor_idx <= len(self.methoddefs):
            owner = self.method_owner.get(ctor_idx, 0)
            attr_name = self._typedef_name(owner) if owner else ""
            sig_blob = _blob(self.methoddefs[ctor_idx - 1].Signature)
        else:
            return None

        if not attr_name:
            return None

        try:
            ctor = decode_method_signature(sig_blob, self.resolve)
        except SignatureError as exc:
            log.debug("unreadable constructor signature for %s: %s", attr_name, exc)
            return RawAttribute(name=attr_name)

        value = decode_custom_attribute(_blob(getattr(ca, "Value", None)), ctor.params)
        if not value.complete:
            log.debug("partially decoded attribute %s in %s", attr_name, self.display)

        args = [
            RawArgument(text=_argument_text(v), literal=v if isinstance(v, str) else None)
            for v in value.positional
        ]
        args.extend(
            RawArgument(text=_argument_text(v), literal=v if isinstance(v, str) else None, name=n)
            for n, v in value.named
        )
        return RawAttribute(name=attr_name, arguments=tuple(args))


def load_assembly_types(path: Path) -> list[RawType]:
    """
    Load an assembly's metadata and return its controllers and page models.
    The file handle is released before returning, whether or not reading
    succeeded. Any failure surfaces as AssemblyLoadFailed.
    """
    if not path.is_file():
        raise AssemblyLoadFailed(path, "file not found")

    try:
        pe = dnfile.dnPE(str(path))
    except Exception as exc:  # pefile.PEFormatError, OSError, struct errors on truncated files
        raise AssemblyLoadFailed(path, str(exc) or exc.__class__.__name__) from exc

    try:
        net = getattr(pe, "net", None)
        tables = getattr(net, "mdtables", None) if net is not None else None
        if tables is None:
            raise AssemblyLoadFailed(path, "no CLR metadata (not a .NET assembly)")
        return MetadataReader(tables, origin=str(path), display=path.name).types()
    except AssemblyLoadFailed:
        raise
    except Exception as exc:
        raise AssemblyLoadFailed(path, f"corrupt metadata: {exc}") from exc
    finally:
        pe.close()


class AssemblyWalker:
    """
    Yields controller / page-model declarations from a compiled assembly.
    A load failure is recorded in `diagnostics` and the assembly contributes
    nothing; it never raises.
    """

    strategy = "assembly"

    def __init__(self) -> None:
        self.diagnostics: list[Diagnostic] = []
        self.stats = WalkStats()

    def walk(self, target: Path) -> Iterator[RawType]:
        self.stats.files_seen += 1
        try:
            types = load_assembly_types(target)
        except AssemblyLoadFailed as exc:
            self.stats.failures += 1
            log.warning("assembly %s not loaded: %s", exc.path, exc.reason)
            self.diagnostics.append(
                Diagnostic(code=DiagnosticCode.ASSEMBLY_LOAD_FAILED, subject=exc.path, message=exc.reason)
            )
            return

        self.stats.types_found += len(types)
        yield from types
