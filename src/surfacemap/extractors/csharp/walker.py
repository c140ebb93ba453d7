from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, Optional

import tree_sitter_c_sharp
from tree_sitter import Language, Node, Parser

from surfacemap.domain.models import Diagnostic, DiagnosticCode
from surfacemap.errors import ParseFailed
from surfacemap.extractors.declarations import (
    RawArgument,
    RawAttribute,
    RawMethod,
    RawParameter,
    RawType,
    WalkStats,
    classify_bases,
)
from surfacemap.repo.scanner import relative_posix, scan_source_files

log = logging.getLogger(__name__)

CSHARP = Language(tree_sitter_c_sharp.language())

_TYPE_NODES = {"class_declaration", "record_declaration"}
_STRING_NODES = {"string_literal", "verbatim_string_literal", "raw_string_literal"}
_MODIFIER_WORDS = {"public", "private", "protected", "internal", "static", "abstract", "override", "virtual", "async"}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", '"': '"', "\\": "\\", "'": "'"}
_ESCAPE_RE = re.compile(r"\\(.)")
_PAGE_DIRECTIVE = re.compile(r'^[ \t]*@page\b[ \t]*(?:"([^"]*)")?', re.MULTILINE)
_BOM = b"\xef\xbb\xbf"


def _text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _squash(text: str) -> str:
    return " ".join(text.split())


def parse_source(source: bytes, path: str = "<string>") -> Node:
    """
    Parse C# source and return the compilation unit. tree-sitter always
    produces a tree; any ERROR or missing node counts as a failed parse.
    """
    tree = Parser(CSHARP).parse(source)
    root = tree.root_node
    if root.has_error:
        line = _first_error_line(root)
        raise ParseFailed(path, f"syntax error near line {line}" if line else "syntax error")
    return root


def _first_error_line(root: Node) -> Optional[int]:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
        stack.extend(reversed([c for c in node.children if c.has_error or c.is_missing]))
    return None


def extract_types_from_source(
    source: str | bytes,
    origin: str = "",
    rel_path: str = "",
    page_template: Optional[str] = None,
) -> list[RawType]:
    """
    Controllers and page models declared in one C# file, in declaration order.
    Raises ParseFailed when the file does not parse cleanly.
    """
    data = source.encode("utf-8") if isinstance(source, str) else source
    if data.startswith(_BOM):
        data = data[len(_BOM):]

    root = parse_source(data, path=rel_path or origin or "<string>")

    out: list[RawType] = []
    for node, namespace in _iter_type_nodes(root, ""):
        raw = _raw_type(node, namespace, origin=origin, rel_path=rel_path, page_template=page_template)
        if raw is not None:
            out.append(raw)
    return out


def extract_types_from_file(path: Path, root: Optional[Path] = None) -> list[RawType]:
    rel_path = relative_posix(path, root) if root is not None else path.name
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ParseFailed(rel_path, str(exc)) from exc

    return extract_types_from_source(
        data,
        origin=str(path),
        rel_path=rel_path,
        page_template=read_page_directive(path),
    )


def read_page_directive(page_model_path: Path) -> Optional[str]:
    """Route template of the `@page "..."` line in Foo.cshtml next to Foo.cshtml.cs."""
    if not page_model_path.name.endswith(".cshtml.cs"):
        return None
    view = page_model_path.with_name(page_model_path.name[: -len(".cs")])
    try:
        text = view.read_text(encoding="utf-8-sig", errors="replace")
    except OSError:
        return None
    m = _PAGE_DIRECTIVE.search(text)
    return m.group(1) if m else None


def _join_ns(outer: str, inner: str) -> str:
    return f"{outer}.{inner}" if outer and inner else (outer or inner)


def _iter_type_nodes(node: Node, namespace: str) -> Iterator[tuple[Node, str]]:
    """
    Yield (type node, enclosing namespace) for every class/record, nested ones
    included. Nested types get the outer type names appended to the namespace.
    """
    current = namespace
    for child in node.named_children:
        kind = child.type
        if kind == "namespace_declaration":
            body = child.child_by_field_name("body")
            if body is not None:
                yield from _iter_type_nodes(body, _join_ns(namespace, _text(child.child_by_field_name("name"))))
        elif kind == "file_scoped_namespace_declaration":
            # older grammars leave the members as siblings, newer ones nest them
            current = _join_ns(namespace, _text(child.child_by_field_name("name")))
            yield from _iter_type_nodes(child, current)
        elif kind in _TYPE_NODES:
            yield child, current
            body = child.child_by_field_name("body")
            if body is not None:
                yield from _iter_type_nodes(body, _join_ns(current, _text(child.child_by_field_name("name"))))
        elif kind == "declaration_list":
            yield from _iter_type_nodes(child, current)


def _base_types(node: Node) -> tuple[str, ...]:
    for child in node.children:
        if child.type == "base_list":
            return tuple(_squash(_text(c)) for c in child.named_children)
    return ()


def _modifiers(node: Node) -> set[str]:
    out: set[str] = set()
    for child in node.children:
        if child.type == "modifier":
            out.add(_text(child).strip())
        elif child.type in _MODIFIER_WORDS:
            out.add(child.type)
    return out


def _raw_type(
    node: Node,
    namespace: str,
    origin: str,
    rel_path: str,
    page_template: Optional[str],
) -> Optional[RawType]:
    bases = _base_types(node)
    kind = classify_bases(bases)
    if kind is None:
        return None

    methods: list[RawMethod] = []
    body = node.child_by_field_name("body")
    if body is not None:
        for member in body.named_children:
            if member.type != "method_declaration":
                continue
            mods = _modifiers(member)
            if "public" not in mods or "static" in mods:
                continue
            methods.append(_raw_method(member))

    return RawType(
        name=_text(node.child_by_field_name("name")),
        kind=kind,
        namespace=namespace,
        base_types=bases,
        attributes=_attributes(node),
        methods=tuple(methods),
        origin=origin,
        rel_path=rel_path,
        line=node.start_point[0] + 1,
        page_template=page_template,
    )


def _raw_method(node: Node) -> RawMethod:
    params: list[RawParameter] = []
    plist = node.child_by_field_name("parameters")
    if plist is not None:
        for p in plist.named_children:
            if p.type != "parameter":
                continue
            ptype = p.child_by_field_name("type")
            params.append(
                RawParameter(
                    name=_text(p.child_by_field_name("name")),
                    declared_type=_squash(_text(ptype)) if ptype is not None else "unknown",
                )
            )

    return RawMethod(
        name=_text(node.child_by_field_name("name")),
        attributes=_attributes(node),
        parameters=tuple(params),
        line=node.start_point[0] + 1,
    )


def _attributes(node: Node) -> tuple[RawAttribute, ...]:
    out: list[RawAttribute] = []
    for lst in node.children:
        if lst.type != "attribute_list":
            continue
        target = next((c for c in lst.named_children if c.type == "attribute_target_specifier"), None)
        if target is not None and _text(target).rstrip(":").strip() not in ("method", "type"):
            continue
        for attr in lst.named_children:
            if attr.type == "attribute":
                out.append(_raw_attribute(attr))
    return tuple(out)


def _raw_attribute(node: Node) -> RawAttribute:
    name_node = node.child_by_field_name("name") or (node.named_children[0] if node.named_children else None)
    args: list[RawArgument] = []
    for child in node.named_children:
        if child.type == "attribute_argument_list":
            args.extend(_raw_argument(a) for a in child.named_children if a.type == "attribute_argument")
    return RawAttribute(name=_squash(_text(name_node)), arguments=tuple(args))


def _raw_argument(node: Node) -> RawArgument:
    """
    Handles `"x"`, `Policy = "x"` and `template: "x"` across grammar versions:
    the named form is either a name_equals child, an identifier followed by an
    `=` token, or (older grammars) an assignment_expression.
    """
    named = node.named_children
    expr = named[-1] if named else node
    name: Optional[str] = None

    for child in node.children:
        if child.type == "name_equals":
            name = _text(child).rstrip("=").strip()
        elif child.type == "=" and len(named) > 1 and named[0].type == "identifier":
            name = _text(named[0])

    if name is None and expr.type == "assignment_expression":
        left = expr.child_by_field_name("left")
        right = expr.child_by_field_name("right")
        if left is not None and right is not None:
            name = _text(left).strip()
            expr = right

    return RawArgument(text=_squash(_text(expr)), literal=_string_value(expr), name=name)


def _string_value(node: Node) -> Optional[str]:
    if node.type not in _STRING_NODES:
        return None
    text = _text(node)
    if node.type == "verbatim_string_literal":
        return text[2:-1].replace('""', '"')
    if node.type == "raw_string_literal":
        quotes = len(text) - len(text.lstrip('"'))
        return text[quotes:-quotes].strip("\r\n")
    if text.endswith("u8"):
        text = text[:-2]
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])


class SourceWalker:
    """
    Walks a source tree and yields controller / page-model declarations.

    Files that fail to read or parse are recorded in `diagnostics` as
    ParseFailed and skipped; the walk always continues with the next file.
    """

    strategy = "source"

    def __init__(self, patterns: Iterable[str] = ("*.cs",), ignores: Optional[Iterable[str]] = None) -> None:
        self.patterns = tuple(patterns)
        self.ignores = None if ignores is None else set(ignores)
        self.diagnostics: list[Diagnostic] = []
        self.stats = WalkStats()

    def walk(self, target: Path) -> Iterator[RawType]:
        root = target.resolve()
        for f in scan_source_files(root, patterns=self.patterns, ignores=self.ignores):
            path = Path(f)
            self.stats.files_seen += 1
            try:
                types = extract_types_from_file(path, root=root)
            except ParseFailed as exc:
                self.stats.failures += 1
                log.warning("skipping %s: %s", exc.path, exc.reason or "parse failed")
                self.diagnostics.append(
                    Diagnostic(code=DiagnosticCode.PARSE_FAILED, subject=exc.path, message=exc.reason)
                )
                continue

            self.stats.types_found += len(types)
            yield from types
