from pathlib import Path
from types import SimpleNamespace

from surfacemap.domain.models import DiagnosticCode, SurfaceKind
from surfacemap.extractors.assembly.walker import AssemblyWalker, MetadataReader, is_public_instance

PUBLIC = 0x0006
PUBLIC_HIDEBYSIG = 0x0086
SPECIAL_NAME = 0x0800
STATIC = 0x0010


def ix(table, i, row=None):
    return SimpleNamespace(table=SimpleNamespace(name=table), row_index=i, row=row)


def ser(s: str) -> bytes:
    data = s.encode("utf-8")
    return bytes([len(data)]) + data


def typeref(name, ns="Microsoft.AspNetCore.Mvc"):
    return SimpleNamespace(TypeName=name, TypeNamespace=ns)


def typedef(name, ns, extends, methods=()):
    return SimpleNamespace(
        TypeName=name,
        TypeNamespace=ns,
        Extends=extends,
        MethodList=[ix("MethodDef", m) for m in methods],
    )


def methoddef(name, flags, sig, params=()):
    return SimpleNamespace(
        Name=name,
        struct=SimpleNamespace(Flags=flags),
        Signature=sig,
        ParamList=[SimpleNamespace(row=SimpleNamespace(Name=p, Sequence=i)) for i, p in enumerate(params, start=1)],
    )


def fake_tables():
    typerefs = [
        typeref("ControllerBase"),  # 1
        typeref("HttpGetAttribute"),  # 2
        typeref("AuthorizeAttribute", "Microsoft.AspNetCore.Authorization"),  # 3
        typeref("Object", "System"),  # 4
        typeref("IActionResult"),  # 5
        typeref("PageModel", "Microsoft.AspNetCore.Mvc.RazorPages"),  # 6
    ]
    typedefs = [
        typedef("<Module>", "", None),  # 1
        typedef("OrdersController", "Shop.Controllers", ix("TypeRef", 1), methods=[1, 2, 3]),  # 2
        typedef("OrderDto", "Shop.Models", ix("TypeRef", 4)),  # 3
        typedef("EditModel", "Shop.Pages.Orders", ix("TypeRef", 6), methods=[4]),  # 4
        typedef("BaseApiController", "Shop.Controllers", ix("TypeRef", 1)),  # 5
        typedef("UsersController", "Shop.Controllers", ix("TypeDef", 5), methods=[5]),  # 6
    ]
    methoddefs = [
        # IActionResult Get(int id)
        methoddef("Get", PUBLIC_HIDEBYSIG, bytes([0x20, 0x01, 0x12, (5 << 2) | 1, 0x08]), ["id"]),
        methoddef("get_Count", PUBLIC | SPECIAL_NAME, bytes([0x20, 0x00, 0x08])),
        methoddef("Create", PUBLIC | STATIC, bytes([0x00, 0x00, 0x01])),
        # void OnPostSave(string name)
        methoddef("OnPostSave", PUBLIC, bytes([0x20, 0x01, 0x01, 0x0E]), ["name"]),
        # void List(int page, int size) with no Param rows
        methoddef("List", PUBLIC, bytes([0x20, 0x02, 0x01, 0x08, 0x08])),
    ]
    memberrefs = [
        SimpleNamespace(Class=ix("TypeRef", 2), Name=".ctor", Signature=bytes([0x20, 0x01, 0x01, 0x0E])),
        SimpleNamespace(Class=ix("TypeRef", 3), Name=".ctor", Signature=bytes([0x20, 0x00, 0x01])),
    ]
    custom_attributes = [
        SimpleNamespace(
            Parent=ix("MethodDef", 1),
            Type=ix("MemberRef", 1),
            Value=bytes([0x01, 0x00]) + ser("{id}") + bytes([0x00, 0x00]),
        ),
        SimpleNamespace(
            Parent=ix("TypeDef", 2),
            Type=ix("MemberRef", 2),
            Value=bytes([0x01, 0x00, 0x01, 0x00, 0x54, 0x0E]) + ser("Policy") + ser("Staff"),
        ),
    ]

    def table(rows):
        return SimpleNamespace(rows=rows)

    return SimpleNamespace(
        TypeDef=table(typedefs),
        TypeRef=table(typerefs),
        MethodDef=table(methoddefs),
        MemberRef=table(memberrefs),
        CustomAttribute=table(custom_attributes),
        TypeSpec=None,
        NestedClass=None,
    )


def test_is_public_instance_flags():
    assert is_public_instance(SimpleNamespace(struct=SimpleNamespace(Flags=PUBLIC_HIDEBYSIG)))
    assert not is_public_instance(SimpleNamespace(struct=SimpleNamespace(Flags=PUBLIC | STATIC)))
    assert not is_public_instance(SimpleNamespace(struct=SimpleNamespace(Flags=PUBLIC | SPECIAL_NAME)))
    assert not is_public_instance(SimpleNamespace(struct=SimpleNamespace(Flags=0x0001)))  # private


def test_metadata_reader_finds_controllers_and_pages():
    reader = MetadataReader(fake_tables(), origin="/tmp/Shop.dll", display="Shop.dll")
    types = reader.types()

    assert [t.name for t in types] == ["OrdersController", "EditModel", "BaseApiController", "UsersController"]

    orders = types[0]
    assert orders.kind == SurfaceKind.CONTROLLER_ACTION
    assert orders.namespace == "Shop.Controllers"
    assert orders.rel_path == "Shop.dll"
    assert [a.short_name for a in orders.attributes] == ["Authorize"]
    assert orders.attributes[0].named("Policy").literal == "Staff"

    # property accessor and static method are not operations
    assert [m.name for m in orders.methods] == ["Get"]
    (get,) = orders.methods
    assert [(p.name, p.declared_type) for p in get.parameters] == [("id", "int")]
    assert [a.short_name for a in get.attributes] == ["HttpGet"]
    assert get.attributes[0].first_literal() == "{id}"

    edit = types[1]
    assert edit.kind == SurfaceKind.PAGE_HANDLER
    assert edit.namespace == "Shop.Pages.Orders"
    assert [(p.name, p.declared_type) for p in edit.methods[0].parameters] == [("name", "string")]


def test_metadata_reader_follows_base_chain_inside_assembly():
    reader = MetadataReader(fake_tables())
    users = reader.types()[3]
    assert users.base_types == ("BaseApiController", "ControllerBase")
    # parameter names fall back to positions when Param rows are missing
    assert [(p.name, p.declared_type) for p in users.methods[0].parameters] == [("arg1", "int"), ("arg2", "int")]


def test_assembly_walker_records_load_failure_for_garbage(tmp_path: Path):
    dll = tmp_path / "Broken.dll"
    dll.write_bytes(b"this is not a portable executable")

    walker = AssemblyWalker()
    types = list(walker.walk(dll))

    assert types == []
    assert len(walker.diagnostics) == 1
    assert walker.diagnostics[0].code == DiagnosticCode.ASSEMBLY_LOAD_FAILED
    assert walker.diagnostics[0].subject == str(dll)


def test_assembly_walker_records_load_failure_for_missing_file(tmp_path: Path):
    walker = AssemblyWalker()
    assert list(walker.walk(tmp_path / "Nope.dll")) == []
    assert [d.code for d in walker.diagnostics] == [DiagnosticCode.ASSEMBLY_LOAD_FAILED]
    assert "file not found" in walker.diagnostics[0].message
