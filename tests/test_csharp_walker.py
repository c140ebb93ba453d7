from pathlib import Path
import textwrap

import pytest

from surfacemap.domain.models import DiagnosticCode, SurfaceKind
from surfacemap.errors import ParseFailed
from surfacemap.extractors.csharp.walker import SourceWalker, extract_types_from_source, read_page_directive


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


CONTROLLER_SRC = """
using Microsoft.AspNetCore.Authorization;
using Microsoft.AspNetCore.Mvc;

namespace Shop.Web.Controllers
{
    [Route("api/[controller]")]
    [Authorize(Policy = "Staff")]
    public class OrdersController : ControllerBase
    {
        [HttpGet("{id}")]
        public IActionResult Get(int id, [FromQuery] string? expand)
        {
            return Ok();
        }

        [HttpPost]
        [Authorize("Admin")]
        public async Task<IActionResult> Create([FromBody] OrderDto order, CancellationToken ct)
        {
            return Ok();
        }

        private void Helper()
        {
        }

        public static void Util()
        {
        }
    }

    public class OrderDto
    {
        public int Id { get; set; }
    }
}
"""


def test_extract_controller_methods_attributes_and_parameters():
    types = extract_types_from_source(CONTROLLER_SRC)
    assert len(types) == 1

    t = types[0]
    assert t.name == "OrdersController"
    assert t.kind == SurfaceKind.CONTROLLER_ACTION
    assert t.namespace == "Shop.Web.Controllers"
    assert t.base_types == ("ControllerBase",)
    assert [a.short_name for a in t.attributes] == ["Route", "Authorize"]
    assert t.attributes[0].first_literal() == "api/[controller]"
    assert t.attributes[1].named("Policy").literal == "Staff"

    # private and static methods are not part of the surface
    assert [m.name for m in t.methods] == ["Get", "Create"]

    get, create = t.methods
    assert [a.short_name for a in get.attributes] == ["HttpGet"]
    assert get.attributes[0].first_literal() == "{id}"
    assert [(p.name, p.declared_type) for p in get.parameters] == [("id", "int"), ("expand", "string?")]

    assert [a.short_name for a in create.attributes] == ["HttpPost", "Authorize"]
    assert create.attributes[1].first_literal() == "Admin"
    assert [(p.name, p.declared_type) for p in create.parameters] == [
        ("order", "OrderDto"),
        ("ct", "CancellationToken"),
    ]


def test_non_literal_attribute_argument_has_no_literal():
    src = """
    public class ItemsController : Controller
    {
        [HttpGet(Routes.Items + "/all")]
        public IActionResult All() { return Ok(); }
    }
    """
    (t,) = extract_types_from_source(textwrap.dedent(src))
    (m,) = t.methods
    arg = m.attributes[0].arguments[0]
    assert arg.literal is None
    assert m.attributes[0].first_literal() is None


def test_nested_types_are_separate_declarations():
    src = """
    namespace Shop.Web;

    public class OuterController : Controller
    {
        public IActionResult Index() { return View(); }

        public class InnerController : Controller
        {
            public IActionResult Details(int id) { return View(); }
        }
    }
    """
    types = extract_types_from_source(textwrap.dedent(src))
    assert [t.name for t in types] == ["OuterController", "InnerController"]

    outer, inner = types
    assert outer.namespace == "Shop.Web"
    assert inner.namespace == "Shop.Web.OuterController"
    # the nested class's methods belong to the nested class only
    assert [m.name for m in outer.methods] == ["Index"]
    assert [m.name for m in inner.methods] == ["Details"]


def test_types_without_marker_base_are_skipped():
    src = """
    public class Helper { public void Run() { } }
    public class Service : IService { public void Run() { } }
    public class IndexModel : PageModel { public void OnGet() { } }
    """
    types = extract_types_from_source(textwrap.dedent(src))
    assert [(t.name, t.kind) for t in types] == [("IndexModel", SurfaceKind.PAGE_HANDLER)]


def test_syntax_error_raises_parse_failed():
    src = "public class BrokenController : Controller { public IActionResult Get( { }"
    with pytest.raises(ParseFailed):
        extract_types_from_source(src, rel_path="Controllers/BrokenController.cs")


def test_read_page_directive(tmp_path: Path):
    write(tmp_path / "Pages" / "Orders" / "Edit.cshtml", '@page "{id:int}"\n@model EditModel\n')
    write(tmp_path / "Pages" / "Orders" / "List.cshtml", "@page\n@model ListModel\n")

    assert read_page_directive(tmp_path / "Pages" / "Orders" / "Edit.cshtml.cs") == "{id:int}"
    assert read_page_directive(tmp_path / "Pages" / "Orders" / "List.cshtml.cs") is None
    assert read_page_directive(tmp_path / "Pages" / "Orders" / "Missing.cshtml.cs") is None
    assert read_page_directive(tmp_path / "Controllers" / "HomeController.cs") is None


def test_source_walker_skips_unparsable_files_and_ignored_dirs(tmp_path: Path):
    write(
        tmp_path / "Controllers" / "HomeController.cs",
        """
        public class HomeController : Controller
        {
            public IActionResult Index() { return View(); }
        }
        """,
    )
    write(tmp_path / "Controllers" / "BrokenController.cs", "public class BrokenController : Controller {")
    write(
        tmp_path / "obj" / "Debug" / "Generated.cs",
        "public class GeneratedController : Controller { public void X() { } }",
    )
    write(
        tmp_path / "Pages" / "Edit.cshtml.cs",
        """
        public class EditModel : PageModel
        {
            public void OnGet() { }
        }
        """,
    )
    write(tmp_path / "Pages" / "Edit.cshtml", '@page "{id}"\n')

    walker = SourceWalker()
    types = list(walker.walk(tmp_path))

    assert [t.name for t in types] == ["HomeController", "EditModel"]
    assert types[0].rel_path == "Controllers/HomeController.cs"
    assert types[1].page_template == "{id}"

    assert len(walker.diagnostics) == 1
    d = walker.diagnostics[0]
    assert d.code == DiagnosticCode.PARSE_FAILED
    assert d.subject == "Controllers/BrokenController.cs"
    assert walker.stats.files_seen == 3
    assert walker.stats.failures == 1
