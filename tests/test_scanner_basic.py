from pathlib import Path

from surfacemap.repo.ignore import should_ignore_dir
from surfacemap.repo.scanner import relative_posix, scan_source_files


def write(p: Path, text: str = "") -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")


def test_scan_source_files_finds_cs_and_prunes_build_output(tmp_path: Path):
    write(tmp_path / "Controllers" / "HomeController.cs")
    write(tmp_path / "Pages" / "Index.cshtml.cs")
    write(tmp_path / "Pages" / "Index.cshtml")
    write(tmp_path / "obj" / "Debug" / "Generated.cs")
    write(tmp_path / "bin" / "Release" / "Leftover.cs")
    write(tmp_path / ".git" / "hooks" / "x.cs")

    files = scan_source_files(tmp_path)
    rel = [relative_posix(f, tmp_path) for f in files]

    assert rel == ["Controllers/HomeController.cs", "Pages/Index.cshtml.cs"]


def test_scan_source_files_respects_custom_ignores_and_limit(tmp_path: Path):
    write(tmp_path / "a" / "A.cs")
    write(tmp_path / "b" / "B.cs")
    write(tmp_path / "legacy" / "C.cs")

    files = scan_source_files(tmp_path, ignores={"legacy"})
    assert [Path(f).name for f in files] == ["A.cs", "B.cs"]

    assert len(scan_source_files(tmp_path, max_files=1)) == 1


def test_should_ignore_dir_defaults():
    assert should_ignore_dir(Path("proj/bin"))
    assert should_ignore_dir(Path("proj/node_modules"))
    assert not should_ignore_dir(Path("proj/Controllers"))
