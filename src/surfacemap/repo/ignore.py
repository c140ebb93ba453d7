from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

DEFAULT_IGNORES = {
    ".git",
    ".vs",
    ".vscode",
    ".idea",
    "bin",
    "obj",
    "node_modules",
    "packages",
    "TestResults",
    "artifacts",
}


def should_ignore_dir(dir_path: Path, ignores: Optional[Iterable[str]] = None) -> bool:
    names = DEFAULT_IGNORES if ignores is None else ignores
    return dir_path.name in names
