from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Iterable, Optional

from surfacemap.repo.ignore import should_ignore_dir


def scan_source_files(
    root: Path,
    patterns: Iterable[str] = ("*.cs",),
    ignores: Optional[Iterable[str]] = None,
    max_files: int | None = None,
) -> list[str]:
    """
    Return absolute paths (as strings) of files under root matching any pattern.
    Build output and tooling directories are pruned. Sorted, so every run
    walks files in the same order.
    """
    patterns = tuple(patterns)
    ignore_set = None if ignores is None else set(ignores)
    out: list[str] = []
    for dirpath, dirs, files in os.walk(root):
        root_p = Path(dirpath)

        # prune ignored dirs
        dirs[:] = [d for d in dirs if not should_ignore_dir(root_p / d, ignore_set)]

        for f in files:
            if any(fnmatch.fnmatch(f, pat) for pat in patterns):
                out.append(str((root_p / f).resolve()))

    out.sort()
    if max_files is not None:
        out = out[:max_files]
    return out


def relative_posix(path: Path | str, root: Path | str) -> str:
    return Path(os.path.relpath(str(path), str(root))).as_posix()
