from __future__ import annotations

import os
from pathlib import Path

from surfacemap.domain.models import AssetInventory
from surfacemap.repo.scanner import relative_posix


def inventory_static_assets(root: Path | None) -> AssetInventory:
    """
    Flat, recursive listing of every file under a static web root (wwwroot),
    relative to it with forward slashes. A missing directory is reported as
    not found instead of raising.
    """
    if root is None or not root.is_dir():
        return AssetInventory(root=str(root) if root is not None else None, found=False)

    files: list[str] = []
    for dirpath, dirs, names in os.walk(root):
        dirs.sort()
        for name in names:
            files.append(relative_posix(Path(dirpath) / name, root))

    return AssetInventory(root=str(root), found=True, files=tuple(sorted(files)))
