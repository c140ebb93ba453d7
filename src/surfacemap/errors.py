"""Error taxonomy for catalog runs.

Only ``RootPathNotFound`` ends a run. ``ParseFailed`` and
``AssemblyLoadFailed`` are raised inside a walker and converted into report
warnings there, so one bad file or binary never aborts the whole build.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


class SurfaceMapError(Exception):
    """Base class for all surfacemap errors."""


class RootPathNotFound(SurfaceMapError):
    def __init__(self, path: PathLike, message: str = "") -> None:
        self.path = str(path)
        super().__init__(message or f"Neither a source tree nor an assembly: {self.path}")


class ParseFailed(SurfaceMapError):
    def __init__(self, path: PathLike, reason: str = "") -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Could not parse {self.path}: {reason}" if reason else f"Could not parse {self.path}")


class AssemblyLoadFailed(SurfaceMapError):
    def __init__(self, path: PathLike, reason: str = "") -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Could not load assembly {self.path}: {reason}" if reason else f"Could not load assembly {self.path}")
