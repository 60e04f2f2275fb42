"""
File-system helpers: staleness timestamps, schema discovery and import
scanning.

Staleness is decided purely on modification times (no content hashing):
a directory is as fresh as the newest file anywhere beneath it.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Union

from protobuild.config import PROTO_EXTENSION
from protobuild.errors import SchemaError

PathLike = Union[str, Path]

#: Quoted path on an ``import`` line; tolerates ``import public`` / ``import weak``.
_IMPORT_PATTERN = re.compile(r'^import\s+(?:(?:public|weak)\s+)?"([^"]+)"')


def modtime(directory: PathLike) -> float:
    """
    Return the newest ``st_mtime`` of any regular file under *directory*.

    Returns ``0`` when the directory is empty or does not exist, so a
    missing output directory always looks older than its inputs.
    """
    root = Path(directory)
    if not root.is_dir():
        return 0
    times = [p.stat().st_mtime for p in root.rglob("*") if p.is_file()]
    return max(times, default=0)


def is_proto_file(path: PathLike) -> bool:
    """``True`` for ``foo.proto``, ``False`` for hidden files like ``.foo.proto``."""
    name = Path(path).name
    return name.endswith(PROTO_EXTENSION) and not name.startswith(".")


def proto_files(directory: PathLike) -> List[str]:
    """
    Return every schema file under *directory* as a POSIX path relative to it.

    Traversal is sorted so the result is stable across runs.
    """
    root = Path(directory)
    if not root.is_dir():
        return []
    return [
        p.relative_to(root).as_posix()
        for p in sorted(root.rglob("*"))
        if p.is_file() and is_proto_file(p)
    ]


def proto_dependencies(proto_file: PathLike) -> List[str]:
    """
    Return the paths named by ``import "…"`` lines in *proto_file*.

    This is a line scan, not a parser: only lines that start with the
    token ``import`` are considered.

    Raises
    ------
    SchemaError
        If the file is not valid UTF-8.
    """
    deps: List[str] = []
    try:
        with open(proto_file, encoding="utf-8") as fh:
            for line in fh:
                if not line.startswith("import"):
                    continue
                match = _IMPORT_PATTERN.match(line)
                if match:
                    deps.append(match.group(1))
    except UnicodeDecodeError as exc:
        raise SchemaError(f"{proto_file} is not valid UTF-8: {exc}") from exc
    return deps
