"""
Stage the schemas a ``.proto`` file imports so ``protoc`` can resolve them.

Imports that already exist under the project's schema root or in the
staging directory are left alone.  Anything else is copied into the
staging directory from a fallback source, looked up by the import's own
path:

1. schemas bundled with this package (``protobuild/proto/…``, mostly the
   ``google/protobuf`` well-known types), then
2. any extra fallback roots, such as the ``src/`` directory of a fetched
   protobuf source tree.

Every import path is visited at most once, so cyclic imports terminate
and a second run over the same inputs copies nothing.
"""

from __future__ import annotations

import logging
from collections import deque
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path, PurePosixPath
from typing import Deque, Iterable, List, Optional, Set, Tuple, Union

from protobuild.errors import MissingDependencyError
from protobuild.scan import proto_dependencies

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

#: Package directory holding the bundled fallback schemas.
BUNDLED_PROTO_DIR = "proto"


def bundled_proto(dep: str) -> Optional[Traversable]:
    """Return the bundled copy of *dep*, or ``None`` if it is not shipped."""
    resource = resources.files("protobuild").joinpath(BUNDLED_PROTO_DIR)
    for part in PurePosixPath(dep).parts:
        resource = resource.joinpath(part)
    return resource if resource.is_file() else None


def _is_safe_relative(dep: str) -> bool:
    path = PurePosixPath(dep)
    return not path.is_absolute() and ".." not in path.parts


def _find_fallback(
    dep: str,
    fallback_roots: Iterable[PathLike],
) -> Optional[Union[Traversable, Path]]:
    source = bundled_proto(dep)
    if source is not None:
        return source
    for root in fallback_roots:
        candidate = Path(root) / dep
        if candidate.is_file():
            return candidate
    return None


def extract_dependencies(
    proto_path: PathLike,
    proto: str,
    dest: PathLike,
    fallback_roots: Iterable[PathLike] = (),
) -> List[Path]:
    """
    Copy every missing schema that *proto* transitively imports into *dest*.

    Parameters
    ----------
    proto_path:
        The project's schema root.
    proto:
        Schema file to inspect, relative to *proto_path*.
    dest:
        Staging directory passed to ``protoc`` as an include path.
    fallback_roots:
        Extra directories searched (after the bundled schemas) for
        imports that are not available locally.

    Returns
    -------
    list[Path]
        Files written under *dest* by this call.

    Raises
    ------
    MissingDependencyError
        If an import cannot be found locally or in any fallback.
    SchemaError
        If a schema is not valid UTF-8.
    OSError
        If a schema cannot be read or *dest* cannot be written.
    """
    proto_path = Path(proto_path)
    dest = Path(dest)
    roots = [Path(r) for r in fallback_roots]

    staged: List[Path] = []
    visited: Set[str] = set()
    queue: Deque[Tuple[str, str]] = deque(
        (dep, proto) for dep in proto_dependencies(proto_path / proto)
    )

    while queue:
        dep, importer = queue.popleft()
        if dep in visited:
            continue
        visited.add(dep)

        local = proto_path / dep
        staged_file = dest / dep
        if local.is_file():
            resolved = local
        elif staged_file.is_file():
            resolved = staged_file
        else:
            if not _is_safe_relative(dep):
                raise MissingDependencyError(dep, importer)
            source = _find_fallback(dep, roots)
            if source is None:
                raise MissingDependencyError(dep, importer)
            staged_file.parent.mkdir(parents=True, exist_ok=True)
            staged_file.write_bytes(source.read_bytes())
            logger.info("Staged %s → %s", dep, staged_file)
            staged.append(staged_file)
            resolved = staged_file

        queue.extend((sub, dep) for sub in proto_dependencies(resolved))

    return staged
