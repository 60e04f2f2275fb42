"""
Shared fixtures for the protobuild test suite.

Provides a throwaway project layout (schema root + target directory) and
helpers for writing schemas and pinning modification times, so individual
tests stay focused.
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from protobuild.config import ProjectConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep PROTOBUILD_* variables from the developer's shell out of tests."""
    for var in list(os.environ):
        if var.startswith("PROTOBUILD_"):
            monkeypatch.delenv(var, raising=False)


# ── Project layout fixtures ──────────────────────────────────────────


@pytest.fixture
def proto_root(tmp_path: Path) -> Path:
    root = tmp_path / "proto"
    root.mkdir()
    return root


@pytest.fixture
def config(tmp_path: Path, proto_root: Path) -> ProjectConfig:
    """Configuration pointing at a fresh ``proto/`` and ``target/`` pair."""
    return ProjectConfig(
        proto_path=proto_root,
        target_path=tmp_path / "target",
    )


@pytest.fixture
def write_proto() -> Callable[..., Path]:
    """Return ``write(root, rel_path, *imports, body="")`` for building schemas."""

    def write(root: Path, rel_path: str, *imports: str, body: str = "") -> Path:
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = ['syntax = "proto3";', ""]
        lines += [f'import "{dep}";' for dep in imports]
        lines += ["", textwrap.dedent(body).strip() or "message Placeholder {}", ""]
        path.write_text("\n".join(lines), encoding="utf-8")
        return path

    return write


@pytest.fixture
def set_mtime() -> Callable[[Path, float], None]:
    """Return a helper that pins both atime and mtime of a path."""

    def pin(path: Path, when: float) -> None:
        os.utime(path, (when, when))

    return pin
