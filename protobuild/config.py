"""
protobuild — centralised configuration.

Project options live in the ``[tool.protobuild]`` table of ``pyproject.toml``
and use the dashed spelling (``protobuf-version``, ``proto-path``,
``target-path`` …).  Environment variables (optionally from a ``.env`` file)
override the file, and explicit overrides (CLI flags) override both.
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from protobuild.errors import ConfigError

load_dotenv()

# ── Defaults ─────────────────────────────────────────────────────────

DEFAULT_PROTOBUF_VERSION: str = "3.20.3"
DEFAULT_PROTO_PATH: str = "proto"
DEFAULT_TARGET_PATH: str = "target"

#: Source archive for a given release.  ``{version}`` is substituted.
DEFAULT_PROTOBUF_URL: str = (
    "https://github.com/protocolbuffers/protobuf/releases/download/"
    "v{version}/protobuf-cpp-{version}.zip"
)

#: Schema file extension picked up by the enumerator.
PROTO_EXTENSION: str = ".proto"

#: Sub-directories of the target path.
GENERATED_SRC_DIR: str = "protosrc"
STAGING_DIR: str = "proto"
CLASSES_DIR: str = "classes"

#: ``protoc`` value that selects the compiler bundled with grpcio-tools.
GRPC_TOOLS_PROTOC: str = "grpc_tools"

#: Seconds before an external command is considered hung.
PROTOC_TIMEOUT: float = 120.0
BUILD_TIMEOUT: float = 3600.0
DOWNLOAD_TIMEOUT: float = 300.0

#: Environment variable → option name.
_ENV_OVERRIDES: Dict[str, str] = {
    "PROTOBUILD_PROTOBUF_VERSION": "protobuf-version",
    "PROTOBUILD_PROTO_PATH": "proto-path",
    "PROTOBUILD_TARGET_PATH": "target-path",
    "PROTOBUILD_PROTOC": "protoc",
    "PROTOBUILD_PROTOC_TIMEOUT": "protoc-timeout",
    "PROTOBUILD_BUILD_TIMEOUT": "build-timeout",
    "PROTOBUILD_DOWNLOAD_TIMEOUT": "download-timeout",
}

_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*([-.]?\w+)?$")


# ── Project configuration ────────────────────────────────────────────


class ProjectConfig(BaseModel):
    """Read-only view of the options a project hands to protobuild."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    protobuf_version: str = Field(DEFAULT_PROTOBUF_VERSION, alias="protobuf-version")
    proto_path: Path = Field(Path(DEFAULT_PROTO_PATH), alias="proto-path")
    target_path: Path = Field(Path(DEFAULT_TARGET_PATH), alias="target-path")
    protoc: str = "protoc"
    output_language: str = Field("python", alias="output-language")
    protobuf_url: str = Field(DEFAULT_PROTOBUF_URL, alias="protobuf-url")
    protoc_timeout: float = Field(PROTOC_TIMEOUT, alias="protoc-timeout", gt=0)
    build_timeout: float = Field(BUILD_TIMEOUT, alias="build-timeout", gt=0)
    download_timeout: float = Field(DOWNLOAD_TIMEOUT, alias="download-timeout", gt=0)

    @field_validator("protobuf_version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        value = value.strip()
        if not _VERSION_PATTERN.match(value):
            raise ValueError(f"not a protobuf release version: {value!r}")
        return value

    @field_validator("output_language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        if not re.fullmatch(r"\w+", value):
            raise ValueError(f"invalid output language: {value!r}")
        return value

    @field_validator("protoc")
    @classmethod
    def _check_protoc(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("protoc command must not be empty")
        return value.strip()

    # ── Derived names and paths ──────────────────────────────────

    @property
    def srcdir_name(self) -> str:
        """Directory the source archive unpacks to, e.g. ``protobuf-3.20.3``."""
        return f"protobuf-{self.protobuf_version}"

    @property
    def zipfile_name(self) -> str:
        return f"protobuf-{self.protobuf_version}.zip"

    @property
    def url(self) -> str:
        return self.protobuf_url.format(version=self.protobuf_version)

    @property
    def source_dir(self) -> Path:
        return self.target_path / self.srcdir_name

    @property
    def generated_dir(self) -> Path:
        return self.target_path / GENERATED_SRC_DIR

    @property
    def staging_dir(self) -> Path:
        return self.target_path / STAGING_DIR

    @property
    def classes_dir(self) -> Path:
        return self.target_path / CLASSES_DIR


def ensure_target(config: ProjectConfig) -> Path:
    """Create the target directory if needed and return it."""
    config.target_path.mkdir(parents=True, exist_ok=True)
    return config.target_path


# ── Loading ──────────────────────────────────────────────────────────


def read_pyproject_table(pyproject: Path) -> Dict[str, Any]:
    """Return the ``[tool.protobuild]`` table, or ``{}`` if there is none."""
    if not pyproject.is_file():
        return {}
    try:
        with open(pyproject, "rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Cannot parse {pyproject}: {exc}") from exc

    table = data.get("tool", {}).get("protobuild", {})
    if not isinstance(table, dict):
        raise ConfigError(f"[tool.protobuild] in {pyproject} must be a table")
    return dict(table)


def load_project_config(
    pyproject: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProjectConfig:
    """
    Build a :class:`ProjectConfig` for the project rooted at *pyproject*.

    Precedence, lowest first: built-in defaults, ``[tool.protobuild]``,
    ``PROTOBUILD_*`` environment variables, then *overrides*.  Keys in
    *overrides* use the dashed option names; ``None`` values are ignored.
    Relative ``proto-path`` / ``target-path`` values are resolved against the
    directory holding ``pyproject.toml``.

    Raises
    ------
    ConfigError
        If the merged options fail validation.
    """
    pyproject = Path(pyproject) if pyproject else Path.cwd() / "pyproject.toml"
    root = pyproject.resolve().parent
    env = os.environ if environ is None else environ

    options: Dict[str, Any] = read_pyproject_table(pyproject)
    for var, key in _ENV_OVERRIDES.items():
        if env.get(var):
            options[key] = env[var]
    for key, value in (overrides or {}).items():
        if value is not None:
            options[key] = value

    for key in ("proto-path", "target-path"):
        if key in options:
            path = Path(options[key])
            options[key] = path if path.is_absolute() else root / path
    options.setdefault("proto-path", root / DEFAULT_PROTO_PATH)
    options.setdefault("target-path", root / DEFAULT_TARGET_PATH)

    try:
        return ProjectConfig(**options)
    except ValidationError as exc:
        raise ConfigError(f"Invalid [tool.protobuild] configuration:\n{exc}") from exc
