"""
Exception hierarchy for protobuild.

Everything derives from ``RuntimeError`` so callers that only care about
"the build step failed" can keep catching that.
"""

from __future__ import annotations


class ProtobuildError(RuntimeError):
    """Base class for all protobuild failures."""


class ConfigError(ProtobuildError):
    """The project configuration is missing or invalid."""


class FetchError(ProtobuildError):
    """Downloading or unpacking the protobuf source archive failed."""


class InstallError(ProtobuildError):
    """``configure`` / ``make`` / ``make uninstall`` exited non-zero."""


class CommandTimeout(ProtobuildError):
    """An external command ran past its configured timeout."""

    def __init__(self, cmd: list[str], timeout: float) -> None:
        self.cmd = list(cmd)
        self.timeout = timeout
        super().__init__(f"'{' '.join(self.cmd)}' timed out after {timeout:g}s")


class MissingDependencyError(ProtobuildError):
    """An imported schema exists neither locally nor as a bundled fallback."""

    def __init__(self, dependency: str, importer: str) -> None:
        self.dependency = dependency
        self.importer = importer
        super().__init__(
            f"Cannot resolve import \"{dependency}\" (imported by {importer})"
        )


class SchemaError(ProtobuildError):
    """A schema file could not be decoded."""


class CompileError(ProtobuildError):
    """One or more schemas failed to compile."""

    def __init__(self, failed: dict[str, str]) -> None:
        self.failed = dict(failed)
        super().__init__(
            f"{len(self.failed)} schema(s) failed to compile: "
            + ", ".join(sorted(self.failed))
        )
