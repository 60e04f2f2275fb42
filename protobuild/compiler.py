"""
Compile ``.proto`` schemas with protoc, then byte-compile the result.

The build runs as two plain steps in a fixed order:

1. :func:`compile_protobuf` regenerates sources from schemas when the
   schema root is newer than both the generated sources and the compiled
   output.
2. :func:`compile_sources` byte-compiles generated modules into
   ``<target>/classes``.  It takes an explicit ``skip_schemas`` flag so
   step 1 can call it without triggering itself again.

A schema that fails to compile, or imports something that cannot be
resolved, is logged and recorded, and the rest of the batch still runs.
"""

from __future__ import annotations

import logging
import py_compile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from protobuild import installer
from protobuild.config import ProjectConfig, ensure_target
from protobuild.dependencies import extract_dependencies
from protobuild.errors import (
    CommandTimeout,
    CompileError,
    MissingDependencyError,
    SchemaError,
)
from protobuild.scan import modtime, proto_files
from protobuild.shell import run_command

logger = logging.getLogger(__name__)


# ── Result type ──────────────────────────────────────────────────────


@dataclass
class CompileReport:
    """Outcome of one :func:`compile_protobuf` run."""

    compiled: List[str] = field(default_factory=list)
    #: Schema path → captured stderr (or timeout message).
    failed: Dict[str, str] = field(default_factory=dict)
    #: ``True`` when the staleness check decided nothing needed doing.
    skipped: bool = False
    #: ``.pyc`` files written by the byte-compilation that follows protoc.
    byte_compiled: List[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        if self.skipped:
            return "up to date"
        parts = [f"{len(self.compiled)} compiled"]
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        return ", ".join(parts)


# ── Staleness ────────────────────────────────────────────────────────


def is_stale(config: ProjectConfig, dest: Path) -> bool:
    """
    Schemas need compiling when the schema root is newer than both the
    generated sources in *dest* and the compiled output directory.
    """
    newest_schema = modtime(config.proto_path)
    return (
        newest_schema > modtime(dest)
        and newest_schema > modtime(config.classes_dir)
    )


# ── Schema compilation ───────────────────────────────────────────────


def protoc_args(
    config: ProjectConfig,
    proto: str,
    dest: Path,
) -> List[str]:
    """Full protoc command line for one schema (run from the schema root)."""
    return installer.protoc_command(config) + [
        proto,
        f"--{config.output_language}_out={dest}",
        "-I.",
        f"-I{config.staging_dir.resolve()}",
        f"-I{config.proto_path.resolve()}",
    ]


def _fallback_roots(config: ProjectConfig) -> List[Path]:
    roots = []
    fetched_src = config.source_dir / "src"
    if fetched_src.is_dir():
        roots.append(fetched_src)
    return roots


def compile_protobuf(
    config: ProjectConfig,
    protos: Sequence[str],
    dest: Optional[Path] = None,
) -> CompileReport:
    """
    Run protoc once per schema in *protos* and byte-compile the output.

    Parameters
    ----------
    config:
        Project configuration.
    protos:
        Schema paths relative to ``config.proto_path``.
    dest:
        Output directory for generated sources.  Defaults to
        ``<target>/protosrc``.

    Returns
    -------
    CompileReport
        Which schemas compiled, which failed (with protoc's stderr or the
        import that could not be resolved), or ``skipped=True`` when
        everything was already up to date.
    """
    ensure_target(config)
    dest = (dest or config.generated_dir).resolve()
    proto_path = config.proto_path.resolve()

    report = CompileReport()
    if not is_stale(config, dest):
        logger.debug("Schemas in %s are up to date", proto_path)
        report.skipped = True
        return report

    dest.mkdir(parents=True, exist_ok=True)
    proto_path.mkdir(parents=True, exist_ok=True)
    roots = _fallback_roots(config)

    for proto in protos:
        try:
            extract_dependencies(proto_path, proto, config.staging_dir, roots)
        except (MissingDependencyError, SchemaError) as exc:
            logger.error("ERROR: %s", exc)
            report.failed[proto] = str(exc)
            continue

        args = protoc_args(config, proto, dest)
        logger.info(" > %s", " ".join(args))
        try:
            result = run_command(args, cwd=proto_path, timeout=config.protoc_timeout)
        except CommandTimeout as exc:
            logger.error("ERROR: %s", exc)
            report.failed[proto] = str(exc)
            continue

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.error("ERROR: %s", stderr)
            report.failed[proto] = stderr
        else:
            report.compiled.append(proto)

    report.byte_compiled = compile_sources(config, [dest], skip_schemas=True)
    logger.info("protoc: %s", report.summary())
    return report


# ── Source compilation ───────────────────────────────────────────────


def compile_sources(
    config: ProjectConfig,
    source_paths: Optional[Iterable[Path]] = None,
    skip_schemas: bool = False,
) -> List[Path]:
    """
    Byte-compile generated modules into ``<target>/classes``.

    Unless *skip_schemas* is set, schemas are regenerated first via
    :func:`compile`.  Returns the ``.pyc`` files written.

    Raises
    ------
    CompileError
        If schemas were regenerated and any of them failed.
    py_compile.PyCompileError
        If a generated module does not compile.
    """
    if not skip_schemas:
        report = compile(config)
        if not report.ok:
            raise CompileError(report.failed)
        if not report.skipped and source_paths is None:
            # compile_protobuf already byte-compiled the generated tree.
            return report.byte_compiled

    if config.output_language != "python":
        logger.info(
            "No byte-compilation step for %s output", config.output_language,
        )
        return []

    roots = list(source_paths) if source_paths is not None else [config.generated_dir]
    written: List[Path] = []
    for root in roots:
        root = Path(root)
        if not root.is_dir():
            continue
        for module in sorted(root.rglob("*.py")):
            rel = module.relative_to(root)
            cfile = config.classes_dir / rel.with_suffix(".pyc")
            cfile.parent.mkdir(parents=True, exist_ok=True)
            py_compile.compile(str(module), cfile=str(cfile), doraise=True)
            written.append(cfile)

    logger.info("Byte-compiled %d module(s) into %s", len(written), config.classes_dir)
    return written


# ── Entry point ──────────────────────────────────────────────────────


def compile(
    config: ProjectConfig,
    files: Optional[Sequence[str]] = None,
) -> CompileReport:
    """
    Make sure protoc is installed, then compile *files* (default: every
    schema under ``config.proto_path``).
    """
    installer.install(config)
    protos = list(files) if files else proto_files(config.proto_path)
    return compile_protobuf(config, protos)
