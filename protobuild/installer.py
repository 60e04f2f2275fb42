"""
protoc installation manager.

The compiler moves through three states::

    uninstalled ──fetch──▶ fetched ──build──▶ installed
         ▲                                       │
         └──────────────── uninstall ────────────┘

*fetched* means the release archive has been downloaded and unpacked under
``<target>/protobuf-<version>``; *installed* means a ``protoc`` reporting
the configured version can be run.  Installed-ness is never cached: it is
re-checked by running ``protoc --version`` every time.
"""

from __future__ import annotations

import getpass
import logging
import shutil
import stat
import sys
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Optional

import requests

from protobuild.config import GRPC_TOOLS_PROTOC, ProjectConfig, ensure_target
from protobuild.errors import CommandTimeout, FetchError, InstallError
from protobuild.shell import run_command

logger = logging.getLogger(__name__)

#: Timeout for the quick ``protoc --version`` probe.
_VERSION_PROBE_TIMEOUT = 30

_CHUNK_SIZE = 65_536


# ── Locating the compiler ────────────────────────────────────────────


def local_protoc(config: ProjectConfig) -> Path:
    """Path of the binary produced by ``make`` in the fetched source tree."""
    return config.source_dir / "src" / "protoc"


def protoc_command(config: ProjectConfig) -> List[str]:
    """
    Return the argv prefix used to run the compiler.

    ``protoc = "grpc_tools"`` selects the compiler shipped with
    grpcio-tools.  Otherwise a binary built by :func:`build` wins over
    whatever ``protoc`` names on ``PATH``.
    """
    if config.protoc == GRPC_TOOLS_PROTOC:
        return [sys.executable, "-m", "grpc_tools.protoc"]
    built = local_protoc(config)
    if built.is_file():
        return [str(built.resolve())]
    return [config.protoc]


def installed(config: ProjectConfig) -> bool:
    """
    Return ``True`` if the compiler runs and reports the configured version.

    Any failure to run it (missing binary, non-zero exit, timeout) simply
    means "not installed".
    """
    cmd = protoc_command(config) + ["--version"]
    try:
        result = run_command(cmd, timeout=_VERSION_PROBE_TIMEOUT)
    except (OSError, CommandTimeout) as exc:
        logger.debug("protoc probe failed: %s", exc)
        return False

    if result.returncode != 0:
        logger.debug("protoc --version exited with code %d", result.returncode)
        return False

    reported = (result.stdout or "").strip()
    if config.protobuf_version not in reported:
        logger.debug(
            "protoc reports %r, wanted %s", reported, config.protobuf_version,
        )
        return False
    return True


# ── uninstalled → fetched ────────────────────────────────────────────


def _download(url: str, destination: Path, timeout: float) -> None:
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(destination, "wb") as fh:
                for block in response.iter_content(chunk_size=_CHUNK_SIZE):
                    fh.write(block)
    except requests.RequestException as exc:
        destination.unlink(missing_ok=True)
        raise FetchError(f"Download of {url} failed: {exc}") from exc


def _unzip(archive: Path, target: Path) -> None:
    """Extract *archive* into *target*, keeping Unix permission bits."""
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                name = PurePosixPath(info.filename)
                if name.is_absolute() or ".." in name.parts:
                    raise FetchError(f"Refusing unsafe archive entry: {info.filename}")
                extracted = Path(zf.extract(info, path=target))
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir():
                    extracted.chmod(mode)
    except zipfile.BadZipFile as exc:
        raise FetchError(f"{archive} is not a valid zip archive: {exc}") from exc


def fetch(config: ProjectConfig) -> Path:
    """
    Download and unpack the protobuf source release.

    Does nothing if ``<target>/protobuf-<version>`` already exists.
    Returns the source directory.
    """
    target = ensure_target(config)
    source = config.source_dir
    if source.exists():
        return source

    archive = target / config.zipfile_name
    logger.info("Downloading %s", config.zipfile_name)
    _download(config.url, archive, config.download_timeout)

    logger.info("Unzipping %s to %s", config.zipfile_name, target)
    try:
        _unzip(archive, target)
    except (FetchError, OSError):
        # A half-extracted tree would pass for a finished fetch next time.
        shutil.rmtree(source, ignore_errors=True)
        raise

    if not source.is_dir():
        raise FetchError(
            f"{config.zipfile_name} did not unpack to {config.srcdir_name}/"
        )
    return source


# ── fetched → installed ──────────────────────────────────────────────


def _make_executable(path: Path) -> None:
    if path.exists():
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _run_build_step(cmd: List[str], source: Path, timeout: float) -> None:
    result = run_command(cmd, cwd=source, timeout=timeout, capture=False)
    if result.returncode != 0:
        raise InstallError(
            f"'{' '.join(cmd)}' exited with code {result.returncode} in {source}"
        )


def build(config: ProjectConfig) -> Path:
    """
    Run ``./configure`` and ``make`` in the fetched source tree.

    Skipped when ``src/protoc`` has already been built.  Returns the path
    of the compiled binary.
    """
    source = config.source_dir
    binary = local_protoc(config)
    if binary.exists():
        return binary

    _make_executable(source / "configure")
    _make_executable(source / "install-sh")

    logger.info("Configuring protoc")
    _run_build_step(["./configure"], source, config.build_timeout)
    logger.info("Running 'make'")
    _run_build_step(["make"], source, config.build_timeout)

    if not binary.exists():
        raise InstallError(f"'make' finished but {binary} was not produced")
    return binary


def install(config: ProjectConfig) -> None:
    """Fetch and compile protoc unless a matching version is already available."""
    if installed(config):
        logger.debug("protoc %s already installed", config.protobuf_version)
        return
    fetch(config)
    build(config)


# ── installed → uninstalled ──────────────────────────────────────────


def read_password() -> str:
    return getpass.getpass("Password: ")


def uninstall(config: ProjectConfig, password: Optional[str] = None) -> None:
    """
    Remove protoc with ``sudo make uninstall``.

    Only acts when the compiler is currently installed.  The sudo password
    is prompted for unless *password* is given, and fed on stdin.  The
    binary left in the source tree by :func:`build` is removed as well, so
    :func:`installed` reports ``False`` afterwards.
    """
    if not installed(config):
        logger.info("protoc %s is not installed; nothing to do", config.protobuf_version)
        return

    source = config.source_dir
    if not (source / "Makefile").is_file():
        raise InstallError(
            f"No Makefile in {source}; run 'protobuild install' first so "
            f"'make uninstall' knows what to remove"
        )

    if password is None:
        password = read_password()

    result = run_command(
        ["sudo", "-S", "make", "uninstall"],
        cwd=source,
        timeout=config.build_timeout,
        input=password + "\n",
    )
    if result.stdout:
        print(result.stdout, end="")
    if result.returncode != 0:
        raise InstallError(
            f"'sudo make uninstall' exited with code {result.returncode}:\n"
            f"{(result.stderr or '').strip()}"
        )

    built = local_protoc(config)
    if built.is_file():
        built.unlink()
        logger.info("Removed local build %s", built)
    logger.info("Uninstalled protoc %s", config.protobuf_version)
