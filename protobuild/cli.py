#!/usr/bin/env python3
"""
protobuild — command-line entry point.

Usage
─────
    # Download, configure and build protoc (skipped if already present)
    protobuild install

    # Remove a system-wide protoc via 'sudo make uninstall'
    protobuild uninstall

    # Compile every schema under the proto path
    protobuild compile

    # Compile specific schemas (relative to the proto path)
    protobuild compile person.proto google/type/date.proto

    # Full build step: schemas first, then byte-compile the output
    protobuild build
"""

from __future__ import annotations

import argparse
import logging
import py_compile
import sys
from pathlib import Path
from typing import Optional

import requests

from protobuild import __version__, compiler, installer
from protobuild.config import ProjectConfig, load_project_config
from protobuild.errors import ProtobuildError

logger = logging.getLogger("protobuild")


# ── Subcommands ──────────────────────────────────────────────────────


def cmd_install(config: ProjectConfig, args: argparse.Namespace) -> int:
    installer.install(config)
    logger.info("protoc %s is installed", config.protobuf_version)
    return 0


def cmd_uninstall(config: ProjectConfig, args: argparse.Namespace) -> int:
    installer.uninstall(config)
    return 0


def cmd_compile(config: ProjectConfig, args: argparse.Namespace) -> int:
    report = compiler.compile(config, args.files or None)
    return 0 if report.ok else 1


def cmd_build(config: ProjectConfig, args: argparse.Namespace) -> int:
    report = compiler.compile(config)
    # A run that regenerated schemas has already byte-compiled them.
    if report.skipped:
        compiler.compile_sources(config, skip_schemas=True)
    return 0 if report.ok else 1


# ── CLI ──────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="protobuild",
        description="Install protoc and compile protocol buffer schemas.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  protobuild install\n"
            "  protobuild compile\n"
            "  protobuild compile person.proto\n"
            "  protobuild --target-path build build"
        ),
    )
    p.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    p.add_argument(
        "--project",
        type=str,
        default=None,
        metavar="PYPROJECT",
        help="pyproject.toml holding [tool.protobuild] (default: ./pyproject.toml).",
    )
    p.add_argument(
        "--proto-path",
        type=str,
        default=None,
        help="Directory containing .proto sources (default: proto).",
    )
    p.add_argument(
        "--target-path",
        type=str,
        default=None,
        help="Build output root (default: target).",
    )
    p.add_argument(
        "--protobuf-version",
        type=str,
        default=None,
        help="protoc release to install and require.",
    )
    p.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable debug logging.",
    )

    sub = p.add_subparsers(dest="command", metavar="{install,uninstall,compile,build}")

    sp = sub.add_parser("install", help="Compile and install protoc.")
    sp.set_defaults(func=cmd_install)

    sp = sub.add_parser("uninstall", help="Remove protoc if it is installed.")
    sp.set_defaults(func=cmd_uninstall)

    sp = sub.add_parser("compile", help="Generate sources from .proto files.")
    sp.add_argument(
        "files",
        nargs="*",
        help="Schemas relative to the proto path (default: all of them).",
    )
    sp.set_defaults(func=cmd_compile)

    sp = sub.add_parser(
        "build",
        help="Compile schemas, then byte-compile the generated sources.",
    )
    sp.set_defaults(func=cmd_build)

    return p


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    # ── Logging ──────────────────────────────────────────────────
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(name)-20s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        return

    try:
        config = load_project_config(
            Path(args.project) if args.project else None,
            overrides={
                "proto-path": args.proto_path,
                "target-path": args.target_path,
                "protobuf-version": args.protobuf_version,
            },
        )
        status = args.func(config, args)
    except (
        ProtobuildError,
        OSError,
        py_compile.PyCompileError,
        requests.RequestException,
    ) as exc:
        logger.error("%s", exc)
        sys.exit(1)

    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()
