#!/usr/bin/env python3
"""
OpenAPI 3.0 to Go HTTP server scaffold generator.

Usage:
    python -m oas3gen <command> [options]

Commands:
    generate    Write components_gen.go and routes_gen.go
    check       Load and compile a document without writing anything

Examples:
    python -m oas3gen generate --package example.com/api --path ./api
    python -m oas3gen generate --swagger-addr https://example.com/openapi.yaml \\
        --package example.com/api --path ./api \\
        --componentsPackage example.com/api/models --componentsPath ./api/models
    python -m oas3gen check --swagger-addr openapi.yaml
"""

from __future__ import annotations

import sys


def _exit_code(e: SystemExit) -> int:
    if isinstance(e.code, int):
        return e.code
    if e.code is not None:
        print(e.code, file=sys.stderr)
        return 1
    return 0


def cmd_generate(args: list[str]) -> int:
    """Generate the Go server scaffold."""
    from oas3gen.compiler.main import main as generate
    try:
        generate(args)
        return 0
    except SystemExit as e:
        return _exit_code(e)


def cmd_check(args: list[str]) -> int:
    """Compile a document without writing files."""
    from oas3gen.compiler.main import check
    try:
        check(args)
        return 0
    except SystemExit as e:
        return _exit_code(e)


COMMANDS = {
    "generate": (cmd_generate, "Write components_gen.go and routes_gen.go"),
    "check": (cmd_check, "Load and compile a document without writing anything"),
}


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] in ("-h", "--help"):
        print(__doc__)
        print("Available commands:")
        for name, (_, desc) in COMMANDS.items():
            print(f"  {name:12} {desc}")
        print("\nUse '<command> --help' for command-specific options.")
        return 0

    command = argv[0]
    args = argv[1:]

    if command not in COMMANDS:
        print(f"Unknown command: {command}")
        print(f"Available commands: {', '.join(COMMANDS.keys())}")
        return 1

    handler, _ = COMMANDS[command]
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
