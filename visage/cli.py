"""
Visage CLI - Command-line interface for the engine.

Usage:
    visage resolve <file.json>          Resolve {base, stack} and print the result
    visage validate <definitions.json>  Validate definitions
    visage serve [--host --port]        Run the HTTP API
"""

import argparse
import json
import sys

from .config import VisageConfig, configure_logging


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Visage - Layered appearance overrides",
        prog="visage",
    )
    parser.add_argument("--log-level", help="Override VISAGE_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a base and stack")
    resolve_parser.add_argument("file", help="JSON file with 'base' and 'stack'")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate definitions")
    validate_parser.add_argument("definitions_file", help="JSON list of definitions")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")

    args = parser.parse_args(argv)

    try:
        config = VisageConfig.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    configure_logging(args.log_level or config.log_level)

    if args.command == "resolve":
        cmd_resolve(args)
    elif args.command == "validate":
        cmd_validate(args)
    elif args.command == "serve":
        cmd_serve(args, config)
    else:
        parser.print_help()
        sys.exit(1)


def _load_json(path: str):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in {path}: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_resolve(args):
    """Resolve a stack against a base and print the resolved fields."""
    from .engine_core.composer import resolve
    from .engine_core.state import Layer, VisualState

    data = _load_json(args.file)
    if not isinstance(data, dict):
        print("Error: expected an object with 'base' and 'stack'", file=sys.stderr)
        sys.exit(1)
    try:
        base = VisualState.from_dict(data.get("base"))
        stack = [Layer.from_dict(layer) for layer in data.get("stack") or []]
    except (AttributeError, TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    failures = []
    resolved = resolve(base, stack, failures)
    print(json.dumps(resolved.to_dict(), indent=2))
    for failure in failures:
        print(f"Skipped {failure.field}: {failure.reason}", file=sys.stderr)


def cmd_validate(args):
    """Validate a file of definitions. Exits 1 if any has errors."""
    from .definitions.validation import validate_payload

    data = _load_json(args.definitions_file)
    if isinstance(data, dict):
        data = data.get("definitions", [data])

    failed = 0
    for index, payload in enumerate(data):
        if not isinstance(payload, dict):
            print(f"#{index}: INVALID")
            print("  error: definition must be an object")
            failed += 1
            continue

        name = payload.get("id") or payload.get("label") or f"#{index}"
        result = validate_payload(payload)
        print(f"{name}: {'OK' if result.valid else 'INVALID'}")
        for error in result.errors:
            print(f"  error: {error}")
        for warning in result.warnings:
            print(f"  warning: {warning}")
        if not result.valid:
            failed += 1

    print(f"\n{len(data) - failed}/{len(data)} valid")
    if failed:
        sys.exit(1)


def cmd_serve(args, config):
    """Run the API with uvicorn."""
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn not installed. Install with: pip install uvicorn", file=sys.stderr)
        sys.exit(1)

    from .api import create_app

    uvicorn.run(create_app(config=config), host=args.host, port=args.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
