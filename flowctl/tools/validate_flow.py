#!/usr/bin/env python3
"""
validate_flow.py - Validate a conversation flow definition file.

Runs the same structural and semantic checks the compiler applies before a
flow can be activated, and prints every finding at once.

Usage:
  python -m flowctl.tools.validate_flow flows/onboarding.json
  python -m flowctl.tools.validate_flow flows/onboarding.yaml --json
  python -m flowctl.tools.validate_flow flows/onboarding.json --strict

Exit Codes:
  0 - Flow is valid
  1 - Validation failed (with --strict, warnings also fail)
  2 - Fatal error (file missing or unparseable)
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from flowctl.spec.compiler import FlowCompiler, definition_stats
from flowctl.spec.loader import load_flow_definition

EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILED = 1
EXIT_FATAL_ERROR = 2


def run(path: Path, as_json: bool = False, strict: bool = False) -> int:
    """Validate one file and print the findings. Returns the exit code."""
    try:
        definition = load_flow_definition(path)
    except (FileNotFoundError, ValueError) as e:
        if as_json:
            print(json.dumps({"ok": False, "fatal": str(e)}, indent=2))
        else:
            print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FATAL_ERROR

    result = FlowCompiler().validate(definition)
    failed = result.has_errors() or (strict and result.has_warnings())

    if as_json:
        report = result.to_dict()
        report["ok"] = not failed
        report["file"] = str(path)
        report["stats"] = definition_stats(definition)
        print(json.dumps(report, indent=2))
        return EXIT_VALIDATION_FAILED if failed else EXIT_SUCCESS

    for error in result.sorted_errors():
        print(error.format(), file=sys.stderr)
    for warning in result.sorted_warnings():
        print(warning.format(), file=sys.stderr)

    if failed:
        print(
            f"\n{path}: validation FAILED "
            f"({len(result.errors)} errors, {len(result.warnings)} warnings)",
            file=sys.stderr,
        )
        if not result.has_errors():
            print("Note: --strict treats warnings as errors.", file=sys.stderr)
        return EXIT_VALIDATION_FAILED

    print(f"{path}: validation PASSED ({len(result.warnings)} warnings)")
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Validate a conversation flow definition (JSON or YAML)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - Flow is valid
  1 - Validation failed
  2 - Fatal error (missing file, parse errors)
        """,
    )
    parser.add_argument("flow_file", type=Path, help="Flow definition file")
    parser.add_argument("--json", action="store_true", help="Output the JSON validation report")
    parser.add_argument("--strict", action="store_true", help="Treat warnings as errors")
    args = parser.parse_args(argv)

    return run(args.flow_file, as_json=args.json, strict=args.strict)


if __name__ == "__main__":
    sys.exit(main())
