"""
mjtree CLI
"""

import argparse
import importlib.util
import json
import sys
from pathlib import Path

from . import __version__
from .errors import SpecError
from .logging_config import setup_logging
from .spec import Spec


def load_spec(script_path: Path, factory: str = "build") -> Spec:
    """Import a Python file and call its factory to obtain a Spec."""
    module_name = f"_mjtree_script_{script_path.stem}"
    module_spec = importlib.util.spec_from_file_location(module_name, script_path)
    if module_spec is None or module_spec.loader is None:
        raise ImportError(f"cannot import {script_path}")
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)

    builder = getattr(module, factory, None)
    if not callable(builder):
        raise AttributeError(f"{script_path.name} defines no callable '{factory}'")
    spec = builder()
    if not isinstance(spec, Spec):
        raise TypeError(f"'{factory}' returned {type(spec).__name__}, expected Spec")
    return spec


def run_check(args: argparse.Namespace) -> int:
    from .handlers.spec_data import pack_spec_data

    script = Path(args.script).resolve()
    if not script.exists():
        print(f"Error: File not found: {script}", file=sys.stderr)
        return 1
    if script.suffix.lower() != ".py":
        print(f"Error: File must be a Python script: {script}", file=sys.stderr)
        return 1

    try:
        spec = load_spec(script, args.factory)
    except (ImportError, AttributeError, TypeError, SpecError) as exc:
        print(f"Error: Failed to build model from {script.name}: {exc}", file=sys.stderr)
        return 1

    with spec:
        report = spec.finalize()
        if args.json:
            print(json.dumps(pack_spec_data(spec, euler=args.euler), indent=2))
        for diag in report:
            print(str(diag), file=sys.stderr)
        if not report.ok:
            print(f"{len(report)} problem(s) in model '{spec.modelname}'", file=sys.stderr)
            return 1
        if not args.json:
            print(f"Model '{spec.modelname}' OK: {report.finalized} elements finalized")
    return 0


def main(argv=None):
    """Command line entry point"""
    parser = argparse.ArgumentParser(
        prog="mjtree",
        description="mjtree - build and validate simulation model specifications",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mjtree {__version__}",
        help="Show version information and exit",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # check
    check_parser = subparsers.add_parser("check", help="Build a model from a script and finalize it")
    check_parser.add_argument(
        "script",
        type=str,
        help="Python file defining a factory that returns a Spec",
    )
    check_parser.add_argument(
        "--factory",
        "-f",
        type=str,
        default="build",
        help="Name of the factory function in the script (default: build)",
    )
    check_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the finalized model as JSON",
    )
    check_parser.add_argument(
        "--euler",
        action="store_true",
        help="Add Euler angles next to every quaternion in the JSON output",
    )
    check_parser.add_argument(
        "--log-level",
        type=str,
        default="error",
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: error)",
    )

    # version
    subparsers.add_parser("version", help="Show version information")

    args = parser.parse_args(argv)

    if args.command == "check":
        setup_logging(args.log_level)
        sys.exit(run_check(args))

    elif args.command == "version":
        print(f"mjtree {__version__}")

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
