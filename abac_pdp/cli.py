# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/cli.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Policy test CLI.
Evaluates policy documents against a context document from the shell, the
same "policy test" view the authoring UI shows:

- ``abac-pdp evaluate``: print the full decision (exit 0 on allow, 1 on deny)
- ``abac-pdp filter``: print the readable projection of a payload
- ``abac-pdp validate``: gate a write payload (exit 2 on a field violation)
- ``abac-pdp effective``: list the active policies in scope for an organization

Input files are JSON or YAML; ``--policies`` and ``--hierarchy`` default to
``PDP_POLICIES_FILE`` / ``PDP_HIERARCHY_FILE``.  Unreadable or invalid input
exits with status 3.
"""

# Standard
import argparse
import logging
from pathlib import Path
import sys
from typing import Any, List, Optional

# Third-Party
import orjson
from pydantic import ValidationError

# First-Party
from abac_pdp import __version__
from abac_pdp.config import LOG_LEVELS, settings
from abac_pdp.errors import FieldPermissionViolation
from abac_pdp.hierarchy import OrganizationHierarchy
from abac_pdp.pdp import PolicyDecisionPoint
from abac_pdp.sources import InMemoryPolicySource, load_context, load_document, load_hierarchy

logger = logging.getLogger(__name__)

EXIT_ALLOW = 0
EXIT_DENY = 1
EXIT_VIOLATION = 2
EXIT_INPUT_ERROR = 3


class CLIError(Exception):
    """Raised for unusable command-line input."""


def _emit(data: Any) -> None:
    """Print JSON to stdout."""
    sys.stdout.write(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode() + "\n")


def _build_pdp(args: argparse.Namespace) -> PolicyDecisionPoint:
    policies_file: Optional[Path] = args.policies or settings.policies_file
    if policies_file is None:
        raise CLIError("no policy file: pass --policies or set PDP_POLICIES_FILE")
    hierarchy_file: Optional[Path] = args.hierarchy or settings.hierarchy_file
    hierarchy: Optional[OrganizationHierarchy] = load_hierarchy(hierarchy_file) if hierarchy_file else None
    return PolicyDecisionPoint(InMemoryPolicySource.from_file(policies_file), hierarchy, cache_enabled=False)


def evaluate_command(args: argparse.Namespace) -> int:
    """Print the decision for a context.

    Args:
        args: Parsed arguments.

    Returns:
        int: Exit status.
    """
    pdp = _build_pdp(args)
    context = load_context(args.context)
    if args.target_org:
        result = pdp.evaluate_cross_organization(context, args.target_org)
    else:
        result = pdp.evaluate(context)
    _emit(result.to_dict())
    return EXIT_ALLOW if result.allowed else EXIT_DENY


def filter_command(args: argparse.Namespace) -> int:
    """Print the readable projection of a payload.

    Args:
        args: Parsed arguments.

    Returns:
        int: Exit status (the projection is empty on deny).
    """
    pdp = _build_pdp(args)
    context = load_context(args.context)
    payload = load_document(args.payload)
    result = pdp.evaluate(context)
    _emit(pdp.read_filter(result, args.resource_type or context.resource.type, payload))
    return EXIT_ALLOW if result.allowed else EXIT_DENY


def validate_command(args: argparse.Namespace) -> int:
    """Check that every key of a write payload is writable.

    Args:
        args: Parsed arguments.

    Returns:
        int: Exit status.
    """
    pdp = _build_pdp(args)
    context = load_context(args.context)
    payload = load_document(args.payload)
    if not isinstance(payload, dict):
        raise CLIError("write payload must be an object")
    result = pdp.evaluate(context)
    try:
        pdp.check_write(result, args.resource_type or context.resource.type, payload.keys())
    except FieldPermissionViolation as exc:
        _emit(exc.to_dict())
        return EXIT_VIOLATION
    _emit({"ok": True, "fields": list(payload)})
    return EXIT_ALLOW


def effective_command(args: argparse.Namespace) -> int:
    """List the active policies in scope for an organization."""
    pdp = _build_pdp(args)
    policies = pdp.effective_policies(args.organization, args.resource_type)
    _emit([p.to_dict() for p in policies])
    return EXIT_ALLOW


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        argparse.ArgumentParser: Parser with one subcommand per operation.
    """
    parser = argparse.ArgumentParser(prog="abac-pdp", description="Evaluate ABAC policies against request contexts")
    parser.add_argument("--version", "-V", action="version", version=f"abac-pdp {__version__}")
    parser.add_argument("--log-level", help="Override PDP_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser, context: bool = True) -> None:
        sub.add_argument("--policies", "-p", type=Path, help="Policy document (JSON or YAML)")
        sub.add_argument("--hierarchy", type=Path, help="Organization hierarchy document (JSON or YAML)")
        if context:
            sub.add_argument("--context", "-c", type=Path, required=True, help="Evaluation context document")

    evaluate_parser = subparsers.add_parser("evaluate", help="Print the decision for a context")
    add_common(evaluate_parser)
    evaluate_parser.add_argument("--target-org", help="Evaluate as cross-organization access into this organization")
    evaluate_parser.set_defaults(func=evaluate_command)

    filter_parser = subparsers.add_parser("filter", help="Print the readable fields of a payload")
    add_common(filter_parser)
    filter_parser.add_argument("--payload", type=Path, required=True, help="Payload document (object or list of objects)")
    filter_parser.add_argument("--resource-type", help="Resource type for field rules (default: the context resource type)")
    filter_parser.set_defaults(func=filter_command)

    validate_parser = subparsers.add_parser("validate", help="Check that a write payload only touches writable fields")
    add_common(validate_parser)
    validate_parser.add_argument("--payload", type=Path, required=True, help="Write payload document (object)")
    validate_parser.add_argument("--resource-type", help="Resource type for field rules (default: the context resource type)")
    validate_parser.set_defaults(func=validate_command)

    effective_parser = subparsers.add_parser("effective", help="List active policies in scope for an organization")
    add_common(effective_parser, context=False)
    effective_parser.add_argument("--organization", "--org", required=True, help="Organization id")
    effective_parser.add_argument("--resource-type", help="Only policies covering this resource type")
    effective_parser.set_defaults(func=effective_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point.

    Args:
        argv: Arguments (defaults to ``sys.argv[1:]``).

    Returns:
        int: Process exit status.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        if args.log_level:
            level = args.log_level.upper()
            if level not in LOG_LEVELS:
                raise CLIError(f"invalid log level {args.log_level!r}, expected one of {', '.join(LOG_LEVELS)}")
            logging.getLogger("abac_pdp").setLevel(level)
        else:
            settings.configure_logging()
        return args.func(args)
    except (CLIError, OSError, ValueError, ValidationError) as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR


if __name__ == "__main__":
    sys.exit(main())
