#!/usr/bin/env python3
"""
validate_command.py - Route command payload validator

Checks route command payloads before they ship in a server response. Each
input file holds JSON or YAML in one of three shapes:

- a bare command:        {"type": "NavigateTo", "payload": {...}}
- a versioned envelope:  {"version": 210, "command": {...}, "fallback": {...}}
- a full API response:   {"code": 200, "message": "...", "route_command": {...}}

## What It Validates

**PROTOCOL**: the payload decodes (known tags, required fields, field types,
metadata ranges such as priority 1-10)

**DEPTH**: every command tree nests no deeper than the configured
max_command_depth

**FALLBACK**: the fallback chain has no more hops than max_fallback_depth;
fallbacks should target a lower version than the envelope they replace

**VERSION**: some envelope in the chain is compatible with --client-version
(warning when the client will only run a fallback)

**CONDITION**: every Conditional expression parses

**DATA_TYPE**: ProcessData kinds the engine does not know (warning)

Exit Codes:
  0 - All payloads valid
  1 - Validation failed
  2 - Fatal error (unreadable file, unparseable JSON/YAML)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pydantic
import yaml

from routekit.config.runtime_config import EngineConfig, load_engine_config
from routekit.runtime.compat import is_compatible
from routekit.runtime.conditions import parse_condition
from routekit.runtime.errors import ConditionError, ProtocolError
from routekit.runtime.types import (
    ApiResponse,
    Command,
    Conditional,
    ProcessData,
    VersionedCommand,
    format_version,
    iter_subcommands,
    route_command_from_dict,
    tree_depth,
)
from routekit.validator import ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILED = 1
EXIT_FATAL_ERROR = 2

REPORT_VERSION = "1.0.0"


class FatalInputError(Exception):
    """Raised when an input file cannot be read or parsed at all."""


# ============================================================================
# Loading
# ============================================================================


def load_payload(path: Path) -> Any:
    """Read a JSON or YAML document (JSON is a YAML subset)."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FatalInputError(f"cannot read {path}: {e}") from e
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise FatalInputError(f"cannot parse {path}: {e}") from e


# ============================================================================
# Checks
# ============================================================================


def _walk(command: Command) -> Iterator[Command]:
    stack = [command]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(iter_subcommands(current))))


def _check_tree(
    command: Command, location: str, config: EngineConfig, result: ValidationResult
) -> None:
    depth = tree_depth(command)
    if depth > config.max_command_depth:
        result.add_error(
            "DEPTH",
            location,
            f"command tree nests {depth} levels (limit {config.max_command_depth})",
            "Flatten nested Sequence/Parallel/Retry/Delay/Conditional commands",
        )

    for node in _walk(command):
        if isinstance(node, Conditional):
            try:
                parse_condition(node.condition)
            except ConditionError as e:
                result.add_error(
                    "CONDITION",
                    location,
                    f"condition {node.condition!r} does not parse: {e.detail}",
                    "Use only user/state properties, comparisons, &&, ||, ! and the built-in predicates",
                )
            except RecursionError:
                result.add_error(
                    "CONDITION",
                    location,
                    f"condition {node.condition!r} is nested too deeply",
                    "Simplify the expression",
                )
        elif isinstance(node, ProcessData) and node.data_type not in config.data_types:
            result.add_warning(
                "DATA_TYPE",
                location,
                f"data type {node.data_type!r} is not known to the client and will be ignored",
                f"Use one of: {', '.join(sorted(config.data_types))}",
            )


def _check_envelope(
    envelope: VersionedCommand,
    location: str,
    client_version: int,
    config: EngineConfig,
    result: ValidationResult,
) -> None:
    chain = list(envelope.fallback_chain())
    hops = len(chain) - 1
    if hops > config.max_fallback_depth:
        result.add_error(
            "FALLBACK",
            location,
            f"fallback chain has {hops} hops (limit {config.max_fallback_depth})",
            "Drop fallbacks for versions no client still runs",
        )

    for index, (current, following) in enumerate(zip(chain, chain[1:])):
        if following.version >= current.version:
            result.add_warning(
                "FALLBACK",
                f"{location}{'.fallback' * (index + 1)}",
                f"fallback version {following.version} is not lower than {current.version}",
                "Order fallbacks from newest to oldest protocol version",
            )

    selected = next((e for e in chain if is_compatible(e.version, client_version)), None)
    if selected is None:
        result.add_error(
            "VERSION",
            location,
            f"no envelope is compatible with client version {format_version(client_version)} "
            f"(chain: {', '.join(format_version(e.version) for e in chain)})",
            "Add a fallback built for the client's protocol version",
        )
    elif selected is not envelope:
        result.add_warning(
            "VERSION",
            location,
            f"client version {format_version(client_version)} will run the "
            f"{format_version(selected.version)} fallback",
            "Expected for older clients; confirm the fallback behaviour is acceptable",
        )

    for index, current in enumerate(chain):
        current_location = f"{location}{'.fallback' * index}.command"
        if current.timeout_ms == 0:
            result.add_warning(
                "METADATA",
                f"{location}{'.fallback' * index}.metadata",
                "timeout_ms is 0, which disables the timeout",
                "Omit timeout_ms or set a positive value",
            )
        _check_tree(current.command, current_location, config, result)


def validate_payload(
    data: Any,
    source: str = "<payload>",
    *,
    client_version: Optional[int] = None,
    config: Optional[EngineConfig] = None,
) -> ValidationResult:
    """Validate one decoded payload.

    Args:
        data: Parsed JSON/YAML document.
        source: Name used as the file part of each finding's location.
        client_version: Version to check compatibility against; defaults to
            the configured supported version.
        config: Engine settings (caps, data types).

    Returns:
        ValidationResult with all findings.
    """
    config = config or load_engine_config()
    if client_version is None:
        client_version = config.supported_version
    result = ValidationResult()

    raw = data
    location = f"{source}:route_command"
    if isinstance(data, dict) and "route_command" in data and "version" not in data:
        try:
            response = ApiResponse.model_validate(data)
        except pydantic.ValidationError as e:
            for err in e.errors():
                result.add_error(
                    "PROTOCOL",
                    f"{source}:{'.'.join(str(p) for p in err['loc'])}",
                    err["msg"],
                    "Match the ApiResponse shape {code, message, data, route_command}",
                )
            return result
        if response.route_command is None:
            result.add_warning(
                "PROTOCOL",
                location,
                "response carries no route command",
                "Nothing to validate; remove the file or attach a command",
            )
            return result
        raw = response.route_command

    try:
        route = route_command_from_dict(raw)
    except ProtocolError as e:
        result.add_error(
            "PROTOCOL",
            f"{source}:{e.location}" if e.location else location,
            e.detail,
            "Fix the payload so it matches the route command wire format",
        )
        return result

    if isinstance(route, VersionedCommand):
        _check_envelope(route, location, client_version, config, result)
    else:
        _check_tree(route, location, config, result)

    logger.debug(
        "%s: %d errors, %d warnings", source, len(result.errors), len(result.warnings)
    )
    return result


def validate_files(
    paths: List[Path], *, client_version: Optional[int] = None
) -> ValidationResult:
    """Validate each file; raises FatalInputError on unreadable input."""
    config = load_engine_config()
    result = ValidationResult()
    for path in paths:
        logger.debug("Validating %s", path)
        result.extend(
            validate_payload(
                load_payload(path), str(path), client_version=client_version, config=config
            )
        )
    return result


# ============================================================================
# Reporting
# ============================================================================


def build_json_report(result: ValidationResult, paths: List[Path], client_version: int) -> Dict[str, Any]:
    report = result.to_dict()
    report.update(
        {
            "version": REPORT_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "client_version": client_version,
            "files": [str(p) for p in paths],
        }
    )
    return report


def _print_grouped(title: str, issues: List[ValidationIssue]) -> None:
    by_type: Dict[str, List[ValidationIssue]] = defaultdict(list)
    for issue in issues:
        by_type[issue.issue_type].append(issue)

    for issue_type in sorted(by_type.keys()):
        group = by_type[issue_type]
        print(f"\n{issue_type} {title} ({len(group)}):", file=sys.stderr)
        print("=" * 70, file=sys.stderr)
        for issue in group:
            print(issue.format(), file=sys.stderr)


def print_result(result: ValidationResult, file_count: int) -> None:
    if result.has_warnings():
        _print_grouped("Warnings", result.sorted_warnings())

    if result.has_errors():
        _print_grouped("Errors", result.sorted_errors())
        print(f"\nRoute command validation FAILED ({len(result.errors)} errors).", file=sys.stderr)
    else:
        print(f"Route command validation PASSED ({file_count} file(s)).")


# ============================================================================
# CLI and Main
# ============================================================================


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Validate route command payloads (JSON or YAML)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - All payloads valid
  1 - Validation failed
  2 - Fatal error (unreadable or unparseable input)

Examples:
  routekit-validate login_response.json
  routekit-validate --client-version 210 commands/*.yaml
  routekit-validate --json payload.json
        """,
    )
    parser.add_argument("paths", nargs="+", type=Path, help="Payload files to validate")
    parser.add_argument(
        "--client-version",
        type=int,
        default=None,
        help="Client protocol version to check compatibility against (default: configured)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat warnings as errors",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output a machine-readable JSON report on stdout",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging on stderr",
    )
    args = parser.parse_args(argv)

    if args.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    client_version = (
        args.client_version if args.client_version is not None else load_engine_config().supported_version
    )

    try:
        result = validate_files(args.paths, client_version=client_version)
    except FatalInputError as e:
        if args.json:
            error_output: Dict[str, Any] = {
                "version": REPORT_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                "status": "ERROR",
                "message": str(e),
                "errors": [],
                "warnings": [],
            }
            print(json.dumps(error_output, indent=2))
        else:
            print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_FATAL_ERROR)

    if args.strict:
        result.promote_warnings()

    if args.json:
        print(json.dumps(build_json_report(result, args.paths, client_version), indent=2))
    else:
        print_result(result, len(args.paths))

    sys.exit(EXIT_VALIDATION_FAILED if result.has_errors() else EXIT_SUCCESS)


if __name__ == "__main__":
    main()
