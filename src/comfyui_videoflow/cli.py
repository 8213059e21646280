"""
videoflow CLI: build and inspect ComfyUI video workflows.

Usage:
    videoflow build --params '{"video_model": "ltx2", "init_image": "a.png"}'
    videoflow build --params @request.json --sections '{"refiner": {"steps": 8}}'
    videoflow build --set video_model=ltx2 --set refiner_upscale=1.5 --workflow-only
    videoflow stages
    videoflow models
    videoflow validate workflow.json
    videoflow explain workflow.json
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional


# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_VALIDATION = 3


def _output(data: dict, pretty: bool = False) -> None:
    """Write JSON data to stdout (results/data only)."""
    if pretty:
        json.dump(data, sys.stdout, indent=2, default=str)
    else:
        json.dump(data, sys.stdout, default=str)
    sys.stdout.write("\n")
    sys.stdout.flush()


def _msg(text: str) -> None:
    """Write a status/progress message to stderr."""
    sys.stderr.write(text)
    if not text.endswith("\n"):
        sys.stderr.write("\n")
    sys.stderr.flush()


def _error(message: str, code: str = "CLI_ERROR") -> dict:
    return {"error": message, "code": code}


def _is_pretty() -> bool:
    return os.environ.get("VIDEOFLOW_PRETTY", "").lower() in ("1", "true", "yes")


def _parse_json_arg(value: str) -> dict:
    """Parse a JSON string argument, supporting both raw JSON and @file references."""
    if value.startswith("@"):
        path = Path(value[1:])
        if not path.exists():
            _msg(json.dumps(_error(f"File not found: {path}", "INVALID_PARAMS")))
            sys.exit(EXIT_VALIDATION)
        return json.loads(path.read_text())
    return json.loads(value)


def _parse_assignment(value: str):
    """KEY=VALUE, with VALUE parsed as JSON when it is valid JSON."""
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got '{value}'")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def _read_workflow(args) -> Optional[dict]:
    """Read workflow from a positional file argument or stdin."""
    path = getattr(args, "workflow", None)
    if path and path != "-":
        return json.loads(Path(path).read_text())
    if not sys.stdin.isatty():
        data = sys.stdin.read()
        if data.strip():
            return json.loads(data)
    return None


# ─── Commands ────────────────────────────────────────────────────────


def cmd_build(args):
    """Build a workflow from parameters."""
    from .errors import UserConfigError
    from .generator import VideoWorkflowGenerator

    pretty = args.pretty or _is_pretty()
    params = _parse_json_arg(args.params) if args.params else {}
    for key, value in args.set or []:
        params[key] = value
    sections = _parse_json_arg(args.sections) if args.sections else None

    try:
        result = VideoWorkflowGenerator().generate(params, sections, validate=not args.no_validate)
    except UserConfigError as e:
        _output(e.to_dict(), pretty)
        return EXIT_VALIDATION

    _output(result["workflow"] if args.workflow_only else result, pretty)
    _msg(f"Built workflow with {result['node_count']} nodes")
    validation = result.get("validation")
    if validation and not validation["valid"]:
        return EXIT_VALIDATION
    return EXIT_OK


def cmd_stages(args):
    """List pipeline stages."""
    from .generator import VideoWorkflowGenerator

    generator = VideoWorkflowGenerator(activate_extensions=not args.no_extensions)
    _output({"stages": generator.registry.describe()}, args.pretty or _is_pretty())
    return EXIT_OK


def cmd_models(args):
    """List known models."""
    from .model_registry import ModelRegistry

    _output({"models": ModelRegistry().list_models()}, args.pretty or _is_pretty())
    return EXIT_OK


def cmd_validate(args):
    """Validate workflow."""
    from .topology_validator import validate_topology

    pretty = args.pretty or _is_pretty()
    wf = _read_workflow(args)
    if wf is None:
        _output(_error("Provide workflow file or pipe JSON via stdin", "INVALID_PARAMS"), pretty)
        return EXIT_ERROR

    result = validate_topology(wf)
    _output(result, pretty)
    return EXIT_VALIDATION if result["errors"] else EXIT_OK


def cmd_explain(args):
    """Explain workflow."""
    from .workflow_builder import explain_workflow

    wf = _read_workflow(args)
    if wf is None:
        _output(_error("Provide workflow file or pipe JSON via stdin", "INVALID_PARAMS"), args.pretty or _is_pretty())
        return EXIT_ERROR
    sys.stdout.write(explain_workflow(wf))
    sys.stdout.write("\n")
    return EXIT_OK


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add --pretty flag."""
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="videoflow",
        description="videoflow CLI: build and inspect ComfyUI video workflows",
    )
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # ── build ──
    p_build = sub.add_parser("build", help="Build a workflow from parameters")
    p_build.add_argument("--params", "-p", help="JSON parameters (or @file.json)")
    p_build.add_argument(
        "--set", "-s", action="append", type=_parse_assignment, metavar="KEY=VALUE", help="Set one parameter"
    )
    p_build.add_argument("--sections", help="JSON per-section overrides (or @file.json)")
    p_build.add_argument("--no-validate", action="store_true", default=False, help="Skip topology validation")
    p_build.add_argument("--workflow-only", action="store_true", default=False, help="Print only the workflow")
    _add_common_args(p_build)
    p_build.set_defaults(func=cmd_build)

    # ── stages ──
    p_stages = sub.add_parser("stages", help="List pipeline stages in run order")
    p_stages.add_argument("--no-extensions", action="store_true", default=False, help="Show the unpatched pipeline")
    _add_common_args(p_stages)
    p_stages.set_defaults(func=cmd_stages)

    # ── models ──
    p_models = sub.add_parser("models", help="List known models")
    _add_common_args(p_models)
    p_models.set_defaults(func=cmd_models)

    # ── validate ──
    p_val = sub.add_parser("validate", help="Validate a workflow's references")
    p_val.add_argument("workflow", nargs="?", default="-", help="Workflow JSON file (or - for stdin)")
    _add_common_args(p_val)
    p_val.set_defaults(func=cmd_validate)

    # ── explain ──
    p_exp = sub.add_parser("explain", help="Describe a workflow node by node")
    p_exp.add_argument("workflow", nargs="?", default="-", help="Workflow JSON file (or - for stdin)")
    _add_common_args(p_exp)
    p_exp.set_defaults(func=cmd_explain)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code or EXIT_OK)
    except json.JSONDecodeError as e:
        _output(_error(f"Invalid JSON: {e}", "INVALID_PARAMS"), args.pretty or _is_pretty())
        sys.exit(EXIT_VALIDATION)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        _output(_error(str(e), "CLI_ERROR"), args.pretty or _is_pretty())
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
