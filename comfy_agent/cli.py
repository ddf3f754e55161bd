"""
comfy-agent command line.

    comfy-agent init [--global] [--force]
    comfy-agent run <preset> [run options] [--<param> value ...]
    comfy-agent list [--source local|remote|remote-catalog|all]
    comfy-agent show <preset> [--source auto|local|remote]
    comfy-agent import <workflow.json> --name <name> [--force]
    comfy-agent config get|set|reset [key] [value]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from comfy_agent import __version__
from comfy_agent.comfy_client import ComfyClient
from comfy_agent.errors import AgentError, InvalidParam, error_payload_from, exit_code_from
from comfy_agent.importer import import_workflow
from comfy_agent.preset_catalog import list_presets, show_preset
from comfy_agent.runner import RunOptions, RunOrchestrator
from comfy_agent.settings import SettingsManager, decide_base_url
from comfy_agent.workdir import init_workdir

logger = logging.getLogger("comfy_agent.cli")


def print_json(payload: Any):
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfy-agent", description="Run ComfyUI workflows as presets",
                                     allow_abbrev=False)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def common(p: argparse.ArgumentParser, remote: bool = True):
        p.add_argument("--json", action="store_true", help="Print one JSON document on stdout")
        p.add_argument("--global", dest="global_scope", action="store_true",
                       help="Use ~/.config/.comfy-agent instead of ./.comfy-agent")
        if remote:
            p.add_argument("--base-url", help="ComfyUI base URL (default: $COMFY_AGENT_BASE_URL or settings)")

    p = sub.add_parser("init", help="Create the working directory", allow_abbrev=False)
    common(p, remote=False)
    p.add_argument("--force", action="store_true", help="Replace conflicting files")

    p = sub.add_parser("run", help="Run a preset", allow_abbrev=False,
                       epilog="Any other --<name> value pairs are passed to the preset as parameters.")
    common(p)
    p.add_argument("preset")
    p.add_argument("--source", help="auto, local, remote or remote-catalog")
    p.add_argument("--n", help="Number of runs (default 1)")
    p.add_argument("--seed", help="Base seed, or 'random'")
    p.add_argument("--seed-step", help="Seed increment between runs")
    p.add_argument("--poll-interval-ms", help="History polling interval")
    p.add_argument("--timeout-seconds", help="Give up waiting for outputs after this long")
    p.add_argument("--out", help="Output directory")
    p.add_argument("--dry-run", action="store_true", help="Print the patched workflow without submitting")

    p = sub.add_parser("list", help="List presets", allow_abbrev=False)
    common(p)
    p.add_argument("--source", help="local, remote, remote-catalog or all (default)")

    p = sub.add_parser("show", help="Show one preset", allow_abbrev=False)
    common(p)
    p.add_argument("preset")
    p.add_argument("--source", help="auto, local or remote")

    p = sub.add_parser("import", help="Import a workflow JSON file as a preset", allow_abbrev=False)
    common(p)
    p.add_argument("workflow")
    p.add_argument("--name", required=True)
    p.add_argument("--force", action="store_true", help="Overwrite existing files")

    p = sub.add_parser("config", help="Show or change persistent settings", allow_abbrev=False)
    p.add_argument("--json", action="store_true", help="Print one JSON document on stdout")
    p.add_argument("action", choices=["get", "set", "reset"])
    p.add_argument("key", nargs="?", help="Dotted setting key, e.g. run.timeout_seconds")
    p.add_argument("value", nargs="?", help="New value (set only)")

    return parser


# ------------------------------------------------------------------ #
# Text output
# ------------------------------------------------------------------ #

def _print_run(report: Dict[str, Any]):
    print(f"Scope: {report['scope']}")
    print(f"Source: {report['source']}")
    print(f"Completed. Outputs saved to {report['output_dir']}")
    for run in report["runs"]:
        print(f"- #{run['index']} prompt_id={run['prompt_id']} outputs={len(run['outputs'])}")


def _print_list(report: Dict[str, Any]):
    for warning in report["warnings"]:
        print(f"Warning: {warning}", file=sys.stderr)
    if not report["presets"]:
        print(f"No presets found (scope: {report['scope']}, source: {report['source']})")
        return
    print(f"Scope: {report['scope']}")
    print(f"Source: {report['source']}")
    for preset in report["presets"]:
        tag = "" if preset["source"] == "local" else f" [{preset['source']}]"
        print(f"- {preset['name']}{tag}")


def _format_target(target: Optional[Dict[str, Any]]) -> str:
    if not target:
        return ""
    return f" target={target.get('node_id')}.{target.get('input')}"


def _print_show(report: Dict[str, Any]):
    preset = report["preset"]
    for warning in report.get("warnings", []):
        print(f"Warning: {warning}", file=sys.stderr)
    print(f"Preset: {preset['name']}")
    print(f"Scope: {report['scope']}")
    print(f"Source: {report['source']}")
    print(f"File: {preset['preset_path'] or '(remote)'}")
    if preset.get("remote_endpoint"):
        print(f"Endpoint: {preset['remote_endpoint']}")
    print(f"Workflow: {preset['workflow_file']} ({preset['workflow_path'] or '(remote)'})")

    if not preset["parameters"]:
        print("Parameters: none")
    else:
        print("Parameters:")
        for param in preset["parameters"]:
            required = "required" if param["required"] else "optional"
            default = f" default={json.dumps(param['default'])}" if "default" in param else ""
            print(f"- {param['name']}: {param['type']} ({required})"
                  f"{_format_target(param.get('target'))}{default}")

    if not preset["uploads"]:
        print("Uploads: none")
    else:
        print("Uploads:")
        for upload in preset["uploads"]:
            print(f"- {upload['name']}: {upload['kind']} {upload['cli_flag']}"
                  f"{_format_target(upload.get('target'))}")


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

def parse_setting_value(key: str, raw: str, default: Any) -> Any:
    """Coerce a command line value to the type of the setting's default."""
    if isinstance(default, str):
        return raw
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    if isinstance(default, bool):
        ok = isinstance(value, bool)
    else:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    if not ok:
        raise InvalidParam(f"Invalid value for {key}: {raw}",
                           {"key": key, "value": raw, "expected": type(default).__name__})
    return value


def config_command(settings: SettingsManager, action: str, key: Optional[str],
                   value: Optional[str]) -> Dict[str, Any]:
    if key and settings.default_for(key) is None and settings.get(key) is None:
        raise InvalidParam(f"Unknown setting: {key}", {"key": key})

    if action == "get":
        if not key:
            return {"ok": True, "settings_path": str(settings.settings_path),
                    "settings": settings.get_all()}
        current = settings.get(key)
        if isinstance(current, dict):
            current = settings.get_section(key)
        return {"ok": True, "key": key, "value": current}

    if action == "set":
        if not key or value is None:
            raise InvalidParam("config set needs a key and a value", {"key": key})
        default = settings.default_for(key)
        if default is None:
            raise InvalidParam(f"Unknown setting: {key}", {"key": key})
        if isinstance(default, dict):
            raise InvalidParam(f"{key} is a section; set one of its keys instead", {"key": key})
        old_value = settings.get(key)
        new_value = parse_setting_value(key, value, default)
        settings.set(key, new_value)
        logger.info(f"Setting updated: {key} = {new_value}")
        return {"ok": True, "key": key, "old_value": old_value, "new_value": new_value}

    settings.reset_to_defaults(key)
    logger.info(f"Settings reset to defaults: {key or 'all'}")
    return {"ok": True, "reset": key or "all"}


def _print_config(report: Dict[str, Any]):
    if "settings" in report:
        print(f"File: {report['settings_path']}")
        print(json.dumps(report["settings"], indent=2, ensure_ascii=False))
    elif "new_value" in report:
        print(f"{report['key']}: {json.dumps(report['old_value'])} -> {json.dumps(report['new_value'])}")
    elif "reset" in report:
        print(f"Reset {report['reset']} to defaults")
    else:
        print(f"{report['key']} = {json.dumps(report['value'], ensure_ascii=False)}")


# ------------------------------------------------------------------ #
# Dispatch
# ------------------------------------------------------------------ #

async def dispatch(args: argparse.Namespace, extra: List[str], settings: SettingsManager) -> int:
    if args.command == "config":
        if extra:
            raise AgentError(f"Unrecognized arguments: {' '.join(extra)}", {"args": extra},
                             code="INVALID_ARGS")
        report = config_command(settings, args.action, args.key, args.value)
        if args.json:
            print_json(report)
        else:
            _print_config(report)
        return 0

    scope = "global" if args.global_scope else "local"

    if args.command == "init":
        result = init_workdir(scope=scope, force=args.force)
        if args.json:
            print_json({"ok": True, "scope": scope, **result})
        else:
            for path in result["created"]:
                print(f"created {path}")
            for path in result["skipped"]:
                print(f"exists  {path}")
        return 0

    base_url = decide_base_url(args.base_url, settings)
    logger.debug(f"Using base URL {base_url['value']} (from {base_url['source']})")
    async with ComfyClient.from_settings(base_url["value"], settings) as client:
        if args.command == "run":
            options = RunOptions(
                source=args.source, n=args.n, seed=args.seed, seed_step=args.seed_step,
                poll_interval_ms=args.poll_interval_ms, timeout_seconds=args.timeout_seconds,
                out=args.out, dry_run=args.dry_run, json=args.json, global_scope=args.global_scope,
            )
            report = await RunOrchestrator(client, settings).run(args.preset, options, extra)
            if options.dry_run:
                print_json(report["workflow"])
            elif args.json:
                print_json(report)
            else:
                _print_run(report)
            return 0

        if extra:
            raise AgentError(f"Unrecognized arguments: {' '.join(extra)}", {"args": extra},
                             code="INVALID_ARGS")

        if args.command == "list":
            report = await list_presets(client, args.source, scope)
            if args.json:
                print_json(report)
            else:
                _print_list(report)
        elif args.command == "show":
            report = await show_preset(client, args.preset, args.source, scope)
            if args.json:
                print_json(report)
            else:
                _print_show(report)
        elif args.command == "import":
            report = await import_workflow(client, args.workflow, args.name, args.force, scope)
            if args.json:
                print_json(report)
            else:
                print(f"Workflow saved: {report['workflow_path']}")
                print(f"Preset created: {report['preset_path']}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args, extra = parser.parse_known_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    settings = SettingsManager()
    try:
        return asyncio.run(dispatch(args, extra, settings))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except Exception as e:
        if not isinstance(e, AgentError):
            logger.exception("Unexpected error")
        if getattr(args, "json", False):
            print_json(error_payload_from(e))
        else:
            message = e.message if isinstance(e, AgentError) else str(e)
            print(f"Error [{error_payload_from(e)['error']['code']}]: {message}", file=sys.stderr)
        return exit_code_from(e)


if __name__ == "__main__":
    sys.exit(main())
