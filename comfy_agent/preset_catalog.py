"""
Preset listing and inspection across local preset files, remote userdata
workflows and the remote template catalog.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from comfy_agent.errors import (
    AgentError,
    InvalidParam,
    InvalidPreset,
    PresetNotFound,
    PresetSourceAmbiguous,
    WorkdirNotFound,
)
from comfy_agent.presets import load_preset_file, resolve_preset_path
from comfy_agent.remote_catalog import (
    fetch_remote_template_by_name,
    fetch_remote_templates,
    fetch_remote_userdata_workflows,
)
from comfy_agent.remote_target import (
    REMOTE_WORKFLOW_REF,
    normalize_remote_parameters,
    normalize_remote_uploads,
)
from comfy_agent.workdir import get_subdir_path

logger = logging.getLogger("comfy_agent.presets")

LIST_SOURCES = ("local", "remote", "remote-catalog", "all")
SHOW_SOURCES = ("auto", "local", "remote")
_SOURCE_ORDER = {"local": 0, "remote": 1, "remote-catalog": 2}


def resolve_list_source(source: Optional[str]) -> str:
    if not source:
        return "all"
    if source in LIST_SOURCES:
        return source
    raise InvalidParam(f"Invalid --source '{source}' for list", {"value": source})


def resolve_show_source(source: Optional[str]) -> str:
    if not source:
        return "auto"
    if source in SHOW_SOURCES:
        return source
    raise InvalidParam(f"Invalid --source '{source}' for show", {"value": source})


def _describe_parameters(parameters) -> List[Dict[str, Any]]:
    described = []
    for name, param in (parameters or {}).items():
        item = {"name": name, "type": param.type, "required": bool(param.required),
                "target": param.target.model_dump()}
        if param.has_default:
            item["default"] = param.default
        described.append(item)
    return described


def _describe_uploads(uploads) -> List[Dict[str, Any]]:
    return [{"name": name, "kind": u.kind, "cli_flag": u.cli_flag, "target": u.target.model_dump()}
            for name, u in (uploads or {}).items()]


def _yaml_files(directory: str, allow_missing: bool) -> List[str]:
    if not os.path.isdir(directory):
        if allow_missing:
            return []
        raise WorkdirNotFound(f"Presets directory {directory} not found", {"path": directory})
    return sorted(f for f in os.listdir(directory)
                  if os.path.isfile(os.path.join(directory, f)) and f.endswith((".yaml", ".yml")))


async def list_presets(client, source: Optional[str] = None, scope: str = "local",
                       cwd: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge presets from the requested sources.

    Local files that fail to load are collected and raised together as
    InvalidPreset. Remote failures are warnings unless that source was
    requested explicitly.
    """
    source = resolve_list_source(source)
    presets: List[Dict[str, Any]] = []
    warnings: List[str] = []
    errors: List[Dict[str, Any]] = []

    if source in ("local", "all"):
        presets_dir = get_subdir_path("presets", cwd, scope)
        for file in _yaml_files(presets_dir, allow_missing=source != "local"):
            try:
                preset = load_preset_file(os.path.join(presets_dir, file))
            except AgentError as e:
                errors.append({"file": file, "message": e.message, "details": e.details})
                continue
            presets.append({"name": preset.name, "workflow": preset.workflow, "file": file,
                            "source": "local", "parameters": _describe_parameters(preset.parameters)})

    if source == "remote-catalog":
        catalog = await fetch_remote_templates(client)
        for template in catalog.items:
            presets.append({"name": template.name, "source": "remote-catalog", "parameters": []})

    if source in ("remote", "all"):
        try:
            listing = await fetch_remote_userdata_workflows(client)
        except AgentError as e:
            if source == "remote":
                raise
            logger.debug(f"Remote userdata listing failed: {e.message}")
            warnings.append(f"Remote userdata workflows unavailable: {e.message}")
        else:
            for workflow in listing.items:
                presets.append({"name": workflow.name, "file": workflow.file,
                                "source": "remote", "parameters": []})

    if errors:
        raise InvalidPreset("Some preset files could not be loaded",
                            {"errors": errors, "scope": scope, "source": source})

    presets.sort(key=lambda p: (p["name"], _SOURCE_ORDER[p["source"]]))
    return {"ok": True, "scope": scope, "source": source, "presets": presets, "warnings": warnings}


def select_show_source(requested: str, has_local: bool, has_remote: bool) -> str:
    if requested in ("local", "remote"):
        if not (has_local if requested == "local" else has_remote):
            raise PresetNotFound(f"Preset not found in source '{requested}'", {"source": requested})
        return requested
    if has_local and has_remote:
        raise PresetSourceAmbiguous(
            "Preset exists both locally and in the remote catalog; pass --source local or remote",
        )
    if has_local:
        return "local"
    if has_remote:
        return "remote"
    raise PresetNotFound("Preset not found locally or in the remote catalog")


async def show_preset(client, name: str, source: Optional[str] = None, scope: str = "local",
                      cwd: Optional[str] = None) -> Dict[str, Any]:
    requested = resolve_show_source(source)
    try:
        local_path = resolve_preset_path(name, scope, cwd)
    except PresetNotFound:
        local_path = None

    template = None
    endpoint = ""
    warnings = []
    if requested != "local":
        try:
            found = await fetch_remote_template_by_name(client, name)
            template, endpoint = found["template"], found["endpoint"]
        except AgentError as e:
            if requested == "remote":
                raise
            warnings.append(f"Remote catalog unavailable: {e.message}")

    selected = select_show_source(requested, local_path is not None, template is not None)

    if selected == "local":
        preset = load_preset_file(local_path)
        described = {
            "name": preset.name,
            "version": preset.version,
            "preset_path": local_path,
            "workflow_file": preset.workflow,
            "workflow_path": os.path.join(get_subdir_path("workflows", cwd, scope), preset.workflow),
            "parameters": _describe_parameters(preset.parameters),
            "uploads": _describe_uploads(preset.uploads),
        }
    else:
        raw = template.raw if isinstance(template.raw, dict) else {}
        params = normalize_remote_parameters(raw.get("parameters"))
        workflow_file = raw.get("workflow") if isinstance(raw.get("workflow"), str) else REMOTE_WORKFLOW_REF
        described = {
            "name": template.name,
            "version": 1,
            "preset_path": None,
            "workflow_file": workflow_file,
            "workflow_path": None,
            "remote_endpoint": endpoint,
            "parameters": _describe_parameters(params),
            "uploads": _describe_uploads(normalize_remote_uploads(raw.get("uploads"))),
            "raw": template.raw,
        }

    return {"ok": True, "scope": scope, "source": selected, "preset": described, "warnings": warnings}
