"""
Import a ComfyUI workflow file as a preset.

Writes <workdir>/workflows/{name}.json (API format) and a starter
<workdir>/presets/{name}.yaml exposing every literal input as an optional
parameter. Parameter types come from the server's /object_info when it is
reachable (cached per base URL), otherwise from the literal value.
"""

import json
import logging
import os
import re
from typing import Any, Dict, Optional

from comfy_agent.errors import AgentError, FileExists, InvalidName
from comfy_agent.presets import dump_preset, load_workflow_file
from comfy_agent.workdir import ensure_workdir, get_subdir_path
from comfy_agent.workflow_normalize import Workflow, detect_param_type, is_literal_value

logger = logging.getLogger("comfy_agent.importer")

_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
OBJECT_INFO_CACHE = "object_info.json"


def validate_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise InvalidName("A preset name is required (--name)")
    name = name.strip()
    if not _NAME_RE.match(name):
        raise InvalidName("Preset names may only contain letters, digits, '_' and '-'", {"name": name})
    return name


def object_info_input_type(object_info: Optional[Dict[str, Any]], class_type: Any,
                           input_name: str) -> Any:
    """Raw declared type of one node input, e.g. "INT" or a list of combo choices."""
    if not object_info or not isinstance(class_type, str):
        return None
    info = object_info.get(class_type)
    if not isinstance(info, dict) or not isinstance(info.get("input"), dict):
        return None
    spec = None
    for section in ("required", "optional"):
        declared = info["input"].get(section)
        if isinstance(declared, dict) and input_name in declared:
            spec = declared[input_name]
            break
    if isinstance(spec, list):
        return spec[0] if spec else None
    return spec


def map_object_info_type(declared: Any) -> str:
    if isinstance(declared, list):
        # A list of choices is a combo
        return "string"
    if not isinstance(declared, str):
        return "json"
    upper = declared.upper()
    if "INT" in upper:
        return "int"
    if "FLOAT" in upper or "NUMBER" in upper:
        return "float"
    if "BOOL" in upper:
        return "bool"
    if "STRING" in upper or "TEXT" in upper or "COMBO" in upper:
        return "string"
    return "json"


def build_preset_template(name: str, workflow_file: str, workflow: Workflow,
                          object_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    parameters: Dict[str, Any] = {}
    for node_id, node in workflow.items():
        inputs = node.get("inputs") if isinstance(node, dict) else None
        if not isinstance(inputs, dict):
            continue
        for input_name, value in inputs.items():
            if not is_literal_value(value):
                continue
            param_name = f"{node_id}_{input_name}"
            if param_name in parameters:
                continue
            declared = object_info_input_type(object_info, node.get("class_type"), input_name)
            parameters[param_name] = {
                "type": map_object_info_type(declared) if declared is not None else detect_param_type(value),
                "target": {"node_id": node_id, "input": input_name},
                "default": value,
                "required": False,
            }

    template: Dict[str, Any] = {"version": 1, "name": name, "workflow": workflow_file}
    if parameters:
        template["parameters"] = parameters
    return template


def _load_cache(path: str) -> Dict[str, Any]:
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable object_info cache {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


async def get_object_info(client, cache_dir: str) -> Optional[Dict[str, Any]]:
    """/object_info for client.base_url, served from the cache when present."""
    cache_path = os.path.join(cache_dir, OBJECT_INFO_CACHE)
    cache = _load_cache(cache_path)
    if isinstance(cache.get(client.base_url), dict):
        return cache[client.base_url]
    try:
        object_info = await client.object_info()
    except AgentError as e:
        logger.warning(f"Could not fetch /object_info ({e.message}); inferring parameter types from values")
        return None
    if not isinstance(object_info, dict):
        return None
    cache[client.base_url] = object_info
    os.makedirs(cache_dir, exist_ok=True)
    with open(cache_path, "w", encoding="utf-8") as f:
        json.dump(cache, f, indent=2)
        f.write("\n")
    return object_info


async def import_workflow(client, workflow_path: str, name: Optional[str], force: bool = False,
                          scope: str = "local", cwd: Optional[str] = None) -> Dict[str, Any]:
    ensure_workdir(cwd, scope)
    name = validate_name(name)
    workflow = load_workflow_file(workflow_path)

    workflow_dest = os.path.join(get_subdir_path("workflows", cwd, scope), f"{name}.json")
    preset_dest = os.path.join(get_subdir_path("presets", cwd, scope), f"{name}.yaml")
    if not force:
        for dest in (workflow_dest, preset_dest):
            if os.path.exists(dest):
                raise FileExists(f"{dest} already exists (use --force to overwrite)", {"path": dest})

    os.makedirs(os.path.dirname(workflow_dest), exist_ok=True)
    with open(workflow_dest, "w", encoding="utf-8") as f:
        json.dump(workflow, f, indent=2, ensure_ascii=False)
        f.write("\n")

    object_info = await get_object_info(client, get_subdir_path("cache", cwd, scope))
    template = build_preset_template(name, f"{name}.json", workflow, object_info)
    os.makedirs(os.path.dirname(preset_dest), exist_ok=True)
    with open(preset_dest, "w", encoding="utf-8") as f:
        f.write(dump_preset(template))

    logger.info(f"Imported {workflow_path} as preset '{name}'")
    return {"ok": True, "name": name, "workflow_path": workflow_dest, "preset_path": preset_dest,
            "parameters": len(template.get("parameters", {}))}
