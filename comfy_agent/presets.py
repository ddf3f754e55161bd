"""
Preset schema and preset/workflow file loading.

A preset is a YAML document:

    version: 1
    name: portrait
    workflow: portrait.json          # relative to <workdir>/workflows
    parameters:
      prompt: {type: string, target: {node_id: 6, input: text}, required: true}
      seed:   {type: int, target: {node_id: 3, input: seed}}
    uploads:
      image:  {kind: image, cli_flag: --image, target: {node_id: 10, input: image}}
"""

import json
import logging
import os
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ValidationError

from comfy_agent.errors import InvalidPreset, NormalizationError, PresetNotFound
from comfy_agent.workdir import get_subdir_path
from comfy_agent.workflow_normalize import Workflow, normalize_workflow

logger = logging.getLogger("comfy_agent.presets")

ParamType = Literal["string", "int", "float", "bool", "json"]


class NodeTarget(BaseModel):
    node_id: Union[str, int]
    input: str


class ParameterDef(BaseModel):
    type: ParamType
    target: NodeTarget
    required: Optional[bool] = None
    default: Any = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class UploadDef(BaseModel):
    kind: Literal["image", "mask"]
    cli_flag: str
    target: NodeTarget


class Preset(BaseModel):
    version: Literal[1]
    name: str
    workflow: str
    parameters: Optional[Dict[str, ParameterDef]] = None
    uploads: Optional[Dict[str, UploadDef]] = None

    model_config = {"frozen": True}


def resolve_preset_path(name: str, scope: str = "local", cwd: Optional[str] = None) -> str:
    """Find <workdir>/presets/{name}.yaml, then .yml."""
    base = os.path.join(get_subdir_path("presets", cwd, scope), name)
    for candidate in (f"{base}.yaml", f"{base}.yml"):
        if os.path.isfile(candidate):
            return candidate
    raise PresetNotFound(f"Preset '{name}' not found", {"preset": name})


def parse_preset(data: Any, source: str = "<memory>") -> Preset:
    try:
        return Preset.model_validate(data)
    except ValidationError as e:
        issues = [
            {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InvalidPreset(f"Preset {source} does not match the preset schema",
                            {"file": source, "issues": issues})


def load_preset_file(path: str) -> Preset:
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise InvalidPreset(f"Preset {path} is not valid YAML", {"file": path, "cause": str(e)})
    return parse_preset(data, path)


def dump_preset(preset_data: Dict[str, Any]) -> str:
    return yaml.safe_dump(preset_data, sort_keys=False, allow_unicode=True)


def load_workflow_file(path: str) -> Workflow:
    """Read a workflow JSON file in either serialization and return API format."""
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise NormalizationError(f"Workflow {path} is not valid JSON",
                                 {"file": path, "cause": str(e)})
    try:
        return normalize_workflow(parsed)
    except NormalizationError as e:
        raise NormalizationError(e.message, {"file": path})


def load_preset_workflow(preset: Preset, scope: str = "local", cwd: Optional[str] = None) -> Workflow:
    return load_workflow_file(os.path.join(get_subdir_path("workflows", cwd, scope), preset.workflow))


def try_load_local_run_target(name: str, scope: str = "local",
                              cwd: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Load a local preset and its workflow, or None when the preset file does not exist."""
    try:
        path = resolve_preset_path(name, scope, cwd)
    except PresetNotFound:
        return None
    preset = load_preset_file(path)
    workflow = load_preset_workflow(preset, scope, cwd)
    logger.debug(f"Loaded local preset {name} from {path}")
    return {"source": "local", "preset": preset, "workflow": workflow}
