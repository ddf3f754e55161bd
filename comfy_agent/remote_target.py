"""
Resolve a remote template or userdata workflow to an API-format graph and a
runnable preset.

Resolution order for one template:
  1. the template payload itself is a workflow
  2. its "workflow" or "prompt" field is one
  3. heuristic search over template paths and userdata storage paths,
     each fetched until one normalizes
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from comfy_agent.errors import AgentError, RemoteWorkflowNotFound
from comfy_agent.presets import NodeTarget, ParameterDef, Preset, UploadDef
from comfy_agent.remote_catalog import (
    USERDATA_LIST_ENDPOINTS,
    fetch_remote_template_by_name,
    fetch_remote_userdata_workflows,
)
from comfy_agent.userdata_paths import (
    apply_workflows_dir_context,
    encode_component,
    extract_userdata_json_paths,
    normalize_userdata_file_path,
)
from comfy_agent.workflow_normalize import (
    Workflow,
    detect_param_type,
    is_literal_value,
    try_normalize,
)

logger = logging.getLogger("comfy_agent.remote")

REMOTE_WORKFLOW_REF = "(remote)"

USERDATA_FILE_ENDPOINTS = ("/userdata/", "/api/userdata/")
_USERDATA_PATH_KEYS = ("workflow_path", "workflowPath", "path", "file", "filename")
_TEMPLATE_PATH_KEYS = _USERDATA_PATH_KEYS + ("url", "template_url")

PROMPT_ALIASES = ("prompt", "negative")
INPUT_ALIASES = ("steps", "seed", "cfg", "width", "height", "denoise")


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _ordered(values) -> List[str]:
    return list(dict.fromkeys(values))


# ------------------------------------------------------------------ #
# Candidate paths
# ------------------------------------------------------------------ #

def template_name_candidates(template_name: str, raw: Dict[str, Any]) -> List[str]:
    return _ordered(n for n in (template_name, _as_str(raw.get("name")), _as_str(raw.get("title"))) if n)


def template_keywords(template_name: str, raw: Dict[str, Any]) -> List[str]:
    return _ordered(n.lower() for n in template_name_candidates(template_name, raw))


def score_userdata_candidate(path: str, keywords: List[str]) -> int:
    value = path.lower()
    score = 20 if value.startswith("workflows/") else 0
    for keyword in keywords:
        if not keyword:
            continue
        if value == f"{keyword}.json":
            score += 80
        if value.endswith(f"/{keyword}.json"):
            score += 60
        if keyword in value:
            score += 20
    return score


def extract_userdata_json_candidates(payload: Any, template_name: str,
                                     raw: Dict[str, Any]) -> List[str]:
    """JSON paths from a listing that mention the template, best match first."""
    keywords = template_keywords(template_name, raw)
    matched = [p for p in extract_userdata_json_paths(payload)
               if any(k in p.lower() for k in keywords)]
    return sorted(matched, key=lambda p: (-score_userdata_candidate(p, keywords), p))


def userdata_fetch_paths(file_path: str) -> List[str]:
    """Servers differ in how they decode the storage path, so try every encoding."""
    encoded = encode_component(file_path)
    double_encoded = encode_component(encoded)
    per_segment = "/".join(encode_component(s) for s in file_path.split("/"))
    paths = []
    for endpoint in USERDATA_FILE_ENDPOINTS:
        paths.extend([f"{endpoint}{encoded}", f"{endpoint}{double_encoded}", f"{endpoint}{per_segment}"])
    return paths


async def userdata_workflow_paths(client, template_name: str, raw: Dict[str, Any]) -> List[str]:
    files: List[str] = []
    for key in _USERDATA_PATH_KEYS:
        value = _as_str(raw.get(key))
        normalized = normalize_userdata_file_path(value) if value else None
        if normalized:
            files.append(normalized)

    for name in template_name_candidates(template_name, raw):
        files.append(f"{name}.json")
        files.append(f"workflows/{name}.json")

    for endpoint in USERDATA_LIST_ENDPOINTS:
        try:
            payload = await client.get_json(endpoint, retries=client.listing_retries)
        except AgentError as e:
            logger.debug(f"Userdata listing {endpoint} skipped: {e.message}")
            continue
        for candidate in extract_userdata_json_candidates(payload, template_name, raw):
            files.append(apply_workflows_dir_context(candidate, endpoint))

    fetch_paths: List[str] = []
    for file_path in _ordered(files):
        fetch_paths.extend(userdata_fetch_paths(file_path))
    return _ordered(fetch_paths)


def _normalize_template_path(value: str) -> str:
    if value.startswith("http://") or value.startswith("https://"):
        parts = urlsplit(value)
        return parts.path + (f"?{parts.query}" if parts.query else "")
    return value if value.startswith("/") else f"/{value}"


def template_workflow_paths(template_name: str, raw: Dict[str, Any]) -> List[str]:
    candidates = []
    for key in _TEMPLATE_PATH_KEYS:
        value = _as_str(raw.get(key))
        if value:
            candidates.append(_normalize_template_path(value))

    module = _as_str(raw.get("module_name")) or _as_str(raw.get("moduleName"))
    if module:
        candidates.append(f"/templates/{module}/{template_name}.json")
        candidates.append(f"/api/workflow_templates/{module}/{template_name}.json")
    candidates.append(f"/templates/{template_name}.json")
    candidates.append(f"/api/workflow_templates/{template_name}.json")

    paths = []
    for path in _ordered(candidates):
        paths.append(path)
        if not path.endswith(".json"):
            paths.append(f"{path}.json")
    return _ordered(paths)


async def resolve_remote_workflow(client, template_name: str, raw_template: Any,
                                  prefer_userdata: bool = False) -> Workflow:
    """Find the workflow behind a remote template; RemoteWorkflowNotFound lists every path tried."""
    inline = try_normalize(raw_template)
    if inline is not None:
        return inline

    raw = raw_template if isinstance(raw_template, dict) else {}
    embedded = try_normalize(raw.get("workflow")) or try_normalize(raw.get("prompt"))
    if embedded is not None:
        return embedded

    userdata_paths = await userdata_workflow_paths(client, template_name, raw)
    template_paths = template_workflow_paths(template_name, raw)
    groups = [userdata_paths, template_paths] if prefer_userdata else [template_paths, userdata_paths]

    tried = []
    for group in groups:
        for path in group:
            tried.append(path)
            try:
                payload = await client.get_json(path, retries=client.listing_retries)
            except AgentError:
                continue
            workflow = try_normalize(payload)
            if workflow is not None:
                logger.info(f"Resolved remote workflow '{template_name}' from {path}")
                return workflow

    raise RemoteWorkflowNotFound(
        f"No workflow found for remote template '{template_name}'",
        {"template": template_name, "tried_paths": tried},
    )


# ------------------------------------------------------------------ #
# Preset construction
# ------------------------------------------------------------------ #

def infer_parameters(workflow: Workflow) -> Dict[str, ParameterDef]:
    """One optional parameter per literal input, named {node_id}_{input}, plus convenience aliases."""
    params: Dict[str, ParameterDef] = {}
    for node_id, node in workflow.items():
        inputs = node.get("inputs") if isinstance(node, dict) else None
        if not isinstance(inputs, dict):
            continue
        for input_name, value in inputs.items():
            if not is_literal_value(value):
                continue
            name = f"{node_id}_{input_name}"
            if name in params:
                continue
            params[name] = ParameterDef(
                type=detect_param_type(value),
                target=NodeTarget(node_id=node_id, input=input_name),
                required=False,
                default=value,
            )

    text_params = [p for p in params.values() if p.type == "string" and p.target.input == "text"]
    for alias, param in zip(PROMPT_ALIASES, text_params):
        params.setdefault(alias, param.model_copy())

    for alias in INPUT_ALIASES:
        if alias in params:
            continue
        candidates = [p for p in params.values() if p.target.input == alias]
        if len(candidates) == 1:
            params[alias] = candidates[0].model_copy()
    return params


def _lenient(model, defs: Any, name_kind: str) -> Dict[str, Any]:
    """Validate each entry on its own and drop the invalid ones."""
    if not isinstance(defs, dict):
        return {}
    valid = {}
    for name, definition in defs.items():
        try:
            parsed = model.model_validate(definition)
        except ValidationError as e:
            logger.debug(f"Ignoring remote {name_kind} '{name}': {e.error_count()} issue(s)")
            continue
        if not parsed.target.input:
            continue
        valid[name] = parsed
    return valid


def normalize_remote_parameters(defs: Any) -> Dict[str, ParameterDef]:
    params = _lenient(ParameterDef, defs, "parameter")
    for name, param in params.items():
        params[name] = param.model_copy(update={"required": param.required is True})
    return params


def normalize_remote_uploads(defs: Any) -> Dict[str, UploadDef]:
    return {name: u for name, u in _lenient(UploadDef, defs, "upload").items() if u.cli_flag}


async def try_load_remote_userdata_run_target(name: str, client) -> Optional[Dict[str, Any]]:
    listing = await fetch_remote_userdata_workflows(client)
    match = next((w for w in listing.items if w.name == name), None)
    if match is None:
        return None
    workflow = await resolve_remote_workflow(
        client, name, {"name": name, "workflow_path": match.file}, prefer_userdata=True,
    )
    preset = Preset(version=1, name=name, workflow=REMOTE_WORKFLOW_REF,
                    parameters=infer_parameters(workflow))
    return {"source": "remote", "preset": preset, "workflow": workflow}


async def try_load_remote_catalog_run_target(name: str, client) -> Optional[Dict[str, Any]]:
    found = await fetch_remote_template_by_name(client, name)
    template = found["template"]
    if template is None:
        return None
    workflow = await resolve_remote_workflow(client, name, template.raw)
    raw = template.raw if isinstance(template.raw, dict) else {}
    parameters = normalize_remote_parameters(raw.get("parameters")) or infer_parameters(workflow)
    uploads = normalize_remote_uploads(raw.get("uploads"))
    preset = Preset(version=1, name=name, workflow=REMOTE_WORKFLOW_REF,
                    parameters=parameters or None, uploads=uploads or None)
    return {"source": "remote-catalog", "preset": preset, "workflow": workflow}


async def try_load_remote_run_target(name: str, client) -> Optional[Dict[str, Any]]:
    """Userdata first, then the catalog; a userdata failure surfaces if the catalog has nothing."""
    userdata_error = None
    try:
        target = await try_load_remote_userdata_run_target(name, client)
        if target is not None:
            return target
    except AgentError as e:
        userdata_error = e

    target = await try_load_remote_catalog_run_target(name, client)
    if target is not None:
        return target
    if userdata_error is not None:
        raise userdata_error
    return None
