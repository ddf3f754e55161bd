"""
Remote catalog discovery.

ComfyUI has exposed its workflow templates and the user's saved workflows
through several endpoints over time. Every known endpoint is queried in a
fixed order; individual failures are recorded and skipped, and only total
exhaustion is an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from comfy_agent.errors import AgentError, RemoteTemplateFetchFailed, RemoteUserdataFetchFailed
from comfy_agent.userdata_paths import (
    apply_workflows_dir_context,
    extract_userdata_json_paths,
    score_userdata_file_path,
    workflow_name_from_path,
)

logger = logging.getLogger("comfy_agent.remote")

TEMPLATE_ENDPOINTS = (
    "/workflow_templates",
    "/api/workflow_templates",
    "/templates/index.json",
)

USERDATA_LIST_ENDPOINTS = (
    "/userdata?dir=workflows&recurse=true",
    "/userdata?dir=workflows",
    "/v2/userdata?path=workflows",
    "/v2/userdata",
    "/api/userdata?dir=workflows&recurse=true",
    "/api/userdata?dir=workflows",
    "/api/v2/userdata?path=workflows",
    "/api/v2/userdata",
)

# Container keys that hold template lists rather than being templates themselves
RESERVED_KEYS = {"templates", "items", "workflows", "data", "categories"}
_LIST_KEYS = ("templates", "items", "workflows", "data")


@dataclass
class RemoteTemplate:
    name: str
    raw: Any


@dataclass
class RemoteUserdataWorkflow:
    name: str
    file: str


@dataclass
class DiscoveryResult:
    items: list
    endpoints: List[str] = field(default_factory=list)

    @property
    def endpoint(self) -> str:
        return ", ".join(self.endpoints)


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _attempt(endpoint: str, err: Exception) -> Dict[str, Any]:
    details = err.details if isinstance(err, AgentError) else None
    message = err.message if isinstance(err, AgentError) else (str(err) or repr(err))
    return {"endpoint": endpoint, "message": message, "status": (details or {}).get("status")}


# ======================== Template payload extraction ========================

def pick_template_name(value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    for key in ("name", "template_name", "id"):
        name = _as_str(value.get(key))
        if name:
            return name
    return None


def _to_template(value: Any, extra: Optional[Dict[str, Any]] = None) -> Optional[RemoteTemplate]:
    if isinstance(value, str) and value:
        name, raw = value, {"name": value}
    else:
        name = pick_template_name(value)
        if name is None:
            return None
        raw = value
    if extra:
        raw = {**raw, **extra}
    return RemoteTemplate(name=name, raw=raw)


def _category_metadata(category: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "category": _as_str(category.get("title")) or _as_str(category.get("moduleName")),
        "category_type": _as_str(category.get("type")),
    }


def extract_remote_templates(payload: Any) -> List[RemoteTemplate]:
    """
    Pull templates out of one listing response.

    Accepted shapes, in order:
      [name | {name|template_name|id, ...}, ...]
      {templates|items|workflows|data: [...]}
      {categories: [{title, type, templates: [...]}, ...]} (also as a top-level list)
    When none of those yield anything, object-valued top-level keys are
    templates named by the key, and list-valued keys are per-module template
    lists (ComfyUI's /workflow_templates returns {module_name: [names]}).
    """
    found: Dict[str, RemoteTemplate] = {}

    def add(template: Optional[RemoteTemplate]):
        if template is not None and template.name not in found:
            found[template.name] = template

    def add_categories(categories: list):
        for category in categories:
            if not isinstance(category, dict) or not isinstance(category.get("templates"), list):
                continue
            meta = _category_metadata(category)
            for item in category["templates"]:
                add(_to_template(item, meta))

    if isinstance(payload, list):
        for item in payload:
            add(_to_template(item))
        add_categories(payload)

    elif isinstance(payload, dict):
        for key in _LIST_KEYS:
            if isinstance(payload.get(key), list):
                for item in payload[key]:
                    add(_to_template(item))
        if isinstance(payload.get("categories"), list):
            for item in payload["categories"]:
                add(_to_template(item))
            add_categories(payload["categories"])

        if not found:
            for key, value in payload.items():
                if key in RESERVED_KEYS:
                    continue
                if isinstance(value, dict):
                    add(RemoteTemplate(name=key, raw=value))
                elif isinstance(value, list):
                    for item in value:
                        add(_to_template(item, {"module_name": key}))
            add(_to_template(payload))

    return sorted(found.values(), key=lambda t: t.name)


def extract_remote_userdata_workflows(payload: Any) -> List[RemoteUserdataWorkflow]:
    """Map listing paths to workflow names, keeping the best-scored path per name."""
    best: Dict[str, RemoteUserdataWorkflow] = {}
    for path in sorted(extract_userdata_json_paths(payload)):
        name = workflow_name_from_path(path)
        if not name:
            continue
        current = best.get(name)
        if current is None or score_userdata_file_path(path) > score_userdata_file_path(current.file):
            best[name] = RemoteUserdataWorkflow(name=name, file=path)
    return sorted(best.values(), key=lambda w: w.name)


# ======================== Discovery ========================

async def fetch_remote_templates(client) -> DiscoveryResult:
    """Query every template endpoint and merge the results (first occurrence per name wins)."""
    attempts = []
    succeeded = []
    merged: Dict[str, RemoteTemplate] = {}

    for endpoint in TEMPLATE_ENDPOINTS:
        try:
            payload = await client.get_json(endpoint, retries=client.listing_retries)
        except AgentError as e:
            logger.debug(f"Template endpoint {endpoint} failed: {e.message}")
            attempts.append(_attempt(endpoint, e))
            continue
        succeeded.append(endpoint)
        for template in extract_remote_templates(payload):
            merged.setdefault(template.name, template)

    if not succeeded:
        raise RemoteTemplateFetchFailed(
            "Could not list remote templates from any known endpoint", {"attempts": attempts},
        )
    logger.debug(f"Found {len(merged)} remote templates via {', '.join(succeeded)}")
    return DiscoveryResult(items=sorted(merged.values(), key=lambda t: t.name), endpoints=succeeded)


async def fetch_remote_template_by_name(client, name: str) -> Dict[str, Any]:
    result = await fetch_remote_templates(client)
    template = next((t for t in result.items if t.name == name), None)
    return {"template": template, "endpoint": result.endpoint}


async def fetch_remote_userdata_workflows(client) -> DiscoveryResult:
    """Query every userdata listing endpoint; keep the best path per workflow name."""
    attempts = []
    succeeded = []
    merged: Dict[str, RemoteUserdataWorkflow] = {}

    for endpoint in USERDATA_LIST_ENDPOINTS:
        try:
            payload = await client.get_json(endpoint, retries=client.listing_retries)
        except AgentError as e:
            logger.debug(f"Userdata endpoint {endpoint} failed: {e.message}")
            attempts.append(_attempt(endpoint, e))
            continue
        succeeded.append(endpoint)
        for workflow in extract_remote_userdata_workflows(payload):
            workflow.file = apply_workflows_dir_context(workflow.file, endpoint)
            current = merged.get(workflow.name)
            if current is None or (score_userdata_file_path(workflow.file)
                                   > score_userdata_file_path(current.file)):
                merged[workflow.name] = workflow

    if not succeeded:
        raise RemoteUserdataFetchFailed(
            "Could not list remote userdata workflows from any known endpoint",
            {"attempts": attempts},
        )
    return DiscoveryResult(items=sorted(merged.values(), key=lambda w: w.name), endpoints=succeeded)
