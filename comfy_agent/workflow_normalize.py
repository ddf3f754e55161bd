"""
Workflow normalization: accept either ComfyUI serialization and return API format.

API format:  {"3": {"class_type": "KSampler", "inputs": {...}}, ...}
Graph format (what the editor saves): {"nodes": [...], "links": [...], ...}
"""

import logging
from typing import Any, Dict, Optional

from comfy_agent.errors import NormalizationError

logger = logging.getLogger("comfy_agent.workflow")

Workflow = Dict[str, Any]

# Editor-only node types that never execute
NON_EXECUTING_TYPES = {"MarkdownNote"}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integral(value: Any) -> bool:
    if _is_int(value):
        return True
    return isinstance(value, float) and value.is_integer()


def is_api_node(value: Any) -> bool:
    return isinstance(value, dict) and "inputs" in value and "class_type" in value


def is_api_format(data: Any) -> bool:
    """Non-empty dict where every value is a {class_type, inputs} node."""
    if not isinstance(data, dict) or not data:
        return False
    return all(isinstance(k, str) and is_api_node(v) for k, v in data.items())


def is_graph_format(data: Any) -> bool:
    return (isinstance(data, dict)
            and isinstance(data.get("nodes"), list)
            and isinstance(data.get("links"), list))


def widget_value_matches(input_type: Any, value: Any) -> bool:
    """Whether a widgets_values entry can fill an input of the declared type."""
    if not isinstance(input_type, str):
        return True
    if input_type == "INT":
        return _is_integral(value)
    if input_type == "FLOAT":
        return _is_number(value)
    if input_type == "BOOLEAN":
        return isinstance(value, bool)
    if input_type in ("STRING", "COMBO"):
        return isinstance(value, str)
    return True


def build_link_map(links: list) -> Dict[int, tuple]:
    """link_id -> (from_node_id, from_slot) for well-formed link records."""
    link_map = {}
    for link in links:
        if not isinstance(link, list) or len(link) < 4:
            continue
        link_id, from_node, from_slot = link[0], link[1], link[2]
        if not (_is_int(link_id) and _is_int(from_node) and _is_int(from_slot)):
            continue
        link_map[link_id] = (from_node, from_slot)
    return link_map


def convert_graph_to_api(graph: Dict[str, Any]) -> Optional[Workflow]:
    """Convert editor graph format to API format. Returns None if nothing usable remains."""
    nodes = graph.get("nodes")
    links = graph.get("links")
    if not isinstance(nodes, list) or not isinstance(links, list):
        return None

    link_map = build_link_map(links)
    api_workflow: Workflow = {}

    for node in nodes:
        if not isinstance(node, dict):
            continue
        node_id = node.get("id")
        class_type = node.get("type")
        if not _is_int(node_id):
            continue
        if not isinstance(class_type, str) or not class_type:
            continue
        if class_type in NON_EXECUTING_TYPES:
            continue

        declared = node.get("inputs") if isinstance(node.get("inputs"), list) else []
        widgets = node.get("widgets_values") if isinstance(node.get("widgets_values"), list) else []
        wi = 0  # widget value cursor
        inputs: Dict[str, Any] = {}

        for inp in declared:
            if not isinstance(inp, dict):
                continue
            name = inp.get("name")
            if not isinstance(name, str) or not name:
                continue

            link_id = inp.get("link")
            if _is_int(link_id) and link_id in link_map:
                from_node, from_slot = link_map[link_id]
                inputs[name] = [str(from_node), from_slot]
                continue

            if not isinstance(inp.get("widget"), dict):
                continue
            # Greedy: first unconsumed value of a compatible type wins,
            # incompatible values (e.g. "randomize" after a seed) are consumed and dropped
            while wi < len(widgets):
                candidate = widgets[wi]
                wi += 1
                if widget_value_matches(inp.get("type"), candidate):
                    inputs[name] = candidate
                    break

        api_node: Dict[str, Any] = {"class_type": class_type, "inputs": inputs}
        title = node.get("title")
        if isinstance(title, str) and title:
            api_node["_meta"] = {"title": title}
        api_workflow[str(node_id)] = api_node

    return api_workflow if is_api_format(api_workflow) else None


def normalize_workflow(raw: Any) -> Workflow:
    """Return the API-format graph for any supported document shape."""
    if is_api_format(raw):
        return raw

    if isinstance(raw, dict):
        if is_graph_format(raw):
            converted = convert_graph_to_api(raw)
            if converted is not None:
                logger.debug(f"Converted editor graph with {len(converted)} executable nodes")
                return converted

        candidate = raw.get("prompt")
        if candidate is None:
            candidate = raw.get("workflow")
        if is_api_format(candidate):
            return candidate

    raise NormalizationError("Workflow is neither API format nor a convertible editor graph")


def try_normalize(raw: Any) -> Optional[Workflow]:
    try:
        return normalize_workflow(raw)
    except NormalizationError:
        return None


def is_literal_value(value: Any) -> bool:
    """Literal inputs are anything but a list (lists are node links)."""
    return not isinstance(value, list)


def detect_param_type(value: Any) -> str:
    if isinstance(value, str):
        return "string"
    if isinstance(value, bool):
        return "bool"
    if _is_number(value):
        return "int" if _is_integral(value) else "float"
    return "json"
