"""Apply preset parameter and upload values onto node inputs of an API-format graph."""

import copy
from typing import Any, Dict, Mapping

from comfy_agent.errors import InputsNotFound, NodeNotFound


def _ensure_inputs(workflow: Dict[str, Any], node_id: str) -> Dict[str, Any]:
    node = workflow.get(node_id)
    if not isinstance(node, dict):
        raise NodeNotFound(f"Node {node_id} not found in workflow", {"node_id": node_id})
    inputs = node.get("inputs")
    if not isinstance(inputs, dict):
        raise InputsNotFound(f"Node {node_id} has no inputs", {"node_id": node_id})
    return inputs


def _apply(workflow: Dict[str, Any], definitions: Mapping[str, Any],
           values: Mapping[str, Any]) -> Dict[str, Any]:
    patched = copy.deepcopy(workflow)
    for name, definition in definitions.items():
        if name not in values:
            continue
        node_id = str(definition.target.node_id)
        inputs = _ensure_inputs(patched, node_id)
        inputs[definition.target.input] = values[name]
    return patched


def apply_parameters(workflow: Dict[str, Any], preset, values: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a patched copy; ``workflow`` is left untouched."""
    return _apply(workflow, preset.parameters or {}, values)


def apply_uploads(workflow: Dict[str, Any], preset, values: Mapping[str, str]) -> Dict[str, Any]:
    """Same targeting as apply_parameters, keyed by the preset's uploads."""
    return _apply(workflow, preset.uploads or {}, values)
