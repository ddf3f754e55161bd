"""
Helpers for ComfyUI userdata storage paths.

The /userdata listing has changed shape across ComfyUI versions: plain lists
of relative paths, lists of {path, ...} dicts, {subfolder, filename} pairs,
nested dicts keyed by file name. Everything here reduces those to relative
JSON paths such as "workflows/portrait.json".
"""

from typing import Any, Dict, Optional
from urllib.parse import quote, unquote, urlsplit

USERDATA_PREFIXES = ("/userdata/", "/api/userdata/", "/v2/userdata/", "/api/v2/userdata/")

_DIR_KEYS = ("subfolder", "folder", "dir", "directory", "parent")
_FILE_KEYS = ("filename", "file", "name", "path", "filepath")

MAX_SCAN_DEPTH = 8


def encode_component(value: str) -> str:
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(value, safe="!~*'()")


def _strip_userdata_prefix(value: str) -> str:
    for prefix in USERDATA_PREFIXES:
        idx = value.find(prefix)
        if idx >= 0:
            return value[idx + len(prefix):]
    return value


def _normalize_path_base(raw: str) -> Optional[str]:
    value = (raw or "").strip()
    if not value:
        return None
    value = unquote(value)
    if value.startswith("http://") or value.startswith("https://"):
        value = urlsplit(value).path
    value = _strip_userdata_prefix(value)
    value = value.split("?", 1)[0]
    if value.startswith("./"):
        value = value[2:]
    return value.lstrip("/")


def normalize_userdata_file_path(raw: str) -> Optional[str]:
    """Relative path of a .json file, or None if ``raw`` does not name one."""
    value = _normalize_path_base(raw)
    if not value or not value.lower().endswith(".json"):
        return None
    return value


def normalize_userdata_dir_path(raw: str) -> Optional[str]:
    value = _normalize_path_base(raw)
    if not value:
        return None
    return value.rstrip("/") or None


def collect_userdata_json_paths(value: Any, out: Dict[str, None], depth: int = 0):
    """
    Recursively collect JSON file paths from a listing payload into ``out``
    (a dict used as an insertion-ordered set).
    """
    if depth > MAX_SCAN_DEPTH:
        return

    if isinstance(value, str):
        path = normalize_userdata_file_path(value)
        if path:
            out[path] = None
        return

    if isinstance(value, list):
        for item in value:
            collect_userdata_json_paths(item, out, depth + 1)
        return

    if not isinstance(value, dict):
        return

    dirs = []
    for key in _DIR_KEYS:
        raw = value.get(key)
        if isinstance(raw, str) and raw:
            normalized = normalize_userdata_dir_path(raw)
            if normalized:
                dirs.append(normalized)
    files = [value[key] for key in _FILE_KEYS if isinstance(value.get(key), str) and value[key]]

    for d in dirs:
        for f in files:
            combined = normalize_userdata_file_path(f"{d}/{f}")
            if combined:
                out[combined] = None

    for key, entry in value.items():
        if isinstance(key, str):
            key_path = normalize_userdata_file_path(key)
            if key_path:
                out[key_path] = None
        collect_userdata_json_paths(entry, out, depth + 1)


def extract_userdata_json_paths(payload: Any) -> list:
    out: Dict[str, None] = {}
    collect_userdata_json_paths(payload, out)
    return list(out)


def endpoint_uses_workflows_dir(endpoint: str) -> bool:
    return "dir=workflows" in endpoint or "path=workflows" in endpoint


def apply_workflows_dir_context(path: str, endpoint: str) -> str:
    """Listings scoped to the workflows dir return paths relative to it; re-anchor them."""
    if not endpoint_uses_workflows_dir(endpoint):
        return path
    normalized = path.lstrip("/")
    if normalized.startswith("workflows/"):
        return normalized
    return f"workflows/{normalized}"


def workflow_name_from_path(path: str) -> Optional[str]:
    """'workflows/sub/alpha.json' -> 'alpha'. Hidden files yield None."""
    base = path.replace("\\", "/").rsplit("/", 1)[-1]
    if not base.lower().endswith(".json"):
        return None
    name = base[:-5]
    if not name or name.startswith("."):
        return None
    return name


def score_userdata_file_path(path: str) -> int:
    """Higher is better when several listing paths map to the same workflow name."""
    score = 0
    if "/" in path:
        score += 50
    if path.startswith("workflows/"):
        score += 100
    if "/workflows/" in path:
        score += 80
    return score + min(len(path), 60)
