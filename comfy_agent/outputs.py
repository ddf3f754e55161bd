"""
Output file extraction from ComfyUI /history entries.

ComfyUI uses different keys for different media types:
"images" (SaveImage, PreviewImage), "videos", "gifs" (animated outputs)
and "audios"/"audio" (SaveAudio). Custom nodes may use other keys, so any
other array of file-like dicts is collected as well.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel

MEDIA_KEYS = ("images", "videos", "gifs", "audios", "audio")


class OutputFileRef(BaseModel):
    filename: str
    subfolder: Optional[str] = None
    type: Optional[str] = None

    @property
    def identity(self) -> str:
        return f"{self.type or ''}|{self.subfolder or ''}|{self.filename}"


def _to_file_ref(item: Any) -> Optional[OutputFileRef]:
    if not isinstance(item, dict):
        return None
    filename = item.get("filename")
    if not isinstance(filename, str) or not filename:
        return None
    subfolder = item.get("subfolder")
    item_type = item.get("type")
    return OutputFileRef(
        filename=filename,
        subfolder=subfolder if isinstance(subfolder, str) else None,
        type=item_type if isinstance(item_type, str) else None,
    )


def _collect(value: Any) -> List[OutputFileRef]:
    if not isinstance(value, list):
        return []
    return [ref for ref in (_to_file_ref(item) for item in value) if ref is not None]


def dedupe_refs(refs: List[OutputFileRef]) -> List[OutputFileRef]:
    """Drop repeated (type, subfolder, filename) refs, keeping first occurrence."""
    seen = set()
    unique = []
    for ref in refs:
        if ref.identity in seen:
            continue
        seen.add(ref.identity)
        unique.append(ref)
    return unique


def extract_output_files(history_entry: Any) -> List[OutputFileRef]:
    """Collect every output file referenced by one history entry."""
    if not isinstance(history_entry, dict):
        return []
    outputs = history_entry.get("outputs")
    if not isinstance(outputs, dict):
        return []

    files: List[OutputFileRef] = []
    for node_output in outputs.values():
        if not isinstance(node_output, dict):
            continue
        for key in MEDIA_KEYS:
            files.extend(_collect(node_output.get(key)))
        for value in node_output.values():
            files.extend(_collect(value))
    return dedupe_refs(files)


def history_entry_for(history: Any, prompt_id: str) -> Any:
    """/history/{id} wraps the entry under the prompt id; older servers return it bare."""
    if isinstance(history, dict) and prompt_id in history:
        return history[prompt_id]
    return history


def history_error(history_entry: Any) -> Optional[Dict[str, Any]]:
    """Return the status block when ComfyUI marked the prompt as failed."""
    if not isinstance(history_entry, dict):
        return None
    status = history_entry.get("status")
    if isinstance(status, dict) and status.get("status_str") == "error":
        return status
    return None
