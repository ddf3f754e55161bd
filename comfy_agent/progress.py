"""
ComfyUI execution progress over the /ws stream.

ComfyUI pushes JSON text frames shaped {"type": ..., "data": {...}} to every
client connected with ?clientId=<id>. ProgressChannel turns the frames that
belong to one prompt into ProgressEvent records and emits them on a Signal.
Binary frames (live previews) are ignored.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets

from comfy_agent.core.signals import Signal

logger = logging.getLogger("comfy_agent.progress")


class ProgressKind(str, Enum):
    CHANNEL_CONNECTED = "channel_connected"
    CHANNEL_UNAVAILABLE = "channel_unavailable"
    CHANNEL_LOST = "channel_lost"
    PROGRESS = "progress"
    EXECUTING = "executing"
    EXECUTED = "executed"
    EXECUTION_START = "execution_start"
    EXECUTION_CACHED = "execution_cached"
    EXECUTION_INTERRUPTED = "execution_interrupted"
    EXECUTION_ERROR = "execution_error"


CHANNEL_KINDS = {
    ProgressKind.CHANNEL_CONNECTED,
    ProgressKind.CHANNEL_UNAVAILABLE,
    ProgressKind.CHANNEL_LOST,
}

# Server message types forwarded as-is
_MESSAGE_KINDS = {k.value: k for k in ProgressKind if k not in CHANNEL_KINDS}


@dataclass
class ProgressEvent:
    kind: ProgressKind
    at: str
    prompt_id: Optional[str] = None
    node: Optional[str] = None
    value: Optional[float] = None
    max: Optional[float] = None
    percent: Optional[float] = None
    message: Optional[str] = None
    raw_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly dict without unset fields."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["kind"] = self.kind.value
        return data


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def build_event(kind: ProgressKind, **values) -> ProgressEvent:
    return ProgressEvent(kind=kind, at=_now_iso(), **values)


def to_ws_url(base_url: str, client_id: str) -> str:
    """http(s)://host:port/... -> ws(s)://host:port/ws?clientId=<id>"""
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, "/ws", urlencode({"clientId": client_id}), ""))


def normalize_progress_message(payload: Any, target_prompt_id: str) -> Optional[ProgressEvent]:
    """Map one decoded frame to a ProgressEvent, or None if it is unknown or for another prompt."""
    if not isinstance(payload, dict):
        return None
    raw_type = _as_str(payload.get("type"))
    kind = _MESSAGE_KINDS.get(raw_type) if raw_type else None
    if kind is None:
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}
    prompt_id = _as_str(data.get("prompt_id"))
    if prompt_id and prompt_id != target_prompt_id:
        return None

    fields: Dict[str, Any] = {"raw_type": raw_type, "prompt_id": prompt_id}

    if kind == ProgressKind.PROGRESS:
        value = _as_number(data.get("value"))
        maximum = _as_number(data.get("max"))
        fields.update(node=_as_str(data.get("node")), value=value, max=maximum)
        if value is not None and maximum is not None and maximum > 0:
            fields["percent"] = round(value / maximum * 100, 2)
    elif kind in (ProgressKind.EXECUTING, ProgressKind.EXECUTED, ProgressKind.EXECUTION_CACHED):
        fields["node"] = _as_str(data.get("node"))
    elif kind == ProgressKind.EXECUTION_ERROR:
        fields["node"] = _as_str(data.get("node_id")) or _as_str(data.get("node"))
        fields["message"] = _as_str(data.get("exception_message")) or _as_str(data.get("error"))

    return build_event(kind, **fields)


class ProgressChannel:
    """
    One streaming subscription bound to one client id.

    Idle -> Connecting -> Connected -> Closed, or Idle -> Unavailable when
    no connector is configured. ``channel_lost`` is emitted at most once and
    never after stop().
    """

    def __init__(self, base_url: str, on_event: Optional[Callable[[ProgressEvent], None]] = None,
                 target_prompt_id: str = "", client_id: Optional[str] = None,
                 connect: Optional[Callable] = websockets.connect):
        self.base_url = base_url
        self.target_prompt_id = target_prompt_id
        self.client_id = client_id or str(uuid.uuid4())
        self._connect = connect
        self._task: Optional[asyncio.Task] = None
        self._closed_by_user = False
        self._lost_emitted = False

        self.on_event = Signal()
        if on_event is not None:
            self.on_event.connect(on_event)

    def set_target_prompt_id(self, prompt_id: str):
        self.target_prompt_id = prompt_id

    @property
    def ws_url(self) -> str:
        return to_ws_url(self.base_url, self.client_id)

    def start(self):
        """Begin the subscription in a background task. Must be called inside a running loop."""
        if self._connect is None:
            self.on_event.emit(build_event(ProgressKind.CHANNEL_UNAVAILABLE))
            return
        self._task = asyncio.get_running_loop().create_task(self._listen())

    async def stop(self):
        """Close the subscription. Safe to call more than once."""
        self._closed_by_user = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _listen(self):
        url = self.ws_url
        try:
            async with self._connect(url, max_size=2**24) as ws:
                logger.debug(f"Progress stream connected: {url}")
                self.on_event.emit(build_event(ProgressKind.CHANNEL_CONNECTED))
                async for frame in ws:
                    self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Progress stream error on {url}: {e!r}")
        self._emit_lost()

    def _emit_lost(self):
        if self._closed_by_user or self._lost_emitted:
            return
        self._lost_emitted = True
        self.on_event.emit(build_event(ProgressKind.CHANNEL_LOST))

    def _handle_frame(self, frame: Any):
        if isinstance(frame, (bytes, bytearray)):
            try:
                frame = bytes(frame).decode("utf-8")
            except UnicodeDecodeError:
                return
        if not isinstance(frame, str):
            return
        try:
            payload = json.loads(frame)
        except ValueError:
            return
        event = normalize_progress_message(payload, self.target_prompt_id)
        if event is not None:
            self.on_event.emit(event)
