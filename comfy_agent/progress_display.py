"""Console rendering of ProgressEvents: a redrawn bar on a TTY, one line per event otherwise."""

import sys
from typing import Optional, TextIO

from comfy_agent.progress import ProgressEvent, ProgressKind


BAR_WIDTH = 24

# Kinds that always get their own line (they end any in-place bar)
_LINE_KINDS = {
    ProgressKind.CHANNEL_CONNECTED,
    ProgressKind.CHANNEL_UNAVAILABLE,
    ProgressKind.CHANNEL_LOST,
    ProgressKind.EXECUTION_ERROR,
    ProgressKind.EXECUTION_INTERRUPTED,
    ProgressKind.EXECUTED,
}


def format_progress_event(event: ProgressEvent) -> str:
    node = event.node or "-"
    kind = event.kind
    if kind == ProgressKind.CHANNEL_CONNECTED:
        return "progress: stream connected"
    if kind == ProgressKind.CHANNEL_UNAVAILABLE:
        return "progress: stream unavailable, polling only"
    if kind == ProgressKind.CHANNEL_LOST:
        return "progress: stream lost, polling only"
    if kind == ProgressKind.EXECUTION_START:
        return "progress: execution started"
    if kind == ProgressKind.EXECUTION_INTERRUPTED:
        return "progress: execution interrupted"
    if kind == ProgressKind.EXECUTION_ERROR:
        return f"progress: execution error at node {node}: {event.message or '-'}"
    if kind == ProgressKind.EXECUTION_CACHED:
        return f"progress: cached (node: {node})"
    if kind == ProgressKind.EXECUTING:
        return f"progress: executing node {node}"
    if kind == ProgressKind.EXECUTED:
        return f"progress: executed node {node}"
    if kind == ProgressKind.PROGRESS:
        percent = f"{event.percent:.2f}" if event.percent is not None else "-"
        return f"progress: node {node} {event.value or 0}/{event.max or 0} ({percent}%)"
    return f"progress: {kind.value}"


def render_bar(percent: float, width: int = BAR_WIDTH) -> str:
    clamped = max(0.0, min(100.0, percent))
    filled = round(clamped / 100 * width)
    return "[" + "#" * filled + "-" * (width - filled) + "]"


class ProgressDisplay:
    """
    Progress UI for one run.

    disabled: swallow everything (JSON mode)
    interactive: redraw one stderr line per update
    otherwise: print one line per event
    """

    def __init__(self, enabled: bool = True, stream: Optional[TextIO] = None,
                 interactive: Optional[bool] = None):
        self.enabled = enabled
        self.stream = stream or sys.stderr
        if interactive is None:
            interactive = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.interactive = interactive
        self._drawn = False
        self._latest_node = "-"

    def on_event(self, event: ProgressEvent):
        if not self.enabled:
            return
        if not self.interactive:
            self._line(format_progress_event(event))
            return

        if event.node:
            self._latest_node = event.node

        if event.kind == ProgressKind.PROGRESS and event.percent is not None:
            self._draw(f"Progress {render_bar(event.percent)} {event.percent:.1f}% "
                       f"(node: {self._latest_node})")
        elif event.kind == ProgressKind.EXECUTING:
            self._draw(f"Progress running... (node: {self._latest_node})")
        elif event.kind == ProgressKind.EXECUTION_START:
            self._draw("Progress started...")
        elif event.kind == ProgressKind.EXECUTION_CACHED:
            self._draw(f"Progress using cache... (node: {self._latest_node})")
        elif event.kind in _LINE_KINDS:
            self._flush()
            self._line(format_progress_event(event))

    def finish(self):
        """Terminate a partially drawn bar line. Always safe to call."""
        self._flush()

    def _draw(self, text: str):
        self.stream.write(f"\r\x1b[2K{text}")
        self.stream.flush()
        self._drawn = True

    def _flush(self):
        if not self._drawn:
            return
        self.stream.write("\n")
        self.stream.flush()
        self._drawn = False

    def _line(self, text: str):
        self.stream.write(text + "\n")
        self.stream.flush()
