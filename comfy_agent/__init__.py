"""
comfy-agent

Preset-driven runner for a remote ComfyUI server: normalize workflow graphs,
patch named parameters onto node inputs, discover remote templates and
supervise job runs over HTTP + WebSocket.
"""

__version__ = "0.1.0"
