"""
Working directory layout.

Local scope:  ./.comfy-agent/{workflows,presets,outputs,cache}
Global scope: ~/.config/.comfy-agent/{...}
"""

import logging
import os
from typing import Dict, List, Optional

from comfy_agent.errors import AgentError, WorkdirNotFound

logger = logging.getLogger("comfy_agent.workdir")

WORK_DIR = ".comfy-agent"
SUBDIRS = ("workflows", "presets", "outputs", "cache")


def global_workdir() -> str:
    return os.path.join(os.path.expanduser("~"), ".config", WORK_DIR)


def get_workdir_path(cwd: Optional[str] = None, scope: str = "local") -> str:
    if scope == "global":
        return global_workdir()
    return os.path.join(cwd or os.getcwd(), WORK_DIR)


def get_subdir_path(subdir: str, cwd: Optional[str] = None, scope: str = "local") -> str:
    return os.path.join(get_workdir_path(cwd, scope), subdir)


def ensure_workdir(cwd: Optional[str] = None, scope: str = "local") -> str:
    path = get_workdir_path(cwd, scope)
    if not os.path.isdir(path):
        raise WorkdirNotFound(
            f"Working directory {path} not found. Run `comfy-agent init` first.",
            {"path": path, "scope": scope},
        )
    return path


def _ensure_dir(path: str, force: bool) -> bool:
    """Create ``path``. Returns False if it already existed as a directory."""
    if os.path.isdir(path):
        return False
    if os.path.exists(path):
        if not force:
            raise AgentError(f"{path} exists and is not a directory",
                             {"path": path}, code="WORKDIR_CONFLICT")
        os.remove(path)
    os.makedirs(path, exist_ok=True)
    return True


def init_workdir(cwd: Optional[str] = None, scope: str = "local",
                 force: bool = False) -> Dict[str, List[str]]:
    """Create the working directory and its subdirectories."""
    created, skipped = [], []
    root = get_workdir_path(cwd, scope)
    (created if _ensure_dir(root, force) else skipped).append(root)
    for subdir in SUBDIRS:
        path = get_subdir_path(subdir, cwd, scope)
        (created if _ensure_dir(path, force) else skipped).append(path)
    if created:
        logger.info(f"Initialized {scope} workdir at {root}")
    return {"created": created, "skipped": skipped}
