"""
RunOrchestrator - resolve a preset, then submit, observe, poll and collect
one or more ComfyUI jobs.

Runs are strictly sequential. Each run owns one ProgressChannel, which is
stopped on every exit path; losing the stream only degrades to polling.
"""

import asyncio
import logging
import os
import re
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from comfy_agent.errors import (
    AgentError,
    ApiError,
    ExecutionFailed,
    FileNotFound,
    InvalidParam,
    RunTimeout,
)
from comfy_agent.outputs import OutputFileRef, extract_output_files, history_entry_for, history_error
from comfy_agent.presets import try_load_local_run_target
from comfy_agent.progress import CHANNEL_KINDS, ProgressChannel, ProgressEvent
from comfy_agent.progress_display import ProgressDisplay
from comfy_agent.remote_target import (
    try_load_remote_catalog_run_target,
    try_load_remote_userdata_run_target,
)
from comfy_agent.run_args import parse_numeric, resolve_dynamic_args, resolve_seed_values
from comfy_agent.run_source import resolve_run_source, resolve_selected_run_source
from comfy_agent.workdir import ensure_workdir, get_subdir_path
from comfy_agent.workflow_patch import apply_parameters, apply_uploads

logger = logging.getLogger("comfy_agent.runner")

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


@dataclass
class RunOptions:
    """Options of the `run` command. Numeric values arrive as raw CLI strings."""
    source: Optional[str] = None
    n: Optional[str] = None
    seed: Optional[str] = None
    seed_step: Optional[str] = None
    poll_interval_ms: Optional[str] = None
    timeout_seconds: Optional[str] = None
    out: Optional[str] = None
    dry_run: bool = False
    json: bool = False
    global_scope: bool = False

    @property
    def scope(self) -> str:
        return "global" if self.global_scope else "local"


@dataclass
class OutputFile:
    filename: str
    subfolder: Optional[str]
    type: Optional[str]
    saved_to: str


@dataclass
class RunResult:
    index: int
    prompt_id: str
    seed: Optional[int]
    outputs: List[OutputFile] = field(default_factory=list)
    duration_ms: int = 0
    progress_events: List[Dict[str, Any]] = field(default_factory=list)


def safe_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name)


def output_file_name(filename: str, seed: Optional[int], run_index: int, output_index: int) -> str:
    """{base}_{seed|'seed'}_{run}_{output}{ext}, keeping the original extension (default .png)."""
    base = os.path.basename(filename)
    stem, ext = os.path.splitext(base)
    if not ext:
        ext = ".png"
    seed_part = str(seed) if seed is not None else "seed"
    return f"{safe_filename(stem)}_{seed_part}_{run_index}_{output_index}{ext}"


def upload_storage_path(response: Dict[str, Any]) -> str:
    name = response.get("name") or response.get("filename")
    if not name:
        raise ApiError("Upload response did not include a file name", {"response": response})
    subfolder = response.get("subfolder")
    return f"{subfolder}/{name}" if subfolder else name


class RunOrchestrator:
    """Drives `comfy-agent run` against one ComfyUI server."""

    def __init__(self, client, settings=None, cwd: Optional[str] = None,
                 channel_factory: Optional[Callable[..., Any]] = None,
                 display_factory: Optional[Callable[[bool], Any]] = None):
        self.client = client
        self.settings = settings
        self.cwd = cwd or os.getcwd()
        self.channel_factory = channel_factory or self._default_channel
        self.display_factory = display_factory or (lambda enabled: ProgressDisplay(enabled=enabled))

    def _setting(self, key: str, default: Any) -> Any:
        if self.settings is None:
            return default
        return self.settings.get(key, default)

    def _default_channel(self, base_url: str, on_event, target_prompt_id: str, client_id: str):
        kwargs = {}
        if not self._setting("run.stream_progress", True):
            kwargs["connect"] = None
        return ProgressChannel(base_url, on_event, target_prompt_id=target_prompt_id,
                               client_id=client_id, **kwargs)

    # ------------------------------------------------------------------ #
    # Target resolution
    # ------------------------------------------------------------------ #

    async def resolve_target(self, name: str, requested: str, scope: str = "local") -> Dict[str, Any]:
        local = try_load_local_run_target(name, scope, self.cwd)
        if requested == "auto" and local is not None:
            return local

        remote = catalog = None
        remote_error = None
        if requested not in ("local", "remote-catalog"):
            try:
                remote = await try_load_remote_userdata_run_target(name, self.client)
            except AgentError as e:
                if requested == "remote":
                    raise
                logger.debug(f"Remote userdata lookup for '{name}' failed: {e.message}")
                remote_error = e
        if requested == "remote-catalog":
            catalog = await try_load_remote_catalog_run_target(name, self.client)

        source = resolve_selected_run_source(
            requested, local is not None, remote is not None, catalog is not None, remote_error,
        )
        return {"local": local, "remote": remote, "remote-catalog": catalog}[source]

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    async def run(self, preset_name: str, options: RunOptions, raw_args: List[str]) -> Dict[str, Any]:
        """
        Execute ``options.n`` runs of a preset.

        Returns the JSON-ready report. In dry-run mode nothing is submitted
        and the report carries the first run's patched graph under "workflow".
        """
        scope = options.scope
        ensure_workdir(self.cwd, scope)
        requested = resolve_run_source(options.source)
        run_count = parse_numeric(options.n, "n", integer=True) if options.n else 1
        if run_count < 1:
            raise InvalidParam("--n must be at least 1", {"value": options.n})
        poll_interval_ms = (parse_numeric(options.poll_interval_ms, "poll-interval-ms", integer=True)
                            if options.poll_interval_ms
                            else self._setting("run.poll_interval_ms", 1000))
        timeout_seconds = (parse_numeric(options.timeout_seconds, "timeout-seconds", integer=True)
                           if options.timeout_seconds
                           else self._setting("run.timeout_seconds", 300))
        if poll_interval_ms <= 0 or timeout_seconds <= 0:
            raise InvalidParam("--poll-interval-ms and --timeout-seconds must be positive",
                               {"poll_interval_ms": poll_interval_ms, "timeout_seconds": timeout_seconds})

        target = await self.resolve_target(preset_name, requested, scope)
        preset, workflow = target["preset"], target["workflow"]

        params, uploads = resolve_dynamic_args(raw_args, preset)
        seeds = resolve_seed_values(preset, options.seed, options.seed_step, run_count)

        if options.dry_run:
            dry_params = dict(params)
            if seeds[0] is not None:
                dry_params["seed"] = seeds[0]
            return {"ok": True, "dry_run": True, "preset": preset.name,
                    "source": target["source"], "workflow": apply_parameters(workflow, preset, dry_params)}

        output_dir = self._output_dir(preset.name, options.out, scope)
        logger.info(f"Output directory: {output_dir}")
        resolved_uploads = await self.stage_uploads(preset, uploads)

        runs: List[RunResult] = []
        for i in range(run_count):
            try:
                result = await self.execute_run(
                    workflow, preset, params, resolved_uploads, seeds[i], i + 1, run_count,
                    output_dir, poll_interval_ms, timeout_seconds, display_enabled=not options.json,
                )
            except AgentError as e:
                logger.error(f"Run {i + 1}/{run_count} failed: {e.message}")
                e.details = {**(e.details or {}), "run_index": i + 1,
                             "completed_runs": [asdict(r) for r in runs]}
                raise
            runs.append(result)

        return {
            "ok": True,
            "preset": preset.name,
            "source": target["source"],
            "base_url": self.client.base_url,
            "scope": scope,
            "output_dir": output_dir,
            "runs": [asdict(r) for r in runs],
        }

    # ======================== Helper Methods ========================

    def _output_dir(self, preset_name: str, out: Optional[str], scope: str) -> str:
        if out:
            path = os.path.abspath(out)
        else:
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = os.path.join(get_subdir_path("outputs", self.cwd, scope), preset_name, stamp)
        os.makedirs(path, exist_ok=True)
        return path

    async def stage_uploads(self, preset, uploads: Dict[str, str]) -> Dict[str, str]:
        """Upload local files once per invocation; returns name -> server storage path."""
        resolved = {}
        definitions = preset.uploads or {}
        for name, file_path in uploads.items():
            if not os.path.isfile(file_path):
                raise FileNotFound(f"Upload file not found: {file_path}", {"path": file_path})
            definition = definitions.get(name)
            if definition is None:
                continue
            endpoint = "/upload/mask" if definition.kind == "mask" else "/upload/image"
            logger.info(f"Uploading {name} ({file_path}) to {endpoint}")
            response = await self.client.upload_file(endpoint, file_path)
            resolved[name] = upload_storage_path(response)
        return resolved

    async def execute_run(self, workflow, preset, params: Dict[str, Any],
                          uploads: Dict[str, str], seed: Optional[int], run_index: int,
                          run_count: int, output_dir: str, poll_interval_ms: int,
                          timeout_seconds: int, display_enabled: bool = True) -> RunResult:
        start = time.monotonic()
        run_params = dict(params)
        if seed is not None:
            run_params["seed"] = seed
        graph = apply_uploads(apply_parameters(workflow, preset, run_params), preset, uploads)

        client_id = str(uuid.uuid4())
        request_prompt_id = str(uuid.uuid4())
        events: List[ProgressEvent] = []
        display = self.display_factory(display_enabled)
        ready = asyncio.Event()

        def on_event(event: ProgressEvent):
            events.append(event)
            if event.kind in CHANNEL_KINDS:
                ready.set()
            display.on_event(event)

        channel = self.channel_factory(self.client.base_url, on_event, request_prompt_id, client_id)
        try:
            channel.start()
            try:
                await asyncio.wait_for(ready.wait(),
                                       self._setting("run.channel_ready_timeout_ms", 500) / 1000)
            except asyncio.TimeoutError:
                logger.debug("Progress stream not ready yet, submitting anyway")

            logger.info(f"Submitting run {run_index}/{run_count}")
            response = await self.client.prompt(graph, client_id=client_id,
                                                prompt_id=request_prompt_id)
            prompt_id = response.get("prompt_id") or request_prompt_id
            if prompt_id != request_prompt_id:
                channel.set_target_prompt_id(prompt_id)

            refs = await self.wait_for_history(prompt_id, poll_interval_ms, timeout_seconds)
        finally:
            await channel.stop()
            display.finish()

        outputs = []
        for j, ref in enumerate(refs):
            data = await self.client.view_file(ref.filename, ref.subfolder, ref.type)
            path = os.path.join(output_dir, output_file_name(ref.filename, seed, run_index, j + 1))
            with open(path, "wb") as f:
                f.write(data)
            logger.info(f"Saved {path}")
            outputs.append(OutputFile(filename=ref.filename, subfolder=ref.subfolder,
                                      type=ref.type, saved_to=path))

        return RunResult(
            index=run_index,
            prompt_id=prompt_id,
            seed=seed,
            outputs=outputs,
            duration_ms=int((time.monotonic() - start) * 1000),
            progress_events=[e.to_dict() for e in events],
        )

    async def wait_for_history(self, prompt_id: str, poll_interval_ms: int,
                               timeout_seconds: float) -> List[OutputFileRef]:
        """Poll /history until the prompt has outputs, it failed, or the deadline passes."""
        start = time.monotonic()
        while True:
            history = await self.client.history(prompt_id)
            entry = history_entry_for(history, prompt_id)
            outputs = extract_output_files(entry)
            if outputs:
                return outputs

            failed = history_error(entry)
            if failed is not None:
                raise ExecutionFailed(f"Prompt {prompt_id} failed on the server",
                                      {"prompt_id": prompt_id, "messages": failed.get("messages")})

            if time.monotonic() - start > timeout_seconds:
                raise RunTimeout(f"Timed out after {timeout_seconds}s waiting for outputs",
                                 {"prompt_id": prompt_id})
            await asyncio.sleep(poll_interval_ms / 1000)
