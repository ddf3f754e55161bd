"""Run target source selection (local preset, remote userdata workflow, remote catalog template)."""

from typing import Optional

from comfy_agent.errors import InvalidParam, PresetNotFound

RUN_SOURCES = ("auto", "local", "remote", "remote-catalog")


def resolve_run_source(source: Optional[str]) -> str:
    if not source:
        return "auto"
    if source in RUN_SOURCES:
        return source
    raise InvalidParam(f"Invalid --source '{source}' (expected local, remote or remote-catalog)",
                       {"value": source})


def select_run_source(requested: str, has_local: bool, has_remote: bool,
                      has_remote_catalog: bool) -> str:
    available = {"local": has_local, "remote": has_remote, "remote-catalog": has_remote_catalog}
    if requested in available:
        if not available[requested]:
            raise PresetNotFound(f"Preset not found in source '{requested}'", {"source": requested})
        return requested
    if has_local:
        return "local"
    if has_remote:
        return "remote"
    # auto never falls through to the catalog
    raise PresetNotFound("Preset not found locally or in remote userdata")


def resolve_selected_run_source(requested: str, has_local: bool, has_remote: bool,
                                has_remote_catalog: bool,
                                remote_error: Optional[BaseException] = None,
                                remote_catalog_error: Optional[BaseException] = None) -> str:
    """select_run_source, but surface the original remote lookup error instead of a bare not-found."""
    try:
        return select_run_source(requested, has_local, has_remote, has_remote_catalog)
    except PresetNotFound:
        if requested in ("auto", "remote") and remote_error is not None:
            raise remote_error
        if requested == "remote-catalog" and remote_catalog_error is not None:
            raise remote_catalog_error
        raise
