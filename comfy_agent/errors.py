"""
Error taxonomy for comfy-agent.

Every error carries a stable ``code``, a human message, a process exit code
and an optional structured ``details`` dict suitable for JSON output.
Exit code 2 means the input was rejected before any remote work;
exit code 3 means the remote server or the network failed.
"""

from typing import Any, Dict, Optional


class AgentError(Exception):
    """Base class for all errors raised by comfy-agent."""

    code = "AGENT_ERROR"
    exit_code = 2

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 code: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code
        if exit_code is not None:
            self.exit_code = exit_code

    def to_payload(self) -> Dict[str, Any]:
        return build_error_payload(self.code, self.message, self.details)

    def __repr__(self):
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# --- Workflow shape / patching ---

class NormalizationError(AgentError):
    code = "INVALID_WORKFLOW"


class NodeNotFound(AgentError):
    code = "NODE_NOT_FOUND"


class InputsNotFound(AgentError):
    code = "INPUTS_NOT_FOUND"


# --- Remote discovery ---

class RemoteTemplateFetchFailed(AgentError):
    code = "REMOTE_TEMPLATE_FETCH_FAILED"
    exit_code = 3


class RemoteUserdataFetchFailed(AgentError):
    code = "REMOTE_USERDATA_FETCH_FAILED"
    exit_code = 3


class RemoteWorkflowNotFound(AgentError):
    code = "REMOTE_WORKFLOW_NOT_FOUND"


# --- Run lifecycle ---

class RunTimeout(AgentError):
    code = "TIMEOUT"
    exit_code = 3


class ExecutionFailed(AgentError):
    code = "EXECUTION_FAILED"
    exit_code = 3


class ApiError(AgentError):
    code = "API_ERROR"
    exit_code = 3

    @property
    def status(self) -> Optional[int]:
        return (self.details or {}).get("status")


# --- Argument validation ---

class InvalidParam(AgentError):
    code = "INVALID_PARAM"


class UnknownParam(AgentError):
    code = "UNKNOWN_PARAM"


class MissingRequiredParam(AgentError):
    code = "MISSING_REQUIRED_PARAM"


class MissingSeedTarget(AgentError):
    code = "MISSING_SEED_TARGET"


# --- Presets / local files ---

class PresetNotFound(AgentError):
    code = "PRESET_NOT_FOUND"


class PresetSourceAmbiguous(AgentError):
    code = "PRESET_SOURCE_AMBIGUOUS"


class InvalidPreset(AgentError):
    code = "INVALID_PRESET"


class WorkdirNotFound(AgentError):
    code = "WORKDIR_NOT_FOUND"


class FileNotFound(AgentError):
    code = "FILE_NOT_FOUND"


class FileExists(AgentError):
    code = "FILE_EXISTS"


class InvalidName(AgentError):
    code = "INVALID_NAME"


def build_error_payload(code: str, message: str,
                        details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "ok": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
    }


def error_payload_from(err: BaseException) -> Dict[str, Any]:
    """Build the JSON error payload for any exception."""
    if isinstance(err, AgentError):
        return err.to_payload()
    return build_error_payload("UNEXPECTED", str(err) or type(err).__name__,
                               {"cause": repr(err)})


def exit_code_from(err: BaseException) -> int:
    if isinstance(err, AgentError):
        return err.exit_code
    return 3
