"""
Dynamic run arguments.

Everything on the `run` command line that argparse does not know about is
matched against the preset: ``--<parameter> value``, ``--<parameter>=value``,
bare ``--<flag>`` for bool parameters, and upload flags such as ``--image path``.
"""

import json
import math
import random
from typing import Any, Dict, List, Optional, Tuple, Union

from comfy_agent.errors import InvalidParam, MissingRequiredParam, MissingSeedTarget, UnknownParam

# Flags consumed by the run command itself
KNOWN_RUN_FLAGS = {
    "json", "dry-run", "out", "n", "seed", "seed-step", "poll-interval-ms",
    "timeout-seconds", "base-url", "source", "global", "lang", "verbose",
}

MAX_RANDOM_SEED = 2**31 - 1


def parse_numeric(value: Any, name: str, integer: bool = False) -> Union[int, float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise InvalidParam(f"--{name} must be a number", {"param": name, "value": value})
    if math.isnan(num) or math.isinf(num):
        raise InvalidParam(f"--{name} must be a number", {"param": name, "value": value})
    if integer:
        if not num.is_integer():
            raise InvalidParam(f"--{name} must be an integer", {"param": name, "value": value})
        return int(num)
    return num


def parse_bool(value: str, name: str) -> bool:
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    raise InvalidParam(f"--{name} must be true/false/1/0", {"param": name, "value": value})


def coerce_param_value(param_type: str, raw: Union[str, bool], name: str = "value") -> Any:
    if param_type == "string":
        return str(raw)
    if param_type == "int":
        return parse_numeric(str(raw), name, integer=True)
    if param_type == "float":
        return parse_numeric(str(raw), name)
    if param_type == "bool":
        return raw if isinstance(raw, bool) else parse_bool(str(raw), name)
    if param_type == "json":
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except ValueError:
            raise InvalidParam(f"--{name} must be valid JSON", {"param": name, "value": raw})
    return raw


def parse_argv(argv: List[str]) -> Dict[str, Union[str, bool]]:
    """--k=v, --k v, and bare --k (True). Tokens not starting with -- are ignored."""
    parsed: Dict[str, Union[str, bool]] = {}
    i = 0
    while i < len(argv):
        token = argv[i]
        i += 1
        if not token.startswith("--") or len(token) == 2:
            continue
        body = token[2:]
        if "=" in body:
            name, value = body.split("=", 1)
            if name:
                parsed[name] = value
            continue
        nxt = argv[i] if i < len(argv) else None
        if not nxt or nxt.startswith("--"):
            parsed[body] = True
            continue
        parsed[body] = nxt
        i += 1
    return parsed


def resolve_dynamic_args(raw_args: List[str], preset) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Return (params, uploads). Defaults are applied; required parameters are enforced."""
    parameters = preset.parameters or {}
    upload_flags = {u.cli_flag[2:] if u.cli_flag.startswith("--") else u.cli_flag: name
                    for name, u in (preset.uploads or {}).items()}
    params: Dict[str, Any] = {}
    uploads: Dict[str, str] = {}

    for key, value in parse_argv(raw_args).items():
        if key in KNOWN_RUN_FLAGS:
            continue
        if key in upload_flags:
            if not isinstance(value, str):
                raise InvalidParam(f"--{key} requires a file path", {"flag": key})
            uploads[upload_flags[key]] = value
            continue
        if key not in parameters:
            raise UnknownParam(f"Unknown parameter --{key}", {"param": key})
        definition = parameters[key]
        if isinstance(value, bool) and definition.type != "bool":
            raise InvalidParam(f"--{key} requires a value", {"param": key})
        params[key] = coerce_param_value(definition.type, value, key)

    for name, definition in parameters.items():
        if name in params:
            continue
        if definition.has_default:
            params[name] = definition.default
        elif definition.required:
            raise MissingRequiredParam(f"Missing required parameter --{name}", {"param": name})

    return params, uploads


def resolve_seed_values(preset, seed: Optional[str], seed_step: Optional[str],
                        run_count: int, rng: Optional[random.Random] = None) -> List[Optional[int]]:
    """
    One seed per run: all None without seed flags, independent random draws
    for ``--seed random``, otherwise base + step * i.
    """
    if not seed and not seed_step:
        return [None] * run_count
    if "seed" not in (preset.parameters or {}):
        raise MissingSeedTarget("This preset has no 'seed' parameter to receive --seed")
    if not seed:
        raise InvalidParam("--seed-step requires --seed", {"param": "seed-step"})

    if seed == "random":
        rng = rng or random
        return [rng.randint(0, MAX_RANDOM_SEED) for _ in range(run_count)]

    base = parse_numeric(seed, "seed", integer=True)
    step = parse_numeric(seed_step, "seed-step", integer=True) if seed_step else 0
    return [base + step * i for i in range(run_count)]
