"""
Tests for dynamic run arguments and seed planning.
"""

import os
import random
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from comfy_agent.errors import InvalidParam, MissingRequiredParam, MissingSeedTarget, UnknownParam
from comfy_agent.presets import parse_preset
from comfy_agent.run_args import (
    MAX_RANDOM_SEED,
    coerce_param_value,
    parse_argv,
    parse_numeric,
    resolve_dynamic_args,
    resolve_seed_values,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_preset(with_seed=True):
    parameters = {
        "prompt": {"type": "string", "target": {"node_id": 6, "input": "text"}, "required": True},
        "steps": {"type": "int", "target": {"node_id": 3, "input": "steps"}, "default": 20},
        "cfg": {"type": "float", "target": {"node_id": 3, "input": "cfg"}},
        "hires": {"type": "bool", "target": {"node_id": 3, "input": "hires"}},
        "extra": {"type": "json", "target": {"node_id": 3, "input": "extra"}},
    }
    if with_seed:
        parameters["seed"] = {"type": "int", "target": {"node_id": 3, "input": "seed"}}
    return parse_preset({
        "version": 1,
        "name": "demo",
        "workflow": "demo.json",
        "parameters": parameters,
        "uploads": {
            "image": {"kind": "image", "cli_flag": "--image", "target": {"node_id": 10, "input": "image"}},
        },
    })


# ---------------------------------------------------------------------------
# Test: argv parsing and coercion
# ---------------------------------------------------------------------------

class TestParseArgv(unittest.TestCase):

    def test_forms(self):
        parsed = parse_argv(["--a=1", "--b", "two", "--flag", "--c", "-3", "stray", "--"])
        self.assertEqual(parsed, {"a": "1", "b": "two", "flag": True, "c": "-3"})

    def test_trailing_bare_flag(self):
        self.assertEqual(parse_argv(["--x", "1", "--last"]), {"x": "1", "last": True})


class TestCoercion(unittest.TestCase):

    def test_numbers(self):
        self.assertEqual(coerce_param_value("int", "12", "steps"), 12)
        self.assertEqual(coerce_param_value("int", "12.0", "steps"), 12)
        self.assertEqual(coerce_param_value("float", "7.5", "cfg"), 7.5)
        for bad in ("abc", "nan", "inf"):
            with self.assertRaises(InvalidParam):
                coerce_param_value("float", bad, "cfg")
        with self.assertRaises(InvalidParam):
            coerce_param_value("int", "1.5", "steps")

    def test_bool(self):
        self.assertIs(coerce_param_value("bool", True), True)
        self.assertIs(coerce_param_value("bool", "0"), False)
        self.assertIs(coerce_param_value("bool", "true"), True)
        with self.assertRaises(InvalidParam):
            coerce_param_value("bool", "yes")

    def test_json(self):
        self.assertEqual(coerce_param_value("json", '{"a": [1, 2]}'), {"a": [1, 2]})
        with self.assertRaises(InvalidParam):
            coerce_param_value("json", "{bad")

    def test_string_passthrough(self):
        self.assertEqual(coerce_param_value("string", "42"), "42")

    def test_parse_numeric_error_details(self):
        with self.assertRaises(InvalidParam) as ctx:
            parse_numeric("x", "n", integer=True)
        self.assertEqual(ctx.exception.details["param"], "n")


# ---------------------------------------------------------------------------
# Test: resolve_dynamic_args
# ---------------------------------------------------------------------------

class TestResolveDynamicArgs(unittest.TestCase):

    def test_values_defaults_and_uploads(self):
        params, uploads = resolve_dynamic_args(
            ["--prompt", "a cat", "--cfg=6.5", "--hires", "--image", "cat.png", "--json", "--n", "3"],
            make_preset())
        self.assertEqual(params, {"prompt": "a cat", "cfg": 6.5, "hires": True, "steps": 20})
        self.assertEqual(uploads, {"image": "cat.png"})

    def test_explicit_value_beats_default(self):
        params, _ = resolve_dynamic_args(["--prompt", "x", "--steps", "8"], make_preset())
        self.assertEqual(params["steps"], 8)

    def test_unknown_parameter(self):
        with self.assertRaises(UnknownParam) as ctx:
            resolve_dynamic_args(["--prompt", "x", "--styel", "y"], make_preset())
        self.assertEqual(ctx.exception.code, "UNKNOWN_PARAM")

    def test_missing_required(self):
        with self.assertRaises(MissingRequiredParam):
            resolve_dynamic_args(["--steps", "4"], make_preset())

    def test_bare_flag_for_non_bool(self):
        with self.assertRaises(InvalidParam):
            resolve_dynamic_args(["--prompt", "x", "--steps"], make_preset())

    def test_upload_flag_needs_path(self):
        with self.assertRaises(InvalidParam):
            resolve_dynamic_args(["--prompt", "x", "--image"], make_preset())


# ---------------------------------------------------------------------------
# Test: seed planning
# ---------------------------------------------------------------------------

class TestSeedValues(unittest.TestCase):

    def test_no_seed_flags(self):
        self.assertEqual(resolve_seed_values(make_preset(), None, None, 3), [None, None, None])

    def test_no_seed_flags_without_seed_parameter(self):
        self.assertEqual(resolve_seed_values(make_preset(with_seed=False), None, None, 2), [None, None])

    def test_arithmetic_progression(self):
        self.assertEqual(resolve_seed_values(make_preset(), "10", "2", 3), [10, 12, 14])

    def test_fixed_seed(self):
        self.assertEqual(resolve_seed_values(make_preset(), "7", None, 3), [7, 7, 7])

    def test_random_draws(self):
        seeds = resolve_seed_values(make_preset(), "random", None, 4, rng=random.Random(1234))
        self.assertEqual(len(seeds), 4)
        for seed in seeds:
            self.assertTrue(0 <= seed <= MAX_RANDOM_SEED)

    def test_preset_without_seed_parameter(self):
        with self.assertRaises(MissingSeedTarget):
            resolve_seed_values(make_preset(with_seed=False), "1", None, 1)

    def test_step_without_seed(self):
        with self.assertRaises(InvalidParam):
            resolve_seed_values(make_preset(), None, "1", 2)

    def test_non_integer_seed(self):
        with self.assertRaises(InvalidParam):
            resolve_seed_values(make_preset(), "1.5", None, 1)


if __name__ == "__main__":
    unittest.main()
