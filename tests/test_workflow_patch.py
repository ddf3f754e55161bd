"""Tests for apply_parameters / apply_uploads."""

import copy
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from comfy_agent.errors import InputsNotFound, NodeNotFound
from comfy_agent.presets import parse_preset
from comfy_agent.workflow_patch import apply_parameters, apply_uploads


def make_workflow():
    return {
        "3": {"class_type": "KSampler", "inputs": {"seed": 0, "steps": 20, "cfg": 7.0}},
        "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "old"}},
        "10": {"class_type": "LoadImage", "inputs": {"image": "example.png"}},
    }


def make_preset(**overrides):
    data = {
        "version": 1,
        "name": "demo",
        "workflow": "demo.json",
        "parameters": {
            "prompt": {"type": "string", "target": {"node_id": 6, "input": "text"}},
            "seed": {"type": "int", "target": {"node_id": "3", "input": "seed"}},
            "steps": {"type": "int", "target": {"node_id": 3, "input": "steps"}},
        },
        "uploads": {
            "image": {"kind": "image", "cli_flag": "--image", "target": {"node_id": 10, "input": "image"}},
        },
    }
    data.update(overrides)
    return parse_preset(data)


class TestApplyParameters(unittest.TestCase):

    def test_sets_target_inputs(self):
        patched = apply_parameters(make_workflow(), make_preset(), {"prompt": "a cat", "seed": 5})
        self.assertEqual(patched["6"]["inputs"]["text"], "a cat")
        self.assertEqual(patched["3"]["inputs"]["seed"], 5)
        self.assertEqual(patched["3"]["inputs"]["steps"], 20)

    def test_original_not_mutated(self):
        wf = make_workflow()
        before = copy.deepcopy(wf)
        apply_parameters(wf, make_preset(), {"prompt": "new", "steps": 4})
        self.assertEqual(wf, before)

    def test_composable_for_disjoint_values(self):
        wf, preset = make_workflow(), make_preset()
        v1, v2 = {"prompt": "a cat"}, {"seed": 9, "steps": 30}
        stepwise = apply_parameters(apply_parameters(wf, preset, v1), preset, v2)
        combined = apply_parameters(wf, preset, {**v1, **v2})
        self.assertEqual(stepwise, combined)

    def test_unknown_value_names_ignored(self):
        patched = apply_parameters(make_workflow(), make_preset(), {"nope": 1})
        self.assertEqual(patched, make_workflow())

    def test_missing_node(self):
        preset = make_preset(parameters={"x": {"type": "int", "target": {"node_id": 99, "input": "a"}}})
        with self.assertRaises(NodeNotFound) as ctx:
            apply_parameters(make_workflow(), preset, {"x": 1})
        self.assertEqual(ctx.exception.details, {"node_id": "99"})

    def test_missing_inputs(self):
        wf = make_workflow()
        del wf["6"]["inputs"]
        with self.assertRaises(InputsNotFound):
            apply_parameters(wf, make_preset(), {"prompt": "x"})


class TestApplyUploads(unittest.TestCase):

    def test_sets_storage_path(self):
        patched = apply_uploads(make_workflow(), make_preset(), {"image": "inputs/cat.png"})
        self.assertEqual(patched["10"]["inputs"]["image"], "inputs/cat.png")

    def test_idempotent(self):
        wf, preset = make_workflow(), make_preset()
        once = apply_uploads(wf, preset, {"image": "a.png"})
        self.assertEqual(apply_uploads(once, preset, {"image": "a.png"}), once)

    def test_preset_without_uploads(self):
        preset = make_preset(uploads=None)
        self.assertEqual(apply_uploads(make_workflow(), preset, {"image": "a.png"}), make_workflow())


if __name__ == "__main__":
    unittest.main()
