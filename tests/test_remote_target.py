"""
Tests for remote workflow resolution and remote preset construction.
"""

import asyncio
import os
import sys
import unittest

import httpx

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from comfy_agent.comfy_client import ComfyClient
from comfy_agent.errors import RemoteUserdataFetchFailed, RemoteWorkflowNotFound
from comfy_agent.remote_target import (
    REMOTE_WORKFLOW_REF,
    infer_parameters,
    normalize_remote_parameters,
    normalize_remote_uploads,
    resolve_remote_workflow,
    template_workflow_paths,
    try_load_remote_catalog_run_target,
    try_load_remote_run_target,
    try_load_remote_userdata_run_target,
    userdata_fetch_paths,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def run_async(coro):
    return asyncio.run(coro)


API_WORKFLOW = {
    "3": {"class_type": "KSampler", "inputs": {"seed": 5, "steps": 20, "model": ["4", 0]}},
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "sd15.safetensors"}},
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a cat", "clip": ["4", 1]}},
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "blurry", "clip": ["4", 1]}},
}


def make_client(routes, calls=None):
    def handler(request):
        path = request.url.raw_path.decode("ascii")
        if calls is not None:
            calls.append(path)
        body = routes.get(path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, json=body)

    return ComfyClient("http://comfy.test", retry_delay_ms=0, listing_retries=0,
                       transport=httpx.MockTransport(handler))


async def resolve(client, name, raw, prefer_userdata=False):
    async with client:
        return await resolve_remote_workflow(client, name, raw, prefer_userdata)


async def load(client, loader, name):
    async with client:
        return await loader(name, client)


# ---------------------------------------------------------------------------
# Test: candidate paths
# ---------------------------------------------------------------------------

class TestCandidatePaths(unittest.TestCase):

    def test_userdata_encodings(self):
        self.assertEqual(userdata_fetch_paths("workflows/my flow.json"), [
            "/userdata/workflows%2Fmy%20flow.json",
            "/userdata/workflows%252Fmy%2520flow.json",
            "/userdata/workflows/my%20flow.json",
            "/api/userdata/workflows%2Fmy%20flow.json",
            "/api/userdata/workflows%252Fmy%2520flow.json",
            "/api/userdata/workflows/my%20flow.json",
        ])

    def test_template_paths(self):
        paths = template_workflow_paths("sd15", {"module_name": "default", "url": "http://x/tpl/sd15"})
        self.assertEqual(paths, [
            "/tpl/sd15",
            "/tpl/sd15.json",
            "/templates/default/sd15.json",
            "/api/workflow_templates/default/sd15.json",
            "/templates/sd15.json",
            "/api/workflow_templates/sd15.json",
        ])


# ---------------------------------------------------------------------------
# Test: resolve_remote_workflow
# ---------------------------------------------------------------------------

class TestResolveRemoteWorkflow(unittest.TestCase):

    def test_inline_payload_needs_no_requests(self):
        calls = []
        result = run_async(resolve(make_client({}, calls), "x", API_WORKFLOW))
        self.assertEqual(result, API_WORKFLOW)
        self.assertEqual(calls, [])

    def test_embedded_workflow_field(self):
        raw = {"name": "x", "workflow": {"prompt": API_WORKFLOW}}
        result = run_async(resolve(make_client({}), "x", raw))
        self.assertEqual(result, API_WORKFLOW)

    def test_module_template_path(self):
        client = make_client({"/templates/default/sd15.json": API_WORKFLOW})
        raw = {"name": "sd15", "module_name": "default"}
        result = run_async(resolve(client, "sd15", raw))
        self.assertEqual(result, API_WORKFLOW)

    def test_listing_candidates_searched(self):
        client = make_client({
            "/userdata?dir=workflows": ["Portrait v2.json", "other.json"],
            "/userdata/workflows%2FPortrait%20v2.json": API_WORKFLOW,
        })
        result = run_async(resolve(client, "portrait", {}, prefer_userdata=True))
        self.assertEqual(result, API_WORKFLOW)

    def test_not_found_lists_every_path(self):
        with self.assertRaises(RemoteWorkflowNotFound) as ctx:
            run_async(resolve(make_client({}), "x", {}))
        details = ctx.exception.details
        self.assertEqual(details["template"], "x")
        tried = details["tried_paths"]
        self.assertEqual(tried[:2], ["/templates/x.json", "/api/workflow_templates/x.json"])
        self.assertIn("/userdata/x.json", tried)
        self.assertIn("/api/userdata/workflows%2Fx.json", tried)
        self.assertEqual(len(tried), len(set(tried)))

    def test_prefer_userdata_order(self):
        with self.assertRaises(RemoteWorkflowNotFound) as ctx:
            run_async(resolve(make_client({}), "x", {}, prefer_userdata=True))
        self.assertEqual(ctx.exception.details["tried_paths"][0], "/userdata/x.json")


# ---------------------------------------------------------------------------
# Test: parameter inference and lenient definitions
# ---------------------------------------------------------------------------

class TestInferParameters(unittest.TestCase):

    def setUp(self):
        self.params = infer_parameters(API_WORKFLOW)

    def test_literal_inputs_only(self):
        self.assertIn("3_seed", self.params)
        self.assertIn("4_ckpt_name", self.params)
        self.assertNotIn("3_model", self.params)
        self.assertNotIn("6_clip", self.params)

    def test_defaults_and_types(self):
        steps = self.params["3_steps"]
        self.assertEqual(steps.type, "int")
        self.assertEqual(steps.default, 20)
        self.assertTrue(steps.has_default)
        self.assertFalse(steps.required)

    def test_aliases(self):
        self.assertEqual(self.params["prompt"].target.node_id, "6")
        self.assertEqual(self.params["negative"].target.node_id, "7")
        self.assertEqual(self.params["seed"].target.input, "seed")
        self.assertIn("steps", self.params)
        self.assertNotIn("cfg", self.params)

    def test_ambiguous_alias_skipped(self):
        workflow = {
            "1": {"class_type": "KSampler", "inputs": {"seed": 1}},
            "2": {"class_type": "KSampler", "inputs": {"seed": 2}},
        }
        self.assertNotIn("seed", infer_parameters(workflow))

    def test_lenient_parameters(self):
        params = normalize_remote_parameters({
            "good": {"type": "int", "target": {"node_id": 3, "input": "steps"}},
            "bad_type": {"type": "tensor", "target": {"node_id": 3, "input": "x"}},
            "no_input": {"type": "int", "target": {"node_id": 3, "input": ""}},
        })
        self.assertEqual(list(params), ["good"])
        self.assertIs(params["good"].required, False)
        self.assertEqual(normalize_remote_parameters("nope"), {})

    def test_lenient_uploads(self):
        uploads = normalize_remote_uploads({
            "image": {"kind": "image", "cli_flag": "--image", "target": {"node_id": 1, "input": "image"}},
            "clip": {"kind": "audio", "cli_flag": "--clip", "target": {"node_id": 2, "input": "audio"}},
        })
        self.assertEqual(list(uploads), ["image"])


# ---------------------------------------------------------------------------
# Test: remote run targets
# ---------------------------------------------------------------------------

class TestRemoteRunTargets(unittest.TestCase):

    def test_userdata_target(self):
        client = make_client({
            "/userdata?dir=workflows&recurse=true": ["alpha.json"],
            "/userdata/workflows%2Falpha.json": API_WORKFLOW,
        })
        target = run_async(load(client, try_load_remote_userdata_run_target, "alpha"))
        self.assertEqual(target["source"], "remote")
        self.assertEqual(target["workflow"], API_WORKFLOW)
        self.assertEqual(target["preset"].workflow, REMOTE_WORKFLOW_REF)
        self.assertIn("seed", target["preset"].parameters)

    def test_userdata_missing_name(self):
        client = make_client({"/userdata?dir=workflows": ["beta.json"]})
        self.assertIsNone(run_async(load(client, try_load_remote_userdata_run_target, "alpha")))

    def test_catalog_target_uses_declared_definitions(self):
        client = make_client({"/workflow_templates": {"templates": [{
            "name": "upscale",
            "workflow": API_WORKFLOW,
            "parameters": {"steps": {"type": "int", "target": {"node_id": "3", "input": "steps"}}},
            "uploads": {"image": {"kind": "image", "cli_flag": "--image",
                                  "target": {"node_id": "10", "input": "image"}}},
        }]}})
        target = run_async(load(client, try_load_remote_catalog_run_target, "upscale"))
        preset = target["preset"]
        self.assertEqual(target["source"], "remote-catalog")
        self.assertEqual(list(preset.parameters), ["steps"])
        self.assertIs(preset.parameters["steps"].required, False)
        self.assertEqual(list(preset.uploads), ["image"])

    def test_catalog_target_falls_back_to_inference(self):
        client = make_client({"/workflow_templates": [{"name": "basic", "workflow": API_WORKFLOW}]})
        target = run_async(load(client, try_load_remote_catalog_run_target, "basic"))
        self.assertIn("prompt", target["preset"].parameters)
        self.assertIsNone(target["preset"].uploads)

    def test_remote_prefers_userdata_then_catalog(self):
        client = make_client({"/workflow_templates": [{"name": "basic", "workflow": API_WORKFLOW}]})
        target = run_async(load(client, try_load_remote_run_target, "basic"))
        self.assertEqual(target["source"], "remote-catalog")

    def test_userdata_error_surfaces_when_catalog_empty(self):
        client = make_client({"/workflow_templates": []})
        with self.assertRaises(RemoteUserdataFetchFailed):
            run_async(load(client, try_load_remote_run_target, "basic"))


if __name__ == "__main__":
    unittest.main()
