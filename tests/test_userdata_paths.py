"""Tests for userdata path normalization and listing scans."""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from comfy_agent.userdata_paths import (
    apply_workflows_dir_context,
    encode_component,
    extract_userdata_json_paths,
    normalize_userdata_dir_path,
    normalize_userdata_file_path,
    score_userdata_file_path,
    workflow_name_from_path,
)


class TestNormalizePaths(unittest.TestCase):

    def test_file_paths(self):
        self.assertEqual(normalize_userdata_file_path("workflows/a.json"), "workflows/a.json")
        self.assertEqual(normalize_userdata_file_path("./workflows/a.json"), "workflows/a.json")
        self.assertEqual(normalize_userdata_file_path("/userdata/workflows%2Fa.json"), "workflows/a.json")
        self.assertEqual(
            normalize_userdata_file_path("http://h:8188/api/userdata/workflows%2Fa.json?overwrite=1"),
            "workflows/a.json")

    def test_non_json_rejected(self):
        self.assertIsNone(normalize_userdata_file_path("workflows/a.png"))
        self.assertIsNone(normalize_userdata_file_path("   "))

    def test_dir_paths(self):
        self.assertEqual(normalize_userdata_dir_path("/workflows/"), "workflows")
        self.assertIsNone(normalize_userdata_dir_path("/"))

    def test_encode_component(self):
        self.assertEqual(encode_component("a b/c(1).json"), "a%20b%2Fc(1).json")


class TestListingScan(unittest.TestCase):

    def test_plain_list(self):
        self.assertEqual(extract_userdata_json_paths(["a.json", "b.txt", "sub/c.json"]),
                         ["a.json", "sub/c.json"])

    def test_dir_and_file_keys_combined(self):
        payload = [{"subfolder": "workflows", "filename": "a.json"}]
        self.assertEqual(extract_userdata_json_paths(payload), ["workflows/a.json", "a.json"])

    def test_file_names_as_keys(self):
        payload = {"files": {"b.json": {"size": 10}}}
        self.assertEqual(extract_userdata_json_paths(payload), ["b.json"])

    def test_depth_limit(self):
        payload = "deep.json"
        for _ in range(12):
            payload = [payload]
        self.assertEqual(extract_userdata_json_paths(payload), [])

    def test_duplicates_collapsed(self):
        self.assertEqual(extract_userdata_json_paths(["a.json", {"path": "a.json"}]), ["a.json"])


class TestNamesAndScores(unittest.TestCase):

    def test_workflow_name(self):
        self.assertEqual(workflow_name_from_path("workflows/sub/alpha.json"), "alpha")
        self.assertIsNone(workflow_name_from_path("workflows/.index.json"))
        self.assertIsNone(workflow_name_from_path("workflows/readme.md"))

    def test_workflow_name_from_windows_path(self):
        self.assertEqual(workflow_name_from_path("workflows\\alpha.json"), "alpha")
        self.assertEqual(workflow_name_from_path("C:\\comfy\\user\\workflows\\sub\\beta.JSON"), "beta")

    def test_workflows_dir_preferred(self):
        self.assertGreater(score_userdata_file_path("workflows/alpha.json"),
                           score_userdata_file_path("alpha.json"))
        self.assertGreater(score_userdata_file_path("workflows/alpha.json"),
                           score_userdata_file_path("backup/alpha.json"))

    def test_workflows_dir_context(self):
        self.assertEqual(apply_workflows_dir_context("alpha.json", "/userdata?dir=workflows"),
                         "workflows/alpha.json")
        self.assertEqual(apply_workflows_dir_context("workflows/alpha.json", "/api/v2/userdata?path=workflows"),
                         "workflows/alpha.json")
        self.assertEqual(apply_workflows_dir_context("alpha.json", "/v2/userdata"), "alpha.json")


if __name__ == "__main__":
    unittest.main()
