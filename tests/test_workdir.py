"""Tests for working directory layout and init."""

import os
import shutil
import sys
import tempfile
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from comfy_agent.errors import AgentError, WorkdirNotFound
from comfy_agent.workdir import (
    SUBDIRS,
    ensure_workdir,
    get_subdir_path,
    get_workdir_path,
    init_workdir,
)


class TestWorkdir(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_local_paths(self):
        self.assertEqual(get_workdir_path(self.tmpdir), os.path.join(self.tmpdir, ".comfy-agent"))
        self.assertEqual(get_subdir_path("presets", self.tmpdir),
                         os.path.join(self.tmpdir, ".comfy-agent", "presets"))

    def test_global_path_under_config(self):
        with patch("os.path.expanduser", return_value=self.tmpdir):
            path = get_workdir_path("/ignored", "global")
        self.assertEqual(path, os.path.join(self.tmpdir, ".config", ".comfy-agent"))

    def test_ensure_missing(self):
        with self.assertRaises(WorkdirNotFound):
            ensure_workdir(self.tmpdir)

    def test_init_creates_then_skips(self):
        first = init_workdir(self.tmpdir)
        self.assertEqual(len(first["created"]), 1 + len(SUBDIRS))
        for subdir in SUBDIRS:
            self.assertTrue(os.path.isdir(get_subdir_path(subdir, self.tmpdir)))
        second = init_workdir(self.tmpdir)
        self.assertEqual(second["created"], [])
        self.assertEqual(len(second["skipped"]), 1 + len(SUBDIRS))
        self.assertEqual(ensure_workdir(self.tmpdir), get_workdir_path(self.tmpdir))

    def test_file_in_the_way(self):
        os.makedirs(get_workdir_path(self.tmpdir))
        blocker = get_subdir_path("cache", self.tmpdir)
        with open(blocker, "w") as f:
            f.write("x")
        with self.assertRaises(AgentError) as ctx:
            init_workdir(self.tmpdir)
        self.assertEqual(ctx.exception.code, "WORKDIR_CONFLICT")

        result = init_workdir(self.tmpdir, force=True)
        self.assertIn(blocker, result["created"])
        self.assertTrue(os.path.isdir(blocker))


if __name__ == "__main__":
    unittest.main()
