"""Tests for run source selection."""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from comfy_agent.errors import InvalidParam, PresetNotFound, RemoteUserdataFetchFailed
from comfy_agent.run_source import resolve_run_source, resolve_selected_run_source, select_run_source


class TestResolveRunSource(unittest.TestCase):

    def test_default_auto(self):
        self.assertEqual(resolve_run_source(None), "auto")
        self.assertEqual(resolve_run_source(""), "auto")

    def test_valid_values(self):
        for value in ("auto", "local", "remote", "remote-catalog"):
            self.assertEqual(resolve_run_source(value), value)

    def test_invalid(self):
        with self.assertRaises(InvalidParam):
            resolve_run_source("cloud")


class TestSelectRunSource(unittest.TestCase):

    def test_auto_prefers_local(self):
        self.assertEqual(select_run_source("auto", True, True, True), "local")

    def test_auto_falls_back_to_remote(self):
        self.assertEqual(select_run_source("auto", False, True, True), "remote")

    def test_auto_never_uses_catalog(self):
        with self.assertRaises(PresetNotFound):
            select_run_source("auto", False, False, True)

    def test_explicit_source_must_be_available(self):
        self.assertEqual(select_run_source("remote-catalog", True, True, True), "remote-catalog")
        with self.assertRaises(PresetNotFound) as ctx:
            select_run_source("local", False, True, True)
        self.assertEqual(ctx.exception.details, {"source": "local"})


class TestResolveSelectedRunSource(unittest.TestCase):

    def test_remote_error_surfaces(self):
        error = RemoteUserdataFetchFailed("down")
        with self.assertRaises(RemoteUserdataFetchFailed):
            resolve_selected_run_source("auto", False, False, False, remote_error=error)

    def test_catalog_error_only_for_catalog(self):
        error = RemoteUserdataFetchFailed("catalog down")
        with self.assertRaises(PresetNotFound):
            resolve_selected_run_source("remote", False, False, False, remote_catalog_error=error)
        with self.assertRaises(RemoteUserdataFetchFailed):
            resolve_selected_run_source("remote-catalog", False, False, False, remote_catalog_error=error)

    def test_success_ignores_errors(self):
        result = resolve_selected_run_source("auto", True, False, False,
                                             remote_error=RemoteUserdataFetchFailed("x"))
        self.assertEqual(result, "local")


if __name__ == "__main__":
    unittest.main()
