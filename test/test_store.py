#!/usr/bin/env python3
"""Session store tests: memory, jsonl (real temp files), firebase (mocked HTTP)."""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import requests

_project = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_project / "bin"))

from config import Config
from outcome import ErrorKind
from store import (
    FirebaseSessionStore,
    JsonlSessionStore,
    MemorySessionStore,
    StoreError,
    build_store,
    fetch_session,
    save_session,
)


class TestMemoryStore(unittest.TestCase):
    def test_missing_is_none(self):
        self.assertIsNone(MemorySessionStore().get("s1"))

    def test_set_then_get_is_a_copy(self):
        store = MemorySessionStore()
        doc = {"turns": [{"id": "a"}]}
        store.set("s1", doc)
        doc["turns"].append({"id": "b"})
        got = store.get("s1")
        self.assertEqual(got, {"turns": [{"id": "a"}]})
        got["turns"].clear()
        self.assertEqual(store.get("s1"), {"turns": [{"id": "a"}]})

    def test_rejects_bad_keys(self):
        store = MemorySessionStore()
        for key in ("", "a/b", "a.b", "a#b", "a$b", "a[b", "a]b", "a\nb"):
            with self.subTest(key=key):
                with self.assertRaises(StoreError):
                    store.get(key)


class TestJsonlStore(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self._tmpdir.name) / "sessions.jsonl"

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_missing_file_reads_as_empty(self):
        self.assertIsNone(JsonlSessionStore(self.path).get("s1"))

    def test_overwrite_keeps_other_sessions(self):
        store = JsonlSessionStore(self.path)
        store.set("s1", {"context_text": "um"})
        store.set("s2", {"context_text": "dois"})
        store.set("s1", {"context_text": "um+"})

        fresh = JsonlSessionStore(self.path)
        self.assertEqual(fresh.get("s1")["context_text"], "um+")
        self.assertEqual(fresh.get("s2")["context_text"], "dois")
        lines = [l for l in self.path.read_text(encoding="utf-8").splitlines() if l.strip()]
        self.assertEqual(len(lines), 2)

    def test_unicode_written_unescaped(self):
        JsonlSessionStore(self.path).set("s1", {"context_text": "Usuário: olá"})
        self.assertIn("Usuário: olá", self.path.read_text(encoding="utf-8"))

    def test_no_temp_files_left_behind(self):
        JsonlSessionStore(self.path).set("s1", {})
        self.assertEqual(os.listdir(self._tmpdir.name), ["sessions.jsonl"])

    def test_corrupt_line_raises_store_error(self):
        self.path.write_text('{"session_id": "s1"}\nnot json\n', encoding="utf-8")
        with self.assertRaises(StoreError):
            JsonlSessionStore(self.path).get("s1")

    @unittest.skipIf(not hasattr(os, "symlink"), "symlinks unsupported")
    def test_symlink_rejected(self):
        target = Path(self._tmpdir.name) / "real.jsonl"
        target.write_text("", encoding="utf-8")
        os.symlink(target, self.path)
        with self.assertRaises(StoreError):
            JsonlSessionStore(self.path).get("s1")


def _response(status=200, json_value=None, json_error=None):
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Error")
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = json_value
    return resp


class TestFirebaseStore(unittest.TestCase):
    def setUp(self):
        self.http = MagicMock()
        self.store = FirebaseSessionStore("https://db.test/", auth="secret", http=self.http, timeout_s=5)

    def test_get_builds_node_url(self):
        self.http.get.return_value = _response(json_value={"turns": []})
        self.assertEqual(self.store.get("sess_1"), {"turns": []})
        self.http.get.assert_called_once_with(
            "https://db.test/sessoes/sess_1.json", params={"auth": "secret"}, timeout=5)

    def test_null_means_absent(self):
        self.http.get.return_value = _response(json_value=None)
        self.assertIsNone(self.store.get("sess_1"))

    def test_put_overwrites_node(self):
        self.http.put.return_value = _response()
        self.store.set("sess_1", {"a": 1})
        self.http.put.assert_called_once_with(
            "https://db.test/sessoes/sess_1.json", params={"auth": "secret"}, json={"a": 1}, timeout=5)

    def test_no_auth_param_when_unset(self):
        store = FirebaseSessionStore("https://db.test", http=self.http)
        self.http.get.return_value = _response(json_value=None)
        store.get("s")
        self.assertEqual(self.http.get.call_args.kwargs["params"], {})

    def test_http_errors_become_store_error(self):
        self.http.get.return_value = _response(status=401)
        with self.assertRaises(StoreError):
            self.store.get("s")
        self.http.put.side_effect = requests.ConnectionError("down")
        with self.assertRaises(StoreError):
            self.store.set("s", {})

    def test_non_object_node_is_an_error(self):
        self.http.get.return_value = _response(json_value=[1, 2])
        with self.assertRaises(StoreError):
            self.store.get("s")

    def test_requires_database_url(self):
        with self.assertRaises(ValueError):
            FirebaseSessionStore("")


class TestResultWrappers(unittest.TestCase):
    def test_fetch_and_save_ok(self):
        store = MemorySessionStore()
        self.assertTrue(save_session(store, "s1", {"x": 1}).ok)
        got = fetch_session(store, "s1")
        self.assertTrue(got.ok)
        self.assertEqual(got.value, {"x": 1})

    def test_absent_is_successful_none(self):
        got = fetch_session(MemorySessionStore(), "s1")
        self.assertTrue(got.ok)
        self.assertIsNone(got.value)

    def test_failures_are_store_unavailable(self):
        store = MagicMock()
        store.get.side_effect = StoreError("boom")
        store.set.side_effect = StoreError("boom")
        self.assertEqual(fetch_session(store, "s1").error, ErrorKind.STORE_UNAVAILABLE)
        self.assertEqual(save_session(store, "s1", {}).error, ErrorKind.STORE_UNAVAILABLE)


class TestBuildStore(unittest.TestCase):
    def test_backends(self):
        self.assertIsInstance(build_store(Config()), MemorySessionStore)
        self.assertIsInstance(build_store(Config(store_backend="jsonl", state_file=Path("x.jsonl"))),
                              JsonlSessionStore)
        self.assertIsInstance(build_store(Config(store_backend="firebase", firebase_database_url="https://db.test")),
                              FirebaseSessionStore)
        with self.assertRaises(ValueError):
            build_store(Config(store_backend="redis"))


if __name__ == "__main__":
    unittest.main()
