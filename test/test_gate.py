#!/usr/bin/env python3
"""Session gate tests: free tier bypass, premium existence check, store failure."""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

_project = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_project / "bin"))

from config import Config
from gate import MSG_AUTH_ERROR, MSG_INVALID_SESSION, MSG_MISSING_SESSION, authorize
from outcome import ErrorKind
from providers import FREE_MODEL_ID, build_registry
from state import ANONYMOUS, Identity
from store import MemorySessionStore, StoreError


class TestAuthorize(unittest.TestCase):
    def setUp(self):
        self.registry = build_registry(Config(workers_api_url="https://w.test/?q="))
        self.store = MemorySessionStore({
            "sess_known": {"user_id": "u42", "user_email": "ana@dk.test", "turns": []},
        })

    def test_free_tier_is_anonymous_without_lookup(self):
        store = MagicMock()
        result = authorize(self.registry, store, FREE_MODEL_ID, None)
        self.assertTrue(result.ok)
        self.assertEqual(result.value, ANONYMOUS)
        store.get.assert_not_called()

    def test_free_tier_ignores_supplied_session(self):
        result = authorize(self.registry, self.store, FREE_MODEL_ID, "sess_known")
        self.assertEqual(result.value, ANONYMOUS)

    def test_premium_without_session(self):
        result = authorize(self.registry, self.store, "dk-ai-6.5-pro", None)
        self.assertEqual(result.error, ErrorKind.MISSING_SESSION)
        self.assertEqual(result.message, MSG_MISSING_SESSION)
        self.assertEqual(result.status, 401)

    def test_premium_with_unknown_session(self):
        result = authorize(self.registry, self.store, "dk-ai-6.5-pro", "sess_nope")
        self.assertEqual(result.error, ErrorKind.INVALID_SESSION)
        self.assertEqual(result.message, MSG_INVALID_SESSION)
        self.assertEqual(result.status, 401)

    def test_premium_with_known_session_resolves_identity(self):
        result = authorize(self.registry, self.store, "dk-ai-4.7-turbo", "sess_known")
        self.assertTrue(result.ok)
        self.assertEqual(result.value, Identity("u42", "ana@dk.test"))

    def test_store_failure_is_auth_error(self):
        store = MagicMock()
        store.get.side_effect = StoreError("unreachable")
        result = authorize(self.registry, store, "dk-ai-6.5-pro", "sess_known")
        self.assertEqual(result.error, ErrorKind.STORE_UNAVAILABLE)
        self.assertEqual(result.message, MSG_AUTH_ERROR)
        self.assertEqual(result.detail, "unreachable")

    def test_gate_never_creates_sessions(self):
        authorize(self.registry, self.store, "dk-ai-6.5-pro", "sess_new")
        self.assertIsNone(self.store.get("sess_new"))


if __name__ == "__main__":
    unittest.main()
