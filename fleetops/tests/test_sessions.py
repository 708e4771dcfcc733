from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from fleetops.auth import SessionStore, compute_fingerprint


class SessionStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SessionStore(timeout_seconds=60)
        self.now = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def test_create_issues_distinct_tokens(self) -> None:
        first = self.store.create(1, "a@example.com", "user", "fp", now=self.now)
        second = self.store.create(1, "a@example.com", "user", "fp", now=self.now)

        self.assertNotEqual(first.id, second.id)
        self.assertNotEqual(first.csrf_token, second.csrf_token)
        self.assertEqual(len(first.csrf_token), 32)
        self.assertEqual(self.store.get(first.id), first)
        self.assertIsNone(self.store.get(None))

    def test_expiry_uses_idle_time(self) -> None:
        session = self.store.create(1, "a@example.com", "user", "fp", now=self.now)

        self.assertFalse(self.store.is_expired(session, self.now + timedelta(seconds=60)))
        self.assertTrue(self.store.is_expired(session, self.now + timedelta(seconds=61)))
        touched = session.touched(self.now + timedelta(seconds=50))
        self.assertFalse(self.store.is_expired(touched, self.now + timedelta(seconds=100)))

    def test_save_ignores_destroyed_sessions(self) -> None:
        session = self.store.create(1, "a@example.com", "user", "fp", now=self.now)
        self.store.destroy(session.id)
        self.store.save(session.touched(self.now))

        self.assertIsNone(self.store.get(session.id))

    def test_destroy_for_account_and_purge(self) -> None:
        self.store.create(1, "a@example.com", "user", "fp", now=self.now)
        self.store.create(1, "a@example.com", "user", "fp", now=self.now)
        kept = self.store.create(2, "b@example.com", "admin", "fp", now=self.now + timedelta(seconds=30))

        self.assertEqual(self.store.destroy_for_account(1), 2)
        self.assertEqual(self.store.for_account(1), [])
        self.assertEqual(self.store.purge_expired(self.now + timedelta(seconds=200)), 1)
        self.assertIsNone(self.store.get(kept.id))
        self.assertEqual(len(self.store), 0)

    def test_fingerprint_depends_on_agent_and_ip(self) -> None:
        base = compute_fingerprint("Mozilla", "10.0.0.1")

        self.assertEqual(base, compute_fingerprint("Mozilla", "10.0.0.1"))
        self.assertNotEqual(base, compute_fingerprint("Mozilla", "10.0.0.2"))
        self.assertNotEqual(base, compute_fingerprint("curl", "10.0.0.1"))
        self.assertEqual(len(base), 64)


if __name__ == "__main__":
    unittest.main()
