from __future__ import annotations

import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone

from passlib.hash import argon2
from sqlalchemy import select

from fleetops.auth import AuthService, SessionStore, role_message
from fleetops.errors import (
    AppError,
    AuthError,
    AuthorizationError,
    ConflictError,
    LockedError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from fleetops.models import EmailVerification, PasswordResetRequest, SecurityLog, User
from fleetops.tests.support import RecordingMailer, add_account, file_engine, memory_engine, session_factory


class AuthServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.factory = session_factory(self.engine)
        self.sessions = SessionStore()
        self.mailer = RecordingMailer()
        self.service = AuthService(self.factory, self.sessions, self.mailer, max_failed_attempts=5, lockout_minutes=15)

    def tearDown(self) -> None:
        self.engine.dispose()

    def rows(self, model, **filters):
        with self.factory() as session:
            return session.scalars(select(model).filter_by(**filters)).all()

    def user(self, email: str) -> User:
        with self.factory() as session:
            return session.scalars(select(User).where(User.email == email)).one()


class RegistrationTests(AuthServiceTestCase):
    def test_check_email(self) -> None:
        add_account(self.factory, "taken@example.com")

        self.assertEqual(self.service.check_email(" Free@Example.com "), "free@example.com")
        with self.assertRaises(ValidationError) as missing:
            self.service.check_email("")
        with self.assertRaises(ValidationError) as invalid:
            self.service.check_email("not-an-email")
        with self.assertRaises(ConflictError):
            self.service.check_email("taken@example.com")
        self.assertEqual(missing.exception.status, 400)
        self.assertEqual(invalid.exception.status, 422)

    def test_verification_code_is_hashed_and_mailed(self) -> None:
        code = self.service.request_verification("new@example.com")

        self.assertRegex(code, r"^\d{6}$")
        self.assertEqual(self.mailer.sent, [("verification", "new@example.com", code)])
        stored = self.rows(EmailVerification, email="new@example.com")
        self.assertEqual(len(stored), 1)
        self.assertNotEqual(stored[0].code_hash, code)
        self.assertTrue(argon2.verify(code, stored[0].code_hash))

    def test_verification_rate_limit(self) -> None:
        for _ in range(5):
            self.service.request_verification("new@example.com")
        with self.assertRaises(RateLimitError) as caught:
            self.service.request_verification("new@example.com")
        self.assertEqual(caught.exception.status, 429)

    def test_rate_limit_window_is_one_hour(self) -> None:
        earlier = datetime.now(timezone.utc) - timedelta(hours=2)
        for _ in range(5):
            self.service.request_verification("new@example.com", now=earlier)

        self.service.request_verification("new@example.com")

        self.assertEqual(len(self.rows(EmailVerification, email="new@example.com")), 1)

    def test_mail_failure_leaves_no_row(self) -> None:
        self.mailer.fail = True
        with self.assertRaises(ServerError):
            self.service.request_verification("new@example.com")
        self.assertEqual(self.rows(EmailVerification), [])

    def test_code_verifies_once(self) -> None:
        code = self.service.request_verification("new@example.com")

        with self.assertRaises(ValidationError) as wrong:
            self.service.verify_code("new@example.com", "000000" if code != "000000" else "111111")
        token = self.service.verify_code("new@example.com", code)
        with self.assertRaises(ValidationError) as reused:
            self.service.verify_code("new@example.com", code)

        self.assertEqual(wrong.exception.message, "Incorrect code.")
        self.assertEqual(len(token), 64)
        self.assertEqual(reused.exception.message, "This code has already been used.")

    def test_expired_code_is_rejected(self) -> None:
        earlier = datetime.now(timezone.utc) - timedelta(minutes=11)
        code = self.service.request_verification("new@example.com", now=earlier)

        with self.assertRaises(ValidationError) as caught:
            self.service.verify_code("new@example.com", code)
        self.assertEqual(caught.exception.message, "Code expired or not found.")

    def test_register_consumes_verification(self) -> None:
        code = self.service.request_verification("new@example.com")
        token = self.service.verify_code("new@example.com", code)

        account = self.service.register("new@example.com", "longenough1", token, ip="127.0.0.1")

        self.assertEqual(account["email"], "new@example.com")
        self.assertEqual(account["role"], "user")
        self.assertTrue(account["email_verified"])
        self.assertNotIn("password_hash", account)
        self.assertEqual(self.rows(EmailVerification, email="new@example.com"), [])
        with self.assertRaises(ValidationError):
            self.service.register("new@example.com", "longenough1", token)

    def test_register_validation(self) -> None:
        code = self.service.request_verification("new@example.com")
        token = self.service.verify_code("new@example.com", code)

        with self.assertRaises(ValidationError) as missing:
            self.service.register("new@example.com", "longenough1", "")
        with self.assertRaises(ValidationError) as bad_token:
            self.service.register("new@example.com", "longenough1", "f" * 64)
        with self.assertRaises(ValidationError) as short:
            self.service.register("new@example.com", "short", token)
        with self.assertRaises(ValidationError) as bad_role:
            self.service.register("new@example.com", "longenough1", token, role="pilot")

        self.assertEqual(missing.exception.message, "Verification token missing.")
        self.assertEqual(bad_token.exception.status, 400)
        self.assertEqual(short.exception.status, 422)
        self.assertEqual(bad_role.exception.status, 422)

    def test_admin_registration_is_audited(self) -> None:
        code = self.service.request_verification("boss@example.com")
        token = self.service.verify_code("boss@example.com", code)

        self.service.register("boss@example.com", "longenough1", token, role="admin", granted_by="superadmin")

        entries = self.rows(SecurityLog, action="register")
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].role, "admin")

    def test_privileged_roles_need_an_administrator(self) -> None:
        tokens = {}
        for email in ("anon@example.com", "climber@example.com", "crew@example.com"):
            code = self.service.request_verification(email)
            tokens[email] = self.service.verify_code(email, code)

        with self.assertRaises(AuthorizationError) as anonymous:
            self.service.register("anon@example.com", "longenough1", tokens["anon@example.com"], role="superadmin")
        with self.assertRaises(AuthorizationError):
            self.service.register(
                "climber@example.com", "longenough1", tokens["climber@example.com"], role="superadmin", granted_by="admin"
            )
        account = self.service.register(
            "crew@example.com", "longenough1", tokens["crew@example.com"], role="operator", granted_by="admin"
        )

        self.assertEqual(anonymous.exception.status, 403)
        self.assertEqual(account["role"], "operator")
        self.assertEqual(self.rows(User, email="anon@example.com"), [])
        self.assertEqual(self.rows(User, email="climber@example.com"), [])

    def test_default_role_needs_no_grant(self) -> None:
        code = self.service.request_verification("plain@example.com")
        token = self.service.verify_code("plain@example.com", code)

        account = self.service.register("plain@example.com", "longenough1", token, role="user")

        self.assertEqual(account["role"], "user")


class ConcurrentRateLimitTests(unittest.TestCase):
    """Requests racing on one address never exceed the hourly limit."""

    def setUp(self) -> None:
        self.workdir = tempfile.TemporaryDirectory()
        self.engine = file_engine(f"{self.workdir.name}/fleetops.db")
        self.factory = session_factory(self.engine)
        self.mailer = RecordingMailer()
        self.service = AuthService(self.factory, SessionStore(), self.mailer)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.workdir.cleanup()

    def race(self, call, count: int) -> list:
        barrier = threading.Barrier(count)
        outcomes: list = []

        def worker() -> None:
            barrier.wait()
            try:
                outcomes.append(call())
            except AppError as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return outcomes

    def count(self, model) -> int:
        with self.factory() as session:
            return len(session.scalars(select(model)).all())

    def test_verification_limit_holds_under_concurrency(self) -> None:
        for _ in range(4):
            self.service.request_verification("race@example.com")

        outcomes = self.race(lambda: self.service.request_verification("race@example.com"), 3)

        self.assertEqual(len(outcomes), 3)
        self.assertEqual(sum(isinstance(item, str) for item in outcomes), 1)
        self.assertEqual(sum(isinstance(item, RateLimitError) for item in outcomes), 2)
        self.assertEqual(self.count(EmailVerification), 5)

    def test_reset_limit_holds_under_concurrency(self) -> None:
        add_account(self.factory, "race@example.com")
        for _ in range(2):
            self.service.request_password_reset("race@example.com")

        outcomes = self.race(lambda: self.service.request_password_reset("race@example.com"), 3)

        self.assertEqual(len(outcomes), 3)
        self.assertEqual(sum(isinstance(item, str) for item in outcomes), 1)
        self.assertEqual(outcomes.count(None), 2)
        self.assertEqual(self.count(PasswordResetRequest), 3)


class LoginTests(AuthServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        add_account(self.factory, "user@example.com", "Password123")

    def test_successful_login(self) -> None:
        account = self.service.attempt_login("USER@example.com", "Password123")

        self.assertEqual(account["email"], "user@example.com")
        self.assertEqual(account["role_message"], "Signed in as user.")
        self.assertIsNotNone(self.user("user@example.com").last_login)

    def test_unknown_email_and_wrong_password(self) -> None:
        with self.assertRaises(AuthError) as unknown:
            self.service.attempt_login("ghost@example.com", "Password123")
        with self.assertRaises(AuthError) as wrong:
            self.service.attempt_login("user@example.com", "nope")

        self.assertEqual(unknown.exception.message, "Invalid credentials.")
        self.assertEqual(wrong.exception.to_dict()["remaining_attempts"], 4)

    def test_lockout_after_repeated_failures(self) -> None:
        remaining = []
        for _ in range(5):
            with self.assertRaises(AuthError) as caught:
                self.service.attempt_login("user@example.com", "nope")
            remaining.append(caught.exception.payload["remaining_attempts"])

        with self.assertRaises(LockedError) as locked:
            self.service.attempt_login("user@example.com", "Password123")

        self.assertEqual(remaining, [4, 3, 2, 1, 0])
        self.assertEqual(locked.exception.status, 423)
        self.assertTrue(locked.exception.to_dict()["locked"])
        self.assertEqual(len(self.rows(SecurityLog, action="lockout")), 1)

    def test_lock_expires(self) -> None:
        for _ in range(5):
            with self.assertRaises(AuthError):
                self.service.attempt_login("user@example.com", "nope")

        later = datetime.now(timezone.utc) + timedelta(minutes=20)
        account = self.service.attempt_login("user@example.com", "Password123", now=later)

        self.assertEqual(account["failed_attempts"], 0)
        self.assertIsNone(account["locked_until"])

    def test_disabled_account(self) -> None:
        add_account(self.factory, "off@example.com", "Password123", is_active=False)
        with self.assertRaises(AuthError) as caught:
            self.service.attempt_login("off@example.com", "Password123")
        self.assertEqual(caught.exception.message, "Account disabled. Contact an administrator.")

    def test_admin_login_is_audited(self) -> None:
        add_account(self.factory, "root@example.com", "Password123", role="superadmin")

        account = self.service.attempt_login("root@example.com", "Password123", ip="10.0.0.5")

        self.assertEqual(account["role_message"], role_message("superadmin"))
        entries = self.rows(SecurityLog, action="login")
        self.assertEqual([(entry.email, entry.ip) for entry in entries], [("root@example.com", "10.0.0.5")])

    def test_open_session_replaces_previous(self) -> None:
        account = self.service.attempt_login("user@example.com", "Password123")
        first = self.service.open_session(account, "fp")
        second = self.service.open_session(account, "fp", previous=first)

        self.assertIsNone(self.sessions.get(first.id))
        self.assertEqual(self.sessions.get(second.id).account_id, account["id"])


class PasswordResetTests(AuthServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.account_id = add_account(self.factory, "user@example.com", "Password123")

    def test_unknown_email_is_ignored(self) -> None:
        self.assertIsNone(self.service.request_password_reset("ghost@example.com"))
        self.assertEqual(self.mailer.sent, [])
        with self.assertRaises(ValidationError):
            self.service.request_password_reset("broken")

    def test_full_reset_flow(self) -> None:
        self.sessions.create(self.account_id, "user@example.com", "user", "fp")
        self.sessions.create(self.account_id, "user@example.com", "user", "fp")

        code = self.service.request_password_reset("user@example.com")
        token = self.service.verify_reset_code("user@example.com", code)
        account_id = self.service.reset_password("user@example.com", token, "BrandNew123")

        self.assertEqual(account_id, self.account_id)
        self.assertEqual(self.sessions.for_account(self.account_id), [])
        self.assertTrue(argon2.verify("BrandNew123", self.user("user@example.com").password_hash))
        entries = self.rows(SecurityLog, action="password_reset")
        self.assertEqual(entries[0].payload, {"sessions_closed": 2})
        with self.assertRaises(ValidationError) as reused:
            self.service.reset_password("user@example.com", token, "Another123")
        self.assertEqual(reused.exception.message, "Invalid or expired token.")

    def test_reset_clears_lockout(self) -> None:
        for _ in range(5):
            with self.assertRaises(AuthError):
                self.service.attempt_login("user@example.com", "nope")

        code = self.service.request_password_reset("user@example.com")
        token = self.service.verify_reset_code("user@example.com", code)
        self.service.reset_password("user@example.com", token, "BrandNew123")

        self.assertEqual(self.service.attempt_login("user@example.com", "BrandNew123")["failed_attempts"], 0)

    def test_expired_token_is_rejected(self) -> None:
        earlier = datetime.now(timezone.utc) - timedelta(minutes=40)
        code = self.service.request_password_reset("user@example.com", now=earlier)
        token = self.service.verify_reset_code("user@example.com", code, now=earlier)

        with self.assertRaises(ValidationError):
            self.service.reset_password("user@example.com", token, "BrandNew123")

    def test_reset_rate_limit_is_silent(self) -> None:
        codes = [self.service.request_password_reset("user@example.com") for _ in range(4)]

        self.assertTrue(all(codes[:3]))
        self.assertIsNone(codes[3])
        self.assertEqual(len(self.rows(PasswordResetRequest)), 3)

    def test_mail_failure_is_silent(self) -> None:
        self.mailer.fail = True
        self.assertIsNone(self.service.request_password_reset("user@example.com"))
        self.assertEqual(self.rows(PasswordResetRequest), [])


if __name__ == "__main__":
    unittest.main()
