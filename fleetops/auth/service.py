from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from passlib.hash import argon2
from sqlalchemy import delete, func, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from fleetops.errors import (
    AuthError,
    AuthorizationError,
    ConflictError,
    LockedError,
    RateLimitError,
    ServerError,
    ValidationError,
    unprocessable,
)
from fleetops.logging import AuditLogger
from fleetops.models import EmailVerification, PasswordResetRequest, User
from fleetops.repositories import AccountRepository
from fleetops.services.email import EmailDeliveryError

from .roles import ADMIN_ROLES, DEFAULT_ROLE, Role
from .sessions import Session, SessionStore

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8
CODE_TTL_SECONDS = 600
TOKEN_TTL_SECONDS = 1800
VERIFICATION_LIMIT_PER_HOUR = 5
RESET_LIMIT_PER_HOUR = 3

logger = logging.getLogger("fleetops.auth")


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email)) and len(email) <= 255


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def can_grant(granted_by: str | None, role: str) -> bool:
    if role == DEFAULT_ROLE.value:
        return True
    if role == Role.SUPERADMIN.value:
        return granted_by == Role.SUPERADMIN.value
    return granted_by in {admin.value for admin in ADMIN_ROLES}


def role_message(role: str | None) -> str:
    if role == Role.SUPERADMIN.value:
        return "Welcome Superadmin, full access."
    if role == Role.ADMIN.value:
        return "Welcome Admin, administrator access."
    if role:
        return f"Signed in as {role}."
    return "Signed in."


class AuthService:
    def __init__(
        self,
        session_factory: sessionmaker,
        sessions: SessionStore,
        mailer,
        audit: AuditLogger | None = None,
        accounts: AccountRepository | None = None,
        max_failed_attempts: int = 5,
        lockout_minutes: int = 15,
        code_ttl_seconds: int = CODE_TTL_SECONDS,
        token_ttl_seconds: int = TOKEN_TTL_SECONDS,
    ) -> None:
        self.session_factory = session_factory
        self.sessions = sessions
        self.mailer = mailer
        self.audit = audit or AuditLogger(session_factory)
        self.accounts = accounts or AccountRepository(session_factory)
        self.max_failed_attempts = max_failed_attempts
        self.lockout_minutes = lockout_minutes
        self.code_ttl = timedelta(seconds=code_ttl_seconds)
        self.token_ttl = timedelta(seconds=token_ttl_seconds)

    # -- registration ---------------------------------------------------

    def check_email(self, email: Any) -> str:
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Email is required.")
        if not is_valid_email(normalized):
            raise unprocessable("Invalid email.")
        if self.accounts.email_exists(normalized):
            raise ConflictError("Email already in use.")
        return normalized

    def request_verification(self, email: Any, now: datetime | None = None) -> str:
        """Store a hashed one-time code for ``email`` and mail it; returns the plain code."""
        moment = now or datetime.now(timezone.utc)
        normalized = normalize_email(email)
        if not normalized or not is_valid_email(normalized):
            raise ValidationError("Invalid email.")
        if self.accounts.email_exists(normalized):
            raise ConflictError("Email already in use.")

        code = generate_code()
        code_hash = self._store_code(EmailVerification, normalized, code, moment, VERIFICATION_LIMIT_PER_HOUR)
        if code_hash is None:
            raise RateLimitError("Too many attempts. Try again later.")
        try:
            self.mailer.send_verification_code(normalized, code)
        except EmailDeliveryError as exc:
            self._delete_code(EmailVerification, code_hash)
            logger.warning("verification mail failed email=%s", normalized)
            raise ServerError("Failed to send the email.") from exc

        self._purge_expired(EmailVerification, moment)
        return code

    def verify_code(self, email: Any, code: Any, now: datetime | None = None) -> str:
        return self._verify_one_time_code(EmailVerification, "verification_token", email, code, now)

    def register(
        self,
        email: Any,
        password: Any,
        token: Any,
        role: str | None = None,
        ip: str | None = None,
        now: datetime | None = None,
        granted_by: str | None = None,
    ) -> dict[str, Any]:
        """Create a verified account.

        Any role other than the default needs ``granted_by``, the role of the
        administrator creating the account. Only a superadmin grants superadmin.
        """
        moment = now or datetime.now(timezone.utc)
        normalized = normalize_email(email)
        if not token:
            raise ValidationError("Verification token missing.")
        if not self._verification_token_valid(normalized, str(token), moment):
            raise ValidationError("Invalid or expired verification token.")
        if not normalized or not password:
            raise ValidationError("Email and password are required.")
        if not is_valid_email(normalized):
            raise unprocessable("Invalid email.")
        if len(str(password)) < MIN_PASSWORD_LENGTH:
            raise unprocessable(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        if self.accounts.email_exists(normalized):
            raise ConflictError("Email already in use.")
        if role and role not in Role.values():
            raise unprocessable("Invalid role.")
        if role and not can_grant(granted_by, role):
            raise AuthorizationError("Only an administrator can assign this role.")

        user = User(
            email=normalized,
            password_hash=argon2.hash(str(password)),
            role=role or DEFAULT_ROLE.value,
            is_active=True,
            email_verified=True,
        )
        session = self.session_factory()
        try:
            session.add(user)
            session.flush()
            session.execute(delete(EmailVerification).where(EmailVerification.email == normalized))
            session.commit()
            session.refresh(user)
            created = self.accounts.to_dict(user)
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Email already in use.") from exc
        finally:
            session.close()

        logger.info("account registered id=%s role=%s", created["id"], created["role"])
        self.audit.record_role_event("register", created["email"], created["role"], ip)
        return created

    # -- login ------------------------------------------------------------

    def attempt_login(
        self,
        email: Any,
        password: Any,
        ip: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        moment = now or datetime.now(timezone.utc)
        normalized = normalize_email(email)
        if not normalized or not password:
            raise ValidationError("Email and password are required.")

        session = self.session_factory()
        try:
            user = session.scalars(select(User).where(User.email == normalized)).first()
            if user is None:
                raise AuthError("Invalid credentials.")
            locked_until = self._normalize_time(user.locked_until)
            if locked_until and locked_until > moment:
                raise LockedError(
                    f"Too many failed attempts. Try again in {self.lockout_minutes} minutes.",
                    payload={"locked": True},
                )
            if locked_until and user.failed_attempts >= self.max_failed_attempts:
                self._reset_failures(user)
            if not user.is_active:
                raise AuthError("Account disabled. Contact an administrator.")

            if not self._verify_password(str(password), user.password_hash):
                remaining = self._register_failure(session, user.id, moment)
                if remaining == 0:
                    self.audit.record("lockout", user.email, user.role, ip)
                raise AuthError("Invalid credentials.", payload={"remaining_attempts": remaining})

            self._reset_failures(user)
            if argon2.needs_update(user.password_hash):
                user.password_hash = argon2.hash(str(password))
            user.last_login = moment
            session.commit()
            session.refresh(user)
            account = self.accounts.to_dict(user)
        finally:
            session.close()

        account["role_message"] = role_message(account.get("role"))
        self.audit.record_role_event("login", account["email"], account["role"], ip)
        return account

    def open_session(
        self,
        account: dict[str, Any],
        fingerprint: str,
        previous: Session | None = None,
        now: datetime | None = None,
    ) -> Session:
        if previous is not None:
            self.sessions.destroy(previous.id)
        return self.sessions.create(
            account_id=account["id"],
            email=account["email"],
            role=account["role"],
            fingerprint=fingerprint,
            now=now,
        )

    # -- password reset ---------------------------------------------------

    def request_password_reset(self, email: Any, now: datetime | None = None) -> str | None:
        """Returns the plain code, or None when the request is silently ignored."""
        moment = now or datetime.now(timezone.utc)
        normalized = normalize_email(email)
        if not normalized or not is_valid_email(normalized):
            raise ValidationError("Invalid email.")
        account = self.accounts.find_by_email(normalized)
        if account is None or not account.get("is_active", True):
            logger.info("password reset ignored for unknown or disabled account")
            return None
        code = generate_code()
        code_hash = self._store_code(PasswordResetRequest, normalized, code, moment, RESET_LIMIT_PER_HOUR)
        if code_hash is None:
            logger.info("password reset rate limited")
            return None
        try:
            self.mailer.send_password_reset_code(normalized, code)
        except EmailDeliveryError:
            # Answered like an unknown address so delivery problems do not reveal accounts.
            self._delete_code(PasswordResetRequest, code_hash)
            logger.exception("reset mail failed email=%s", normalized)
            return None

        self._purge_expired(PasswordResetRequest, moment)
        return code

    def verify_reset_code(self, email: Any, code: Any, now: datetime | None = None) -> str:
        return self._verify_one_time_code(PasswordResetRequest, "reset_token", email, code, now)

    def reset_password(
        self,
        email: Any,
        token: Any,
        new_password: Any,
        ip: str | None = None,
        now: datetime | None = None,
    ) -> int:
        moment = now or datetime.now(timezone.utc)
        normalized = normalize_email(email)
        if not normalized or not token or not new_password:
            raise ValidationError("All fields are required.")
        if len(str(new_password)) < MIN_PASSWORD_LENGTH:
            raise unprocessable(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")

        session = self.session_factory()
        try:
            consumed = session.execute(
                update(PasswordResetRequest)
                .where(
                    PasswordResetRequest.email == normalized,
                    PasswordResetRequest.reset_token == str(token),
                    PasswordResetRequest.verified.is_(True),
                    PasswordResetRequest.used.is_(False),
                    PasswordResetRequest.token_expires_at > moment,
                )
                .values(used=True)
            )
            if consumed.rowcount != 1:
                session.rollback()
                raise ValidationError("Invalid or expired token.")
            user = session.scalars(select(User).where(User.email == normalized)).first()
            if user is None:
                session.rollback()
                raise ValidationError("User not found.")
            user.password_hash = argon2.hash(str(new_password))
            self._reset_failures(user)
            session.commit()
            account_id, role = user.id, user.role
        finally:
            session.close()

        closed = self.sessions.destroy_for_account(account_id)
        logger.info("password reset account_id=%s sessions_closed=%s", account_id, closed)
        self.audit.record("password_reset", normalized, role, ip, {"sessions_closed": closed})
        return account_id

    # -- helpers ------------------------------------------------------------

    def _verify_one_time_code(self, model, token_field: str, email: Any, code: Any, now: datetime | None) -> str:
        moment = now or datetime.now(timezone.utc)
        normalized = normalize_email(email)
        plain = str(code or "").strip()
        if not normalized or not plain:
            raise ValidationError("Email and code are required.")

        row = self._latest_active(model, normalized, moment)
        if row is None:
            raise ValidationError("Code expired or not found.")
        if row.verified:
            raise ValidationError("This code has already been used.")
        if not self._verify_password(plain, row.code_hash):
            raise ValidationError("Incorrect code.")

        token = secrets.token_hex(32)
        session = self.session_factory()
        try:
            result = session.execute(
                update(model)
                .where(model.id == row.id, model.verified.is_(False))
                .values({"verified": True, token_field: token, "token_expires_at": moment + self.token_ttl})
            )
            session.commit()
        finally:
            session.close()
        if result.rowcount != 1:
            raise ValidationError("This code has already been used.")
        return token

    def _verification_token_valid(self, email: str, token: str, moment: datetime) -> bool:
        session = self.session_factory()
        try:
            row = session.scalars(
                select(EmailVerification).where(
                    EmailVerification.email == email,
                    EmailVerification.verification_token == token,
                    EmailVerification.verified.is_(True),
                )
            ).first()
        finally:
            session.close()
        if row is None:
            return False
        expires = self._normalize_time(row.token_expires_at)
        return expires is not None and expires > moment

    def _latest_active(self, model, email: str, moment: datetime):
        session = self.session_factory()
        try:
            rows = session.scalars(select(model).where(model.email == email).order_by(model.id.desc())).all()
        finally:
            session.close()
        for row in rows:
            if getattr(row, "used", False):
                continue
            if self._normalize_time(row.expires_at) > moment:
                return row
        return None

    def _store_code(self, model, email: str, code: str, moment: datetime, limit: int) -> str | None:
        """Insert a code row unless ``email`` already has ``limit`` rows in the last hour.

        The count and the insert are one ``INSERT ... SELECT`` statement, so
        concurrent requests cannot both pass the check. Returns the stored
        hash, or None when the limit is reached.
        """
        code_hash = argon2.hash(code)
        recent = (
            select(func.count())
            .select_from(model)
            .where(model.email == email, model.created_at >= moment - timedelta(hours=1))
            .scalar_subquery()
        )
        source = select(
            literal(email, model.email.type),
            literal(code_hash, model.code_hash.type),
            literal(moment + self.code_ttl, model.expires_at.type),
            literal(False, model.verified.type),
            literal(moment, model.created_at.type),
        ).where(recent < limit)
        statement = insert(model).from_select(
            ["email", "code_hash", "expires_at", "verified", "created_at"], source
        )
        session = self.session_factory()
        try:
            result = session.execute(statement)
            session.commit()
        finally:
            session.close()
        if result.rowcount != 1:
            return None
        return code_hash

    def _delete_code(self, model, code_hash: str) -> None:
        session = self.session_factory()
        try:
            session.execute(delete(model).where(model.code_hash == code_hash))
            session.commit()
        finally:
            session.close()

    def _purge_expired(self, model, moment: datetime) -> None:
        # Rows inside the rate-limit window are kept even once expired.
        cutoff = moment - timedelta(hours=1)
        session = self.session_factory()
        try:
            session.execute(delete(model).where(model.expires_at < moment, model.created_at < cutoff))
            session.commit()
        finally:
            session.close()

    def _register_failure(self, session, user_id: int, moment: datetime) -> int:
        session.execute(
            update(User).where(User.id == user_id).values(failed_attempts=User.failed_attempts + 1)
        )
        attempts = session.execute(select(User.failed_attempts).where(User.id == user_id)).scalar() or 0
        if attempts >= self.max_failed_attempts:
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(locked_until=moment + timedelta(minutes=self.lockout_minutes))
            )
            logger.warning("account locked id=%s", user_id)
        session.commit()
        return max(0, self.max_failed_attempts - attempts)

    def _reset_failures(self, user: User) -> None:
        user.failed_attempts = 0
        user.locked_until = None

    def _verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return argon2.verify(password, password_hash)
        except ValueError:
            return False

    def _normalize_time(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
