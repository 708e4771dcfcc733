from __future__ import annotations

import logging
from typing import Any

from flask import Response

from fleetops.auth import ADMIN_ROLES, AuthGuard, AuthService, compute_fingerprint, role_message
from fleetops.core import RequestContext, Router
from fleetops.errors import AuthError, AuthorizationError, NotFoundError, ValidationError
from fleetops.repositories import AccountRepository

from .base import Controller, parse_id, protected

logger = logging.getLogger("fleetops.api.users")

RESET_GENERIC_MESSAGE = "If your email is valid, you will receive a reset code."


class UserController(Controller):
    def __init__(
        self,
        guard: AuthGuard,
        service: AuthService,
        accounts: AccountRepository,
        debug: bool = False,
    ) -> None:
        super().__init__(guard)
        self.service = service
        self.accounts = accounts
        self.debug = debug

    def register(self, router: Router) -> None:
        # Literal paths first: /users/{id} would otherwise capture "me" and friends.
        router.get("/users", self.index)
        router.post("/users/login", self.login)
        router.post("/users/logout", self.logout)
        router.get("/users/me", self.me)
        router.post("/users/check-email", self.check_email)
        router.post("/users/send-verification", self.send_verification)
        router.post("/users/verify-code", self.verify_code)
        router.post("/users/register", self.register_account)
        router.post("/users/forgot-password", self.forgot_password)
        router.post("/users/verify-reset-code", self.verify_reset_code)
        router.post("/users/reset-password", self.reset_password)
        router.get("/users/{id}", self.show)

    @protected(roles=ADMIN_ROLES)
    def index(self, ctx: RequestContext) -> Response:
        return self.respond(self.accounts.all())

    @protected()
    def show(self, ctx: RequestContext, id: str) -> Response:
        user_id = parse_id(id)
        session = ctx.session
        if user_id != session.account_id and session.role not in {role.value for role in ADMIN_ROLES}:
            raise AuthorizationError("Access denied.")
        account = self.accounts.find(user_id)
        if account is None:
            raise NotFoundError("User not found.")
        return self.respond(account)

    def me(self, ctx: RequestContext) -> Response:
        session = self.guard.require_auth(ctx)
        account = self.accounts.find(session.account_id)
        if account is None:
            self.guard.destroy(ctx)
            raise AuthError("Not authenticated.")
        return self.respond(account)

    def check_email(self, ctx: RequestContext) -> Response:
        self.service.check_email(ctx.json_body().get("email"))
        return self.respond({"ok": True, "message": "Email available."})

    def send_verification(self, ctx: RequestContext) -> Response:
        email = ctx.json_body().get("email")
        code = self.service.request_verification(email)
        payload: dict[str, Any] = {
            "ok": True,
            "message": "Verification code sent by email.",
            "expires_in": int(self.service.code_ttl.total_seconds()),
        }
        if self.debug:
            payload["debug"] = {"code": code}
        return self.respond(payload)

    def verify_code(self, ctx: RequestContext) -> Response:
        body = ctx.json_body()
        token = self.service.verify_code(body.get("email"), body.get("code"))
        return self.respond(
            {
                "ok": True,
                "message": "Email verified successfully.",
                "verification_token": token,
                "email": str(body.get("email") or "").strip(),
            }
        )

    def register_account(self, ctx: RequestContext) -> Response:
        self.guard.validate_csrf(ctx)
        granted_by = self.guard.require_auth(ctx).role if ctx.session is not None else None
        body = ctx.json_body()
        role = str(body.get("role") or "").strip() or None
        account = self.service.register(
            body.get("email"),
            body.get("password"),
            body.get("verification_token"),
            role=role,
            ip=ctx.client_ip,
            granted_by=granted_by,
        )
        return self.respond({"ok": True, "message": "Registration successful.", "user": account}, 201)

    def login(self, ctx: RequestContext) -> Response:
        body = ctx.json_body()
        account = self.service.attempt_login(body.get("email"), body.get("password"), ip=ctx.client_ip)
        ctx.session = self.service.open_session(
            account,
            compute_fingerprint(ctx.user_agent, ctx.client_ip),
            previous=ctx.session,
        )
        user = self.accounts.find(account["id"]) or account
        user["role_message"] = role_message(user.get("role"))
        logger.info("login account_id=%s role=%s", account["id"], account["role"])
        return self.respond(
            {
                "ok": True,
                "message": "Login successful.",
                "user": user,
                "csrf_token": ctx.session.csrf_token,
            }
        )

    def logout(self, ctx: RequestContext) -> Response:
        self.guard.validate_csrf(ctx)
        self.guard.destroy(ctx)
        return self.respond({"ok": True, "message": "Logged out."})

    def forgot_password(self, ctx: RequestContext) -> Response:
        code = self.service.request_password_reset(ctx.json_body().get("email"))
        payload: dict[str, Any] = {"ok": True, "message": RESET_GENERIC_MESSAGE}
        if code is not None and self.debug:
            payload["debug"] = {"code": code}
        return self.respond(payload)

    def verify_reset_code(self, ctx: RequestContext) -> Response:
        body = ctx.json_body()
        token = self.service.verify_reset_code(body.get("email"), body.get("code"))
        return self.respond(
            {
                "ok": True,
                "message": "Code verified successfully.",
                "reset_token": token,
                "email": str(body.get("email") or "").strip(),
            }
        )

    def reset_password(self, ctx: RequestContext) -> Response:
        body = ctx.json_body()
        fields = ("email", "reset_token", "new_password", "confirm_password")
        if any(not body.get(name) for name in fields):
            raise ValidationError("All fields are required.")
        if body["new_password"] != body["confirm_password"]:
            raise ValidationError("Passwords do not match.")
        account_id = self.service.reset_password(
            body["email"],
            body["reset_token"],
            body["new_password"],
            ip=ctx.client_ip,
        )
        if ctx.session is not None and ctx.session.account_id == account_id:
            ctx.session = None
        return self.respond({"ok": True, "message": "Password reset successfully."})
