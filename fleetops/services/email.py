from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from fleetops.config import Settings

logger = logging.getLogger("fleetops.email")


class EmailDeliveryError(RuntimeError):
    pass


class EmailService:
    def __init__(
        self,
        host: str,
        mail_from: str,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        timeout_seconds: float = 15,
    ) -> None:
        self.host = host
        self.mail_from = mail_from
        self.port = port
        self.user = user
        self.password = password
        self.starttls = starttls
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            host=settings.smtp_host,
            mail_from=settings.mail_from,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
        )

    def send_verification_code(self, email: str, code: str) -> None:
        subject = "Your FleetOps verification code"
        body = (
            "Hello,\n\n"
            f"Your verification code is: {code}\n\n"
            "This code expires in 10 minutes.\n"
            "If you did not request an account, ignore this message.\n"
        )
        self.send(email, subject, body)

    def send_password_reset_code(self, email: str, code: str) -> None:
        subject = "FleetOps password reset"
        body = (
            "Hello,\n\n"
            f"Your password reset code is: {code}\n\n"
            "This code expires in 10 minutes.\n"
            "If you did not ask to reset your password, ignore this message.\n"
        )
        self.send(email, subject, body)

    def send(self, email: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.mail_from
        message["To"] = email.strip()
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                if self.starttls:
                    server.starttls()
                if self.user:
                    server.login(self.user, self.password or "")
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("smtp delivery failed host=%s error=%s", self.host, exc)
            raise EmailDeliveryError(str(exc)) from exc
        logger.info("mail sent subject=%r", subject)
