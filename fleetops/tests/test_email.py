from __future__ import annotations

import smtplib
import unittest
from unittest.mock import MagicMock, patch

from fleetops.services import EmailDeliveryError, EmailService
from fleetops.tests.support import make_settings


class EmailServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.service = EmailService.from_settings(make_settings(smtp_user="mailer", smtp_password="secret"))

    @patch("fleetops.services.email.smtplib.SMTP")
    def test_sends_verification_code(self, smtp_class: MagicMock) -> None:
        server = smtp_class.return_value.__enter__.return_value

        self.service.send_verification_code("new@example.com", "123456")

        smtp_class.assert_called_once_with("localhost", 587, timeout=15)
        server.starttls.assert_called_once_with()
        server.login.assert_called_once_with("mailer", "secret")
        message = server.send_message.call_args.args[0]
        self.assertEqual(message["To"], "new@example.com")
        self.assertEqual(message["From"], "noreply@example.com")
        self.assertIn("123456", message.get_content())

    @patch("fleetops.services.email.smtplib.SMTP")
    def test_delivery_errors_are_wrapped(self, smtp_class: MagicMock) -> None:
        smtp_class.return_value.__enter__.return_value.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

        with self.assertRaises(EmailDeliveryError):
            self.service.send_password_reset_code("user@example.com", "654321")

    @patch("fleetops.services.email.smtplib.SMTP", side_effect=ConnectionRefusedError("refused"))
    def test_connection_errors_are_wrapped(self, _smtp_class: MagicMock) -> None:
        with self.assertRaises(EmailDeliveryError):
            self.service.send_verification_code("user@example.com", "123456")


if __name__ == "__main__":
    unittest.main()
