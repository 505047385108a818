"""
Unit tests for SMTP error classification and session handling.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from mail_relay.mail.smtp import SmtpSender, is_connection_error
from mail_relay.rules import SenderSettings


class TestIsConnectionError:

    @pytest.mark.parametrize("exc", [
        aiosmtplib.SMTPServerDisconnected("gone"),
        aiosmtplib.SMTPTimeoutError("slow"),
        ConnectionResetError("reset"),
        aiosmtplib.SMTPResponseException(421, "closing channel"),
    ])
    def test_session_errors(self, exc):
        assert is_connection_error(exc) is True

    @pytest.mark.parametrize("exc", [
        aiosmtplib.SMTPDataError(554, "rejected"),
        aiosmtplib.SMTPRecipientsRefused([]),
        ValueError("no sender"),
    ])
    def test_message_errors(self, exc):
        assert is_connection_error(exc) is False


class TestSmtpSender:

    @pytest.mark.asyncio
    async def test_connect_uses_implicit_tls_without_cert_validation(self):
        settings = SenderSettings("smtp.example.com", 465, True)
        with patch("mail_relay.mail.smtp.aiosmtplib.SMTP") as smtp_cls:
            client = smtp_cls.return_value
            client.connect = AsyncMock()
            client.login = AsyncMock()

            await SmtpSender.connect(settings, "relay@example.com", "pw", timeout=5)

        kwargs = smtp_cls.call_args.kwargs
        assert kwargs["use_tls"] is True
        assert kwargs["start_tls"] is False
        assert kwargs["validate_certs"] is False
        client.login.assert_awaited_once_with("relay@example.com", "pw")

    @pytest.mark.asyncio
    async def test_login_failure_closes_connection(self):
        settings = SenderSettings("smtp.example.com", 587, False)
        with patch("mail_relay.mail.smtp.aiosmtplib.SMTP") as smtp_cls:
            client = smtp_cls.return_value
            client.connect = AsyncMock()
            client.login = AsyncMock(side_effect=aiosmtplib.SMTPAuthenticationError(535, "bad credentials"))
            client.is_connected = True

            with pytest.raises(aiosmtplib.SMTPAuthenticationError):
                await SmtpSender.connect(settings, "relay@example.com", "pw")

        assert smtp_cls.call_args.kwargs["start_tls"] is None
        client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_uses_explicit_envelope(self):
        client = MagicMock()
        client.send_message = AsyncMock()
        sender = SmtpSender(client)
        message = MagicMock()

        await sender.send(message, "relay@example.com", "bob@example.org")

        client.send_message.assert_awaited_once_with(
            message, sender="relay@example.com", recipients=["bob@example.org"]
        )

    @pytest.mark.asyncio
    async def test_disconnect_falls_back_to_close(self):
        client = MagicMock()
        client.is_connected = True
        client.quit = AsyncMock(side_effect=aiosmtplib.SMTPServerDisconnected("gone"))
        await SmtpSender(client).disconnect()
        client.close.assert_called_once()
