"""
Async SMTP sender built on aiosmtplib.
"""

from __future__ import annotations
from email.message import EmailMessage

import aiosmtplib

from mail_relay.logging import logger
from mail_relay.rules import SenderSettings

# Reply codes meaning the server is dropping the session.
_SESSION_CLOSING_CODES = {421}


def is_connection_error(exc: BaseException) -> bool:
    """
    Whether a send failure broke the session itself rather than one message.

    Disconnects, timeouts and socket errors invalidate the handle; refused
    recipients or rejected data only affect the message being sent.
    """
    if isinstance(exc, (aiosmtplib.SMTPServerDisconnected, aiosmtplib.SMTPTimeoutError, OSError)):
        return True
    if isinstance(exc, aiosmtplib.SMTPResponseException):
        return exc.code in _SESSION_CLOSING_CODES
    return False


class SmtpSender:
    """One authenticated SMTP session."""

    def __init__(self, client: aiosmtplib.SMTP) -> None:
        self._client = client

    @classmethod
    async def connect(
        cls,
        settings: SenderSettings,
        address: str,
        password: str,
        timeout: float = 30.0,
    ) -> "SmtpSender":
        """
        Connect to the SMTP server and log in.

        With ``use_ssl`` the connection is implicit TLS; otherwise STARTTLS is
        negotiated when the server offers it. Certificates are not validated.

        Raises:
            aiosmtplib.SMTPException: On connection, TLS or authentication failures
        """
        client = aiosmtplib.SMTP(
            hostname=settings.smtp_server,
            port=settings.smtp_port,
            use_tls=settings.use_ssl,
            start_tls=False if settings.use_ssl else None,
            validate_certs=False,
            timeout=timeout,
        )
        await client.connect()
        sender = cls(client)
        try:
            await client.login(address, password)
        except BaseException:
            sender.close()
            raise
        logger.debug(f"SMTP login succeeded for {address} at {settings.smtp_server}:{settings.smtp_port}")
        return sender

    async def send(self, message: EmailMessage, sender: str, recipient: str) -> None:
        """
        Send ``message`` with an explicit envelope.

        Raises:
            aiosmtplib.SMTPRecipientsRefused: If the destination is refused
            aiosmtplib.SMTPException: On other delivery or session errors
        """
        await self._client.send_message(message, sender=sender, recipients=[recipient])

    async def disconnect(self, quit: bool = True) -> None:
        """End the session; QUIT is sent only when ``quit`` is set."""
        if quit and self._client.is_connected:
            try:
                await self._client.quit()
                return
            except aiosmtplib.SMTPException as e:
                logger.debug(f"SMTP QUIT failed, closing socket: {e}")
        self.close()

    def close(self) -> None:
        if self._client.is_connected:
            self._client.close()
