"""
Async POP3 mailbox built on poplib.

poplib is blocking, so every server round trip runs in the default executor.
"""

from __future__ import annotations
import asyncio
import poplib
from email.message import EmailMessage
from email.parser import BytesParser
from email.policy import default as default_policy
from typing import Callable, List, Sequence, TypeVar

from mail_relay.logging import logger
from mail_relay.mail.base import insecure_ssl_context
from mail_relay.rules import ReceiverSettings

T = TypeVar("T")


def _open_client(settings: ReceiverSettings, timeout: float) -> poplib.POP3:
    context = insecure_ssl_context()
    if settings.use_ssl:
        return poplib.POP3_SSL(settings.pop3_server, settings.pop3_port, timeout=timeout, context=context)

    client = poplib.POP3(settings.pop3_server, settings.pop3_port, timeout=timeout)
    try:
        try:
            capabilities = client.capa()
        except poplib.error_proto:
            # Server does not implement CAPA; stay on the plain connection.
            return client
        if "STLS" in capabilities:
            client.stls(context=context)
    except BaseException:
        client.close()
        raise
    return client


class Pop3Mailbox:
    """
    One authenticated POP3 session.

    Message indices are 0-based positions in the list returned by
    ``list_uids()``; they map to POP3 message numbers ``index + 1``.
    """

    def __init__(self, client: poplib.POP3) -> None:
        self._client = client
        self._parser = BytesParser(policy=default_policy)

    @classmethod
    async def connect(
        cls,
        settings: ReceiverSettings,
        address: str,
        password: str,
        timeout: float = 30.0,
    ) -> "Pop3Mailbox":
        """
        Connect to the POP3 server and log in.

        Raises:
            OSError: On network or TLS failures
            poplib.error_proto: If the server rejects the login
        """
        loop = asyncio.get_event_loop()
        client = await loop.run_in_executor(None, lambda: _open_client(settings, timeout))
        mailbox = cls(client)
        try:
            await mailbox._run(client.user, address)
            await mailbox._run(client.pass_, password)
        except BaseException:
            mailbox.close()
            raise
        logger.debug(f"POP3 login succeeded for {address} at {settings.pop3_server}:{settings.pop3_port}")
        return mailbox

    async def _run(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    async def list_uids(self) -> List[str]:
        """Return the unique id of every message, in mailbox order."""
        _, lines, _ = await self._run(self._client.uidl)
        numbered = []
        for line in lines:
            number, uid = line.decode("ascii", errors="replace").split(" ", 1)
            numbered.append((int(number), uid.strip()))
        numbered.sort()
        return [uid for _, uid in numbered]

    async def fetch(self, indices: Sequence[int]) -> List[EmailMessage]:
        """Retrieve and parse the messages at the given indices, in the given order."""
        messages: List[EmailMessage] = []
        for index in indices:
            _, lines, _ = await self._run(self._client.retr, index + 1)
            messages.append(self._parser.parsebytes(b"\r\n".join(lines)))
        return messages

    async def disconnect(self, quit: bool = True) -> None:
        """End the session; QUIT is sent only when ``quit`` is set."""
        if quit:
            try:
                await self._run(self._client.quit)
                return
            except (OSError, poplib.error_proto) as e:
                logger.debug(f"POP3 QUIT failed, closing socket: {e}")
        self.close()

    def close(self) -> None:
        try:
            self._client.close()
        except OSError as e:
            logger.debug(f"Error closing POP3 socket: {e}")
