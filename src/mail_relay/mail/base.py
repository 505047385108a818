"""
Interfaces of the inbound and outbound mail handles used by the forwarder.
"""

from __future__ import annotations
import ssl
from email.message import EmailMessage
from typing import List, Protocol, Sequence


class InboundMailbox(Protocol):
    """A connected, authenticated mailbox session."""
    async def list_uids(self) -> List[str]: ...
    async def fetch(self, indices: Sequence[int]) -> List[EmailMessage]: ...
    async def disconnect(self, quit: bool = True) -> None: ...


class OutboundSender(Protocol):
    """A connected, authenticated submission session."""
    async def send(self, message: EmailMessage, sender: str, recipient: str) -> None: ...
    async def disconnect(self, quit: bool = True) -> None: ...


def insecure_ssl_context() -> ssl.SSLContext:
    """TLS context that accepts any server certificate."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context
