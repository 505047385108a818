"""
In-memory POP3/SMTP fakes for testing the forwarder and scheduler.
"""

from email import message_from_bytes
from email.message import EmailMessage
from email.policy import default as default_policy
from typing import Dict, List, Optional, Sequence, Set, Tuple

import aiosmtplib


def make_message(
    uid: str,
    from_: str = "Alice Example <alice@example.com>",
    sender: Optional[str] = None,
    subject: Optional[str] = None,
) -> EmailMessage:
    """Build a simple message whose subject identifies it by uid."""
    msg = EmailMessage()
    msg["From"] = from_
    if sender:
        msg["Sender"] = sender
    msg["To"] = "relay@example.com"
    msg["Subject"] = subject or f"Message {uid}"
    msg.set_content(f"Body of {uid}\n")
    return msg


class MockMailServer:
    """
    One account's mailbox plus an SMTP endpoint recording what was sent.

    Failure switches:
        fail_inbound_connect / fail_outbound_connect: login raises
        fail_list / fail_fetch: mailbox operations raise ConnectionError
        reject_subjects: messages with these subjects are refused (message-level error)
        drop_after_sends: the SMTP session drops after this many successful sends
    """

    def __init__(self, messages: Optional[Sequence[Tuple[str, EmailMessage]]] = None):
        self.mailbox: List[Tuple[str, bytes]] = [(uid, msg.as_bytes()) for uid, msg in messages or []]
        self.sent: List[Tuple[EmailMessage, str, str]] = []
        self.fail_inbound_connect = False
        self.fail_outbound_connect = False
        self.fail_list = False
        self.fail_fetch = False
        self.reject_subjects: Set[str] = set()
        self.drop_after_sends: Optional[int] = None
        self.connects: Dict[str, int] = {"inbound": 0, "outbound": 0}
        self.disconnects: List[Tuple[str, bool]] = []
        self.fetched: List[List[int]] = []

    def add(self, uid: str, message: Optional[EmailMessage] = None) -> None:
        self.mailbox.append((uid, (message or make_message(uid)).as_bytes()))

    @property
    def sent_subjects(self) -> List[str]:
        return [str(msg["Subject"]) for msg, _, _ in self.sent]

    async def connect_inbound(self) -> "MockMailbox":
        self.connects["inbound"] += 1
        if self.fail_inbound_connect:
            raise ConnectionRefusedError("POP3 server unavailable")
        return MockMailbox(self)

    async def connect_outbound(self) -> "MockSender":
        self.connects["outbound"] += 1
        if self.fail_outbound_connect:
            raise aiosmtplib.SMTPAuthenticationError(535, "Authentication failed")
        return MockSender(self)


class MockMailbox:
    def __init__(self, server: MockMailServer):
        self.server = server

    async def list_uids(self) -> List[str]:
        if self.server.fail_list:
            raise ConnectionResetError("Connection reset while listing")
        return [uid for uid, _ in self.server.mailbox]

    async def fetch(self, indices: Sequence[int]) -> List[EmailMessage]:
        if self.server.fail_fetch:
            raise ConnectionResetError("Connection reset while fetching")
        self.server.fetched.append(list(indices))
        return [message_from_bytes(self.server.mailbox[i][1], policy=default_policy) for i in indices]

    async def disconnect(self, quit: bool = True) -> None:
        self.server.disconnects.append(("inbound", quit))


class MockSender:
    def __init__(self, server: MockMailServer):
        self.server = server
        self.sends = 0

    async def send(self, message: EmailMessage, sender: str, recipient: str) -> None:
        if self.server.drop_after_sends is not None and self.sends >= self.server.drop_after_sends:
            raise aiosmtplib.SMTPServerDisconnected("Connection lost")
        if str(message["Subject"]) in self.server.reject_subjects:
            raise aiosmtplib.SMTPDataError(554, "Message rejected")
        self.sends += 1
        self.server.sent.append((message, sender, recipient))

    async def disconnect(self, quit: bool = True) -> None:
        self.server.disconnects.append(("outbound", quit))
