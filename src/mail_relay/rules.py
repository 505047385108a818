"""
Forwarding rule and server settings value types.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field

# Characters rejected in file names on common filesystems, plus control chars.
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_identifier(value: str) -> str:
    """Replace every character that is invalid in a file name with '_'."""
    return _INVALID_FILENAME_CHARS.sub("_", value)


@dataclass(frozen=True)
class ForwardingRule:
    """
    One configured forwarding relationship: source mailbox -> destination address.

    Attributes:
        source_address: Mailbox to poll; also used as the SMTP login and envelope sender
        source_password: Credential for both POP3 and SMTP login (never logged)
        name: Display name of the destination recipient
        destination_address: Address every new message is relayed to
    """
    source_address: str
    source_password: str = field(repr=False)
    name: str
    destination_address: str

    @property
    def identifier(self) -> str:
        """File-system safe identifier, used to name the forwarded-ID store."""
        return sanitize_identifier(self.source_address + self.destination_address)


@dataclass(frozen=True)
class ReceiverSettings:
    pop3_server: str
    pop3_port: int
    use_ssl: bool


@dataclass(frozen=True)
class SenderSettings:
    smtp_server: str
    smtp_port: int
    use_ssl: bool
