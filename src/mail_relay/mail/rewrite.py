"""
Envelope rewriting applied to a message before it is relayed.
"""

from __future__ import annotations
from email.headerregistry import Address
from email.message import EmailMessage


def original_sender(message: EmailMessage) -> Address:
    """
    Return the address the message was originally sent by.

    The ``Sender`` header wins; otherwise the first ``From`` address is used.

    Raises:
        ValueError: If the message has neither header
    """
    for header in ("Sender", "From"):
        value = message.get(header)
        addresses = getattr(value, "addresses", ()) if value is not None else ()
        if addresses:
            return addresses[0]
    raise ValueError("Message has neither a Sender nor a From address")


def rewrite_for_forwarding(message: EmailMessage, source_address: str) -> Address:
    """
    Rewrite the envelope headers in place so the relay account sends the message.

    ``Sender`` and ``Reply-To`` become the original sender and ``From`` becomes
    the source address, displayed with the original sender's name and address.
    Body and attachments are untouched.

    Returns:
        The original sender address.
    """
    sender = original_sender(message)
    display_name = f"{sender.display_name} {sender.addr_spec}".strip()
    del message["Sender"]
    del message["From"]
    del message["Reply-To"]
    message["Sender"] = sender
    message["From"] = Address(display_name=display_name, addr_spec=source_address)
    message["Reply-To"] = sender
    return sender
