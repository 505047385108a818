"""
Unit tests for envelope rewriting.
"""

from email.message import EmailMessage

import pytest

from mail_relay.mail.rewrite import original_sender, rewrite_for_forwarding
from tests.mocks.mail_mock import make_message


class TestOriginalSender:

    def test_uses_first_from_address(self):
        msg = make_message("1", from_="Alice Example <alice@example.com>, carol@example.com")
        sender = original_sender(msg)
        assert sender.addr_spec == "alice@example.com"
        assert sender.display_name == "Alice Example"

    def test_sender_header_takes_precedence(self):
        msg = make_message("1", from_="alice@example.com", sender="Mailer <mailer@lists.example.com>")
        assert original_sender(msg).addr_spec == "mailer@lists.example.com"

    def test_missing_addresses_raise(self):
        msg = EmailMessage()
        msg["Subject"] = "No sender"
        with pytest.raises(ValueError):
            original_sender(msg)


class TestRewriteForForwarding:

    def test_headers_are_rewritten(self):
        msg = make_message("1")
        msg["Reply-To"] = "someone-else@example.com"

        rewrite_for_forwarding(msg, "relay@example.com")

        assert msg["From"].addresses[0].addr_spec == "relay@example.com"
        assert msg["From"].addresses[0].display_name == "Alice Example alice@example.com"
        assert msg["Sender"].address.addr_spec == "alice@example.com"
        assert [a.addr_spec for a in msg["Reply-To"].addresses] == ["alice@example.com"]
        assert len(msg.get_all("From")) == 1
        assert len(msg.get_all("Reply-To")) == 1

    def test_sender_without_display_name(self):
        msg = make_message("1", from_="alice@example.com")
        rewrite_for_forwarding(msg, "relay@example.com")
        assert msg["From"].addresses[0].display_name == "alice@example.com"

    def test_body_and_other_headers_untouched(self):
        msg = make_message("1")
        body = msg.get_content()

        rewrite_for_forwarding(msg, "relay@example.com")

        assert msg.get_content() == body
        assert msg["Subject"] == "Message 1"
        assert msg["To"] == "relay@example.com"

    def test_returns_original_sender(self):
        msg = make_message("1")
        assert rewrite_for_forwarding(msg, "relay@example.com").addr_spec == "alice@example.com"
