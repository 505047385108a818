"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
PROJ_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJ_ROOT / "src"
for path in (SRC_DIR, PROJ_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from mail_relay.forwarder import AccountForwarder
from mail_relay.rules import ForwardingRule
from tests.mocks.mail_mock import MockMailServer


@pytest.fixture
def rule():
    """Sample forwarding rule."""
    return ForwardingRule(
        source_address="relay@example.com",
        source_password="s3cret",
        name="Bob Destination",
        destination_address="bob@example.org",
    )


@pytest.fixture
def other_rule():
    """Second forwarding rule for multi-account tests."""
    return ForwardingRule(
        source_address="sales@example.com",
        source_password="hunter2",
        name="Sales Team",
        destination_address="team@example.org",
    )


@pytest.fixture
def server():
    """Empty mock mail server for one account."""
    return MockMailServer()


@pytest.fixture
def make_forwarder(tmp_path):
    """Factory building a forwarder wired to a mock server with its store under tmp_path."""
    created = []

    def _make(rule: ForwardingRule, server: MockMailServer) -> AccountForwarder:
        forwarder = AccountForwarder(
            rule,
            connect_inbound=server.connect_inbound,
            connect_outbound=server.connect_outbound,
            store_path=tmp_path / rule.identifier,
        )
        created.append(forwarder)
        return forwarder

    yield _make

    for forwarder in created:
        if forwarder.store is not None:
            forwarder.store.close()
