"""Pytest configuration and shared fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from fireflybot.channels import InboundMessage

# 2024-03-01T12:30:00Z
TIMESTAMP_MS = 1709296200000


@pytest.fixture
def make_message():
    """Factory for inbound room messages."""
    def _make(body: str, **overrides) -> InboundMessage:
        fields = dict(
            room_id="!room:example.org",
            event_id="$event1",
            sender="@alice:example.org",
            sender_name="alice",
            timestamp_ms=TIMESTAMP_MS,
            body=body,
            msgtype="m.text",
        )
        fields.update(overrides)
        return InboundMessage(**fields)
    return _make


@pytest.fixture
def channel():
    """Chat channel double recording replies and reactions."""
    mock = MagicMock()
    mock.send_message = AsyncMock(return_value=None)
    mock.send_reaction = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def ledger():
    """Ledger gateway double that succeeds by default."""
    mock = MagicMock()
    mock.create_transaction = AsyncMock(return_value=None)
    mock.list_categories = AsyncMock(return_value=["Food", "Rent"])
    return mock
