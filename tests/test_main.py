"""Tests for bot wiring and shutdown order in fireflybot.main.run."""

import asyncio

import pytest
from unittest.mock import patch

from fireflybot.channels import ChannelError, InboundMessage
from fireflybot.config import BotSettings
from fireflybot.main import run


@pytest.fixture
def settings():
    return BotSettings(
        matrix_homeserver_url="https://matrix.example.org",
        matrix_username="bot",
        matrix_password="hunter2",
        matrix_room_id="!room:example.org",
        firefly_url="https://firefly.example.org",
        firefly_api_key="token",
        firefly_source_account_id=2,
    )


def _add_message(event_id: str = "$add") -> InboundMessage:
    return InboundMessage(
        room_id="!room:example.org",
        event_id=event_id,
        sender="@alice:example.org",
        sender_name="alice",
        timestamp_ms=1709296200000,
        body="!add Food: 3 #lunch",
    )


class Recorder:
    """Shared event log plus fake channel/ledger classes writing to it."""

    def __init__(self, start_error=None, block_listen=False):
        self.events = []
        self.queue = None
        self.start_error = start_error
        self.block_listen = block_listen
        self.ledger_delay = 0.05

    def channel_factory(self, *args, **kwargs):
        recorder = self
        recorder.queue = args[4]

        class FakeChannel:
            async def start(self):
                recorder.events.append("start")
                if recorder.start_error:
                    raise recorder.start_error

            async def listen(self):
                recorder.events.append("listen")
                recorder.queue.put_nowait(_add_message())
                if recorder.block_listen:
                    await asyncio.Event().wait()
                # Give the consumer a chance to pick the message up
                await asyncio.sleep(0)

            async def stop(self):
                recorder.events.append("stop")

            async def send_message(self, room_id, text):
                recorder.events.append(f"reply:{text}")

            async def send_reaction(self, room_id, event_id, key):
                recorder.events.append(f"react:{event_id}:{key}")

        return FakeChannel()

    def ledger_factory(self, *args, **kwargs):
        recorder = self

        class FakeLedger:
            async def __aenter__(self):
                recorder.events.append("ledger-open")
                return self

            async def __aexit__(self, *exc):
                recorder.events.append("ledger-close")

            async def create_transaction(self, transaction):
                await asyncio.sleep(recorder.ledger_delay)
                recorder.events.append(f"create:{transaction.description}")

            async def list_categories(self):
                return []

        return FakeLedger()

    def patches(self):
        return (
            patch("fireflybot.main.MatrixChannel", side_effect=self.channel_factory),
            patch("fireflybot.main.FireflyClient", side_effect=self.ledger_factory),
        )


@pytest.mark.asyncio
async def test_normal_return_drains_before_stop(settings):
    recorder = Recorder()
    channel_patch, ledger_patch = recorder.patches()
    with channel_patch, ledger_patch:
        await asyncio.wait_for(run(settings), timeout=5)

    assert recorder.events == [
        "ledger-open",
        "start",
        "listen",
        "create:Food by alice",
        "react:$add:✅",
        "stop",
        "ledger-close",
    ]
    # Sentinel consumed, nothing left behind
    assert recorder.queue.empty()


@pytest.mark.asyncio
async def test_cancel_drains_in_flight_before_stop(settings):
    recorder = Recorder(block_listen=True)
    channel_patch, ledger_patch = recorder.patches()
    with channel_patch, ledger_patch:
        task = asyncio.create_task(run(settings))
        for _ in range(100):
            if "listen" in recorder.events:
                break
            await asyncio.sleep(0.01)
        # Let the consumer start the slow ledger call
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)

    assert recorder.events.index("react:$add:✅") < recorder.events.index("stop")
    assert recorder.events[-2:] == ["stop", "ledger-close"]


@pytest.mark.asyncio
async def test_login_failure_propagates_and_cleans_up(settings):
    recorder = Recorder(start_error=ChannelError("Matrix login failed: M_FORBIDDEN"))
    channel_patch, ledger_patch = recorder.patches()
    with channel_patch, ledger_patch:
        with pytest.raises(ChannelError, match="login failed"):
            await asyncio.wait_for(run(settings), timeout=5)

    # No listening and no consumer; channel and ledger still closed
    assert recorder.events == ["ledger-open", "start", "stop", "ledger-close"]


@pytest.mark.asyncio
async def test_channel_built_from_settings(settings, tmp_path):
    settings = settings.model_copy(update={"store_path": tmp_path})
    recorder = Recorder()
    channel_patch, ledger_patch = recorder.patches()
    with channel_patch as channel_cls, ledger_patch as ledger_cls:
        await asyncio.wait_for(run(settings), timeout=5)

    args, kwargs = channel_cls.call_args
    assert args[:4] == ("https://matrix.example.org", "bot", "hunter2", "!room:example.org")
    assert kwargs["store_path"] == tmp_path
    ledger_args, ledger_kwargs = ledger_cls.call_args
    assert ledger_args == ("https://firefly.example.org", "token")
    assert ledger_kwargs["timeout"] == 30.0
