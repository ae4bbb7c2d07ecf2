"""Fireflybot — Main entry point."""

import asyncio
import logging
from typing import Optional

from .channels import InboundMessage
from .channels.matrix import MatrixChannel
from .config import BotSettings
from .dispatch import Dispatcher
from .ledger import FireflyClient

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("fireflybot")


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level,
        format=_log_format,
        handlers=[logging.StreamHandler()],
    )
    # nio and httpx are chatty at INFO (every sync / every request)
    logging.getLogger("nio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def run(settings: BotSettings):
    """Start the bot and run until the sync loop ends or is cancelled.

    Login and initial sync errors propagate; they are fatal.
    """
    queue: asyncio.Queue[Optional[InboundMessage]] = asyncio.Queue()

    async with FireflyClient(
        settings.firefly_url,
        settings.firefly_api_key,
        timeout=settings.firefly_timeout,
    ) as ledger:
        channel = MatrixChannel(
            settings.matrix_homeserver_url,
            settings.matrix_username,
            settings.matrix_password,
            settings.matrix_room_id,
            queue,
            store_path=settings.store_path,
        )
        dispatcher = Dispatcher(
            ledger,
            channel,
            source_account_id=settings.firefly_source_account_id,
            max_concurrency=settings.max_concurrency,
        )

        consumer: Optional[asyncio.Task] = None
        try:
            await channel.start()
            consumer = asyncio.create_task(dispatcher.run(queue))
            await channel.listen()
        finally:
            if consumer:
                # Let already-received messages finish before closing clients
                queue.put_nowait(None)
                await consumer
            await channel.stop()

    logger.info("Exiting")
