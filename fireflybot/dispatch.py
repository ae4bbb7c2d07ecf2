"""Dispatch loop — routes inbound chat messages to command handlers.

Per message:  filter → parse → route → reply or react.

Every processed message ends in exactly one Outcome. Nothing is kept
between messages; the only shared objects are the read-only settings,
the ledger gateway and the chat channel.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Union

from .channels import ChatChannel, InboundMessage
from .commands import (
    Add,
    Command,
    Help,
    HELP_TEXT,
    ListCategories,
    ParseError,
    Ping,
    is_command,
    parse,
)
from .ledger import LedgerError, LedgerGateway
from .transaction import GENERAL_EXPENSE, synthesize

logger = logging.getLogger("fireflybot.dispatch")

PONG = "pong"
CATEGORIES_HEADER = "Categories:"
CATEGORIES_FAILED = "Failed to list categories"

REACTION_SUCCESS = "✅"
REACTION_FAILURE = "❌"

DEFAULT_MAX_CONCURRENCY = 16


class Outcome(str, Enum):
    IGNORED = "ignored"
    REPLIED = "replied"
    REPLIED_WITH_ERROR = "replied-with-error"
    REACTED_SUCCESS = "reacted-success"
    REACTED_FAILURE = "reacted-failure"


def format_categories(names: list[str]) -> str:
    """Header plus one ' - name' line per category; header only when empty."""
    if not names:
        return CATEGORIES_HEADER
    return CATEGORIES_HEADER + "\n - " + "\n - ".join(names)


class Dispatcher:
    """Consumes InboundMessages and drives the command state machine.

    Usage:
        dispatcher = Dispatcher(ledger, channel, source_account_id=1)
        await dispatcher.run(queue)   # until None is put on the queue
    """

    def __init__(
        self,
        ledger: LedgerGateway,
        channel: ChatChannel,
        source_account_id: int,
        destination_name: str = GENERAL_EXPENSE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.ledger = ledger
        self.channel = channel
        self.source_account_id = source_account_id
        self.destination_name = destination_name
        self._slots = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: set[asyncio.Task] = set()

    # ═══════════════════════════════════════════════════════════════
    # CONSUMER LOOP
    # ═══════════════════════════════════════════════════════════════

    async def run(self, queue: "asyncio.Queue[Optional[InboundMessage]]"):
        """Consume the queue until a ``None`` sentinel arrives.

        Filtering and parsing happen here, in receipt order. Routing of each
        accepted message runs in its own task, so a slow ledger call never
        holds up the next message. At most ``max_concurrency`` messages are
        being routed at once; beyond that the loop waits for a free slot
        before taking more from the queue. Ignored chatter never takes a slot.
        """
        logger.info("Dispatcher started")
        try:
            while True:
                message = await queue.get()
                try:
                    if message is None:
                        break
                    if not self.accepts(message):
                        continue
                    command = self.interpret(message)
                    await self._slots.acquire()
                    task = asyncio.create_task(self._route_in_slot(message, command))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                finally:
                    queue.task_done()
        finally:
            await self.drain()
            logger.info("Dispatcher stopped")

    async def drain(self):
        """Wait for all in-flight messages to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _route_in_slot(self, message: InboundMessage, command: Union[Command, ParseError]):
        try:
            await self.route(message, command)
        except Exception as e:
            logger.error(f"Failed to process message {message.event_id}: {e}", exc_info=True)
        finally:
            self._slots.release()

    # ═══════════════════════════════════════════════════════════════
    # PER-MESSAGE STATE MACHINE
    # ═══════════════════════════════════════════════════════════════

    def accepts(self, message: InboundMessage) -> bool:
        """Filter stage: plain-text messages starting with ``!``."""
        logger.debug(f"Received event: {message}")
        return message.is_text and is_command(message.body)

    def interpret(self, message: InboundMessage) -> Union[Command, ParseError]:
        """Parse stage. A parse failure is returned, not raised."""
        try:
            command = parse(message.body)
        except ParseError as e:
            logger.info(f"Rejected '{message.body}' from {message.sender}: {e}")
            return e

        logger.info(f"Received command from {message.sender}: {command}")
        return command

    async def handle(self, message: InboundMessage) -> Outcome:
        """Filter, parse and route one message.

        Returns:
            The terminal Outcome for this message
        """
        if not self.accepts(message):
            return Outcome.IGNORED
        return await self.route(message, self.interpret(message))

    async def route(self, message: InboundMessage, command: Union[Command, ParseError]) -> Outcome:
        """Route stage: act on a parsed command, or relay its parse error."""
        if isinstance(command, ParseError):
            await self._reply(message, str(command))
            return Outcome.REPLIED_WITH_ERROR

        if isinstance(command, Ping):
            await self._reply(message, PONG)
            return Outcome.REPLIED
        if isinstance(command, Help):
            await self._reply(message, HELP_TEXT)
            return Outcome.REPLIED
        if isinstance(command, ListCategories):
            return await self._list_categories(message)
        if isinstance(command, Add):
            return await self._add_expense(message, command)

        raise TypeError(f"Unhandled command: {command!r}")

    async def _list_categories(self, message: InboundMessage) -> Outcome:
        try:
            names = await self.ledger.list_categories()
        except LedgerError as e:
            logger.error(f"Failed to list categories: {e}")
            await self._reply(message, CATEGORIES_FAILED)
            return Outcome.REPLIED
        except Exception as e:
            logger.error(f"Failed to list categories: {type(e).__name__}: {e}", exc_info=True)
            await self._reply(message, CATEGORIES_FAILED)
            return Outcome.REPLIED

        await self._reply(message, format_categories(names))
        return Outcome.REPLIED

    async def _add_expense(self, message: InboundMessage, command: Add) -> Outcome:
        transaction = synthesize(
            command.request,
            sender=message.sender_name,
            timestamp=message.timestamp_ms,
            source_account_id=self.source_account_id,
            destination_name=self.destination_name,
        )

        try:
            await self.ledger.create_transaction(transaction)
        except LedgerError as e:
            logger.error(f"{e}")
            await self._react(message, REACTION_FAILURE)
            return Outcome.REACTED_FAILURE
        except Exception as e:
            logger.error(f"Failed to add transaction: {type(e).__name__}: {e}", exc_info=True)
            await self._react(message, REACTION_FAILURE)
            return Outcome.REACTED_FAILURE

        await self._react(message, REACTION_SUCCESS)
        return Outcome.REACTED_SUCCESS

    # ── Outbound (failures are logged, never retried) ───────

    async def _reply(self, message: InboundMessage, text: str):
        try:
            await self.channel.send_message(message.room_id, text)
        except Exception as e:
            logger.error(f"Failed to send reply to {message.room_id}: {e}")

    async def _react(self, message: InboundMessage, key: str):
        try:
            await self.channel.send_reaction(message.room_id, message.event_id, key)
        except Exception as e:
            logger.error(f"Failed to send reaction {key} to {message.event_id}: {e}")
