"""Command grammar — turns chat text like ``!add Food: $12 lunch #work`` into commands.

Grammar:
    !ping
    !help
    !categories
    !add <Category>: <Amount> [Note] [#Tag...]

Parsing is pure: the same text always yields the same command or the same
error. Errors are ``ParseError`` subclasses whose message is the exact text
relayed back into the conversation.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Optional, Union

COMMAND_PREFIX = "!"

ADD_CMD = "!add"
CATEGORIES_CMD = "!categories"
HELP_CMD = "!help"
PING_CMD = "!ping"

ADD_USAGE = "!add <Category>: <Amount> [Note] [#Tag...]"
INVALID_ARGS = "Invalid arguments."

_AMOUNT_RE = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")

HELP_TEXT = (
    "Available commands:\n"
    f" - {ADD_USAGE}\n"
    f" - {CATEGORIES_CMD}\n"
    f" - {HELP_CMD}\n"
    f" - {PING_CMD}"
)


# ============================================================
# ERRORS
# ============================================================

class ParseError(Exception):
    """Base class for command parse failures. ``str(e)`` is user-facing."""
    pass


class UnknownCommand(ParseError):
    def __init__(self, verb: str):
        self.verb = verb
        super().__init__(f"Unknown command: {verb}")


class InvalidArguments(ParseError):
    def __init__(self):
        super().__init__(f"{INVALID_ARGS} Usage: {ADD_USAGE}")


class InvalidAmount(ParseError):
    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Invalid amount: {token}")


# ============================================================
# COMMANDS
# ============================================================

@dataclass(frozen=True)
class AddRequest:
    category: str
    amount: float
    note: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class Help:
    pass


@dataclass(frozen=True)
class ListCategories:
    pass


@dataclass(frozen=True)
class Add:
    request: AddRequest


Command = Union[Ping, Help, ListCategories, Add]


def is_command(text: str) -> bool:
    """Whether a message body is addressed to the bot at all."""
    return text.startswith(COMMAND_PREFIX)


def parse(text: str) -> Command:
    """Parse a full message body into a command.

    Args:
        text: Message body, already known to start with ``!``

    Returns:
        One of Ping, Help, ListCategories, Add

    Raises:
        ParseError: Unknown verb or malformed ``!add`` arguments
    """
    verb, _, args = text.partition(" ")

    if verb == HELP_CMD:
        return Help()
    if verb == PING_CMD:
        return Ping()
    if verb == CATEGORIES_CMD:
        return ListCategories()
    if verb == ADD_CMD:
        return Add(parse_add_args(args))

    raise UnknownCommand(verb)


def parse_add_args(args: str) -> AddRequest:
    """Parse ``<Category>: <Amount> [Note] [#Tag...]``.

    The first ``:`` separates the category from the rest, so a category can
    never contain ``:``. A ``#`` inside the category is kept as-is.
    """
    category, sep, rest = args.partition(":")
    if not sep:
        raise InvalidArguments()

    amount_token, _, tail = rest.strip().partition(" ")
    note, tags = split_tail(tail)

    amount_text = amount_token.strip()
    if amount_text.startswith("$"):
        amount_text = amount_text[1:].strip()

    category = category.strip()
    if not category or not amount_text:
        raise InvalidArguments()

    # float() alone would also take "1_000", "nan" and non-ASCII digits
    if not _AMOUNT_RE.fullmatch(amount_text):
        raise InvalidAmount(amount_text)

    amount = float(amount_text)
    if not math.isfinite(amount):
        raise InvalidAmount(amount_text)

    return AddRequest(category=category, amount=amount, note=note, tags=tags)


def split_tail(tail: str) -> tuple[Optional[str], tuple[str, ...]]:
    """Split the free-text tail after the amount into (note, tags).

    Text before the first ``#`` is the note; every ``#`` starts a tag.
    A tail that starts with ``#`` has no note. Empty tags are dropped.

    >>> split_tail("lunch with Bob #work # #team")
    ('lunch with Bob', ('work', 'team'))
    """
    tail = tail.strip()
    if not tail:
        return None, ()

    parts = [part.strip() for part in tail.split("#")]
    parts = [part for part in parts if part]

    if tail.startswith("#"):
        return None, tuple(parts)
    return parts[0], tuple(parts[1:])
