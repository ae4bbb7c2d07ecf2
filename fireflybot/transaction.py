"""Transaction synthesis — maps an ``!add`` request onto a ledger withdrawal."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from .commands import AddRequest

WITHDRAWAL = "withdrawal"
GENERAL_EXPENSE = "General expense"


@dataclass(frozen=True)
class LedgerTransaction:
    """A single withdrawal as sent to the ledger backend."""

    type: str
    date: datetime
    amount: float
    description: str
    category_name: str
    source_id: int
    destination_name: str
    tags: tuple[str, ...]
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "date": self.date.isoformat(),
            "amount": self.amount,
            "description": self.description,
            "category_name": self.category_name,
            "source_id": self.source_id,
            "destination_name": self.destination_name,
            "tags": list(self.tags),
        }
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    def to_payload(self) -> dict:
        """Request body for ``POST /api/v1/transactions``."""
        return {"transactions": [self.to_dict()]}


def to_local_time(timestamp: Union[datetime, int, float]) -> datetime:
    """Convert a server timestamp to an aware datetime in local time.

    Integers and floats are Matrix-style ``origin_server_ts`` values
    (milliseconds since the epoch). Naive datetimes are taken as UTC.
    """
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone()
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).astimezone()


def synthesize(
    request: AddRequest,
    sender: str,
    timestamp: Union[datetime, int, float],
    source_account_id: int,
    destination_name: str = GENERAL_EXPENSE,
) -> LedgerTransaction:
    """Build the withdrawal for an ``!add`` request.

    The sender is always appended to the tags, even when already present,
    so every transaction records who submitted it.

    Args:
        request: Parsed ``!add`` arguments
        sender: Display identifier of the submitter (Matrix localpart)
        timestamp: Server time of the triggering message
        source_account_id: Ledger account all expenses are drawn from
        destination_name: Free-text destination label

    Returns:
        Immutable LedgerTransaction
    """
    return LedgerTransaction(
        type=WITHDRAWAL,
        date=to_local_time(timestamp),
        amount=request.amount,
        description=f"{request.category} by {sender}",
        category_name=request.category,
        source_id=source_account_id,
        destination_name=destination_name,
        tags=(*request.tags, sender),
        notes=request.note,
    )
