"""Ledger gateway — Firefly III style HTTP API for transactions and categories."""

import logging
from typing import Optional, Protocol

import httpx

from .transaction import LedgerTransaction

logger = logging.getLogger("fireflybot.ledger")

TRANSACTIONS_API = "api/v1/transactions"
CATEGORIES_API = "api/v1/categories"

DEFAULT_TIMEOUT = 30.0


# ════════════════════════════════════════════════════════
# Ledger Exception Hierarchy: the dispatcher logs these
# in full and shows the user only a generic failure.
# ════════════════════════════════════════════════════════

class LedgerError(Exception):
    """Base class for all ledger backend errors."""
    pass

class LedgerConnectionError(LedgerError):
    """Transport-level failure: DNS, refused connection, timeout."""
    pass

class LedgerHTTPError(LedgerError):
    """The backend answered with a status other than 200."""

    def __init__(self, action: str, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to {action}: [{status_code}] {body}")

class LedgerResponseError(LedgerError):
    """The backend answered 200 but the body is not what we expect."""
    pass


class LedgerGateway(Protocol):
    async def create_transaction(self, transaction: LedgerTransaction) -> None: ...

    async def list_categories(self) -> list[str]: ...


class FireflyClient:
    """Ledger gateway over a single shared ``httpx.AsyncClient``.

    The connection pool is created once and reused by every in-flight
    message; nothing else about the client is mutated after construction.

    Usage:
        async with FireflyClient(url, api_key) as ledger:
            await ledger.create_transaction(tx)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, action: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise LedgerConnectionError(
                f"Failed to execute HTTP request: {type(e).__name__}: {e}"
            ) from e

        if response.status_code != httpx.codes.OK:
            raise LedgerHTTPError(action, response.status_code, response.text)
        return response

    async def create_transaction(self, transaction: LedgerTransaction) -> None:
        """Store one withdrawal.

        Raises:
            LedgerConnectionError: Request never completed
            LedgerHTTPError: Any status other than 200
        """
        await self._request(
            "add transaction", "POST", TRANSACTIONS_API, json=transaction.to_payload(),
        )
        logger.info(
            f"Stored {transaction.type} of {transaction.amount} "
            f"({transaction.description})"
        )

    async def list_categories(self) -> list[str]:
        """Return category names in the order the backend lists them.

        Follows ``meta.pagination`` when the backend splits the list
        across several pages.
        """
        names: list[str] = []
        page = 1
        while True:
            response = await self._request(
                "list categories", "GET", CATEGORIES_API, params={"page": page},
            )
            try:
                body = response.json()
                names.extend(entry["attributes"]["name"] for entry in body["data"])
                total_pages = _total_pages(body)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise LedgerResponseError(
                    f"Unexpected categories response: {type(e).__name__}: {e}"
                ) from e

            if page >= total_pages:
                return names
            page += 1


def _total_pages(body: dict) -> int:
    """Page count from a Firefly list response, 1 when unpaginated."""
    pagination = (body.get("meta") or {}).get("pagination") or {}
    return int(pagination.get("total_pages") or 1)
