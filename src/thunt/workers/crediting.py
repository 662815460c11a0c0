"""Currency crediting client.

The marketplace wallet service owns balances; this engine only asks it to
credit a ledger entry. Every request carries the ledger idempotency key,
so at-least-once redelivery never credits twice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx
import structlog

from thunt.config import Settings, get_settings
from thunt.hunts.errors import ExternalServiceError

logger = structlog.get_logger()


class CurrencyCreditor(ABC):
    """Abstract crediting collaborator."""

    @abstractmethod
    async def credit(
        self,
        user_id: int,
        amount: int,
        description: str,
        idempotency_key: str,
    ) -> None:
        """Credit ``amount`` to the user. Raises ExternalServiceError on failure."""
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Release any held resources."""


class HttpCurrencyCreditor(CurrencyCreditor):
    """Credit via the wallet service HTTP API."""

    def __init__(self, url: str, api_key: str, timeout: float = 10.0) -> None:
        self.url = url
        self.api_key = api_key
        self._client = httpx.AsyncClient(timeout=timeout)

    async def credit(
        self,
        user_id: int,
        amount: int,
        description: str,
        idempotency_key: str,
    ) -> None:
        """POST one credit. 2xx and 409 (already applied) both count as success."""
        try:
            response = await self._client.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Idempotency-Key": idempotency_key,
                },
                json={
                    "user_id": user_id,
                    "amount": amount,
                    "description": description,
                    "idempotency_key": idempotency_key,
                },
            )
        except httpx.HTTPError as e:
            logger.warning("credit_request_failed", user_id=user_id, key=idempotency_key, error=str(e))
            raise ExternalServiceError(f"Crediting request failed: {e}") from e

        if response.status_code == 409:
            logger.info("credit_already_applied", user_id=user_id, key=idempotency_key)
            return
        if response.is_error:
            logger.warning(
                "credit_rejected",
                user_id=user_id,
                key=idempotency_key,
                status=response.status_code,
            )
            raise ExternalServiceError(f"Crediting service returned {response.status_code}")

        logger.info("credit_applied", user_id=user_id, amount=amount, key=idempotency_key)

    async def aclose(self) -> None:
        await self._client.aclose()


def get_creditor(settings: Settings | None = None) -> CurrencyCreditor:
    """Factory: the configured crediting client."""
    if settings is None:
        settings = get_settings()
    return HttpCurrencyCreditor(
        url=settings.crediting_url,
        api_key=settings.crediting_api_key,
        timeout=settings.crediting_timeout_seconds,
    )
