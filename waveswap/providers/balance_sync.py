"""Best-effort notifier for the confidential balance tracker."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class BalanceSyncNotifier:
    """
    Tells the balance tracker to re-sync a user's private balances.

    Called from a background task after recovery finds confidential funds.
    Not routed through the resilience wrapper and never retried; failures
    surface only in the spawning task's log line.
    """

    def __init__(self, url: str, timeout_s: float = 10.0, http_client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout_s = timeout_s
        self._client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def notify(self, user_identity: str, source: str = "recovery_success") -> bool:
        if not self.enabled:
            return False

        payload = {
            "userPublicKey": user_identity,
            "operation": "sync_encifher_balance",
            "source": source,
        }
        if self._client is not None:
            response = await self._client.post(self.url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                response = await client.post(self.url, json=payload)

        response.raise_for_status()
        logger.info(f"Balance tracker notified for {user_identity[:8]}...")
        return True
