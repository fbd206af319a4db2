"""
Order Status Poller

Constant-interval observation of a submitted swap until the privacy pool
reports a terminal state. Backoff for individual calls lives in the
resilience wrapper; this loop only spaces out polls.
"""

import asyncio
import logging
from typing import Callable, Optional

from ...providers.encifher import EncifherClient, OrderState, OrderStatus
from ..resilience.errors import (
    CircuitOpenError,
    PollingCancelled,
    PollingTimeout,
    SwapSettlementFailed,
    UpstreamUnavailable,
)

ProgressHook = Callable[[int, int, Optional[OrderStatus]], None]


class OrderStatusPoller:
    """
    Polls ``get_order_status`` until completed, failed, cancelled or out of budget.

    Total wall-clock time is capped at ``max_attempts * interval + grace``
    regardless of how slow individual calls are.
    """

    def __init__(
        self,
        client: EncifherClient,
        grace_seconds: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.grace_seconds = grace_seconds
        self.logger = logger or logging.getLogger(__name__)

    async def poll_until_terminal(
        self,
        order_status_identifier: str,
        *,
        interval_seconds: float = 3.0,
        max_attempts: int = 40,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressHook] = None,
    ) -> OrderStatus:
        """
        Returns the completed OrderStatus.

        Raises:
            SwapSettlementFailed: the pool reported the order as failed
            PollingTimeout: still pending when the budget ran out
            PollingCancelled: ``cancel_event`` was set; the order is untouched
        """
        attempts = [0]
        bound = max_attempts * interval_seconds + self.grace_seconds

        try:
            return await asyncio.wait_for(
                self._poll(
                    order_status_identifier,
                    interval_seconds,
                    max_attempts,
                    cancel_event,
                    on_progress,
                    attempts,
                ),
                timeout=bound,
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Polling order {order_status_identifier} hit its {bound:.0f}s bound "
                f"after {attempts[0]} polls"
            )
            raise PollingTimeout(order_status_identifier, attempts[0]) from None

    async def _poll(
        self,
        order_status_identifier: str,
        interval_seconds: float,
        max_attempts: int,
        cancel_event: Optional[asyncio.Event],
        on_progress: Optional[ProgressHook],
        attempts: list,
    ) -> OrderStatus:
        for attempt in range(1, max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise PollingCancelled(order_status_identifier)

            status: Optional[OrderStatus] = None
            try:
                status = await self.client.get_order_status(order_status_identifier)
            except (UpstreamUnavailable, CircuitOpenError) as e:
                # Counts as a spent poll; the order may still settle
                self.logger.warning(f"Status poll {attempt}/{max_attempts} unavailable: {e.category.value}")

            attempts[0] = attempt
            self._report(on_progress, attempt, max_attempts, status)

            if status is not None:
                if status.status is OrderState.COMPLETED:
                    self.logger.info(f"Order {order_status_identifier} completed after {attempt} polls")
                    return status
                if status.status is OrderState.FAILED:
                    raise SwapSettlementFailed(order_status_identifier, status.details)

            if attempt < max_attempts:
                await self._wait(interval_seconds, cancel_event, order_status_identifier)

        raise PollingTimeout(order_status_identifier, max_attempts)

    async def _wait(
        self,
        interval_seconds: float,
        cancel_event: Optional[asyncio.Event],
        order_status_identifier: str,
    ) -> None:
        if cancel_event is None:
            await asyncio.sleep(interval_seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            return
        raise PollingCancelled(order_status_identifier)

    def _report(
        self,
        on_progress: Optional[ProgressHook],
        attempt: int,
        max_attempts: int,
        status: Optional[OrderStatus],
    ) -> None:
        if on_progress is None:
            return
        try:
            on_progress(attempt, max_attempts, status)
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"Poll progress hook raised: {e}")
