"""Ordered, idempotent teardown of both legs of a call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from relay.legs import Leg
from relay.protocol import CloseCode

LOGGER = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Closes the provider leg gracefully, then the telephony leg with the triggering code.

    The first ``close_with_code`` call wins. Both legs report their own close
    back into the session, which calls this again; those calls are no-ops.
    """

    def __init__(
        self,
        telephony: Leg,
        *,
        provider: Callable[[], Leg | None],
        logger: logging.Logger | logging.LoggerAdapter = LOGGER,
    ) -> None:
        self._telephony = telephony
        self._provider = provider
        self._log = logger
        self._closing = False
        self._pending: list[asyncio.TimerHandle | asyncio.Task] = []
        self.code: int | None = None
        self.reason: str | None = None

    @property
    def closing(self) -> bool:
        return self._closing

    def track(self, handle: asyncio.TimerHandle | asyncio.Task) -> None:
        """Register a timer or task to cancel when the call is torn down."""

        if self._closing:
            handle.cancel()
            return
        self._pending.append(handle)

    def close_with_code(self, code: int, reason: str = "") -> bool:
        if self._closing:
            self._log.debug("Close (%s %s) ignored; already closing with %s", code, reason, self.code)
            return False
        self._closing = True
        self.code = int(code)
        self.reason = reason
        self._log.info("Closing call: code=%s reason=%s", self.code, reason or "-")

        for handle in self._pending:
            handle.cancel()
        self._pending.clear()

        provider = self._provider()
        if provider is not None and not provider.closed:
            provider.close(CloseCode.NORMAL, reason)
        if not self._telephony.closed:
            self._telephony.close(self.code, reason)
        return True
