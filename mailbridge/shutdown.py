"""Graceful shutdown handling via SIGTERM / SIGINT."""

from __future__ import annotations

import asyncio
import signal

import structlog

logger = structlog.get_logger()


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Register SIGTERM and SIGINT handlers that set *shutdown_event*.

    Call this once from the running event loop, passing the event given to
    :class:`~mailbridge.poller.MailboxPoller`.  A signal never interrupts a
    poll cycle.  The message in hand is finished and the mailbox session is
    closed as usual; the poller then returns instead of sleeping until the
    next interval.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)
