"""Tests for mailbridge.shutdown."""

from __future__ import annotations

import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailbridge.poller import MailboxPoller
from mailbridge.shutdown import install_signal_handlers


class TestInstallSignalHandlers:
    @pytest.mark.asyncio
    async def test_sigterm_sets_event(self):
        event = asyncio.Event()
        install_signal_handlers(event)

        assert not event.is_set()
        os.kill(os.getpid(), signal.SIGTERM)
        # the loop needs an I/O poll to drain the signal self-pipe
        await asyncio.sleep(0.05)
        assert event.is_set()

    @pytest.mark.asyncio
    async def test_handlers_registered_for_both_signals(self):
        event = asyncio.Event()
        install_signal_handlers(event)
        loop = asyncio.get_running_loop()

        assert loop.remove_signal_handler(signal.SIGTERM) is True
        assert loop.remove_signal_handler(signal.SIGINT) is True

    @pytest.mark.asyncio
    async def test_signal_mid_cycle_stops_poller_after_cycle(self):
        event = asyncio.Event()
        install_signal_handlers(event)
        finished: list[bool] = []

        async def _cycle() -> int:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.sleep(0.05)
            finished.append(True)
            return 1

        consumer = MagicMock()
        consumer.process_messages = AsyncMock(side_effect=_cycle)
        poller = MailboxPoller(consumer, interval=3600, shutdown_event=event)
        await asyncio.wait_for(poller.run(), timeout=1.0)

        assert finished == [True]
        assert poller.cycles == 1
