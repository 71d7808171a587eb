"""MailReceiver — the capability every mailbox client exposes.

Concrete clients implement a handful of blocking ``_*_sync`` primitives;
this base class runs them with ``asyncio.to_thread()`` so the event loop
is never blocked, translates protocol errors into
:class:`~mailbridge.errors.MailConnectionError`, and applies the
configured :class:`~mailbridge.filters.FilterSet` client-side.
"""

from __future__ import annotations

import abc
import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from .address import MailboxAddress
from .errors import MailConnectionError
from .filters import FilterSet
from .models import RawMailMessage

logger = structlog.get_logger()

T = TypeVar("T")


class MailReceiver(abc.ABC):
    """Connect to a mailbox, list unread messages and flag them.

    With purge enabled, :meth:`mark_read` also marks the message for
    deletion; the deletion is committed when the session is closed, so
    :meth:`reset_unread` can still undo it.
    """

    #: Exceptions raised by the underlying protocol library that mean the
    #: session is unusable.
    connection_errors: tuple[type[BaseException], ...] = (OSError,)

    def __init__(self, address: MailboxAddress) -> None:
        self._address = address
        self._filters = FilterSet()
        self._purge = False

    @property
    def address(self) -> MailboxAddress:
        return self._address

    @address.setter
    def address(self, value: MailboxAddress) -> None:
        if value.protocol != self._address.protocol:
            raise ValueError("A receiver cannot change protocol")
        self._address = value

    @property
    def filters(self) -> FilterSet:
        return self._filters

    def set_filters(self, filters: FilterSet) -> None:
        self._filters = filters

    def purge(self, enabled: bool) -> None:
        """Delete messages once read (at-most-once) or leave them (at-least-once)."""
        self._purge = enabled

    @property
    def purge_enabled(self) -> bool:
        return self._purge

    @property
    @abc.abstractmethod
    def connected(self) -> bool: ...

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the session; raises :class:`MailConnectionError` on failure."""
        await self._call(self._connect_sync)
        logger.info(
            "mailbox_connected",
            mailbox=self._address.to_safe_string(),
            folder=self._address.mailbox,
        )

    async def disconnect(self) -> None:
        """Commit pending deletes and close; safe to call at any time."""
        if not self.connected:
            return
        try:
            await asyncio.to_thread(self._disconnect_sync)
        except self.connection_errors as exc:
            logger.warning(
                "mailbox_disconnect_failed",
                mailbox=self._address.to_safe_string(),
                error=str(exc),
            )
        else:
            logger.info("mailbox_disconnected", mailbox=self._address.to_safe_string())

    async def __aenter__(self) -> MailReceiver:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_candidates(self) -> list[RawMailMessage]:
        """Return unread messages matching the filters, in mailbox order.

        Every unread message is retrieved in full before filtering.
        """
        unread = await self._call(self._fetch_unread_sync)
        if not self._filters:
            candidates = unread
        else:
            candidates = [m for m in unread if self._accept(m)]
        logger.debug(
            "mailbox_listed",
            mailbox=self._address.to_safe_string(),
            unread=len(unread),
            candidates=len(candidates),
        )
        return candidates

    async def mark_read(self, message: RawMailMessage) -> None:
        await self._call(self._mark_read_sync, message)
        message.read = True

    async def reset_unread(self, message: RawMailMessage) -> None:
        """Return *message* to unread so the next poll picks it up again."""
        await self._call(self._reset_unread_sync, message)
        message.read = False

    def _accept(self, message: RawMailMessage) -> bool:
        try:
            return self._filters.matches(message.headers)
        except (ValueError, TypeError, IndexError) as exc:
            logger.warning("filter_evaluation_failed", id=message.id, error=str(exc))
            return False

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except self.connection_errors as exc:
            raise MailConnectionError(
                f"{self._address.to_safe_string()}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Blocking primitives (run in a worker thread)
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _connect_sync(self) -> None: ...

    @abc.abstractmethod
    def _disconnect_sync(self) -> None: ...

    @abc.abstractmethod
    def _fetch_unread_sync(self) -> list[RawMailMessage]: ...

    @abc.abstractmethod
    def _mark_read_sync(self, message: RawMailMessage) -> None: ...

    @abc.abstractmethod
    def _reset_unread_sync(self, message: RawMailMessage) -> None: ...
