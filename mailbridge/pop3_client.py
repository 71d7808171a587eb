"""Lightweight POP3 / POP3S mailbox client on top of stdlib ``poplib``.

POP3 has no read flag, so "read" is remembered in memory by UIDL for the
lifetime of the receiver: a message marked read is not offered again by
later poll cycles of this process, but will be after a restart unless it
was purged.  Pair with ``delete_on_receive`` where that matters.

Every unread message is downloaded in full before filtering, which can be
slow on large mailboxes.
"""

from __future__ import annotations

import poplib
import socket
import ssl

import structlog

from .address import MailboxAddress
from .config import Pop3ClientConfig
from .models import RawMailMessage
from .receiver import MailReceiver

logger = structlog.get_logger()


class Pop3Receiver(MailReceiver):
    """Mailbox client for the ``pop3`` and ``pop3s`` protocols."""

    connection_errors = (poplib.error_proto, OSError)

    def __init__(
        self,
        address: MailboxAddress,
        config: Pop3ClientConfig | None = None,
    ) -> None:
        super().__init__(address)
        self._config = config or Pop3ClientConfig()
        self._conn: poplib.POP3 | None = None
        self._seen: set[str] = set()
        self._numbers: dict[str, int] = {}
        self._pending_delete: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _connect_sync(self) -> None:
        host, port = self._address.host, self._address.effective_port
        connect_timeout = self._config.connect_timeout or self._config.timeout
        kwargs = {} if connect_timeout is None else {"timeout": connect_timeout}

        if self._address.use_ssl and self._config.implicit_tls:
            conn: poplib.POP3 = poplib.POP3_SSL(
                host, port, context=self._ssl_context(), **kwargs
            )
        else:
            conn = poplib.POP3(host, port, **kwargs)

        try:
            self._configure_socket(conn.sock)
            if self._address.use_ssl and not self._config.implicit_tls:
                conn.stls(context=self._ssl_context())
            if self._address.username:
                conn.user(self._address.username)
                conn.pass_(self._address.password or "")
        except self.connection_errors:
            _close_quietly(conn)
            raise

        self._conn = conn
        self._numbers.clear()
        self._pending_delete.clear()

    def _disconnect_sync(self) -> None:
        conn, self._conn = self._conn, None
        assert conn is not None
        pending = sorted(self._numbers[uid] for uid in self._pending_delete)
        self._pending_delete.clear()
        self._numbers.clear()
        try:
            for number in pending:
                conn.dele(number)
            conn.quit()
        except self.connection_errors:
            _close_quietly(conn)
            raise

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self._config.always_trust:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _configure_socket(self, sock: socket.socket) -> None:
        cfg = self._config
        if cfg.timeout is not None:
            sock.settimeout(cfg.timeout)
        if cfg.receive_buffer_size is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, cfg.receive_buffer_size)
        if cfg.send_buffer_size is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, cfg.send_buffer_size)
        if cfg.tcp_no_delay is not None:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, int(cfg.tcp_no_delay))
        if cfg.keep_alive is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, int(cfg.keep_alive))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _fetch_unread_sync(self) -> list[RawMailMessage]:
        assert self._conn is not None, "Not connected"
        _, listing, _ = self._conn.uidl()

        for entry in listing:
            number, _, uid = entry.decode("ascii", errors="replace").partition(" ")
            self._numbers[uid.strip()] = int(number)
        # forget messages that are no longer in the maildrop
        self._seen.intersection_update(self._numbers)

        results: list[RawMailMessage] = []
        for uid, number in self._numbers.items():
            if uid in self._seen:
                continue
            _, lines, _ = self._conn.retr(number)
            raw_bytes = b"\r\n".join(lines) + b"\r\n"
            results.append(RawMailMessage(id=uid, raw_bytes=raw_bytes))

        logger.debug("pop3_retrieved", total=len(listing), unread=len(results))
        return results

    def _mark_read_sync(self, message: RawMailMessage) -> None:
        self._seen.add(message.id)
        if self._purge:
            self._pending_delete.add(message.id)

    def _reset_unread_sync(self, message: RawMailMessage) -> None:
        self._seen.discard(message.id)
        self._pending_delete.discard(message.id)


def _close_quietly(conn: poplib.POP3) -> None:
    try:
        conn.close()
    except OSError:
        pass
