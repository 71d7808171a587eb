"""IMAP / IMAPS mailbox client wrapping stdlib imaplib.

Read state lives on the server as the ``\\Seen`` flag.  Messages are
fetched with ``BODY.PEEK[]`` so listing never marks anything read; only
:meth:`~mailbridge.receiver.MailReceiver.mark_read` does.
"""

from __future__ import annotations

import imaplib
import ssl

import structlog

from .address import MailboxAddress
from .models import RawMailMessage
from .receiver import MailReceiver

logger = structlog.get_logger()


class ImapReceiver(MailReceiver):
    """Mailbox client for the ``imap`` and ``imaps`` protocols.

    With purge enabled, read messages are flagged ``\\Deleted`` and removed
    when the session is closed.
    """

    connection_errors = (imaplib.IMAP4.error, OSError)

    def __init__(
        self,
        address: MailboxAddress,
        *,
        timeout: float | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        super().__init__(address)
        self._timeout = timeout
        self._ssl_context = ssl_context
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _connect_sync(self) -> None:
        host, port = self._address.host, self._address.effective_port
        if self._address.use_ssl:
            conn = imaplib.IMAP4_SSL(
                host, port, ssl_context=self._ssl_context, timeout=self._timeout
            )
        else:
            conn = imaplib.IMAP4(host, port, timeout=self._timeout)
        try:
            if self._address.username:
                conn.login(self._address.username, self._address.password or "")
            status, data = conn.select(_quote(self._address.mailbox))
            if status != "OK":
                raise imaplib.IMAP4.error(
                    f"Cannot select {self._address.mailbox}: {_text(data)}"
                )
        except self.connection_errors:
            _logout_quietly(conn)
            raise
        self._conn = conn

    def _disconnect_sync(self) -> None:
        conn, self._conn = self._conn, None
        assert conn is not None
        try:
            # CLOSE also expunges messages flagged \Deleted
            conn.close()
        finally:
            _logout_quietly(conn)

    def _fetch_unread_sync(self) -> list[RawMailMessage]:
        assert self._conn is not None, "Not connected"
        status, data = self._conn.uid("SEARCH", None, "UNSEEN")
        if status != "OK":
            raise imaplib.IMAP4.error(f"SEARCH failed: {_text(data)}")
        if not data or not data[0]:
            return []

        uids = sorted(data[0].split(), key=int)
        results: list[RawMailMessage] = []
        for uid_bytes in uids:
            uid = uid_bytes.decode()
            status, msg_data = self._conn.uid("FETCH", uid, "(BODY.PEEK[])")
            if status != "OK":
                raise imaplib.IMAP4.error(f"FETCH {uid} failed: {_text(msg_data)}")
            raw_bytes = _literal(msg_data)
            if raw_bytes is None:
                # expunged by another session between SEARCH and FETCH
                logger.debug("imap_fetch_missing", uid=uid)
                continue
            results.append(RawMailMessage(id=uid, raw_bytes=raw_bytes))

        logger.debug("imap_fetch_complete", fetched=len(results))
        return results

    def _mark_read_sync(self, message: RawMailMessage) -> None:
        flags = r"(\Seen \Deleted)" if self._purge else r"(\Seen)"
        self._store(message.id, "+FLAGS.SILENT", flags)

    def _reset_unread_sync(self, message: RawMailMessage) -> None:
        self._store(message.id, "-FLAGS.SILENT", r"(\Seen \Deleted)")

    def _store(self, uid: str, command: str, flags: str) -> None:
        assert self._conn is not None, "Not connected"
        status, data = self._conn.uid("STORE", uid, command, flags)
        if status != "OK":
            raise imaplib.IMAP4.error(f"STORE {uid} failed: {_text(data)}")


def _quote(mailbox: str) -> str:
    if mailbox.startswith('"') or not any(c in mailbox for c in ' "\\(){%*'):
        return mailbox
    return '"' + mailbox.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _literal(msg_data: list) -> bytes | None:
    for item in msg_data or []:
        if isinstance(item, tuple) and len(item) > 1:
            return item[1]
    return None


def _text(data: list | None) -> str:
    return " ".join(
        d.decode(errors="replace") if isinstance(d, bytes) else str(d) for d in data or []
    )


def _logout_quietly(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError):
        pass
