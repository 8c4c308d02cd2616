"""IMAP mail provider exposing starred and unread messages."""

from __future__ import annotations

import imaplib
import logging
import re
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from time import mktime
from types import TracebackType

from ..core.config import AccountSettings
from ..core.datetime_utils import ensure_utc
from ..core.interfaces import MailProvider, ProviderError
from ..core.models import MailItem, MailThread, ThreadMessage

LOGGER = logging.getLogger(__name__)

SNIPPET_LENGTH = 200
THREAD_BODY_LENGTH = 4000

_UID_PATTERN = re.compile(rb"UID (\d+)")
_TAG_PATTERN = re.compile(r"<[^>]+>")
_SPACE_PATTERN = re.compile(r"\s+")
_FETCH_ITEMS = "(UID FLAGS INTERNALDATE BODY.PEEK[])"


class ImapMailProvider(MailProvider):
    """Read starred and unread mail from one account over IMAP."""

    def __init__(self, account: AccountSettings) -> None:
        """Initialise the provider for ``account`` without connecting."""
        self._settings = account.imap
        self._connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None = None
        self._parser = BytesParser(policy=policy.default)
        self.account = account.name
        self._id_prefix = _SPACE_PATTERN.sub("_", account.name.strip())

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapMailProvider:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Establish the IMAP connection and select the configured mailbox."""
        if self._connection is not None:
            return

        username = self._settings.username
        password = self._settings.app_password
        if username is None or password is None:
            raise ProviderError(f"IMAP credentials are not configured for {self.account}")

        try:
            LOGGER.debug(
                "Connecting to IMAP host %s:%s (ssl=%s)",
                self._settings.host,
                self._settings.port,
                self._settings.use_ssl,
            )
            if self._settings.use_ssl:
                connection: imaplib.IMAP4 | imaplib.IMAP4_SSL = imaplib.IMAP4_SSL(
                    self._settings.host, self._settings.port
                )
            else:
                connection = imaplib.IMAP4(self._settings.host, self._settings.port)

            LOGGER.debug("Authenticating as %s", username)
            connection.login(username, password)
            status, _ = connection.select(self._settings.mailbox)
            if status != "OK":
                raise ProviderError(
                    f"Unable to select mailbox '{self._settings.mailbox}'"
                )
            self._connection = connection
        except (imaplib.IMAP4.error, OSError) as exc:  # pragma: no cover - network
            raise ProviderError(
                f"Failed to connect to IMAP server for {self.account}"
            ) from exc

    def list_starred(self, limit: int) -> list[MailItem]:
        """Return up to ``limit`` flagged messages, newest first."""
        return self._list("FLAGGED", limit)

    def list_unread(self, limit: int) -> list[MailItem]:
        """Return up to ``limit`` unseen messages, newest first."""
        return self._list("UNSEEN", limit)

    def fetch_thread(self, item_id: str) -> MailThread | None:
        """Return the conversation for ``item_id`` built from the message itself."""
        uid = self._uid_for(item_id)
        fetched = self._fetch([uid])
        if uid not in fetched:
            return None
        _, _, payload = fetched[uid]
        message = self._parser.parsebytes(payload)
        sender_name, sender_email = _split_sender(message.get("From"))
        body = _extract_text(message)[:THREAD_BODY_LENGTH]
        return MailThread(
            id=_resolve_thread_id(message) or item_id,
            subject=str(message.get("Subject") or "(no subject)"),
            messages=(
                ThreadMessage(
                    sender=sender_name or sender_email,
                    date=str(message.get("Date") or ""),
                    body=body,
                ),
            ),
        )

    def mark_resolved(self, item_id: str) -> None:
        """Remove the flag and mark the message read."""
        uid = self._uid_for(item_id)
        self._store(uid, "-FLAGS.SILENT", r"(\Flagged)")
        self._store(uid, "+FLAGS.SILENT", r"(\Seen)")
        LOGGER.info("Resolved %s in %s", item_id, self.account)

    def mark_starred(self, item_id: str) -> None:
        """Flag the message."""
        self._store(self._uid_for(item_id), "+FLAGS.SILENT", r"(\Flagged)")
        LOGGER.info("Starred %s in %s", item_id, self.account)

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._connection is None:
            return
        try:
            LOGGER.debug("Closing IMAP connection")
            self._connection.close()
        except imaplib.IMAP4.error:  # pragma: no cover - depends on server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            try:
                self._connection.logout()
            except imaplib.IMAP4.error:  # pragma: no cover
                LOGGER.debug("IMAP logout raised; suppressing during shutdown")
            self._connection = None

    # Internal helpers ---------------------------------------------------------
    def _ensure_connection(self) -> imaplib.IMAP4 | imaplib.IMAP4_SSL:
        self.connect()
        if self._connection is None:  # pragma: no cover - connect raises instead
            raise ProviderError("IMAP connection has not been established")
        return self._connection

    def _list(self, criterion: str, limit: int) -> list[MailItem]:
        if limit <= 0:
            return []
        connection = self._ensure_connection()
        try:
            status, data = connection.uid("SEARCH", None, criterion)  # type: ignore[arg-type]
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ProviderError(f"IMAP search {criterion} failed") from exc
        if status != "OK":
            raise ProviderError(f"IMAP search {criterion} failed")

        raw_ids = data[0].split() if data and data[0] else []
        uids = [int(raw) for raw in raw_ids][-limit:]
        uids.reverse()
        LOGGER.debug("%s: %d %s message(s)", self.account, len(uids), criterion)
        if not uids:
            return []

        fetched = self._fetch(uids)
        items: list[MailItem] = []
        for uid in uids:
            if uid not in fetched:
                LOGGER.warning("No payload returned for UID %s in %s", uid, self.account)
                continue
            flags, internal_date, payload = fetched[uid]
            items.append(self._to_item(uid, flags, internal_date, payload))
        return items

    def _fetch(
        self, uids: Sequence[int]
    ) -> dict[int, tuple[tuple[bytes, ...], datetime | None, bytes]]:
        connection = self._ensure_connection()
        uid_set = ",".join(str(uid) for uid in uids)
        try:
            status, data = connection.uid("FETCH", uid_set, _FETCH_ITEMS)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ProviderError(f"Failed to fetch UIDs {uid_set}") from exc
        if status != "OK":
            raise ProviderError(f"Failed to fetch UIDs {uid_set}")
        return _parse_fetch_response(data)

    def _store(self, uid: int, command: str, flags: str) -> None:
        connection = self._ensure_connection()
        try:
            status, _ = connection.uid("STORE", str(uid), command, flags)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ProviderError(f"IMAP error while updating UID {uid}") from exc
        if status != "OK":
            raise ProviderError(f"Failed to update flags for UID {uid}")

    def _to_item(
        self,
        uid: int,
        flags: tuple[bytes, ...],
        internal_date: datetime | None,
        payload: bytes,
    ) -> MailItem:
        message = self._parser.parsebytes(payload)
        sender_name, sender_email = _split_sender(message.get("From"))
        sent_at = _try_parse_datetime(message.get("Date")) or internal_date
        if sent_at is not None:
            sent_at = ensure_utc(sent_at)
        return MailItem(
            id=self.item_id(uid),
            thread_id=_resolve_thread_id(message),
            account=self.account,
            subject=str(message.get("Subject") or "(no subject)"),
            sender=sender_name or sender_email,
            sender_email=sender_email,
            date=sent_at or datetime.fromtimestamp(0, tz=UTC),
            snippet=_collapse(_extract_text(message))[:SNIPPET_LENGTH],
            is_starred=b"\\Flagged" in flags,
            is_unread=b"\\Seen" not in flags,
        )

    def item_id(self, uid: int) -> str:
        """Return the stable item id for ``uid`` in this account."""
        return f"{self._id_prefix}-{uid}"

    def _uid_for(self, item_id: str) -> int:
        prefix, _, raw_uid = item_id.rpartition("-")
        if prefix != self._id_prefix or not raw_uid.isdigit():
            raise ProviderError(f"Message {item_id} does not belong to {self.account}")
        return int(raw_uid)


def _parse_fetch_response(
    data: Iterable[tuple[bytes, bytes] | bytes | None],
) -> dict[int, tuple[tuple[bytes, ...], datetime | None, bytes]]:
    """Map UIDs to flags, internal date and raw payload."""
    parsed: dict[int, tuple[tuple[bytes, ...], datetime | None, bytes]] = {}
    for entry in data:
        if not isinstance(entry, tuple) or len(entry) != 2:
            continue
        header, payload = entry
        match = _UID_PATTERN.search(header)
        if match is None:
            continue
        parsed[int(match.group(1))] = (
            tuple(imaplib.ParseFlags(header)),
            _internal_date(header),
            payload,
        )
    return parsed


def _internal_date(header: bytes) -> datetime | None:
    parsed = imaplib.Internaldate2tuple(header)
    if parsed is None:
        return None
    return datetime.fromtimestamp(mktime(parsed), tz=UTC)


def _split_sender(header_value: str | None) -> tuple[str, str]:
    if not header_value:
        return "", ""
    name, address = parseaddr(str(header_value))
    return name.strip(), address.strip()


def _resolve_thread_id(message: EmailMessage) -> str | None:
    references = message.get("References")
    if isinstance(references, str) and references.split():
        return references.split()[0]
    for header in ("In-Reply-To", "Message-ID"):
        value = message.get(header)
        if isinstance(value, str) and value.strip():
            return value.split()[0]
    return None


def _extract_text(message: EmailMessage) -> str:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        try:
            content = part.get_content()
        except LookupError:
            continue
        if not isinstance(content, str):
            continue
        if part.get_content_type() == "text/plain":
            plain_chunks.append(content.strip())
        elif part.get_content_type() == "text/html":
            html_chunks.append(_TAG_PATTERN.sub(" ", content))

    if plain_chunks:
        return "\n\n".join(chunk for chunk in plain_chunks if chunk)
    return _collapse(" ".join(html_chunks))


def _collapse(text: str) -> str:
    return _SPACE_PATTERN.sub(" ", text).strip()


def _try_parse_datetime(header_value: str | None) -> datetime | None:
    if header_value is None:
        return None
    try:
        return parsedate_to_datetime(str(header_value))
    except (TypeError, ValueError):
        return None


__all__ = ["ImapMailProvider", "SNIPPET_LENGTH"]
