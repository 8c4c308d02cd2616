"""Tests for the IMAP mail provider."""

# pylint: disable=protected-access

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from inbox_sift.core.config import AccountSettings, ImapSettings
from inbox_sift.core.interfaces import ProviderError
from inbox_sift.transport import ImapMailProvider

RAW_MESSAGE = (
    b"From: Bob Smith <bob@example.com>\r\n"
    b"To: me@example.com\r\n"
    b"Subject: Contract review\r\n"
    b"Date: Mon, 20 Jan 2025 09:00:00 +0000\r\n"
    b"Message-ID: <reply@example.com>\r\n"
    b"References: <root@example.com> <middle@example.com>\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"\r\n"
    b"Hi,\r\n\r\n  could you   review the contract\r\nby Friday?\r\n"
)


def _provider() -> tuple[ImapMailProvider, MagicMock]:
    account = AccountSettings(
        name="work",
        email="me@example.com",
        group="Work",
        imap=ImapSettings(
            host="imap.test", username="user", app_password="password", use_ssl=False
        ),
    )
    provider = ImapMailProvider(account)
    connection = MagicMock()
    provider._connection = connection
    return provider, connection


def _fetch_response(uid: int, flags: bytes) -> list[Any]:
    header = (
        f'{uid} (UID {uid} FLAGS ({flags.decode()}) '
        f'INTERNALDATE "20-Jan-2025 09:05:00 +0000" BODY[] {{{len(RAW_MESSAGE)}}}'
    ).encode()
    return [(header, RAW_MESSAGE), b")"]


def test_list_starred_returns_newest_first_within_limit() -> None:
    provider, connection = _provider()

    def uid(command: str, *args: Any) -> tuple[str, list[Any]]:
        if command == "SEARCH":
            return "OK", [b"101 102 103"]
        if command == "FETCH":
            data: list[Any] = []
            for raw_uid in args[0].split(","):
                data.extend(_fetch_response(int(raw_uid), b"\\Seen \\Flagged"))
            return "OK", data
        raise AssertionError("Unexpected IMAP command")

    connection.uid.side_effect = uid

    items = provider.list_starred(limit=2)

    assert [item.id for item in items] == ["work-103", "work-102"]
    connection.uid.assert_any_call("SEARCH", None, "FLAGGED")
    connection.uid.assert_any_call(
        "FETCH", "103,102", "(UID FLAGS INTERNALDATE BODY.PEEK[])"
    )

    item = items[0]
    assert item.account == "work"
    assert item.subject == "Contract review"
    assert item.sender == "Bob Smith"
    assert item.sender_email == "bob@example.com"
    assert item.thread_id == "<root@example.com>"
    assert item.date == datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)
    assert item.snippet == "Hi, could you review the contract by Friday?"
    assert item.is_starred is True
    assert item.is_unread is False


def test_list_unread_marks_unseen_messages() -> None:
    provider, connection = _provider()
    connection.uid.side_effect = lambda command, *args: (
        ("OK", [b"7"]) if command == "SEARCH" else ("OK", _fetch_response(7, b""))
    )

    items = provider.list_unread(limit=10)

    connection.uid.assert_any_call("SEARCH", None, "UNSEEN")
    assert items[0].is_unread is True
    assert items[0].is_starred is False


def test_empty_search_returns_no_items() -> None:
    provider, connection = _provider()
    connection.uid.return_value = ("OK", [b""])

    assert provider.list_starred(limit=10) == []
    assert provider.list_unread(limit=0) == []
    assert connection.uid.call_count == 1


def test_failed_search_raises_provider_error() -> None:
    provider, connection = _provider()
    connection.uid.return_value = ("NO", [b"server busy"])

    with pytest.raises(ProviderError):
        provider.list_starred(limit=10)


def test_socket_failures_raise_provider_error() -> None:
    provider, connection = _provider()

    connection.uid.side_effect = TimeoutError("timed out")
    with pytest.raises(ProviderError):
        provider.list_unread(limit=10)

    connection.uid.side_effect = [("OK", [b"42"]), ConnectionResetError("reset")]
    with pytest.raises(ProviderError):
        provider.list_starred(limit=10)

    connection.uid.side_effect = OSError("broken pipe")
    with pytest.raises(ProviderError):
        provider.mark_starred("work-42")


def test_mark_resolved_clears_flag_and_marks_seen() -> None:
    provider, connection = _provider()
    connection.uid.return_value = ("OK", [b""])

    provider.mark_resolved("work-42")

    connection.uid.assert_any_call("STORE", "42", "-FLAGS.SILENT", r"(\Flagged)")
    connection.uid.assert_any_call("STORE", "42", "+FLAGS.SILENT", r"(\Seen)")


def test_mark_starred_sets_flag() -> None:
    provider, connection = _provider()
    connection.uid.return_value = ("OK", [b""])

    provider.mark_starred("work-42")

    connection.uid.assert_called_once_with("STORE", "42", "+FLAGS.SILENT", r"(\Flagged)")


def test_foreign_item_id_is_rejected() -> None:
    provider, _ = _provider()

    with pytest.raises(ProviderError):
        provider.mark_starred("home-42")


def test_fetch_thread_builds_single_message_thread() -> None:
    provider, connection = _provider()
    connection.uid.return_value = ("OK", _fetch_response(5, b"\\Flagged"))

    thread = provider.fetch_thread("work-5")

    assert thread is not None
    assert thread.id == "<root@example.com>"
    assert thread.subject == "Contract review"
    (message,) = thread.messages
    assert message.sender == "Bob Smith"
    assert "review the contract" in message.body


def test_fetch_thread_for_missing_message() -> None:
    provider, connection = _provider()
    connection.uid.return_value = ("OK", [None])

    assert provider.fetch_thread("work-5") is None


def test_missing_credentials_raise_provider_error() -> None:
    account = AccountSettings(name="work", email="me@example.com", group="Work")
    provider = ImapMailProvider(account)

    with pytest.raises(ProviderError, match="credentials"):
        provider.list_starred(limit=5)


def test_close_logs_out_and_forgets_connection() -> None:
    provider, connection = _provider()

    provider.close()

    connection.close.assert_called_once()
    connection.logout.assert_called_once()
    assert provider._connection is None
