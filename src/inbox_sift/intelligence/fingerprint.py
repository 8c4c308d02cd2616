"""Change-detection fingerprints for inbound messages."""

from __future__ import annotations

from inbox_sift.core.models import MailItem

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def fingerprint(
    subject: str,
    sender: str,
    date: str,
    snippet: str,
    is_starred: bool,
    is_unread: bool,
) -> str:
    """Return a compact 32-bit hash of the attributes that affect analysis.

    Not collision free. A collision only means a changed message is treated as
    unchanged until its next edit, so this is used for change detection only.
    """
    content = "|".join(
        (
            subject,
            sender,
            date,
            snippet,
            "1" if is_starred else "0",
            "1" if is_unread else "0",
        )
    )
    value = 0
    for char in content:
        value = _to_int32(value * 31 + ord(char))
    return _base36(value)


def fingerprint_item(item: MailItem) -> str:
    """Return the fingerprint of ``item``."""
    return fingerprint(
        item.subject,
        item.sender,
        item.date.isoformat(),
        item.snippet,
        item.is_starred,
        item.is_unread,
    )


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_DIGITS[remainder])
    return sign + "".join(reversed(digits))


__all__ = ["fingerprint", "fingerprint_item"]
