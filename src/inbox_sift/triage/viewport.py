"""Windowed view over the sectioned action list."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from inbox_sift.core.models import URGENCY_ORDER, ActionItem, Urgency

SECTION_TITLES: dict[Urgency, str] = {
    "overdue": "OVERDUE",
    "this_week": "THIS WEEK",
    "when_you_can": "WHEN YOU CAN",
}
DEFAULT_CHROME_ROWS = 8
MINIMUM_HEIGHT = 5


@dataclass(slots=True, frozen=True)
class SectionHeader:
    """Header row introducing one urgency section."""

    urgency: Urgency
    title: str
    count: int


@dataclass(slots=True, frozen=True)
class ItemRow:
    """Row showing one action item and its position in the item list."""

    item: ActionItem
    index: int


ListRow = SectionHeader | ItemRow


@dataclass(slots=True)
class Viewport:
    """Visible slice of rows plus how much is hidden on either side."""

    rows: list[ListRow] = field(default_factory=list)
    selected_index: int = 0
    items_above: int = 0
    items_below: int = 0
    rows_above: int = 0
    rows_below: int = 0


def build_rows(items: Sequence[ActionItem]) -> list[ListRow]:
    """Group ``items`` into urgency sections, skipping empty sections.

    Item indices follow section order, so callers should pass items already
    sorted by urgency for the indices to match their own positions.
    """
    rows: list[ListRow] = []
    index = 0
    for urgency in URGENCY_ORDER:
        section = [item for item in items if item.urgency == urgency]
        if not section:
            continue
        rows.append(SectionHeader(urgency, SECTION_TITLES[urgency], len(section)))
        for item in section:
            rows.append(ItemRow(item, index))
            index += 1
    return rows


def compute_viewport(
    items: Sequence[ActionItem], selected_index: int, height: int
) -> Viewport:
    """Return the rows to draw so the selection stays centred.

    ``height`` counts item rows; section headers inside the window are shown
    in addition to it.
    """
    rows = build_rows(items)
    item_positions = [pos for pos, row in enumerate(rows) if isinstance(row, ItemRow)]
    total = len(item_positions)
    if total == 0 or height <= 0:
        return Viewport(rows=[], items_below=total, rows_below=len(rows))

    selected = min(max(selected_index, 0), total - 1)
    half = height // 2
    start = max(0, selected - half)
    end = start + height
    if end > total:
        end = total
        start = max(0, end - height)

    first_row = item_positions[start]
    if first_row > 0 and isinstance(rows[first_row - 1], SectionHeader):
        first_row -= 1
    last_row = item_positions[end - 1] + 1

    return Viewport(
        rows=rows[first_row:last_row],
        selected_index=selected,
        items_above=start,
        items_below=total - end,
        rows_above=first_row,
        rows_below=len(rows) - last_row,
    )


def viewport_height(
    terminal_rows: int, chrome: int = DEFAULT_CHROME_ROWS, minimum: int = MINIMUM_HEIGHT
) -> int:
    """Return how many item rows fit once fixed chrome rows are subtracted."""
    return max(minimum, terminal_rows - chrome)


__all__ = [
    "ItemRow",
    "ListRow",
    "SECTION_TITLES",
    "SectionHeader",
    "Viewport",
    "build_rows",
    "compute_viewport",
    "viewport_height",
]
