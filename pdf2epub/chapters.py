"""
Chapter marks: user-placed boundaries where a new chapter begins.

Mark sets are immutable tuples kept sorted by page index, with at most one
mark per page. Every helper returns a new tuple.
"""

import uuid
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class ChapterMark:
    """A chapter starting at ``page_index`` of the displayed page sequence."""

    page_index: int
    title: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


def set_or_clear(
    marks: tuple[ChapterMark, ...],
    page_index: int,
    title: str,
) -> tuple[ChapterMark, ...]:
    """Create, rename, or remove the mark at a page.

    A non-empty trimmed title creates the mark or renames the existing one
    (keeping its id). An empty or whitespace-only title removes it.
    """
    title = title.strip()
    existing = next((m for m in marks if m.page_index == page_index), None)
    others = [m for m in marks if m.page_index != page_index]

    if title:
        mark = replace(existing, title=title) if existing else ChapterMark(page_index, title)
        others.append(mark)

    return tuple(sorted(others, key=lambda m: m.page_index))


def place(marks: tuple[ChapterMark, ...], page_index: int, title: str = "") -> tuple[ChapterMark, ...]:
    """Put a mark at a page, keeping a blank title as unset instead of clearing."""
    title = title.strip()
    existing = next((m for m in marks if m.page_index == page_index), None)
    others = [m for m in marks if m.page_index != page_index]
    others.append(replace(existing, title=title) if existing else ChapterMark(page_index, title))
    return tuple(sorted(others, key=lambda m: m.page_index))


def shift_after(marks: tuple[ChapterMark, ...], page_index: int, by: int = 1) -> tuple[ChapterMark, ...]:
    """Move every mark strictly after ``page_index`` by ``by`` pages."""
    return tuple(
        replace(m, page_index=m.page_index + by) if m.page_index > page_index else m
        for m in marks
    )


def prune(marks: tuple[ChapterMark, ...], page_count: int) -> tuple[ChapterMark, ...]:
    """Drop marks that no longer point at a page."""
    return tuple(m for m in marks if 0 <= m.page_index < page_count)
