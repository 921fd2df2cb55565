"""
Book assembly: turn displayed pages and chapter marks into an ordered
chapter manifest for the EPUB builder.
"""

from dataclasses import dataclass, field

from .chapters import ChapterMark


@dataclass(frozen=True)
class ChapterBlock:
    """One titled XHTML body fragment of the book."""

    title: str
    html: str
    before_toc: bool = False
    exclude_from_toc: bool = False


@dataclass(frozen=True)
class BookManifest:
    title: str
    author: str
    number_chapters_in_toc: bool
    chapters: list[ChapterBlock] = field(default_factory=list)

    @property
    def toc_chapters(self) -> list[ChapterBlock]:
        return [c for c in self.chapters if not c.exclude_from_toc]


def escape_html(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def page_to_html(text: str) -> str:
    """Escape page text and turn each line into a paragraph."""
    return "<p>" + escape_html(text).replace("\n", "</p><p>") + "</p>"


def cover_block(title: str, author: str) -> ChapterBlock:
    html = f'<div class="cover"><h1>{escape_html(title)}</h1>'
    if author:
        html += f'<p class="author">{escape_html(author)}</p>'
    html += "</div>"
    return ChapterBlock(title="Cover", html=html, before_toc=True, exclude_from_toc=True)


def _join_pages(pages: list[str]) -> str:
    return "\n".join(page_to_html(p) for p in pages)


def assemble_book(
    pages: list[str] | tuple[str, ...],
    marks: list[ChapterMark] | tuple[ChapterMark, ...],
    title: str,
    author: str,
) -> BookManifest:
    """Build the chapter list for export.

    Without chapter marks every page becomes its own chapter, "Page N".
    With marks, pages before the first mark form a "Preface" and each mark
    runs up to the page before the next mark. A cover block always comes
    first and stays out of the table of contents.

    Args:
        pages: Displayed page texts
        marks: Chapter marks on those pages
        title: Book title
        author: Book author

    Returns:
        BookManifest whose first chapter is the cover
    """
    pages = list(pages)
    marks = sorted(
        (m for m in marks if 0 <= m.page_index < len(pages)),
        key=lambda m: m.page_index,
    )
    blocks = [cover_block(title, author)]

    if not marks:
        for i, text in enumerate(pages):
            blocks.append(ChapterBlock(title=f"Page {i + 1}", html=page_to_html(text)))
        return BookManifest(title, author, number_chapters_in_toc=False, chapters=blocks)

    first = marks[0].page_index
    if first > 0:
        blocks.append(ChapterBlock(title="Preface", html=_join_pages(pages[:first])))

    for n, mark in enumerate(marks):
        end = marks[n + 1].page_index if n + 1 < len(marks) else len(pages)
        chapter_title = mark.title.strip() or f"Chapter {n + 1}"
        blocks.append(ChapterBlock(title=chapter_title, html=_join_pages(pages[mark.page_index:end])))

    return BookManifest(title, author, number_chapters_in_toc=True, chapters=blocks)
