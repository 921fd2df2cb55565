"""
EPUB generation from an assembled chapter manifest.
"""

import io
import logging
import os
import re
import tempfile
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .assembler import BookManifest, ChapterBlock

logger = logging.getLogger(__name__)


@dataclass
class EPUBMetadata:
    """Metadata for EPUB file."""

    title: str
    author: str = "Unknown"
    language: str = "en"
    identifier: str = ""
    date: str = ""

    def __post_init__(self) -> None:
        if not self.identifier:
            self.identifier = f"urn:uuid:{uuid.uuid4()}"
        if not self.date:
            self.date = datetime.now().strftime("%Y-%m-%d")


def safe_filename(title: str) -> str:
    """``{title}.epub`` with characters no filesystem accepts replaced."""
    name = re.sub(r'[<>:"/\\|?*\x00-\x1f]', "_", title).strip().strip(".")
    return f"{name or 'book'}.epub"


class EPUBBuilder:
    """Builds EPUB 3 files (with an NCX for older readers) from a manifest."""

    def __init__(self, manifest: BookManifest, language: str = "en") -> None:
        """Initialize EPUB builder.

        Args:
            manifest: Assembled chapters and book metadata
            language: Book language code
        """
        self.manifest = manifest
        self.metadata = EPUBMetadata(
            title=manifest.title,
            author=manifest.author or "Unknown",
            language=language,
        )

    def build(self) -> bytes:
        """Serialize the book to EPUB bytes."""
        chapters = self.manifest.chapters
        chapter_ids = [f"chapter{i}" for i in range(len(chapters))]
        buffer = io.BytesIO()

        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as epub:
            # Mimetype must be first and uncompressed
            epub.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
            epub.writestr("META-INF/container.xml", self._container_xml())
            epub.writestr("OEBPS/content.opf", self._content_opf(chapter_ids))
            epub.writestr("OEBPS/toc.ncx", self._toc_ncx())
            epub.writestr("OEBPS/nav.xhtml", self._nav_xhtml())
            epub.writestr("OEBPS/stylesheet.css", self._stylesheet())

            for chap_id, chapter in zip(chapter_ids, chapters):
                epub.writestr(f"OEBPS/{chap_id}.xhtml", self._chapter_xhtml(chapter))

        logger.info(f"Built EPUB {self.metadata.title!r} with {len(chapters)} sections")
        return buffer.getvalue()

    def write(self, output_dir: Path) -> Path:
        """Build and save as ``{title}.epub``.

        The file is written under a temporary name and renamed into place,
        so a failed build never leaves a partial EPUB behind.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / safe_filename(self.metadata.title)

        data = self.build()
        fd, tmp_name = tempfile.mkstemp(dir=output_dir, suffix=".epub.part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, output_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info(f"Created EPUB: {output_path}")
        return output_path

    def _toc_entries(self) -> list[tuple[int, str]]:
        """(chapter position, label) for every chapter shown in the TOC."""
        entries = []
        number = 0
        for i, chapter in enumerate(self.manifest.chapters):
            if chapter.exclude_from_toc:
                continue
            number += 1
            label = chapter.title
            if self.manifest.number_chapters_in_toc:
                label = f"{number}. {label}"
            entries.append((i, label))
        return entries

    def _chapter_xhtml(self, chapter: ChapterBlock) -> str:
        heading = "" if chapter.before_toc else f"<h1>{self._escape_xml(chapter.title)}</h1>\n"
        return f'''<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="{self.metadata.language}">
<head>
    <meta charset="UTF-8"/>
    <title>{self._escape_xml(chapter.title)}</title>
    <link rel="stylesheet" type="text/css" href="stylesheet.css"/>
</head>
<body>
{heading}{chapter.html}
</body>
</html>'''

    def _container_xml(self) -> str:
        """Generate META-INF/container.xml."""
        return '''<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
    <rootfiles>
        <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
    </rootfiles>
</container>'''

    def _content_opf(self, chapter_ids: list[str]) -> str:
        """Generate OEBPS/content.opf (package document).

        Chapters flagged ``before_toc`` come ahead of the navigation page in
        the spine.
        """
        manifest_items = [
            '<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>',
            '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>',
            '<item id="css" href="stylesheet.css" media-type="text/css"/>',
        ]
        front, body = [], []

        for chap_id, chapter in zip(chapter_ids, self.manifest.chapters):
            manifest_items.append(
                f'<item id="{chap_id}" href="{chap_id}.xhtml" media-type="application/xhtml+xml"/>'
            )
            (front if chapter.before_toc else body).append(f'<itemref idref="{chap_id}"/>')

        spine_items = front + ['<itemref idref="nav"/>'] + body
        modified = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        return f'''<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="BookId">
    <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
        <dc:identifier id="BookId">{self._escape_xml(self.metadata.identifier)}</dc:identifier>
        <dc:title>{self._escape_xml(self.metadata.title)}</dc:title>
        <dc:creator>{self._escape_xml(self.metadata.author)}</dc:creator>
        <dc:language>{self.metadata.language}</dc:language>
        <dc:date>{self.metadata.date}</dc:date>
        <meta property="dcterms:modified">{modified}</meta>
    </metadata>
    <manifest>
        {chr(10).join(manifest_items)}
    </manifest>
    <spine toc="ncx">
        {chr(10).join(spine_items)}
    </spine>
</package>'''

    def _toc_ncx(self) -> str:
        """Generate OEBPS/toc.ncx (for EPUB2 compatibility)."""
        nav_points = []
        for order, (i, label) in enumerate(self._toc_entries(), start=1):
            nav_points.append(f'''
        <navPoint id="navpoint{i}" playOrder="{order}">
            <navLabel><text>{self._escape_xml(label)}</text></navLabel>
            <content src="chapter{i}.xhtml"/>
        </navPoint>''')

        return f'''<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
    <head>
        <meta name="dtb:uid" content="{self._escape_xml(self.metadata.identifier)}"/>
        <meta name="dtb:depth" content="1"/>
        <meta name="dtb:totalPageCount" content="0"/>
        <meta name="dtb:maxPageNumber" content="0"/>
    </head>
    <docTitle><text>{self._escape_xml(self.metadata.title)}</text></docTitle>
    <navMap>
        {''.join(nav_points)}
    </navMap>
</ncx>'''

    def _nav_xhtml(self) -> str:
        """Generate OEBPS/nav.xhtml (EPUB3 navigation)."""
        nav_items = [
            f'<li><a href="chapter{i}.xhtml">{self._escape_xml(label)}</a></li>'
            for i, label in self._toc_entries()
        ]

        return f'''<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{self.metadata.language}">
<head>
    <meta charset="UTF-8"/>
    <title>Table of Contents</title>
    <link rel="stylesheet" type="text/css" href="stylesheet.css"/>
</head>
<body>
    <nav epub:type="toc">
        <h1>Table of Contents</h1>
        <ol>
            {chr(10).join(nav_items)}
        </ol>
    </nav>
</body>
</html>'''

    def _stylesheet(self) -> str:
        return '''body {
    font-family: Georgia, serif;
    line-height: 1.6;
    margin: 1em;
    text-align: justify;
}

h1 {
    font-family: Helvetica, Arial, sans-serif;
    font-size: 1.6em;
    line-height: 1.3;
    margin-top: 1.5em;
    margin-bottom: 0.5em;
}

p {
    margin: 0.5em 0;
    text-indent: 1.5em;
}

p:first-of-type {
    text-indent: 0;
}

.cover {
    text-align: center;
    margin-top: 30%;
}

.cover h1 {
    font-size: 2.2em;
}

.cover .author {
    font-style: italic;
    text-indent: 0;
}

nav ol {
    list-style: none;
    padding-left: 0;
}
'''

    def _escape_xml(self, text: str) -> str:
        """Escape special XML characters."""
        return (
            text
            .replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
            .replace('"', "&quot;")
            .replace("'", "&apos;")
        )
