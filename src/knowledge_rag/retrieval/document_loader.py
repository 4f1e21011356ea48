"""knowledge_rag.retrieval.document_loader

Filesystem document loading.

Documents are plain text, Markdown or HTML files. Each file becomes a
:class:`~knowledge_rag.common.schemas.LoadedDocument` whose ``file_path`` is
the identity key used by the store, so directory loads record paths relative
to the directory they were loaded from.

Classes
-------
FileSystemDocumentLoader
    Reads documents from files and directory trees.

Functions
---------
extract_markdown_title
    Return the first level-1 or level-2 Markdown heading.
html_to_text
    Reduce an HTML page to its title and visible text.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Iterable, Mapping

from bs4 import BeautifulSoup

from knowledge_rag.common.exceptions import DocumentLoadError
from knowledge_rag.common.schemas import LoadedDocument, normalize_file_path

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".md", ".markdown", ".txt", ".html")
HTML_EXTENSIONS = (".html", ".htm")

_HEADING_RE = re.compile(r"^#{1,2}\s+(.+?)\s*#*\s*$", re.MULTILINE)


def extract_markdown_title(content: str) -> str | None:
    """Return the text of the first ``#`` or ``##`` heading, if any."""
    m = _HEADING_RE.search(content)
    if m:
        title = m.group(1).strip()
        return title or None
    return None


def html_to_text(html: str) -> tuple[str | None, str]:
    """Parse ``html`` and return ``(title, text)``.

    Script and style elements are removed; remaining text is joined line by
    line with blank lines dropped.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = None
    if soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    body = soup.body or soup
    lines = (line.strip() for line in body.get_text("\n").splitlines())
    return title, "\n".join(line for line in lines if line)


class FileSystemDocumentLoader:
    """Load documents from the local filesystem.

    Parameters
    ----------
    extensions : Iterable[str], optional
        File suffixes (case-insensitive, with leading dot) picked up by
        :meth:`load_directory`.
    encoding : str, optional
        Text encoding of the files. Defaults to ``"utf-8"``.
    """

    def __init__(self, extensions: Iterable[str] = DEFAULT_EXTENSIONS, encoding: str = "utf-8"):
        exts = tuple(
            e.lower() if e.startswith(".") else f".{e.lower()}"
            for e in (str(x).strip() for x in extensions)
            if e
        )
        if not exts:
            raise ValueError("FileSystemDocumentLoader needs at least one extension.")
        self.extensions = exts
        self.encoding = encoding

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "FileSystemDocumentLoader":
        cfg = dict(config or {})
        extensions = cfg.get("extensions", DEFAULT_EXTENSIONS)
        if isinstance(extensions, str):
            extensions = [extensions]
        return cls(extensions=extensions, encoding=cfg.get("encoding", "utf-8"))

    def load(self, path: str | Path, *, identity: str | None = None) -> LoadedDocument:
        """Load one file.

        Parameters
        ----------
        path : str or Path
            File to read.
        identity : str or None, optional
            Path recorded on the document. Defaults to ``path`` itself.

        Returns
        -------
        LoadedDocument
            The document with its title and text content.

        Raises
        ------
        DocumentLoadError
            If the path does not exist, is not a file, or cannot be decoded.
        """
        p = Path(path)
        if not p.exists():
            raise DocumentLoadError(str(path), "file does not exist")
        if not p.is_file():
            raise DocumentLoadError(str(path), "not a regular file")

        try:
            raw = p.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentLoadError(str(path), str(e)) from e

        if p.suffix.lower() in HTML_EXTENSIONS:
            title, content = html_to_text(raw)
        else:
            title, content = extract_markdown_title(raw), raw

        return LoadedDocument(
            file_path=normalize_file_path(identity if identity is not None else str(p)),
            title=title or p.stem,
            content=content,
        )

    def iter_paths(self, path: str | Path) -> list[Path]:
        """Return supported files below ``path`` in sorted order."""
        root = Path(path)
        if not root.is_dir():
            raise DocumentLoadError(str(path), "not a directory")
        return sorted(
            p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in self.extensions
        )

    def load_directory(self, path: str | Path) -> list[LoadedDocument]:
        """Load every supported file below ``path``.

        Files that fail to load are skipped with a warning. Recorded paths are
        relative to ``path``.

        Raises
        ------
        DocumentLoadError
            If ``path`` is not a directory.
        """
        root = Path(path)
        documents: list[LoadedDocument] = []
        for file in self.iter_paths(root):
            try:
                documents.append(self.load(file, identity=file.relative_to(root).as_posix()))
            except DocumentLoadError as e:
                logger.warning("Skipping %s: %s", file, e.reason)
        logger.info("Loaded %d document(s) from %s", len(documents), root)
        return documents


__all__ = [
    "FileSystemDocumentLoader",
    "extract_markdown_title",
    "html_to_text",
    "DEFAULT_EXTENSIONS",
]
