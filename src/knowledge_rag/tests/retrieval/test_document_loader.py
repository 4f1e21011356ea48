import pytest

from knowledge_rag.common.exceptions import DocumentLoadError
from knowledge_rag.retrieval.document_loader import (
    FileSystemDocumentLoader,
    extract_markdown_title,
    html_to_text,
)


@pytest.fixture
def loader():
    return FileSystemDocumentLoader()


def test_markdown_title_from_first_heading():
    assert extract_markdown_title("intro\n## Install ##\n# Later") == "Install"
    assert extract_markdown_title("### too deep\ntext") is None


def test_html_to_text_drops_scripts():
    html = (
        "<html><head><title> Release Notes </title><style>p{}</style></head>"
        "<body><h1>v2</h1><script>alert(1)</script><p>Faster   search.</p></body></html>"
    )

    title, text = html_to_text(html)

    assert title == "Release Notes"
    assert text == "v2\nFaster   search."


def test_load_markdown(loader, tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("# User Guide\n\nBody text.\n", encoding="utf-8")

    doc = loader.load(path)

    assert doc.title == "User Guide"
    assert doc.content == "# User Guide\n\nBody text.\n"
    assert doc.file_path == str(path).strip("/")


def test_title_falls_back_to_file_stem(loader, tmp_path):
    path = tmp_path / "release-notes.txt"
    path.write_text("no heading here", encoding="utf-8")

    assert loader.load(path, identity="notes/release-notes.txt").title == "release-notes"


def test_load_errors(loader, tmp_path):
    with pytest.raises(DocumentLoadError, match="file does not exist"):
        loader.load(tmp_path / "missing.md")
    with pytest.raises(DocumentLoadError, match="not a regular file"):
        loader.load(tmp_path)

    bad = tmp_path / "bad.md"
    bad.write_bytes(b"\xff\xfe\xfa")
    with pytest.raises(DocumentLoadError):
        loader.load(bad)


def test_load_directory_uses_relative_paths_and_skips_bad_files(tmp_path):
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "a.MD").write_text("# A", encoding="utf-8")
    (tmp_path / "b.html").write_text("<title>B</title><p>b</p>", encoding="utf-8")
    (tmp_path / "broken.md").write_bytes(b"\xff\xfe")
    (tmp_path / "image.png").write_bytes(b"png")

    docs = FileSystemDocumentLoader().load_directory(tmp_path)

    assert [(d.file_path, d.title) for d in docs] == [("b.html", "B"), ("docs/a.MD", "A")]


def test_extension_filter_from_config(tmp_path):
    (tmp_path / "a.md").write_text("a", encoding="utf-8")
    (tmp_path / "b.rst").write_text("b", encoding="utf-8")

    loader = FileSystemDocumentLoader.from_config_dict({"extensions": ["rst"]})

    assert loader.extensions == (".rst",)
    assert [d.file_path for d in loader.load_directory(tmp_path)] == ["b.rst"]


def test_load_directory_requires_directory(loader, tmp_path):
    with pytest.raises(DocumentLoadError, match="not a directory"):
        loader.load_directory(tmp_path / "nope")


def test_empty_extension_list_is_rejected():
    with pytest.raises(ValueError):
        FileSystemDocumentLoader(extensions=[])
