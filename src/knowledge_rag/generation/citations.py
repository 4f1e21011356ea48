"""knowledge_rag.generation.citations

Citation extraction and quality metrics for generated answers.

The answering prompt asks the model to cite sources as
``[Source: <title>](<path>)``. Models do not always comply, so the parser
also accepts numbered references (``[1] Title (path)``) and bare
``Source: path`` mentions. Citations are then checked against the documents
that were actually in the prompt context, and :class:`CitationAnalyzer`
aggregates the results over a batch of answers.

Classes
-------
Citation
    One source reference found in an answer.
CitationParser
    Extracts and validates citations.
AnswerCitations
    Citations of one answer with their validity.
CitationMetrics
    Aggregate citation quality over many answers.
CitationAnalyzer
    Accumulates answers and computes :class:`CitationMetrics`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from knowledge_rag.common.schemas import RetrievedChunk, normalize_file_path

_MARKDOWN_RE = re.compile(r"\[Source:\s*([^\]]+)\]\(([^)]+)\)", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^\s*\[\d+\]\s*([^(\n]*?)\s*\(([^)\n]+)\)", re.MULTILINE)
_SIMPLE_RE = re.compile(r"\bSources?:\s*([^\s,;()\[\]]+)", re.IGNORECASE)


@dataclass(frozen=True)
class Citation:
    document_path: str
    document_title: str
    text: str
    start: int
    end: int


def _title_from_path(path: str) -> str:
    name = normalize_file_path(path).rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[0] if "." in name else name


def _looks_like_path(token: str) -> bool:
    return "/" in token or "." in token


class CitationParser:
    """Extract source citations from answer text.

    Parameters
    ----------
    known_titles : dict[str, str] or None, optional
        Mapping of document path to title, used to fill in titles of
        citations that only name a path.
    """

    def __init__(self, known_titles: dict[str, str] | None = None):
        self.known_titles = {normalize_file_path(k): v for k, v in (known_titles or {}).items()}

    def _title_for(self, path: str, title: str | None) -> str:
        if title:
            return title
        return self.known_titles.get(normalize_file_path(path)) or _title_from_path(path)

    def parse(self, answer: str) -> list[Citation]:
        """Return citations in order of appearance, unique by normalised path."""
        if not answer:
            return []

        found: list[Citation] = []
        masked = list(answer)

        for m in _MARKDOWN_RE.finditer(answer):
            title, path = m.group(1).strip(), m.group(2).strip()
            if path:
                found.append(Citation(path, self._title_for(path, title), m.group(0), m.start(), m.end()))
            masked[m.start() : m.end()] = " " * (m.end() - m.start())

        masked_text = "".join(masked)
        for m in _NUMBERED_RE.finditer(masked_text):
            title, path = m.group(1).strip(), m.group(2).strip()
            if path:
                found.append(Citation(path, self._title_for(path, title), answer[m.start() : m.end()], m.start(), m.end()))

        for m in _SIMPLE_RE.finditer(masked_text):
            path = m.group(1).strip().rstrip(".:")
            if path and _looks_like_path(path):
                found.append(Citation(path, self._title_for(path, None), answer[m.start() : m.end()], m.start(), m.end()))

        found.sort(key=lambda c: c.start)
        unique: list[Citation] = []
        seen: set[str] = set()
        for c in found:
            key = normalize_file_path(c.document_path)
            if key not in seen:
                seen.add(key)
                unique.append(c)
        return unique

    @staticmethod
    def is_valid(citation: Citation, context_paths: Iterable[str]) -> bool:
        """Return ``True`` if the cited path was among the context documents."""
        target = normalize_file_path(citation.document_path)
        return any(normalize_file_path(p) == target for p in context_paths)

    def validate(self, citations: Sequence[Citation], chunks: Sequence[RetrievedChunk]) -> "AnswerCitations":
        """Split ``citations`` by whether their document was in the prompt context."""
        paths = {c.document_file_path for c in chunks if c.document_file_path}
        valid = [c for c in citations if self.is_valid(c, paths)]
        return AnswerCitations(citations=list(citations), valid_citations=valid)

    def analyze(self, answer: str, chunks: Sequence[RetrievedChunk]) -> "AnswerCitations":
        return self.validate(self.parse(answer), chunks)


@dataclass(frozen=True)
class AnswerCitations:
    citations: list[Citation]
    valid_citations: list[Citation]

    @property
    def has_citations(self) -> bool:
        return bool(self.citations)

    @property
    def all_valid(self) -> bool:
        return len(self.valid_citations) == len(self.citations)


@dataclass(frozen=True)
class CitationMetrics:
    """Aggregate citation quality.

    Attributes
    ----------
    total_questions : int
        Number of answers analysed.
    questions_with_citations : int
        Answers containing at least one citation.
    average_citations_per_answer : float
        Mean citation count per answer.
    valid_citations_percentage : float
        Share of citations pointing at a context document, in percent.
    answers_without_hallucinations : int
        Answers whose citations are all valid and number at least
        ``min_citations``.
    """

    total_questions: int
    questions_with_citations: int
    average_citations_per_answer: float
    valid_citations_percentage: float
    answers_without_hallucinations: int


@dataclass
class CitationAnalyzer:
    """Accumulate per-answer citation results and compute metrics."""

    parser: CitationParser = field(default_factory=CitationParser)
    min_citations: int = 2
    results: list[AnswerCitations] = field(default_factory=list)

    def record(self, answer: str, chunks: Sequence[RetrievedChunk]) -> AnswerCitations:
        result = self.parser.analyze(answer, chunks)
        self.results.append(result)
        return result

    def metrics(self) -> CitationMetrics:
        total = len(self.results)
        total_citations = sum(len(r.citations) for r in self.results)
        total_valid = sum(len(r.valid_citations) for r in self.results)
        grounded = sum(
            1
            for r in self.results
            if r.has_citations and r.all_valid and len(r.citations) >= self.min_citations
        )
        return CitationMetrics(
            total_questions=total,
            questions_with_citations=sum(1 for r in self.results if r.has_citations),
            average_citations_per_answer=total_citations / total if total else 0.0,
            valid_citations_percentage=100.0 * total_valid / total_citations if total_citations else 0.0,
            answers_without_hallucinations=grounded,
        )


__all__ = [
    "Citation",
    "CitationParser",
    "AnswerCitations",
    "CitationMetrics",
    "CitationAnalyzer",
]
