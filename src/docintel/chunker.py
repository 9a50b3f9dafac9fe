"""Chunking utilities for splitting document text into indexable pieces."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from .models import CHUNKING_METHODS

_WORD_RE = re.compile(r"\w+")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$")
_SENTENCE_SPLIT_RE = re.compile(r'(?<=[.!?])\s+(?=[A-Z0-9"\'\(])')

MAX_TAG_TERMS = 3
_STOPWORDS = frozenset(
    {
        "a", "about", "after", "all", "also", "an", "and", "any", "are", "as", "at", "be",
        "been", "but", "by", "can", "for", "from", "has", "have", "if", "in", "into", "is",
        "it", "its", "may", "more", "not", "of", "on", "or", "our", "shall", "should", "such",
        "than", "that", "the", "their", "them", "then", "there", "these", "they", "this",
        "those", "to", "was", "we", "were", "which", "will", "with", "would", "you", "your",
    }
)


@dataclass(slots=True)
class TextChunk:
    text: str
    heading_path: tuple[str, ...]
    section_title: str | None
    token_count: int
    char_count: int
    tags: list[str] = field(default_factory=list)

    @property
    def title(self) -> str | None:
        if self.heading_path:
            return " / ".join(self.heading_path)
        return self.section_title


def _count_tokens(text: str) -> int:
    return len(_WORD_RE.findall(text))


def _normalize_block(text: str) -> str:
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _split_sentences(paragraph: str) -> List[str]:
    paragraph = paragraph.strip()
    if not paragraph:
        return []
    sentences = _SENTENCE_SPLIT_RE.split(paragraph)
    return [sentence.strip() for sentence in sentences if sentence.strip()]


def _normalize_paragraph_lines(lines: Sequence[str]) -> str:
    stripped_lines = [line.rstrip() for line in lines if line.strip()]
    if not stripped_lines:
        return ""
    is_list = all(line.lstrip().startswith(("-", "*", "+", "1.", "2.", "3.")) for line in stripped_lines)
    if is_list:
        return "\n".join(line.strip() for line in stripped_lines)
    return " ".join(line.strip() for line in stripped_lines)


def _split_paragraphs(section_text: str) -> List[str]:
    paragraphs: List[str] = []
    buffer: List[str] = []
    for line in section_text.split("\n"):
        if not line.strip():
            if buffer:
                paragraphs.append(_normalize_paragraph_lines(buffer))
                buffer = []
            continue
        buffer.append(line)
    if buffer:
        paragraphs.append(_normalize_paragraph_lines(buffer))
    return [paragraph for paragraph in paragraphs if paragraph]


def _split_large_paragraph(paragraph: str, max_tokens: int) -> List[str]:
    if _count_tokens(paragraph) <= max_tokens:
        return [paragraph]
    pieces: List[str] = []
    current: List[str] = []
    token_count = 0
    for sentence in _split_sentences(paragraph):
        tokens = _count_tokens(sentence)
        if tokens > max_tokens:
            if current:
                pieces.append(" ".join(current))
                current, token_count = [], 0
            words = sentence.split()
            pieces.extend(" ".join(words[i : i + max_tokens]) for i in range(0, len(words), max_tokens))
            continue
        if token_count + tokens > max_tokens and current:
            pieces.append(" ".join(current))
            current, token_count = [], 0
        current.append(sentence)
        token_count += tokens
    if current:
        pieces.append(" ".join(current))
    return pieces


def _top_terms(text: str, limit: int = MAX_TAG_TERMS) -> List[str]:
    counts = Counter(
        word
        for word in (match.lower() for match in _WORD_RE.findall(text))
        if len(word) > 2 and word not in _STOPWORDS and not word.isdigit()
    )
    return [term for term, _ in counts.most_common(limit)]


def _make_chunk(text: str, method: str, heading_path: tuple[str, ...], section_title: str | None) -> TextChunk:
    text = text.strip()
    return TextChunk(
        text=text,
        heading_path=heading_path,
        section_title=section_title,
        token_count=_count_tokens(text),
        char_count=len(text),
        tags=[method, *_top_terms(text)],
    )


def _tail_words(text: str, overlap: int) -> str:
    if overlap <= 0:
        return ""
    words = text.split()
    if overlap >= len(words):
        return ""
    return " ".join(words[-overlap:])


def _fixed_chunks(text: str, chunk_size: int, chunk_overlap: int) -> List[TextChunk]:
    words = text.split()
    step = max(1, chunk_size - chunk_overlap)
    chunks: List[TextChunk] = []
    for start in range(0, len(words), step):
        window = words[start : start + chunk_size]
        chunks.append(_make_chunk(" ".join(window), "fixed", tuple(), None))
        if start + chunk_size >= len(words):
            break
    return chunks


def _semantic_chunks(
    paragraphs: Iterable[str],
    *,
    chunk_size: int,
    chunk_overlap: int,
    method: str = "semantic",
    heading_path: tuple[str, ...] = tuple(),
    section_title: str | None = None,
) -> List[TextChunk]:
    chunks: List[TextChunk] = []
    current_parts: List[str] = []
    current_tokens = 0
    fresh_tokens = 0

    def emit() -> None:
        nonlocal current_parts, current_tokens, fresh_tokens
        text = "\n\n".join(part for part in current_parts if part)
        chunks.append(_make_chunk(text, method, heading_path, section_title))
        carry = _tail_words(text, chunk_overlap)
        current_parts = [carry] if carry else []
        current_tokens = _count_tokens(carry)
        fresh_tokens = 0

    for paragraph in paragraphs:
        for piece in _split_large_paragraph(paragraph, chunk_size):
            piece_tokens = _count_tokens(piece)
            if piece_tokens == 0:
                continue
            if fresh_tokens and current_tokens + piece_tokens > chunk_size:
                emit()
            current_parts.append(piece)
            current_tokens += piece_tokens
            fresh_tokens += piece_tokens
            if current_tokens >= chunk_size:
                emit()

    if fresh_tokens:
        emit()
    return chunks


def _header_chunks(text: str, chunk_size: int, chunk_overlap: int) -> List[TextChunk]:
    heading_stack: List[str] = []
    section_lines: List[str] = []
    section_title: str | None = None
    chunks: List[TextChunk] = []

    def flush_section() -> None:
        section_text = "\n".join(section_lines).strip()
        section_lines.clear()
        if not section_text:
            return
        heading_path = tuple(heading_stack)
        if _count_tokens(section_text) <= chunk_size:
            chunks.append(_make_chunk(section_text, "header", heading_path, section_title))
            return
        chunks.extend(
            _semantic_chunks(
                _split_paragraphs(section_text),
                chunk_size=chunk_size,
                chunk_overlap=chunk_overlap,
                method="header",
                heading_path=heading_path,
                section_title=section_title,
            )
        )

    for line in text.split("\n"):
        match = _HEADING_RE.match(line)
        if match:
            flush_section()
            level = len(match.group(1))
            title = match.group(2).strip()
            heading_stack = heading_stack[: level - 1] + [title]
            section_title = title
            continue
        section_lines.append(line)
    flush_section()
    return chunks


def chunk_document(
    text: str,
    *,
    method: str = "semantic",
    chunk_size: int = 150,
    chunk_overlap: int = 20,
) -> List[TextChunk]:
    """Split ``text`` into chunks using one of the supported chunking methods.

    ``chunk_size`` and ``chunk_overlap`` are measured in words. ``fixed`` uses
    sliding windows, ``semantic`` groups whole paragraphs and sentences, and
    ``header`` splits on markdown headings before falling back to semantic
    grouping for oversized sections.
    """

    if method not in CHUNKING_METHODS:
        raise ValueError(f"Unknown chunking method '{method}'")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be non-negative and smaller than chunk_size")

    text = _normalize_block(text)
    if not text:
        return []

    if method == "fixed":
        return _fixed_chunks(text, chunk_size, chunk_overlap)
    if method == "header":
        return _header_chunks(text, chunk_size, chunk_overlap)
    return _semantic_chunks(_split_paragraphs(text), chunk_size=chunk_size, chunk_overlap=chunk_overlap)


__all__ = ["TextChunk", "chunk_document"]
