"""Header-aware markdown chunking and fixed-size text chunking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from hashlib import sha256

from repo_rag.config import ChunkingConfig
from repo_rag.retrieval.vector_store import normalize_source_path
from repo_rag.types import Chunk, ChunkMetadata, RawDocument, SourceType

_HEADER = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")

DOCUMENT_SECTION = "Document"


def _sha256(value: str) -> str:
    return sha256(value.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class _Section:
    section_path: str
    heading: str | None
    text: str


class MarkdownChunker:
    """Splits markdown into header sections, then packs paragraphs by size.

    Design notes:
    1. Sections follow ATX headers. The section path joins the titles of the
       enclosing headers (`Title > Sub`); text before the first header
       belongs to `Document`.
    2. A section longer than `max_chars` is packed paragraph by paragraph.
       A single paragraph longer than `max_chars` is cut into fixed slices.
    3. The first part of each section is prefixed with its heading line so
       the heading words take part in the embedding.

    Chunk ids hash collection, path, section, part index and content hash,
    so re-ingesting unchanged files upserts the same ids.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_document(self, document: RawDocument) -> list[Chunk]:
        source_path = normalize_source_path(document.path)
        chunks: list[Chunk] = []
        for section in self._split_sections(document.content):
            parts = split_by_size(section.text, self.config.max_chars)
            for index, part in enumerate(parts):
                text = part.strip()
                if section.heading and index == 0:
                    text = f"{section.heading}\n\n{text}".strip()
                content_hash = _sha256(text)
                chunk_id = _sha256(
                    f"{document.collection}:{source_path}:{section.section_path}:"
                    f"{index}:{content_hash}"
                )
                chunks.append(
                    Chunk(
                        chunk_id=chunk_id,
                        text=text,
                        metadata=ChunkMetadata(
                            collection=document.collection,
                            source_path=source_path,
                            source_type=document.source_type,
                            section_path=section.section_path,
                            content_hash=content_hash,
                        ),
                    )
                )
        return chunks

    @staticmethod
    def _split_sections(markdown: str) -> list[_Section]:
        sections: list[_Section] = []
        stack: list[tuple[int, str]] = []
        buffer: list[str] = []
        heading: str | None = None

        def _flush() -> None:
            text = "\n".join(buffer).strip()
            buffer.clear()
            if not text:
                return
            path = " > ".join(title for _, title in stack) if stack else DOCUMENT_SECTION
            sections.append(_Section(section_path=path, heading=heading, text=text))

        for line in markdown.splitlines():
            match = _HEADER.match(line)
            if match is None:
                buffer.append(line)
                continue
            _flush()
            level = len(match.group(1))
            title = match.group(2)
            heading = f"{match.group(1)} {title}"
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, title))
        _flush()
        return sections


class TextChunker:
    """Cuts plain text into fixed `max_chars` slices under section `Document`."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_document(self, document: RawDocument) -> list[Chunk]:
        source_path = normalize_source_path(document.path)
        trimmed = document.content.strip()
        if not trimmed:
            return []
        size = self.config.max_chars
        parts = [trimmed[i : i + size] for i in range(0, len(trimmed), size)]

        chunks: list[Chunk] = []
        for index, text in enumerate(parts):
            content_hash = _sha256(text)
            chunks.append(
                Chunk(
                    chunk_id=_sha256(
                        f"{document.collection}:{source_path}:{index}:{content_hash}"
                    ),
                    text=text,
                    metadata=ChunkMetadata(
                        collection=document.collection,
                        source_path=source_path,
                        source_type=document.source_type,
                        section_path=DOCUMENT_SECTION,
                        content_hash=content_hash,
                    ),
                )
            )
        return chunks


def split_by_size(text: str, max_chars: int) -> list[str]:
    """Pack paragraphs up to `max_chars`; slice paragraphs that exceed it."""
    if len(text) <= max_chars:
        return [text]

    parts: list[str] = []
    current = ""
    for paragraph in _PARAGRAPH_BREAK.split(text):
        piece = paragraph.strip()
        if not piece:
            continue
        candidate = f"{current}\n\n{piece}" if current else piece
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            parts.append(current)
        if len(piece) <= max_chars:
            current = piece
        else:
            parts.extend(piece[i : i + max_chars] for i in range(0, len(piece), max_chars))
            current = ""
    if current:
        parts.append(current)
    return parts


def chunk_documents(
    documents: list[RawDocument], config: ChunkingConfig | None = None
) -> list[Chunk]:
    """Dispatch each document to the chunker for its source type."""
    markdown = MarkdownChunker(config)
    text = TextChunker(config)
    chunks: list[Chunk] = []
    for document in documents:
        if document.source_type is SourceType.MARKDOWN:
            chunks.extend(markdown.chunk_document(document))
        elif document.source_type is SourceType.TEXT:
            chunks.extend(text.chunk_document(document))
    return chunks
