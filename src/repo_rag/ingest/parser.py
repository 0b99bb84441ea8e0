"""Repository walking and per-extension document loading."""

from __future__ import annotations

import os
from hashlib import sha256
from pathlib import Path

import structlog

from repo_rag.retrieval.vector_store import normalize_source_path
from repo_rag.types import RawDocument, SourceType

logger = structlog.get_logger(__name__)

DEFAULT_IGNORE_DIRS = frozenset(
    {".git", "node_modules", "dist", "build", ".next", ".turbo", ".vercel", "coverage"}
)
DEFAULT_IGNORE_FILES = frozenset({"pnpm-lock.yaml", "package-lock.json", "yarn.lock"})

DEFAULT_EXTENSIONS: dict[str, SourceType] = {
    ".md": SourceType.MARKDOWN,
    ".markdown": SourceType.MARKDOWN,
    ".txt": SourceType.TEXT,
}


def infer_source_type(
    path: str | Path, extensions: dict[str, SourceType] | None = None
) -> SourceType | None:
    mapping = DEFAULT_EXTENSIONS if extensions is None else extensions
    return mapping.get(Path(path).suffix.lower())


class RepoLoader:
    """Loads indexable files from a repository tree as `RawDocument`s.

    Paths are stored relative to the repository root with forward slashes, so
    routing prefixes like `apps/docs/app/adr/` match on every platform.
    """

    def __init__(
        self,
        *,
        ignore_dirs: frozenset[str] = DEFAULT_IGNORE_DIRS,
        ignore_files: frozenset[str] = DEFAULT_IGNORE_FILES,
        extensions: dict[str, SourceType] | None = None,
    ) -> None:
        self.ignore_dirs = ignore_dirs
        self.ignore_files = ignore_files
        self.extensions = dict(DEFAULT_EXTENSIONS if extensions is None else extensions)

    def walk(self, repo_path: str | Path) -> list[Path]:
        root = Path(repo_path).resolve()
        if not root.is_dir():
            raise ValueError(f"Repository path is not a directory: {repo_path}")

        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(name for name in dirnames if name not in self.ignore_dirs)
            for name in sorted(filenames):
                if name in self.ignore_files:
                    continue
                files.append(Path(dirpath) / name)
        return files

    def load(self, repo_path: str | Path, collection: str) -> list[RawDocument]:
        root = Path(repo_path).resolve()
        documents: list[RawDocument] = []
        for file_path in self.walk(root):
            source_type = infer_source_type(file_path, self.extensions)
            if source_type is None:
                continue
            try:
                content = file_path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.warning("skipping_non_utf8_file", path=str(file_path))
                continue
            rel_path = normalize_source_path(file_path.relative_to(root).as_posix())
            documents.append(
                RawDocument(
                    doc_id=sha256(f"{collection}:{rel_path}".encode("utf-8")).hexdigest(),
                    collection=collection,
                    path=rel_path,
                    source_type=source_type,
                    content=content,
                )
            )
        logger.debug("repo_loaded", root=str(root), documents=len(documents))
        return documents
