"""Repo RAG package."""

from .config import DiversityConfig, RetrievalConfig, SelectionConfig, SelectionOptions

__all__ = ["DiversityConfig", "RetrievalConfig", "SelectionConfig", "SelectionOptions"]
