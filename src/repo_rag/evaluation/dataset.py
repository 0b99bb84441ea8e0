"""Evaluation dataset loading."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class EvalCase(BaseModel):
    """One labeled question.

    On disk a case is a JSON object `{id?, q, collection, mustContain}`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str | None = None
    query: str = Field(alias="q")
    collection: str
    must_contain: tuple[str, ...] = Field(alias="mustContain", default=())


def load_jsonl(path: str | Path) -> list[EvalCase]:
    """Load one case per non-blank line.

    Raises:
        FileNotFoundError: If the dataset file does not exist.
        ValueError: If a line is not valid JSON or misses required fields;
            the message names the line number.
    """
    p = Path(path)
    cases: list[EvalCase] = []
    for line_no, line in enumerate(p.read_text(encoding="utf-8").splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        try:
            payload = json.loads(stripped)
            if isinstance(payload.get("id"), int):
                payload["id"] = str(payload["id"])
            cases.append(EvalCase.model_validate(payload))
        except (json.JSONDecodeError, AttributeError, ValueError) as exc:
            raise ValueError(f"{p}:{line_no}: invalid eval case: {exc}") from exc
    return cases
