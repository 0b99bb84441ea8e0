"""Answer generators that turn an assembled context into prose."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

DEFAULT_OLLAMA_CHAT_MODEL = "llama3.1:8b"

SYSTEM_PROMPT = " ".join(
    [
        "You are a repo assistant.",
        "Answer ONLY using the provided context.",
        "If the answer is not in the context, say you don't know and ask what file or area to index.",
        "Always cite sources using [S1], [S2], etc.",
    ]
)

NO_CONTEXT_ANSWER = (
    "I don't know: nothing relevant is indexed for this question. "
    "Which file or area should be indexed?"
)


class GenerationError(RuntimeError):
    """The answer generator failed."""


def build_prompt(question: str, context: str) -> str:
    return "\n".join(
        [
            f"Question:\n{question}\n",
            f"Context:\n{context}\n",
            "Write a helpful, concise answer. Include citations like [S1].",
        ]
    )


class AnswerGenerator(ABC):
    """Generator interface consumed by `RepoAnswerer`."""

    @abstractmethod
    def generate(self, question: str, context: str) -> str:
        """Return an answer grounded in `context`."""


class OllamaGenerator(AnswerGenerator):
    """Non-streaming call to Ollama's `/api/generate`."""

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        model: str = DEFAULT_OLLAMA_CHAT_MODEL,
        temperature: float = 0.2,
        timeout: float = 120.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def generate(self, question: str, context: str) -> str:
        payload = {
            "model": self.model,
            "system": SYSTEM_PROMPT,
            "prompt": build_prompt(question, context),
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        try:
            response = self._client.post("/api/generate", json=payload)
        except httpx.HTTPError as exc:
            raise GenerationError(f"Ollama generate request failed: {exc}") from exc
        if response.is_error:
            raise GenerationError(
                f"Ollama error: {response.status_code} {response.reason_phrase}\n{response.text}"
            )
        try:
            data: Any = response.json()
        except ValueError as exc:
            raise GenerationError(f"Ollama generate response is not JSON: {exc}") from exc
        return str(data.get("response", "") if isinstance(data, dict) else "").strip()

    def close(self) -> None:
        self._client.close()


class ChatModelGenerator(AnswerGenerator):
    """Runs any LangChain chat model (e.g. `ChatOpenAI`) over the context."""

    def __init__(self, llm: BaseChatModel) -> None:
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", SYSTEM_PROMPT),
                ("human", "{prompt}"),
            ]
        )
        self._chain = prompt | llm | StrOutputParser()

    def generate(self, question: str, context: str) -> str:
        try:
            answer = self._chain.invoke({"prompt": build_prompt(question, context)})
        except Exception as exc:
            raise GenerationError(f"Chat model failed: {exc}") from exc
        return str(answer).strip()


_CONTEXT_BLOCK = re.compile(
    r"^### \[(?P<marker>S\d+)\] (?P<source>[^\n]+)\nSimilarity: [-0-9.]+\n\n(?P<body>.*?)(?=\n### \[S\d+\] |\Z)",
    flags=re.MULTILINE | re.DOTALL,
)


class ExtractiveGenerator(AnswerGenerator):
    """Answers from the top context blocks without any model.

    Useful for offline environments: the answer is the first sentence or two
    of the leading blocks, each followed by its citation marker.
    """

    def __init__(self, max_blocks: int = 3, max_chars: int = 280) -> None:
        self.max_blocks = max_blocks
        self.max_chars = max_chars

    def generate(self, question: str, context: str) -> str:
        del question
        lines: list[str] = []
        for match in _CONTEXT_BLOCK.finditer(context):
            if len(lines) >= self.max_blocks:
                break
            body = " ".join(
                line.strip()
                for line in match.group("body").splitlines()
                if line.strip() and not line.lstrip().startswith("#")
            )
            if not body:
                continue
            snippet = body if len(body) <= self.max_chars else body[: self.max_chars - 3] + "..."
            lines.append(f"{len(lines) + 1}. {snippet} [{match.group('marker')}]")
        if not lines:
            return NO_CONTEXT_ANSWER
        return "\n".join(lines)
