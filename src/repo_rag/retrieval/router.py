"""Keyword-based intent routing.

The router maps a question to one coarse intent and to the ordered path
prefixes where answers for that intent are expected to live. It is a fixed
lookup on purpose so every routing decision can be read off the tables below.

When several intents match, precedence is

    tests > migrations > openapi > auth > db > general

so a question mentioning both "database" and "migration" routes to
`migrations`. The precedence is part of the contract, not an artifact of
evaluation order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType

from repo_rag.types import Intent, RoutePlan

PRECEDENCE: tuple[Intent, ...] = (
    Intent.TESTS,
    Intent.MIGRATIONS,
    Intent.OPENAPI,
    Intent.AUTH,
    Intent.DB,
)

INTENT_KEYWORDS: Mapping[Intent, tuple[str, ...]] = MappingProxyType(
    {
        Intent.TESTS: (
            "integration test",
            "integration tests",
            "vitest",
            "test:db",
            "pnpm test",
        ),
        Intent.MIGRATIONS: (
            "migration",
            "migrations",
            "database migrations",
            "sql-first",
        ),
        Intent.OPENAPI: ("openapi", "swagger", "typebox"),
        Intent.AUTH: ("authentication", "auth", "x-user-id", "jwt", "oauth", "cognito"),
        Intent.DB: (
            "database",
            "postgres",
            "postgresql",
            "pg pool",
            "connection",
            "access the database",
        ),
    }
)

INTENT_PREFIXES: Mapping[Intent, tuple[str, ...]] = MappingProxyType(
    {
        Intent.TESTS: ("apps/api/README.md",),
        Intent.MIGRATIONS: ("apps/docs/app/adr/", "apps/docs/README.md", "README.md"),
        Intent.OPENAPI: (
            "apps/api/README.md",
            "apps/docs/app/adr/0002-fastify-typebox-openapi.md",
        ),
        Intent.AUTH: ("apps/api/README.md", "README.md"),
        Intent.DB: ("README.md", "apps/api/README.md"),
        Intent.GENERAL: (),
    }
)


class KeywordRouter:
    """Routes with static keyword and prefix tables.

    The default tables are the module constants. A deployment with a
    different repository layout builds its own instance at startup; tables are
    copied and never mutated afterwards.
    """

    def __init__(
        self,
        keywords: Mapping[Intent, Sequence[str]] = INTENT_KEYWORDS,
        prefixes: Mapping[Intent, Sequence[str]] = INTENT_PREFIXES,
    ) -> None:
        self._keywords = MappingProxyType(
            {intent: tuple(word.casefold() for word in words) for intent, words in keywords.items()}
        )
        self._prefixes = MappingProxyType(
            {intent: tuple(values) for intent, values in prefixes.items()}
        )

    def classify(self, query: str) -> RoutePlan:
        normalized = query.casefold()
        for intent in PRECEDENCE:
            words = self._keywords.get(intent, ())
            if any(word in normalized for word in words):
                return RoutePlan(intent=intent, prefixes=self._prefixes.get(intent, ()))
        return RoutePlan(intent=Intent.GENERAL, prefixes=self._prefixes.get(Intent.GENERAL, ()))

    def matched_intents(self, query: str) -> list[Intent]:
        """All intents whose keywords occur in `query`, in precedence order."""
        normalized = query.casefold()
        return [
            intent
            for intent in PRECEDENCE
            if any(word in normalized for word in self._keywords.get(intent, ()))
        ]


_DEFAULT_ROUTER = KeywordRouter()


def classify(query: str) -> RoutePlan:
    """Classify `query` with the default routing tables."""
    return _DEFAULT_ROUTER.classify(query)
