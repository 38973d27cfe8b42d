"""
Keyword catalog over the whole tool table.

Built once from the registry. Search always covers every tool, whatever
the active profile; the profile only decides the
`visibleInCurrentProfile` flag on each match, so callers can tell
"usable now" from "usable, but not advertised".
"""

import difflib
import re
from dataclasses import dataclass
from typing import Optional

from ..godot.types import Profile
from .registry import ToolDefinition, ToolRegistry


_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def tokenize(text: str) -> set[str]:
    """Lower-cased alphanumeric tokens of `text`."""
    return {token for token in _TOKEN_SPLIT.split(text.lower()) if token}


@dataclass(frozen=True)
class CatalogMatch:
    definition: ToolDefinition
    score: int
    visible: bool

    def to_dict(self) -> dict:
        return {
            "canonicalName": self.definition.canonical_name,
            "aliases": sorted(self.definition.aliases),
            "description": self.definition.description,
            "backendKind": self.definition.backend.value,
            "visibleInCurrentProfile": self.visible,
            "score": self.score,
        }


class CatalogIndex:
    """Token index for tool discovery."""

    def __init__(self, registry: ToolRegistry):
        self._entries: list[tuple[ToolDefinition, frozenset[str]]] = []
        self._names: dict[str, str] = {}

        for definition in registry.definitions():
            tokens = tokenize(definition.canonical_name)
            for alias in definition.aliases:
                tokens.add(alias.lower())
                tokens |= tokenize(alias)
                self._names[alias] = definition.canonical_name
            tokens |= tokenize(definition.description)
            for keyword in definition.keywords:
                tokens |= tokenize(keyword)
            tokens.add(definition.canonical_name.lower())
            self._entries.append((definition, frozenset(tokens)))
            self._names[definition.canonical_name] = definition.canonical_name

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, query: str, profile: Profile, limit: Optional[int] = None) -> list[CatalogMatch]:
        """
        Rank tools by how many query tokens they contain.

        Tools scoring zero are left out. Ties are broken by canonical name,
        so identical (query, profile) pairs always give the same order.
        """
        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        matches = []
        for definition, tokens in self._entries:
            score = len(query_tokens & tokens)
            if score:
                matches.append(CatalogMatch(definition, score, definition.is_visible(profile)))

        matches.sort(key=lambda m: (-m.score, m.definition.canonical_name))
        return matches[:limit] if limit else matches

    def suggest(self, name: str) -> Optional[str]:
        """Best-effort canonical name for a misspelled or unknown tool name."""
        close = difflib.get_close_matches(name, list(self._names), n=1, cutoff=0.6)
        if close:
            return self._names[close[0]]

        matches = self.search(name, Profile.FULL, limit=1)
        return matches[0].definition.canonical_name if matches else None
