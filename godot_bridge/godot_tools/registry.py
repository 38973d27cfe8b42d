"""
Static tool table.

A `ToolDefinition` binds one canonical name to one backend operation,
plus its alternate names (legacy snake_case name, compact-profile name,
any extra aliases), the profiles it is advertised under, an argument
schema and search keywords. `ToolRegistry` indexes the table once and is
read-only afterwards.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from pydantic import BaseModel, ValidationError

from ..godot.errors import RegistryError, ToolValidationError, UnknownToolError
from ..godot.types import BackendKind, Profile


ALL_PROFILES = frozenset(Profile)
NOT_COMPACT = frozenset({Profile.FULL, Profile.LEGACY})


@dataclass(frozen=True)
class ToolDefinition:
    """One entry of the tool table."""
    canonical_name: str
    description: str
    backend: BackendKind
    operation: str
    input_model: type[BaseModel]
    legacy_name: Optional[str] = None
    compact_name: Optional[str] = None
    extra_aliases: tuple[str, ...] = ()
    visible_in: frozenset = ALL_PROFILES
    keywords: frozenset = field(default_factory=frozenset)
    timeout: Optional[float] = None  # overrides the per-backend default

    @property
    def aliases(self) -> frozenset[str]:
        names = {self.legacy_name, self.compact_name, *self.extra_aliases}
        return frozenset(n for n in names if n and n != self.canonical_name)

    @property
    def visibility(self) -> dict[Profile, bool]:
        return {profile: profile in self.visible_in for profile in Profile}

    def is_visible(self, profile: Profile) -> bool:
        return profile in self.visible_in

    def advertised_name(self, profile: Profile) -> Optional[str]:
        """Name this tool is listed under for `profile`, or None if hidden."""
        if not self.is_visible(profile):
            return None
        if profile is Profile.COMPACT:
            return self.compact_name or self.canonical_name
        if profile is Profile.LEGACY:
            return self.legacy_name or self.canonical_name
        return self.canonical_name

    def input_schema(self) -> dict:
        """JSON schema with camelCase property names."""
        return self.input_model.model_json_schema(by_alias=True)

    def validate(self, arguments: object) -> dict:
        """
        Validate call arguments against the schema.

        Returns:
            snake_case parameters for the backend, unset optionals dropped

        Raises:
            ToolValidationError: With the offending field names
        """
        try:
            model = self.input_model.model_validate({} if arguments is None else arguments)
        except ValidationError as e:
            fields, problems = [], []
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"]) or "(root)"
                fields.append(location)
                problems.append(f"{location}: {error['msg']}")
            raise ToolValidationError(self.canonical_name, fields, problems) from None
        return model.model_dump(exclude_none=True)


class ToolRegistry:
    """
    Canonical-name and alias index over the tool table.

    Lookup is exact and case-sensitive: canonical names first, then
    aliases. Fuzzy matching lives in the CatalogIndex.
    """

    def __init__(self, definitions: Iterable[ToolDefinition]):
        self._by_name: dict[str, ToolDefinition] = {}
        self._by_alias: dict[str, ToolDefinition] = {}

        for definition in definitions:
            name = definition.canonical_name
            if name in self._by_name:
                raise RegistryError(f"Duplicate canonical name '{name}'")
            self._by_name[name] = definition

        for definition in self._by_name.values():
            for alias in sorted(definition.aliases):
                owner = self._by_alias.get(alias)
                if owner is not None:
                    raise RegistryError(
                        f"Alias '{alias}' is claimed by both '{owner.canonical_name}' "
                        f"and '{definition.canonical_name}'"
                    )
                if alias in self._by_name:
                    raise RegistryError(
                        f"Alias '{alias}' of '{definition.canonical_name}' shadows a canonical name"
                    )
                self._by_alias[alias] = definition

    def __len__(self) -> int:
        return len(self._by_name)

    def __iter__(self):
        return iter(self._by_name.values())

    def __contains__(self, name: str) -> bool:
        return name in self._by_name or name in self._by_alias

    def lookup(self, name: str) -> ToolDefinition:
        """
        Resolve a canonical name or alias.

        Raises:
            UnknownToolError: If neither matches
        """
        definition = self._by_name.get(name) or self._by_alias.get(name)
        if definition is None:
            raise UnknownToolError(name)
        return definition

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._by_name.get(name) or self._by_alias.get(name)

    def definitions(self) -> list[ToolDefinition]:
        """All tools, ordered by canonical name."""
        return sorted(self._by_name.values(), key=lambda d: d.canonical_name)

    def advertised(self, profile: Profile) -> list[tuple[str, ToolDefinition]]:
        """(advertised name, definition) pairs for `profile`, ordered by name."""
        listed = []
        for definition in self._by_name.values():
            name = definition.advertised_name(profile)
            if name is not None:
                listed.append((name, definition))
        return sorted(listed, key=lambda pair: pair[0])
