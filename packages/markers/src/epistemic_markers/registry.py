"""
Shortcode registry.

Maps the short codes written inside markers (``H``, ``LW``, ...) to a semantic
kind and category. The registry is an explicit value handed to the tokenizer;
nothing here is process-global.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping

from pydantic import BaseModel, Field

from epistemic_core.db.enums import ShortcodeCategory


class ShortcodeDefinition(BaseModel):
    code: str = Field(..., min_length=1, description="Text written after ':::'")
    kind: str = Field(..., min_length=1, description="Semantic kind, e.g. 'Hypothesis'")
    description: str = ""
    category: ShortcodeCategory = ShortcodeCategory.epistemic


DEFAULT_SHORTCODES: tuple[ShortcodeDefinition, ...] = (
    # Epistemic
    ShortcodeDefinition(code="H", kind="Hypothesis", description="Testable hypothesis"),
    ShortcodeDefinition(code="E", kind="Evidence", description="Supporting evidence/data"),
    ShortcodeDefinition(code="T", kind="Theory", description="Theoretical framework"),
    ShortcodeDefinition(code="D", kind="Definition", description="Concept definition"),
    ShortcodeDefinition(code="C", kind="Claim", description="Factual claim"),
    ShortcodeDefinition(code="O", kind="Observation", description="Empirical observation"),
    ShortcodeDefinition(code="A", kind="Axiom", description="Foundational assumption"),
    # Lexicon
    ShortcodeDefinition(
        code="LW", kind="Legacy_Word", description="Legacy terminology", category=ShortcodeCategory.lexicon
    ),
    ShortcodeDefinition(
        code="SW", kind="Sister_Word", description="Sister School term", category=ShortcodeCategory.lexicon
    ),
    ShortcodeDefinition(
        code="DP", kind="Drift_Percentage", description="Semantic drift %", category=ShortcodeCategory.lexicon
    ),
    # External references
    ShortcodeDefinition(
        code="XT",
        kind="External_Theory",
        description="Reference to external theory (1-70)",
        category=ShortcodeCategory.meta,
    ),
    ShortcodeDefinition(code="SD", kind="Sister_Definition", description="Sister School definition"),
)


class ShortcodeRegistry:
    """Ordered code -> definition lookup. Registering an existing code replaces it."""

    def __init__(self, definitions: Iterable[ShortcodeDefinition] = ()):
        self._definitions: dict[str, ShortcodeDefinition] = {}
        for definition in definitions:
            self.register(definition)

    @classmethod
    def default(cls) -> "ShortcodeRegistry":
        return cls(DEFAULT_SHORTCODES)

    @classmethod
    def from_config(cls, custom: Iterable[Mapping[str, Any]] = ()) -> "ShortcodeRegistry":
        """Defaults first, then user definitions (which may override a default code)."""
        registry = cls.default()
        for raw in custom:
            registry.register(ShortcodeDefinition.model_validate(raw))
        return registry

    @classmethod
    def from_settings(cls, settings=None) -> "ShortcodeRegistry":
        if settings is None:
            from epistemic_core.settings import settings as core_settings

            settings = core_settings
        return cls.from_config(settings.custom_shortcodes)

    def register(self, definition: ShortcodeDefinition) -> None:
        self._definitions[definition.code] = definition

    def define(
        self,
        code: str,
        kind: str,
        description: str = "",
        category: ShortcodeCategory | str = ShortcodeCategory.epistemic,
    ) -> ShortcodeDefinition:
        definition = ShortcodeDefinition(
            code=code, kind=kind, description=description, category=ShortcodeCategory(category)
        )
        self.register(definition)
        return definition

    def resolve(self, code: str) -> ShortcodeDefinition | None:
        return self._definitions.get(code)

    def codes(self) -> list[str]:
        return list(self._definitions)

    def by_category(self, category: ShortcodeCategory | str) -> list[ShortcodeDefinition]:
        category = ShortcodeCategory(category)
        return [d for d in self._definitions.values() if d.category == category]

    def __contains__(self, code: object) -> bool:
        return code in self._definitions

    def __iter__(self) -> Iterator[ShortcodeDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)
