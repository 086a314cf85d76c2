from __future__ import annotations

import enum


class ShortcodeCategory(str, enum.Enum):
    epistemic = "epistemic"
    lexicon = "lexicon"
    relation = "relation"
    meta = "meta"


class RelationType(str, enum.Enum):
    supports = "SUPPORTS"
    refutes = "REFUTES"
    contradicts = "CONTRADICTS"
    is_special_case_of = "IS_SPECIAL_CASE_OF"
    translates_to = "TRANSLATES_TO"
    equivalent_to = "EQUIVALENT_TO"
    depends_on = "DEPENDS_ON"
    implies = "IMPLIES"
    similar_to = "SIMILAR_TO"
    derived_from = "DERIVED_FROM"
    exemplifies = "EXEMPLIFIES"


# Relations that read the same in both directions.
SYMMETRIC_RELATIONS = frozenset(
    {RelationType.contradicts, RelationType.equivalent_to, RelationType.similar_to}
)


class QueryType(str, enum.Enum):
    contradiction = "CONTRADICTION"
    support = "SUPPORT"
    similarity = "SIMILARITY"
    translation = "TRANSLATION"
    theory_match = "THEORY_MATCH"
    general = "GENERAL"


class OutboxStatus(str, enum.Enum):
    pending = "pending"
    applied = "applied"
