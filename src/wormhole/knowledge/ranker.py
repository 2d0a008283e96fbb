"""Score and order knowledge objects for a caller's intent."""

from wormhole.knowledge.models import (
    KnowledgeObject,
    KnowledgeSearchResult,
    KnowledgeType,
    SearchIntent,
)

# Preferred knowledge types per intent, most relevant first.
INTENT_PRIORITIES: dict[SearchIntent, list[KnowledgeType]] = {
    SearchIntent.DEBUGGING: [KnowledgeType.PITFALL, KnowledgeType.CONSTRAINT],
    SearchIntent.FEATURE: [KnowledgeType.DECISION, KnowledgeType.CONVENTION],
    SearchIntent.REFACTOR: [KnowledgeType.CONVENTION, KnowledgeType.CONSTRAINT],
    SearchIntent.TEST: [KnowledgeType.PITFALL],
    SearchIntent.UNKNOWN: [],
}

# Boost for the first, second, ... preferred type.
TYPE_BOOSTS = (2.0, 1.5)
TITLE_MATCH_BOOST = 0.5
DEFAULT_MAX_RESULTS = 10


def _coerce_intent(intent: SearchIntent | str) -> SearchIntent:
    try:
        return SearchIntent(intent)
    except ValueError:
        return SearchIntent.UNKNOWN


def type_boost(intent: SearchIntent, knowledge_type: KnowledgeType) -> float:
    preferred = INTENT_PRIORITIES.get(intent, [])
    if knowledge_type in preferred:
        rank = preferred.index(knowledge_type)
        if rank < len(TYPE_BOOSTS):
            return TYPE_BOOSTS[rank]
    return 0.0


def matches_query(obj: KnowledgeObject, tokens: list[str]) -> bool:
    title = obj.title.lower()
    content = obj.content.lower()
    return any(token in title or token in content for token in tokens)


def score(obj: KnowledgeObject, intent: SearchIntent, query: str | None = None) -> float:
    value = obj.confidence + type_boost(intent, obj.knowledge_type)
    if query and query in obj.title.lower():
        value += TITLE_MATCH_BOOST
    return value


def rank_knowledge(
    objects: list[KnowledgeObject],
    intent: SearchIntent | str,
    query: str | None = None,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[KnowledgeSearchResult]:
    """Rank knowledge objects and return the top ``max_results`` summaries.

    With a query, an object must contain at least one of its whitespace
    separated tokens (case-insensitive) in its title or content. Scores are
    confidence plus an intent type boost, plus a bonus when the whole query
    appears in the title. Equal scores are ordered by ascending id.
    """
    intent = _coerce_intent(intent)
    normalized = query.strip().lower() if query else ""

    candidates = objects
    if normalized:
        tokens = normalized.split()
        candidates = [obj for obj in objects if matches_query(obj, tokens)]

    scored = sorted(
        candidates,
        key=lambda obj: (-score(obj, intent, normalized or None), obj.id),
    )

    return [
        KnowledgeSearchResult(
            type=obj.knowledge_type,
            summary=obj.title,
            confidence=obj.confidence,
        )
        for obj in scored[:max_results]
    ]
