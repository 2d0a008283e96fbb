"""Knowledge object models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

MAX_TITLE_LENGTH = 200


class KnowledgeType(str, Enum):
    DECISION = "decision"
    PITFALL = "pitfall"
    CONSTRAINT = "constraint"
    CONVENTION = "convention"


class SearchIntent(str, Enum):
    DEBUGGING = "debugging"
    FEATURE = "feature"
    REFACTOR = "refactor"
    TEST = "test"
    UNKNOWN = "unknown"


class KnowledgeObject(BaseModel):
    """A distilled, deduplicated insight about a project."""

    id: int
    project_path: str
    knowledge_type: KnowledgeType
    title: str = Field(max_length=MAX_TITLE_LENGTH)
    content: str
    source_event_id: int | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] | None = None


class KnowledgeSearchResult(BaseModel):
    """What a knowledge search exposes: no content, no score."""

    type: KnowledgeType
    summary: str
    confidence: float
